"""
File-backed candle history provider.

Layout: ``{data_dir}/{timeframe}/{SYMBOL}.parquet`` (or ``.csv``), one file
per symbol and timeframe, as written by the candle sync job.
"""

import logging
from pathlib import Path

import pandas as pd

from forecasting.data.candles import candle_stats, clean_candles, frame_to_candles
from forecasting.entities import Candle, Timeframe
from forecasting.ports import CandleHistoryProvider

logger = logging.getLogger(__name__)

_SUFFIXES = (".parquet", ".csv")


class FileCandleProvider(CandleHistoryProvider):
    """Reads per-symbol candle files and cleans them on the way in."""

    def __init__(self, data_dir: Path | str) -> None:
        self._data_dir = Path(data_dir)

    def get_candles(
        self, symbol: str, timeframe: Timeframe, limit: int
    ) -> list[Candle]:
        df = self.load_frame(symbol, timeframe)
        return frame_to_candles(df.tail(limit))

    def load_frame(self, symbol: str, timeframe: Timeframe) -> pd.DataFrame:
        """Load and clean the full history of one symbol."""
        path = self._find_file(symbol, timeframe)
        if path is None:
            raise FileNotFoundError(
                f"No candle file for {symbol} in {self._data_dir / timeframe.value}"
            )
        raw = pd.read_parquet(path) if path.suffix == ".parquet" else pd.read_csv(path)
        df = clean_candles(raw)
        logger.debug("Loaded %s %s: %s", symbol, timeframe.value, candle_stats(df))
        return df

    def load_universe(
        self, timeframe: Timeframe, symbols: list[str] | None = None
    ) -> pd.DataFrame:
        """Load several symbols into one long frame with a ``symbol`` column."""
        symbols = symbols or self.list_symbols(timeframe)
        frames: list[pd.DataFrame] = []
        for symbol in symbols:
            try:
                df = self.load_frame(symbol, timeframe)
            except FileNotFoundError:
                logger.warning("No %s candles for %s — skipped.", timeframe.value, symbol)
                continue
            df["symbol"] = symbol.upper()
            frames.append(df)
        if not frames:
            return pd.DataFrame(
                columns=["symbol", "timestamp", "open", "high", "low", "close", "volume"]
            )
        return pd.concat(frames, ignore_index=True)

    def list_symbols(self, timeframe: Timeframe) -> list[str]:
        folder = self._data_dir / timeframe.value
        if not folder.exists():
            return []
        return sorted({p.stem.upper() for p in folder.iterdir() if p.suffix in _SUFFIXES})

    def _find_file(self, symbol: str, timeframe: Timeframe) -> Path | None:
        """Locate a symbol file; stems match case-insensitively."""
        folder = self._data_dir / timeframe.value
        for suffix in _SUFFIXES:
            path = folder / f"{symbol.upper()}{suffix}"
            if path.exists():
                return path
        if not folder.exists():
            return None
        for suffix in _SUFFIXES:
            for path in sorted(folder.glob(f"*{suffix}")):
                if path.stem.upper() == symbol.upper():
                    return path
        return None
