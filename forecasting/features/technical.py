"""
Technical indicator features.

Computes price indicators from OHLCV data over fixed trailing windows:
- Moving averages (SMA) and price-to-SMA ratios
- RSI (bounded momentum oscillator)
- Bollinger Bands (volatility band)
- ATR (average true range)
- Stochastic %K
- Trend strength (efficiency ratio)
- Return volatility

Every indicator at row t uses rows t-n..t only, and only fixed-length
windows (no recursive smoothing), so the value at t is identical whether it
is computed on the full history or on a trailing slice.
"""

import logging

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


class TechnicalFeatures:
    """Computes technical analysis features for one symbol's candles."""

    def __init__(
        self,
        sma_windows: tuple[int, ...] = (10, 20, 50),
        rsi_window: int = 14,
        bollinger_window: int = 20,
        bollinger_std: float = 2.0,
        atr_window: int = 14,
        stochastic_window: int = 14,
        trend_window: int = 20,
        volatility_window: int = 20,
    ) -> None:
        self._sma_windows = sma_windows
        self._rsi_window = rsi_window
        self._boll_window = bollinger_window
        self._boll_std = bollinger_std
        self._atr_window = atr_window
        self._stoch_window = stochastic_window
        self._trend_window = trend_window
        self._vol_window = volatility_window

    @property
    def lookback(self) -> int:
        """Number of candles that must precede a row for it to be complete."""
        return max(
            max(self._sma_windows) - 1,
            self._rsi_window,
            self._boll_window - 1,
            self._atr_window,
            self._stoch_window - 1,
            self._trend_window,
            self._vol_window,
        )

    @property
    def _boll_tag(self) -> str:
        """Window and band width, e.g. "20_2"."""
        return f"{self._boll_window}_{self._boll_std:g}"

    @property
    def columns(self) -> list[str]:
        cols: list[str] = []
        for w in self._sma_windows:
            cols += [f"sma_{w}", f"price_to_sma_{w}"]
        cols += [
            f"rsi_{self._rsi_window}",
            f"bollinger_upper_{self._boll_tag}",
            f"bollinger_lower_{self._boll_tag}",
            f"bollinger_width_{self._boll_tag}",
            f"bollinger_percent_b_{self._boll_tag}",
            f"atr_{self._atr_window}",
            "atr_pct",
            f"stochastic_k_{self._stoch_window}",
            f"trend_strength_{self._trend_window}",
            f"volatility_{self._vol_window}",
        ]
        return cols

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        """Compute all technical features for a single-symbol DataFrame.

        Expects columns: open, high, low, close. Rows must be sorted by
        timestamp ascending.

        Returns:
            DataFrame with original columns plus all technical features.
            Rows without enough history hold NaN.
        """
        df = df.copy()
        close = df["close"].astype(float)
        high = df["high"].astype(float)
        low = df["low"].astype(float)

        # Simple Moving Averages
        for w in self._sma_windows:
            sma = close.rolling(window=w).mean()
            df[f"sma_{w}"] = sma
            df[f"price_to_sma_{w}"] = close / sma.replace(0, np.nan) - 1

        # RSI
        df[f"rsi_{self._rsi_window}"] = self._compute_rsi(close, self._rsi_window)

        # Bollinger Bands
        mid = close.rolling(window=self._boll_window).mean()
        std = close.rolling(window=self._boll_window).std()
        upper = mid + self._boll_std * std
        lower = mid - self._boll_std * std
        band = (upper - lower).replace(0, np.nan)
        tag = self._boll_tag
        df[f"bollinger_upper_{tag}"] = upper
        df[f"bollinger_lower_{tag}"] = lower
        df[f"bollinger_width_{tag}"] = (upper - lower) / mid.replace(0, np.nan)
        df[f"bollinger_percent_b_{tag}"] = (close - lower) / band

        # ATR (Average True Range)
        atr = self._compute_atr(high, low, close, self._atr_window)
        df[f"atr_{self._atr_window}"] = atr
        df["atr_pct"] = atr / close.replace(0, np.nan)

        # Stochastic Oscillator (%K), flat range â neutral 50
        lowest_low = low.rolling(window=self._stoch_window).min()
        highest_high = high.rolling(window=self._stoch_window).max()
        denom = (highest_high - lowest_low).replace(0, np.nan)
        stoch = ((close - lowest_low) / denom) * 100
        stoch = stoch.where(denom.notna() | lowest_low.isna(), 50.0)
        df[f"stochastic_k_{self._stoch_window}"] = stoch.clip(0, 100)

        # Trend strength: net move / path length over the window, in [0, 1]
        n = self._trend_window
        net_move = (close - close.shift(n)).abs()
        path = close.diff().abs().rolling(window=n).sum()
        trend = net_move / path.replace(0, np.nan)
        trend = trend.where(path != 0, 0.0)
        df[f"trend_strength_{n}"] = trend.clip(0, 1)

        # Volatility (rolling std of returns)
        returns = close.pct_change()
        df[f"volatility_{self._vol_window}"] = returns.rolling(self._vol_window).std()

        logger.debug("Computed %d technical features.", len(self.columns))
        return df

    @staticmethod
    def _compute_rsi(series: pd.Series, window: int) -> pd.Series:
        """Simple-average RSI clamped to [0, 100].

        No losses in the window â 100 (or 50 when there are no gains either).
        """
        delta = series.diff()
        gain = delta.clip(lower=0)
        loss = -delta.clip(upper=0)
        avg_gain = gain.rolling(window=window, min_periods=window).mean()
        avg_loss = loss.rolling(window=window, min_periods=window).mean()
        rs = avg_gain / avg_loss.replace(0, np.nan)
        rsi = 100 - (100 / (1 + rs))
        rsi = rsi.where(avg_loss != 0, np.where(avg_gain > 0, 100.0, 50.0))
        rsi = rsi.where(avg_loss.notna())
        return rsi.clip(0, 100)

    @staticmethod
    def _compute_atr(
        high: pd.Series, low: pd.Series, close: pd.Series, window: int
    ) -> pd.Series:
        """Compute Average True Range (simple mean of true range)."""
        prev_close = close.shift(1)
        tr1 = high - low
        tr2 = (high - prev_close).abs()
        tr3 = (low - prev_close).abs()
        true_range = pd.concat([tr1, tr2, tr3], axis=1).max(axis=1)
        true_range = true_range.where(prev_close.notna())
        return true_range.rolling(window=window).mean()
