"""
Candle frame utilities.

Converts between Candle records and the canonical OHLCV DataFrame, and
cleans raw exchange aggregates before they reach the engine:
1. Normalise column names and timestamps
2. Remove duplicate timestamps (first occurrence wins)
3. Drop rows with non-positive prices or negative volume
4. Forward-fill missing OHLC values from the previous close
5. Repair the OHLC relationship (high is the max, low is the min)
6. Sort by timestamp ascending
"""

import logging
from typing import Iterable

import numpy as np
import pandas as pd

from forecasting.entities import Candle

logger = logging.getLogger(__name__)

OHLCV_COLUMNS = ["timestamp", "open", "high", "low", "close", "volume"]
PRICE_COLUMNS = ["open", "high", "low", "close"]

# Short aggregate keys used by exchange REST APIs (t, o, h, l, c, v)
_AGGREGATE_ALIASES = {
    "t": "timestamp",
    "o": "open",
    "h": "high",
    "l": "low",
    "c": "close",
    "v": "volume",
    "time": "timestamp",
    "date": "timestamp",
}


def candles_to_frame(candles: Iterable[Candle]) -> pd.DataFrame:
    """Build the canonical OHLCV DataFrame from Candle records."""
    rows = [
        (c.timestamp, c.open, c.high, c.low, c.close, c.volume)
        for c in candles
    ]
    df = pd.DataFrame(rows, columns=OHLCV_COLUMNS)
    for col in OHLCV_COLUMNS[1:]:
        df[col] = df[col].astype(float)
    return df


def frame_to_candles(df: pd.DataFrame) -> list[Candle]:
    """Convert an OHLCV DataFrame back to Candle records."""
    timestamps = pd.to_datetime(df["timestamp"])
    return [
        Candle(
            timestamp=ts.to_pydatetime(),
            open=float(o),
            high=float(h),
            low=float(lo),
            close=float(c),
            volume=float(v),
        )
        for ts, o, h, lo, c, v in zip(
            timestamps,
            df["open"],
            df["high"],
            df["low"],
            df["close"],
            df["volume"],
        )
    ]


def clean_candles(raw: pd.DataFrame) -> pd.DataFrame:
    """Clean raw OHLCV aggregates.

    Args:
        raw: DataFrame with canonical columns or short aggregate keys
            (t/o/h/l/c/v). Numeric timestamps are read as epoch milliseconds.

    Returns:
        Cleaned DataFrame with the canonical OHLCV columns (plus any extra
        columns such as ``symbol``), sorted by timestamp.
    """
    if raw.empty:
        return pd.DataFrame(columns=OHLCV_COLUMNS)

    df = raw.rename(
        columns={k: v for k, v in _AGGREGATE_ALIASES.items() if k in raw.columns}
    ).copy()

    missing = [c for c in OHLCV_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Candle data is missing columns: {missing}")

    if pd.api.types.is_numeric_dtype(df["timestamp"]):
        df["timestamp"] = pd.to_datetime(df["timestamp"], unit="ms", utc=True)
    else:
        df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)

    for col in OHLCV_COLUMNS[1:]:
        df[col] = pd.to_numeric(df[col], errors="coerce")

    n_raw = len(df)

    # Duplicates: keep the first occurrence
    df = df.drop_duplicates(subset="timestamp", keep="first")

    # Invalid prices / volume (NaN is handled by the forward fill below)
    invalid = (df[PRICE_COLUMNS] <= 0).any(axis=1) | (df["volume"] < 0)
    if invalid.any():
        logger.warning(
            "Dropping %d candle(s) with non-positive prices or negative volume.",
            int(invalid.sum()),
        )
        df = df[~invalid]

    df = df.sort_values("timestamp", kind="stable").reset_index(drop=True)

    # Forward fill: a row with any missing price becomes flat at the previous close
    gaps = df[PRICE_COLUMNS].isna().any(axis=1)
    if gaps.any():
        prev_close = df["close"].ffill().shift(1)
        for col in PRICE_COLUMNS:
            df.loc[gaps, col] = prev_close[gaps]
        df = df.dropna(subset=PRICE_COLUMNS).reset_index(drop=True)
        logger.info("Forward-filled %d candle(s) with missing prices.", int(gaps.sum()))
    df["volume"] = df["volume"].fillna(0.0)

    # OHLC relationship repair
    prices = df[PRICE_COLUMNS].to_numpy(dtype=float)
    df["high"] = prices.max(axis=1)
    df["low"] = prices.min(axis=1)

    logger.debug("Cleaned candles: %d raw → %d clean.", n_raw, len(df))
    return df


def is_valid_candle(candle: Candle) -> bool:
    """Check positivity and the low ≤ open/close ≤ high relationship."""
    return (
        candle.open > 0
        and candle.high > 0
        and candle.low > 0
        and candle.close > 0
        and candle.volume >= 0
        and candle.low <= min(candle.open, candle.close)
        and candle.high >= max(candle.open, candle.close)
    )


def candle_stats(df: pd.DataFrame) -> dict:
    """Summary statistics for a candle frame (debugging and validation)."""
    if df.empty:
        return {
            "count": 0,
            "first_timestamp": None,
            "last_timestamp": None,
            "avg_volume": 0.0,
            "min_price": 0.0,
            "max_price": 0.0,
        }
    prices = df[PRICE_COLUMNS].to_numpy(dtype=float)
    return {
        "count": len(df),
        "first_timestamp": df["timestamp"].iloc[0],
        "last_timestamp": df["timestamp"].iloc[-1],
        "avg_volume": float(df["volume"].mean()),
        "min_price": float(np.min(prices)),
        "max_price": float(np.max(prices)),
    }
