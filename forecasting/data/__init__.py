"""
Candle data sub-package.

- `clean_candles`       — dedupe, validate, forward-fill, OHLC repair, sort
- `candles_to_frame` / `frame_to_candles` — record ↔ DataFrame conversion
- `FileCandleProvider`  — per-symbol CSV/Parquet history provider
"""

from forecasting.data.candles import (
    OHLCV_COLUMNS,
    candle_stats,
    candles_to_frame,
    clean_candles,
    frame_to_candles,
    is_valid_candle,
)
from forecasting.data.provider import FileCandleProvider

__all__ = [
    "OHLCV_COLUMNS",
    "candle_stats",
    "candles_to_frame",
    "clean_candles",
    "frame_to_candles",
    "is_valid_candle",
    "FileCandleProvider",
]
