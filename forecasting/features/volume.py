"""
Volume profile features.

- Volume SMA over a fixed window
- Volume ratio (current vs average)
"""

import logging

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


class VolumeFeatures:
    """Generates volume-based features from OHLCV data."""

    def __init__(self, window: int = 20) -> None:
        self._window = window

    @property
    def lookback(self) -> int:
        return self._window - 1

    @property
    def columns(self) -> list[str]:
        return [f"volume_sma_{self._window}", "volume_ratio"]

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        """Compute volume features for a single-symbol DataFrame."""
        df = df.copy()
        volume = df["volume"].astype(float)

        vol_avg = volume.rolling(window=self._window).mean()
        df[f"volume_sma_{self._window}"] = vol_avg
        df["volume_ratio"] = volume / vol_avg.replace(0, np.nan)

        logger.debug("Computed volume features.")
        return df
