"""
Lag features.

Creates autoregressive features:
- Close and volume lags for the previous k steps
- Short / medium / long percentage price change
"""

import logging

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


class LagFeatures:
    """Creates time-lagged features from price and volume data."""

    def __init__(
        self,
        lag_steps: int = 5,
        pct_change_periods: tuple[int, ...] = (5, 20, 50),
    ) -> None:
        self._lag_steps = lag_steps
        self._pct_periods = pct_change_periods

    @property
    def lookback(self) -> int:
        return max(self._lag_steps, max(self._pct_periods))

    @property
    def columns(self) -> list[str]:
        lags = range(1, self._lag_steps + 1)
        return (
            [f"close_lag_{i}" for i in lags]
            + [f"volume_lag_{i}" for i in lags]
            + [f"pct_change_{p}" for p in self._pct_periods]
        )

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        """Compute lag and percentage-change features.

        Args:
            df: Single-symbol DataFrame sorted by timestamp.

        Returns:
            DataFrame with lag feature columns added.
        """
        df = df.copy()
        close = df["close"].astype(float)
        volume = df["volume"].astype(float)

        for lag in range(1, self._lag_steps + 1):
            df[f"close_lag_{lag}"] = close.shift(lag)
        for lag in range(1, self._lag_steps + 1):
            df[f"volume_lag_{lag}"] = volume.shift(lag)

        for p in self._pct_periods:
            df[f"pct_change_{p}"] = close / close.shift(p).replace(0, np.nan) - 1

        logger.debug("Computed lag features with %d lag steps.", self._lag_steps)
        return df
