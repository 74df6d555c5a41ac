"""
Feature builder.

Runs all feature generators in order:
1. Raw OHLCV of the current candle
2. Technical indicators
3. Volume profile features
4. Lag / percentage-change features

Training (build_matrix) and inference (build_features) share
compute_frame, so a feature has exactly one definition.
"""

import logging
from typing import Sequence

import numpy as np
import pandas as pd

from forecasting.config import FeatureConfig, config
from forecasting.data.candles import candles_to_frame
from forecasting.entities import Candle, FeatureVector
from forecasting.errors import InsufficientHistoryError
from forecasting.features.lag import LagFeatures
from forecasting.features.technical import TechnicalFeatures
from forecasting.features.volume import VolumeFeatures

logger = logging.getLogger(__name__)

RAW_COLUMNS = ["open", "high", "low", "close", "volume"]


class FeatureBuilder:
    """Builds fixed-schema feature vectors from candle history.

    The schema (ordered feature names) is fully determined by the
    FeatureConfig: it never depends on the candle values.
    """

    def __init__(self, cfg: FeatureConfig | None = None) -> None:
        cfg = cfg or config.features
        self._cfg = cfg
        self._technical = TechnicalFeatures(
            sma_windows=cfg.sma_windows,
            rsi_window=cfg.rsi_window,
            bollinger_window=cfg.bollinger_window,
            bollinger_std=cfg.bollinger_std,
            atr_window=cfg.atr_window,
            stochastic_window=cfg.stochastic_window,
            trend_window=cfg.trend_window,
            volatility_window=cfg.volatility_window,
        )
        self._volume = VolumeFeatures(window=cfg.volume_window)
        self._lag = LagFeatures(
            lag_steps=cfg.lag_steps,
            pct_change_periods=cfg.pct_change_periods,
        )
        self._feature_names = tuple(
            RAW_COLUMNS
            + self._technical.columns
            + self._volume.columns
            + self._lag.columns
        )

    @property
    def config(self) -> FeatureConfig:
        return self._cfg

    @property
    def feature_names(self) -> tuple[str, ...]:
        return self._feature_names

    @property
    def required_lookback(self) -> int:
        """W: candles that must precede the as-of candle."""
        return max(
            self._technical.lookback,
            self._volume.lookback,
            self._lag.lookback,
        )

    @property
    def atr_column(self) -> str:
        return f"atr_{self._cfg.atr_window}"

    @property
    def volume_sma_column(self) -> str:
        return f"volume_sma_{self._cfg.volume_window}"

    def compute_frame(self, df: pd.DataFrame) -> pd.DataFrame:
        """Compute every feature column for one symbol's candles.

        Rows without full lookback keep NaN in some columns.
        """
        df = df.reset_index(drop=True)
        df = self._technical.compute(df)
        df = self._volume.compute(df)
        df = self._lag.compute(df)
        return df

    def build_features(
        self,
        candles: Sequence[Candle] | pd.DataFrame,
        as_of_index: int | None = None,
    ) -> FeatureVector:
        """Build the feature vector of the candle at ``as_of_index``.

        Args:
            candles: Time-ordered candles (records or an OHLCV DataFrame).
            as_of_index: Position of the current candle; defaults to the last.

        Raises:
            InsufficientHistoryError: fewer than ``required_lookback``
                candles precede ``as_of_index``.
        """
        if isinstance(candles, pd.DataFrame):
            frame = candles.reset_index(drop=True)
        else:
            frame = candles_to_frame(candles)

        lookback = self.required_lookback
        n = len(frame)
        if n == 0:
            raise InsufficientHistoryError(required=lookback, available=0)
        if as_of_index is None:
            as_of_index = n - 1
        if not 0 <= as_of_index < n:
            raise IndexError(f"as_of_index {as_of_index} out of range for {n} candles")
        if as_of_index < lookback:
            raise InsufficientHistoryError(required=lookback, available=as_of_index)

        window = frame.iloc[as_of_index - lookback : as_of_index + 1]
        computed = self.compute_frame(window)
        row = computed.iloc[-1][list(self._feature_names)].to_numpy(dtype=float)
        row = np.where(np.isfinite(row), row, 0.0)
        return FeatureVector(
            names=self._feature_names,
            values=tuple(float(v) for v in row),
        )

    def build_matrix(self, df: pd.DataFrame) -> pd.DataFrame:
        """Build the training feature matrix for a multi-symbol frame.

        Processes each symbol independently to avoid cross-contamination,
        drops rows without full lookback, then concatenates the results.

        Args:
            df: Long OHLCV frame with a ``symbol`` column.

        Returns:
            DataFrame with symbol, timestamp and every feature column.
        """
        if df.empty:
            return pd.DataFrame(columns=["symbol", "timestamp", *self._feature_names])

        lookback = self.required_lookback
        frames: list[pd.DataFrame] = []
        for symbol, group in df.groupby("symbol", sort=True):
            group = group.sort_values("timestamp").reset_index(drop=True)
            if len(group) <= lookback:
                logger.debug("Skipping %s — %d candles, need > %d.", symbol, len(group), lookback)
                continue
            computed = self.compute_frame(group).iloc[lookback:]
            frames.append(computed[["symbol", "timestamp", *self._feature_names]])

        if not frames:
            return pd.DataFrame(columns=["symbol", "timestamp", *self._feature_names])

        result = pd.concat(frames, ignore_index=True)
        features = list(self._feature_names)
        result[features] = result[features].replace([np.inf, -np.inf], np.nan).fillna(0.0)

        logger.info(
            "Feature matrix complete: %d rows, %d features, %d symbols",
            len(result),
            len(features),
            result["symbol"].nunique(),
        )
        return result
