"""
Feature engineering sub-package.

Generators (fixed trailing windows, no recursive smoothing)
-----------------------------------------------------------
- `TechnicalFeatures` — SMA, RSI, Bollinger, ATR, Stochastic, trend strength, volatility
- `VolumeFeatures`    — volume SMA, volume ratio
- `LagFeatures`       — close/volume lags, short/medium/long % change

Orchestrator
------------
- `FeatureBuilder.build_features(candles, as_of_index)` — one FeatureVector
- `FeatureBuilder.build_matrix(df)` — training matrix across symbols
"""

from forecasting.features.builder import FeatureBuilder
from forecasting.features.lag import LagFeatures
from forecasting.features.technical import TechnicalFeatures
from forecasting.features.volume import VolumeFeatures

__all__ = [
    "FeatureBuilder",
    "TechnicalFeatures",
    "VolumeFeatures",
    "LagFeatures",
]
