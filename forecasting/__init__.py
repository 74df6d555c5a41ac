"""
Candle Forecasting Engine
=========================

Multi-step OHLC price forecasting for crypto candle data.

Architecture
------------
- **Features**: fixed-window indicators (SMA, RSI, Bollinger, ATR,
  stochastic, trend strength, volatility, volume, lags)
- **Models**: XGBoost · LSTM · Random Forest → weighted Ensemble
- **Forecasting**: iterative (feedback) or direct multi-output rollout,
  time-decay or ensemble-variance confidence per step
- **Serving**: versioned model registry, Redis-backed forecast cache

Quick start (CLI)
-----------------
    python -m forecasting train --timeframe 1h
    python -m forecasting predict --symbol BTC --timeframe 1h --steps 10
    python -m forecasting models --timeframe 1h

Public API
----------
    from forecasting import FeatureBuilder, ForecastOrchestrator, TrainingPipeline
    from forecasting.config import config
"""

# ── Public façade ──────────────────────────────────────────────────
from forecasting.config import ForecastingConfig
from forecasting.entities import (
    Candle,
    Direction,
    FeatureVector,
    Forecast,
    ForecastMode,
    ForecastStep,
    Timeframe,
)
from forecasting.features.builder import FeatureBuilder
from forecasting.forecaster import ForecastOrchestrator, ForecastState
from forecasting.inference import ForecastService
from forecasting.training import TrainingPipeline, TrainingResult

__all__ = [
    "ForecastingConfig",
    "Candle",
    "Direction",
    "FeatureVector",
    "Forecast",
    "ForecastMode",
    "ForecastStep",
    "Timeframe",
    "FeatureBuilder",
    "ForecastOrchestrator",
    "ForecastState",
    "ForecastService",
    "TrainingPipeline",
    "TrainingResult",
]
