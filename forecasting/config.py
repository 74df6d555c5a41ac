"""
Forecasting engine configuration.

Reads deployment settings (paths, Redis, MLflow) from the Settings object
(forecasting.settings), which loads from .env.

Feature windows, model hyperparameters, confidence bounds and ensemble
weights live here as frozen dataclasses. Changing a feature window changes
the feature schema, so stored models must be retrained.
"""

from dataclasses import dataclass, field
from pathlib import Path


def _load_settings():
    """Lazy-load the runtime settings so importing config stays cheap."""
    from forecasting.settings import settings
    return settings


@dataclass(frozen=True)
class PathsConfig:
    """File system locations for candle data and the model registry."""

    data_dir: Path = field(default_factory=lambda: Path(_load_settings().data_dir))
    models_dir: Path = field(default_factory=lambda: Path(_load_settings().model_dir))


@dataclass(frozen=True)
class RedisConfig:
    """Forecast cache connection and TTL."""

    url: str = field(default_factory=lambda: _load_settings().redis_url)
    prediction_ttl_seconds: int = field(
        default_factory=lambda: _load_settings().prediction_cache_ttl
    )


@dataclass(frozen=True)
class FeatureConfig:
    """Feature engineering parameters.

    Window lengths are part of the feature schema: changing any of them
    changes the feature names, so a model trained with one config cannot
    be served with another.
    """

    sma_windows: tuple[int, ...] = (10, 20, 50)
    rsi_window: int = 14
    bollinger_window: int = 20
    bollinger_std: float = 2.0
    atr_window: int = 14
    stochastic_window: int = 14
    trend_window: int = 20
    volatility_window: int = 20
    volume_window: int = 20

    # Lagged close / volume
    lag_steps: int = 5

    # Short / medium / long percentage change
    pct_change_periods: tuple[int, int, int] = (5, 20, 50)


@dataclass(frozen=True)
class ModelConfig:
    """ML model hyperparameters."""

    # XGBoost
    xgb_n_estimators: int = 400
    xgb_max_depth: int = 6
    xgb_learning_rate: float = 0.05
    xgb_subsample: float = 0.8
    xgb_colsample_bytree: float = 0.8

    # LSTM
    lstm_hidden_size: int = 64
    lstm_num_layers: int = 2
    lstm_dropout: float = 0.2
    lstm_learning_rate: float = 0.001
    lstm_epochs: int = 50
    lstm_batch_size: int = 64
    lstm_patience: int = 8

    # Random forest
    rf_n_estimators: int = 300
    rf_max_depth: int | None = 12
    rf_min_samples_leaf: int = 5

    # Ensemble default weights
    ensemble_xgb_weight: float = 0.4
    ensemble_lstm_weight: float = 0.4
    ensemble_rf_weight: float = 0.2
    ensemble_max_workers: int = 1


@dataclass(frozen=True)
class ConfidenceConfig:
    """Per-step confidence settings.

    strategy: "auto" picks ensemble-variance when the predictor reports a
    variance, time-decay otherwise.
    """

    strategy: str = "auto"
    high: float = 0.85
    low: float = 0.60
    variance_sensitivity: float = 10.0
    epsilon: float = 1e-4


@dataclass(frozen=True)
class ForecastConfig:
    """Forecast orchestration settings."""

    max_steps: int = 30
    default_steps: int = 30
    required_candles: int = 200
    flat_tolerance: float = 0.0
    top_k_drivers: int = 5


@dataclass(frozen=True)
class TrainingConfig:
    """Offline training settings."""

    top_n_symbols: int = 500
    validation_fraction: float = 0.2
    min_training_samples: int = 500
    optimize_weights: bool = True
    activate_on_save: bool = True


@dataclass(frozen=True)
class MLflowConfig:
    """MLflow experiment tracking settings."""

    tracking_uri: str = field(default_factory=lambda: _load_settings().mlflow_tracking_uri)
    experiment_name: str = field(
        default_factory=lambda: _load_settings().mlflow_experiment_name
    )


@dataclass(frozen=True)
class ForecastingConfig:
    """Top-level configuration aggregating all sub-configs."""

    paths: PathsConfig = field(default_factory=PathsConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    features: FeatureConfig = field(default_factory=FeatureConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    confidence: ConfidenceConfig = field(default_factory=ConfidenceConfig)
    forecast: ForecastConfig = field(default_factory=ForecastConfig)
    training: TrainingConfig = field(default_factory=TrainingConfig)
    mlflow: MLflowConfig = field(default_factory=MLflowConfig)


# Singleton instance
config = ForecastingConfig()
