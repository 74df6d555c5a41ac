"""
Runtime settings for the forecasting engine.

Loads deployment settings from environment variables and the .env file.
Tuned ML constants live in forecasting.config instead.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Forecasting settings loaded from environment.

    Every field can be overridden with a ``FORECAST_`` prefixed variable,
    e.g. ``FORECAST_MODEL_DIR=/srv/models``.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        data_dir: Root directory of per-symbol candle files.
        model_dir: Root directory of the model registry.
        redis_url: Redis connection URL for the forecast cache.
        prediction_cache_ttl: Forecast cache TTL in seconds.
        mlflow_tracking_uri: MLflow tracking URI used by training.
        mlflow_experiment_name: MLflow experiment name.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="FORECAST_",
        extra="ignore",
        protected_namespaces=(),
    )

    log_level: str = "INFO"
    data_dir: str = "data"
    model_dir: str = "models"
    redis_url: str = "redis://localhost:6379/0"
    prediction_cache_ttl: int = 900  # 15 minutes
    mlflow_tracking_uri: str = "mlruns"
    mlflow_experiment_name: str = "candlecast-forecasting"


settings = Settings()
