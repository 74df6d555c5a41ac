"""
Training pipeline orchestrator.

Offline, batch training for one timeframe across many symbols:
- Top-N symbol selection by USD volume (close × volume)
- Per-symbol feature matrix + future-close targets
- Chronological train/validation split (no shuffling, no leakage)
- Per-family training + evaluation
- Inverse-RMSE ensemble weights
- Model persistence via the registry
- **MLflow experiment tracking** for all runs & metrics

Usage:
    pipeline = TrainingPipeline()
    result = pipeline.run(candles_df, Timeframe.H1)
"""

import logging
from dataclasses import dataclass, field

import pandas as pd

from forecasting.config import ForecastingConfig, config
from forecasting.entities import Timeframe
from forecasting.errors import ForecastingError
from forecasting.features.builder import FeatureBuilder
from forecasting.models.base import BasePredictionModel, ModelFamily, ModelMetrics
from forecasting.models.ensemble import EnsemblePredictor
from forecasting.models.families import BASE_FAMILIES, create_model, default_weight
from forecasting.models.lstm import HAS_TORCH
from forecasting.models.registry import ModelManifest, ModelRegistry

logger = logging.getLogger(__name__)

try:
    import mlflow
    HAS_MLFLOW = True
except ImportError:
    HAS_MLFLOW = False
    logger.warning("MLflow not installed. Experiment tracking disabled.")


@dataclass
class TrainingDataset:
    """Chronologically split feature matrix and targets."""

    X_train: pd.DataFrame
    y_train: pd.Series | pd.DataFrame
    X_val: pd.DataFrame
    y_val: pd.Series | pd.DataFrame
    symbols: list[str]
    training_start: str | None
    training_end: str | None


@dataclass
class TrainingResult:
    """Outcome of one training run."""

    timeframe: Timeframe
    model: BasePredictionModel
    metrics: dict[str, ModelMetrics]
    weights: dict[str, float]
    symbols: list[str]
    feature_names: list[str]
    train_rows: int
    val_rows: int
    training_start: str | None = None
    training_end: str | None = None
    manifest: ModelManifest | None = None
    failed: list[str] = field(default_factory=list)


def _setup_mlflow(cfg: ForecastingConfig) -> bool:
    """Initialise MLflow tracking. Returns True if available."""
    if not HAS_MLFLOW:
        return False
    try:
        mlflow.set_tracking_uri(cfg.mlflow.tracking_uri)
        mlflow.set_experiment(cfg.mlflow.experiment_name)
        logger.info(
            "MLflow tracking: uri=%s  experiment=%s",
            cfg.mlflow.tracking_uri,
            cfg.mlflow.experiment_name,
        )
        return True
    except Exception:
        logger.warning("MLflow setup failed. Tracking disabled.")
        return False


def _metrics_dict(metrics: ModelMetrics, prefix: str = "") -> dict[str, float]:
    return {f"{prefix}{k}": v for k, v in metrics.to_dict().items()}


def select_top_symbols(candles_df: pd.DataFrame, top_n: int) -> list[str]:
    """Symbols ranked by total USD volume (close × volume), highest first."""
    if candles_df.empty:
        return []
    usd_volume = (
        (candles_df["close"] * candles_df["volume"])
        .groupby(candles_df["symbol"])
        .sum()
    )
    ranked = sorted(usd_volume.items(), key=lambda kv: (-kv[1], kv[0]))
    return [str(symbol) for symbol, _ in ranked[:top_n]]


class TrainingPipeline:
    """End-to-end ML training pipeline with MLflow tracking.

    Steps:
    1. Select the top-N symbols by USD volume
    2. Build features + targets per symbol
    3. Split chronologically into train / validation
    4. Train and evaluate each model family
    5. Combine into an ensemble (more than one family)
    6. Persist through the registry and activate
    """

    def __init__(
        self,
        cfg: ForecastingConfig | None = None,
        registry: ModelRegistry | None = None,
        builder: FeatureBuilder | None = None,
        track: bool = True,
    ) -> None:
        self._cfg = cfg or config
        self._builder = builder or FeatureBuilder(self._cfg.features)
        self._registry = registry
        self._mlflow_ok = _setup_mlflow(self._cfg) if track else False

    @property
    def builder(self) -> FeatureBuilder:
        return self._builder

    def prepare_dataset(
        self,
        candles_df: pd.DataFrame,
        horizon: int = 1,
        symbols: list[str] | None = None,
    ) -> TrainingDataset:
        """Features, targets and the chronological split.

        ``target_{h}`` is the close ``h`` candles after the feature row,
        taken within the same symbol.
        """
        if horizon < 1:
            raise ValueError(f"horizon must be >= 1, got {horizon}")

        if symbols is None:
            symbols = select_top_symbols(candles_df, self._cfg.training.top_n_symbols)
        df = candles_df[candles_df["symbol"].isin(symbols)]

        matrix = self._builder.build_matrix(df)
        target_cols = [f"target_{h}" for h in range(1, horizon + 1)]
        grouped_close = matrix.groupby("symbol")["close"]
        for h, col in enumerate(target_cols, start=1):
            matrix[col] = grouped_close.shift(-h)
        matrix = matrix.dropna(subset=target_cols).reset_index(drop=True)

        if matrix.empty:
            raise ForecastingError(
                "No training rows: every symbol is shorter than the feature "
                "lookback plus the horizon"
            )

        train_df, val_df = self._chronological_split(matrix, horizon)
        if train_df.empty:
            raise ForecastingError(
                "No training rows left before the validation window"
            )
        if len(train_df) < self._cfg.training.min_training_samples:
            logger.warning(
                "Only %d training rows (minimum recommended %d).",
                len(train_df), self._cfg.training.min_training_samples,
            )

        features = list(self._builder.feature_names)
        targets = target_cols[0] if horizon == 1 else target_cols
        timestamps = pd.to_datetime(matrix["timestamp"])
        trained_symbols = sorted(matrix["symbol"].unique().tolist())

        logger.info(
            "Training data — %d symbols, train: %d rows, val: %d rows, horizon=%d",
            len(trained_symbols), len(train_df), len(val_df), horizon,
        )
        return TrainingDataset(
            X_train=train_df[features],
            y_train=train_df[targets],
            X_val=val_df[features],
            y_val=val_df[targets],
            symbols=trained_symbols,
            training_start=timestamps.min().isoformat(),
            training_end=timestamps.max().isoformat(),
        )

    def run(
        self,
        candles_df: pd.DataFrame,
        timeframe: Timeframe | str,
        families: list[ModelFamily | str] | None = None,
        horizon: int = 1,
        symbols: list[str] | None = None,
        save: bool = True,
    ) -> TrainingResult:
        """Execute the full training pipeline with MLflow tracking.

        Each family gets its own MLflow child run under one parent run.

        Args:
            candles_df: Long OHLCV frame with a ``symbol`` column.
            timeframe: Timeframe the model will serve.
            families: Model families to train (default: every base family).
            horizon: 1 for iterative models, N for direct N-step models.
            symbols: Explicit symbol universe (skips top-N selection).
            save: Persist the result through the registry.
        """
        tf = Timeframe(timeframe)
        families = self._resolve_families(families)
        data = self.prepare_dataset(candles_df, horizon=horizon, symbols=symbols)

        trained: dict[str, BasePredictionModel] = {}
        metrics: dict[str, ModelMetrics] = {}
        failed: list[str] = []

        # ── Parent MLflow run for the whole training session ──
        parent_ctx = (
            mlflow.start_run(run_name=f"train-{tf.value}-h{horizon}")
            if self._mlflow_ok
            else _nullcontext()
        )

        with parent_ctx:
            if self._mlflow_ok:
                mlflow.log_params({
                    "timeframe": tf.value,
                    "horizon": horizon,
                    "n_features": len(self._builder.feature_names),
                    "n_symbols": len(data.symbols),
                    "train_rows": len(data.X_train),
                    "val_rows": len(data.X_val),
                })

            for family in families:
                model = create_model(family, self._cfg.model, horizon=horizon)
                model.timeframe = tf
                logger.info("Training %s (%s)...", model.name, tf.value)

                # ── Child MLflow run per family ──
                child_ctx = (
                    mlflow.start_run(run_name=f"{model.name}_{tf.value}", nested=True)
                    if self._mlflow_ok
                    else _nullcontext()
                )
                with child_ctx:
                    try:
                        model.fit(data.X_train, data.y_train, data.X_val, data.y_val)
                        if len(data.X_val) > 0:
                            model.evaluate(data.X_val, data.y_val)
                    except Exception:
                        logger.exception("Failed to train/evaluate %s", model.name)
                        failed.append(model.name)
                        continue

                    trained[model.name] = model
                    metrics[model.name] = model.get_metrics()
                    if self._mlflow_ok:
                        mlflow.log_param("model", model.name)
                        mlflow.log_metrics(_metrics_dict(model.get_metrics()))

            if not trained:
                raise ForecastingError(f"No model family trained successfully for {tf.value}")

            final = self._combine(trained, data, tf)
            if isinstance(final, EnsemblePredictor):
                metrics[final.name] = final.get_metrics()
            weights = final.weights if isinstance(final, EnsemblePredictor) else {final.name: 1.0}

            self._log_summary(metrics)
            if self._mlflow_ok:
                for name, m in metrics.items():
                    mlflow.log_metrics(_metrics_dict(m, prefix=f"{name}_"))
                mlflow.log_metrics({f"weight_{k}": v for k, v in weights.items()})

            manifest = None
            if save:
                manifest = self._get_registry().save(
                    final,
                    tf,
                    training_start=data.training_start,
                    training_end=data.training_end,
                    symbols=data.symbols,
                    activate=self._cfg.training.activate_on_save,
                )
                if self._mlflow_ok:
                    mlflow.set_tag("model_version", manifest.version)

        return TrainingResult(
            timeframe=tf,
            model=final,
            metrics=metrics,
            weights=weights,
            symbols=data.symbols,
            feature_names=list(self._builder.feature_names),
            train_rows=len(data.X_train),
            val_rows=len(data.X_val),
            training_start=data.training_start,
            training_end=data.training_end,
            manifest=manifest,
            failed=failed,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _resolve_families(
        self, families: list[ModelFamily | str] | None
    ) -> list[ModelFamily]:
        resolved = [ModelFamily(f) for f in (families or BASE_FAMILIES)]
        if ModelFamily.ENSEMBLE in resolved:
            raise ValueError("The ensemble is built from base families; list those instead")
        if ModelFamily.RECURRENT in resolved and not HAS_TORCH:
            if families is not None:
                raise ForecastingError("PyTorch is required to train the LSTM family")
            logger.warning("PyTorch not installed. Skipping the LSTM family.")
            resolved.remove(ModelFamily.RECURRENT)
        return resolved

    def _combine(
        self,
        trained: dict[str, BasePredictionModel],
        data: TrainingDataset,
        tf: Timeframe,
    ) -> BasePredictionModel:
        """Single model as-is; several fitted models become an ensemble."""
        if len(trained) == 1:
            return next(iter(trained.values()))

        ensemble = EnsemblePredictor(
            models=trained,
            weights={
                name: default_weight(model.family, self._cfg.model)
                for name, model in trained.items()
            },
            max_workers=self._cfg.model.ensemble_max_workers,
        )
        ensemble.timeframe = tf
        if len(data.X_val) > 0:
            if self._cfg.training.optimize_weights:
                ensemble.optimize_weights(data.X_val, data.y_val)
            ensemble.evaluate(data.X_val, data.y_val)
        logger.info("[Ensemble] Weights: %s", ensemble.weights)
        return ensemble

    def _chronological_split(
        self, matrix: pd.DataFrame, horizon: int = 1
    ) -> tuple[pd.DataFrame, pd.DataFrame]:
        """Last ``validation_fraction`` of distinct timestamps is validation.

        The ``horizon`` timestamps just before the cutoff are purged from
        training: their targets are closes inside the validation window.
        """
        frac = self._cfg.training.validation_fraction
        timestamps = matrix["timestamp"].drop_duplicates().sort_values().reset_index(drop=True)
        if frac <= 0 or len(timestamps) < 2:
            return matrix, matrix.iloc[0:0]
        cut_idx = min(max(int(len(timestamps) * (1 - frac)), 1), len(timestamps) - 1)
        cutoff = timestamps.iloc[cut_idx]
        is_val = matrix["timestamp"] >= cutoff
        purge_idx = cut_idx - horizon
        if purge_idx <= 0:
            return matrix.iloc[0:0], matrix[is_val]
        is_train = matrix["timestamp"] < timestamps.iloc[purge_idx]
        return matrix[is_train], matrix[is_val]

    def _get_registry(self) -> ModelRegistry:
        if self._registry is None:
            self._registry = ModelRegistry(self._cfg.paths.models_dir)
        return self._registry

    @staticmethod
    def _log_summary(metrics: dict[str, ModelMetrics]) -> None:
        logger.info("=" * 60)
        logger.info("TRAINING SUMMARY (validation split)")
        logger.info("=" * 60)
        for name, m in metrics.items():
            logger.info("[%s] %s", name, m)


class _nullcontext:
    """Minimal no-op context manager (for when MLflow is disabled)."""

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False
