"""
Abstract base class for all prediction models.

Defines the Strategy Pattern interface that all concrete models
(XGBoost, LSTM, Random Forest) and the ensemble implement, plus the
single-vector inference contract the forecast orchestrator relies on:

    predict_next(features)      → next close
    predict_steps(features, n)  → n closes (direct multi-output models)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import numpy as np
import pandas as pd

from forecasting.entities import FeatureVector, Timeframe
from forecasting.errors import (
    ForecastingError,
    ModelInferenceError,
    SchemaMismatchError,
    UnsupportedHorizonError,
)

logger = logging.getLogger(__name__)


class ModelFamily(str, Enum):
    """Model families that can back a predictor."""

    GRADIENT_BOOSTED = "xgboost"
    RECURRENT = "lstm"
    BAGGED_FOREST = "random_forest"
    ENSEMBLE = "ensemble"


@dataclass
class ModelMetrics:
    """Container for model evaluation metrics."""

    mae: float = 0.0
    rmse: float = 0.0
    mape: float = 0.0
    directional_accuracy: float = 0.0
    r_squared: float = 0.0

    def to_dict(self) -> dict:
        return {
            "mae": self.mae,
            "rmse": self.rmse,
            "mape": self.mape,
            "directional_accuracy": self.directional_accuracy,
            "r_squared": self.r_squared,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ModelMetrics":
        return cls(**{k: float(data.get(k, 0.0)) for k in cls().to_dict()})

    def __str__(self) -> str:
        return (
            f"MAE={self.mae:.4f} | RMSE={self.rmse:.4f} | "
            f"MAPE={self.mape:.2%} | DirAcc={self.directional_accuracy:.2%} | "
            f"R²={self.r_squared:.4f}"
        )


class BasePredictionModel(ABC):
    """Abstract interface for all prediction models.

    A fitted model is a TrainedModel: it binds a feature schema, a
    timeframe and a horizon (1 for iterative models, N for direct
    multi-output models) and is never mutated after training.

    Methods:
        fit:            Train the model.
        predict:        Batch predictions for a feature DataFrame.
        predict_next:   Next close for one FeatureVector.
        predict_steps:  N closes for one FeatureVector (direct mode).
        evaluate:       Regression + directional metrics on a holdout set.
        save_model:     Persist model artifacts to disk.
        load_model:     Load model artifacts from disk.
    """

    family: ModelFamily

    def __init__(self, name: str, horizon: int = 1) -> None:
        if horizon < 1:
            raise ValueError(f"horizon must be >= 1, got {horizon}")
        self.name = name
        self.timeframe: Timeframe | None = None
        self._horizon = horizon
        self._metrics = ModelMetrics()
        self._is_fitted = False
        self._feature_names: list[str] = []

    @abstractmethod
    def fit(
        self,
        X_train: pd.DataFrame,
        y_train: pd.Series | pd.DataFrame,
        X_val: pd.DataFrame | None = None,
        y_val: pd.Series | pd.DataFrame | None = None,
    ) -> "BasePredictionModel":
        """Train the model.

        Args:
            X_train: Training features (columns in schema order).
            y_train: Training targets: future close (Series) for horizon 1,
                or one column per step (DataFrame) for direct models.
            X_val: Optional validation features (for early stopping).
            y_val: Optional validation targets.

        Returns:
            self for method chaining.
        """
        ...

    @abstractmethod
    def predict(self, X: pd.DataFrame) -> np.ndarray:
        """Generate predicted closes.

        Returns:
            Array of shape (n,) for horizon 1, (n, horizon) otherwise.
        """
        ...

    # ------------------------------------------------------------------
    # Single-vector inference contract
    # ------------------------------------------------------------------

    def predict_next(self, features: FeatureVector) -> float:
        """Predict the next close from one feature vector."""
        return float(self._infer(features)[0])

    def predict_steps(self, features: FeatureVector, n: int) -> list[float]:
        """Predict the next ``n`` closes in one call (direct mode)."""
        if n > self.horizon:
            raise UnsupportedHorizonError(self.name, self.horizon, n)
        return [float(v) for v in self._infer(features)[:n]]

    def check_schema(self, features: FeatureVector) -> None:
        """Fail with SchemaMismatchError unless the schemas match exactly."""
        if tuple(features.schema) != tuple(self._feature_names):
            raise SchemaMismatchError(tuple(self._feature_names), tuple(features.schema))

    def _infer(self, features: FeatureVector) -> np.ndarray:
        if not self.is_fitted:
            raise ModelInferenceError(self.name, "model is not fitted")
        self.check_schema(features)
        try:
            preds = np.asarray(self.predict(features.to_frame()), dtype=float)
        except ForecastingError:
            raise
        except Exception as exc:
            raise ModelInferenceError(self.name, str(exc)) from exc

        row = preds.reshape(1, -1)[0] if preds.size else preds
        if row.size == 0 or not np.all(np.isfinite(row)):
            raise ModelInferenceError(self.name, "non-finite or empty prediction")
        return row

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(
        self, X_test: pd.DataFrame, y_test: pd.Series | pd.DataFrame
    ) -> ModelMetrics:
        """Evaluate the model on a test set (first step for direct models).

        Updates internal metrics and returns them.
        """
        preds = np.asarray(self.predict(X_test), dtype=float)
        y = np.asarray(y_test, dtype=float)
        if preds.ndim > 1:
            preds = preds[:, 0]
        if y.ndim > 1:
            y = y[:, 0]
        self._metrics = self._compute_metrics(y, preds)
        logger.info("[%s] Evaluation: %s", self.name, self._metrics)
        return self._metrics

    def get_metrics(self) -> ModelMetrics:
        """Return the latest evaluation metrics."""
        return self._metrics

    def get_feature_importance(self, top_n: int = 20) -> dict[str, float]:
        """Top-N features by importance; empty for families without one."""
        return {}

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @abstractmethod
    def save_model(self, path: Path) -> None:
        """Persist model artifacts to disk."""
        ...

    @abstractmethod
    def load_model(self, path: Path) -> None:
        """Load model artifacts from disk."""
        ...

    def _base_meta(self) -> dict:
        return {
            "name": self.name,
            "horizon": self._horizon,
            "feature_names": list(self._feature_names),
            "timeframe": self.timeframe.value if self.timeframe else None,
            "metrics": self._metrics.to_dict(),
        }

    def _restore_base_meta(self, meta: dict) -> None:
        self._horizon = int(meta.get("horizon", 1))
        self._feature_names = list(meta["feature_names"])
        tf = meta.get("timeframe")
        self.timeframe = Timeframe(tf) if tf else None
        if "metrics" in meta:
            self._metrics = ModelMetrics.from_dict(meta["metrics"])

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_fitted(self) -> bool:
        return self._is_fitted

    @property
    def horizon(self) -> int:
        return self._horizon

    @property
    def feature_names(self) -> list[str]:
        return list(self._feature_names)

    # ------------------------------------------------------------------
    # Relative target encoding
    # ------------------------------------------------------------------

    @staticmethod
    def _encode_target(X: pd.DataFrame, y: pd.Series | pd.DataFrame) -> np.ndarray:
        """Future close → return relative to the current close."""
        close = X["close"].to_numpy(dtype=float)
        y_arr = np.asarray(y, dtype=float)
        if y_arr.ndim == 1:
            return y_arr / close - 1.0
        return y_arr / close[:, None] - 1.0

    @staticmethod
    def _decode_target(X: pd.DataFrame, r: np.ndarray) -> np.ndarray:
        """Relative return → future close."""
        close = X["close"].to_numpy(dtype=float)
        r = np.asarray(r, dtype=float)
        if r.ndim == 1:
            return close * (1.0 + r)
        return close[:, None] * (1.0 + r)

    @staticmethod
    def _as_2d(y: pd.Series | pd.DataFrame | np.ndarray) -> np.ndarray:
        arr = np.asarray(y, dtype=float)
        return arr.reshape(-1, 1) if arr.ndim == 1 else arr

    # ------------------------------------------------------------------
    # Shared metric computation
    # ------------------------------------------------------------------

    @staticmethod
    def _compute_metrics(y_true: np.ndarray, y_pred: np.ndarray) -> ModelMetrics:
        """Compute standard regression + directional accuracy metrics."""
        valid = ~(np.isnan(y_true) | np.isnan(y_pred))
        y_true = y_true[valid]
        y_pred = y_pred[valid]

        if len(y_true) == 0:
            return ModelMetrics()

        residuals = y_true - y_pred
        mae = np.mean(np.abs(residuals))
        rmse = np.sqrt(np.mean(residuals ** 2))

        mask = y_true != 0
        if mask.any():
            mape = np.mean(np.abs(residuals[mask] / y_true[mask]))
        else:
            mape = 0.0

        # Directional accuracy: did we predict the direction of change correctly?
        if len(y_true) > 1:
            actual_dir = np.sign(np.diff(y_true))
            pred_dir = np.sign(np.diff(y_pred))
            dir_acc = np.mean(actual_dir == pred_dir)
        else:
            dir_acc = 0.0

        ss_res = np.sum(residuals ** 2)
        ss_tot = np.sum((y_true - np.mean(y_true)) ** 2)
        r2 = 1 - (ss_res / ss_tot) if ss_tot > 0 else 0.0

        return ModelMetrics(
            mae=float(mae),
            rmse=float(rmse),
            mape=float(mape),
            directional_accuracy=float(dir_acc),
            r_squared=float(r2),
        )
