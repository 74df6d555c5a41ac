"""
Ensemble prediction engine.

Combines predictions from multiple base models with a static weighted
average. Member disagreement (weighted variance around the mean) is
reported alongside the mean and feeds the ensemble-variance confidence
strategy.

Weights are non-negative and normalised to sum to 1. Members can be
evaluated on a thread pool; results are always combined in member order
so the output does not depend on scheduling.
"""

import json
import logging
import math
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import numpy as np
import pandas as pd

from forecasting.entities import FeatureVector
from forecasting.errors import EmptyEnsembleError, UnsupportedHorizonError
from forecasting.models.base import BasePredictionModel, ModelFamily
from forecasting.models.families import create_model

logger = logging.getLogger(__name__)


@dataclass
class EnsemblePrediction:
    """Container for a one-step ensemble prediction."""

    mean: float
    variance: float
    member_predictions: dict[str, float]
    weights: dict[str, float]

    @property
    def std(self) -> float:
        return math.sqrt(self.variance)


@dataclass
class EnsembleStepsPrediction:
    """Per-step means and variances for a direct multi-step prediction."""

    means: list[float]
    variances: list[float]
    member_predictions: dict[str, list[float]] = field(default_factory=dict)
    weights: dict[str, float] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.means)


def weighted_mean_variance(
    values: list[float], weights: list[float]
) -> tuple[float, float]:
    """Weighted mean and weighted variance Σ w (p − mean)² (weights sum to 1)."""
    mean = math.fsum(w * p for w, p in zip(weights, values))
    variance = math.fsum(w * (p - mean) ** 2 for w, p in zip(weights, values))
    return mean, max(variance, 0.0)


class EnsemblePredictor(BasePredictionModel):
    """Weighted combination of independently trained base models."""

    family = ModelFamily.ENSEMBLE

    def __init__(
        self,
        models: dict[str, BasePredictionModel] | None = None,
        weights: dict[str, float] | None = None,
        max_workers: int = 1,
    ) -> None:
        super().__init__(name="Ensemble")
        self._models: dict[str, BasePredictionModel] = dict(models or {})
        raw = dict(weights or {})
        for name in self._models:
            raw.setdefault(name, 1.0)
        self._weights = self._normalized({k: raw[k] for k in self._models})
        self._max_workers = max(1, max_workers)
        self._sync_from_members()

    def add_model(self, model: BasePredictionModel, weight: float = 1.0) -> None:
        """Register a base model; existing weights are re-normalised."""
        raw = dict(self._weights)
        raw[model.name] = weight
        self._models[model.name] = model
        self._weights = self._normalized(raw)
        self._sync_from_members()

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def fit(
        self,
        X_train: pd.DataFrame,
        y_train: pd.Series | pd.DataFrame,
        X_val: pd.DataFrame | None = None,
        y_val: pd.Series | pd.DataFrame | None = None,
        optimize_weights: bool = True,
    ) -> "EnsemblePredictor":
        """Train all base models.

        Each model is trained independently; a member that fails to train
        is logged and dropped. Weights are then optimised on validation
        RMSE when a validation set is given.
        """
        if not self._models:
            raise EmptyEnsembleError()

        for name, model in list(self._models.items()):
            logger.info("[Ensemble] Training base model: %s", name)
            try:
                model.fit(X_train, y_train, X_val, y_val)
            except Exception:
                logger.exception("[Ensemble] Failed to train %s, dropping it", name)
                del self._models[name]
                self._weights.pop(name, None)

        if not self._models:
            raise EmptyEnsembleError()
        self._weights = self._normalized(self._weights)

        if optimize_weights and X_val is not None and y_val is not None and len(X_val) > 0:
            self.optimize_weights(X_val, y_val)

        self._sync_from_members()
        self._feature_names = list(X_train.columns)
        self._is_fitted = True
        logger.info("[Ensemble] All models trained. Weights: %s", self._weights)
        return self

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def predict(self, X: pd.DataFrame) -> np.ndarray:
        """Batch ensemble predictions (weighted average of members)."""
        if not self._models:
            raise EmptyEnsembleError()
        names = list(self._models)
        preds = self._fan_out(lambda m: self._align(m.predict(X), len(X)))
        result = sum(self._weights[n] * p for n, p in zip(names, preds))
        return np.asarray(result, dtype=float)

    def predict_next_detailed(self, features: FeatureVector) -> EnsemblePrediction:
        """Weighted mean + variance of the members' next-close predictions."""
        self._require_members(features)
        names = list(self._models)
        values = self._fan_out(lambda m: m.predict_next(features))
        weights = [self._weights[n] for n in names]
        mean, variance = weighted_mean_variance(values, weights)
        return EnsemblePrediction(
            mean=mean,
            variance=variance,
            member_predictions=dict(zip(names, values)),
            weights=dict(self._weights),
        )

    def predict_next(self, features: FeatureVector) -> float:
        return self.predict_next_detailed(features).mean

    def predict_steps_detailed(
        self, features: FeatureVector, n: int
    ) -> EnsembleStepsPrediction:
        """Per-step weighted mean + variance for a direct multi-step call."""
        self._require_members(features)
        if n > self.horizon:
            raise UnsupportedHorizonError(self.name, self.horizon, n)
        names = list(self._models)
        paths = self._fan_out(lambda m: m.predict_steps(features, n))
        weights = [self._weights[name] for name in names]

        means: list[float] = []
        variances: list[float] = []
        for step in range(n):
            mean, var = weighted_mean_variance([p[step] for p in paths], weights)
            means.append(mean)
            variances.append(var)

        return EnsembleStepsPrediction(
            means=means,
            variances=variances,
            member_predictions=dict(zip(names, paths)),
            weights=dict(self._weights),
        )

    def predict_steps(self, features: FeatureVector, n: int) -> list[float]:
        return self.predict_steps_detailed(features, n).means

    def get_feature_importance(self, top_n: int = 20) -> dict[str, float]:
        """Weighted merge of the members' feature importances."""
        merged: dict[str, float] = {}
        for name, model in self._models.items():
            w = self._weights.get(name, 0.0)
            for feature, score in model.get_feature_importance(top_n=len(model.feature_names) or top_n).items():
                merged[feature] = merged.get(feature, 0.0) + w * score
        ranked = sorted(merged.items(), key=lambda x: x[1], reverse=True)
        return dict(ranked[:top_n])

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save_model(self, path: Path) -> None:
        """Save all base models and the ensemble manifest."""
        path.mkdir(parents=True, exist_ok=True)
        members = []
        for name, model in self._models.items():
            subdir = model.family.value
            model.save_model(path / subdir)
            members.append({
                "name": name,
                "family": model.family.value,
                "weight": self._weights[name],
                "path": subdir,
            })

        meta = self._base_meta()
        meta["members"] = members
        meta["max_workers"] = self._max_workers
        with open(path / "ensemble.json", "w") as f:
            json.dump(meta, f, indent=2)
        logger.info("[Ensemble] All models saved to %s", path)

    def load_model(self, path: Path) -> None:
        """Load all base models and ensemble weights."""
        with open(path / "ensemble.json", "r") as f:
            meta = json.load(f)

        self._models = {}
        raw: dict[str, float] = {}
        for member in meta["members"]:
            model = create_model(member["family"])
            model.load_model(path / member["path"])
            self._models[member["name"]] = model
            raw[member["name"]] = float(member["weight"])
            logger.info("[Ensemble] Loaded %s", member["name"])

        self._weights = self._normalized(raw)
        self._max_workers = int(meta.get("max_workers", 1))
        self._restore_base_meta(meta)
        self._is_fitted = True

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def models(self) -> dict[str, BasePredictionModel]:
        return dict(self._models)

    @property
    def weights(self) -> dict[str, float]:
        return dict(self._weights)

    @property
    def member_count(self) -> int:
        return len(self._models)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _require_members(self, features: FeatureVector) -> None:
        if not self._models:
            raise EmptyEnsembleError()
        if self._feature_names:
            self.check_schema(features)

    def _fan_out(self, fn: Callable[[BasePredictionModel], object]) -> list:
        """Apply ``fn`` to every member; results are in member order."""
        members = list(self._models.values())
        if self._max_workers <= 1 or len(members) <= 1:
            return [fn(m) for m in members]

        results: list = [None] * len(members)
        workers = min(self._max_workers, len(members))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(fn, model): idx
                for idx, model in enumerate(members)
            }
            for future in as_completed(futures):
                results[futures[future]] = future.result()
        return results

    def _align(self, preds: np.ndarray, n_rows: int) -> np.ndarray:
        """Trim a member's batch output to the ensemble horizon."""
        arr = np.asarray(preds, dtype=float)
        if arr.ndim == 1:
            return arr
        if self.horizon == 1:
            return arr[:, 0]
        return arr[:, : self.horizon].reshape(n_rows, self.horizon)

    def _sync_from_members(self) -> None:
        if self._models:
            self._horizon = min(m.horizon for m in self._models.values())
            first = next(iter(self._models.values()))
            if first.feature_names:
                self._feature_names = first.feature_names
            self._is_fitted = all(m.is_fitted for m in self._models.values())
            self.timeframe = first.timeframe

    def optimize_weights(
        self, X_val: pd.DataFrame, y_val: pd.Series | pd.DataFrame
    ) -> None:
        """Optimize ensemble weights based on validation RMSE.

        Weight = 1 / RMSE_validation, then normalized.
        """
        rmse_scores: dict[str, float] = {}
        for name, model in self._models.items():
            metrics = model.evaluate(X_val, y_val)
            rmse_scores[name] = max(metrics.rmse, 1e-12)

        inverse_rmse = {k: 1.0 / v for k, v in rmse_scores.items()}
        self._weights = self._normalized(inverse_rmse)
        logger.info("[Ensemble] Optimized weights: %s", self._weights)

    @staticmethod
    def _normalized(weights: dict[str, float]) -> dict[str, float]:
        """Validate and scale weights to sum to 1.0."""
        for name, w in weights.items():
            if w < 0 or not math.isfinite(w):
                raise ValueError(f"Ensemble weight for {name} must be a non-negative number, got {w}")
        if not weights:
            return {}
        total = math.fsum(weights.values())
        if total <= 0:
            raise ValueError("Ensemble weights must not all be zero")
        return {k: v / total for k, v in weights.items()}
