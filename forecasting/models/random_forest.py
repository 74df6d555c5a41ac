"""
Random-forest (bagged trees) close price prediction model.

Bootstrap-aggregated decision trees: robust to noisy features, native
multi-output support, impurity-based feature importance.
"""

import logging
import pickle
from pathlib import Path

import numpy as np
import pandas as pd
from sklearn.ensemble import RandomForestRegressor

from forecasting.models.base import BasePredictionModel, ModelFamily

logger = logging.getLogger(__name__)


class RandomForestPredictor(BasePredictionModel):
    """Bagged regression trees on relative returns."""

    family = ModelFamily.BAGGED_FOREST

    def __init__(
        self,
        n_estimators: int = 300,
        max_depth: int | None = 12,
        min_samples_leaf: int = 5,
        horizon: int = 1,
    ) -> None:
        super().__init__(name="RandomForest", horizon=horizon)
        self._n_estimators = n_estimators
        self._max_depth = max_depth
        self._min_samples_leaf = min_samples_leaf
        self._model: RandomForestRegressor | None = None
        self._feature_importances: dict[str, float] = {}

    def fit(
        self,
        X_train: pd.DataFrame,
        y_train: pd.Series | pd.DataFrame,
        X_val: pd.DataFrame | None = None,
        y_val: pd.Series | pd.DataFrame | None = None,
    ) -> "RandomForestPredictor":
        """Train the forest. Validation data is not used by bagging."""
        self._feature_names = list(X_train.columns)
        y_enc = self._encode_target(X_train, y_train)

        self._model = RandomForestRegressor(
            n_estimators=self._n_estimators,
            max_depth=self._max_depth,
            min_samples_leaf=self._min_samples_leaf,
            random_state=42,
            n_jobs=-1,
        )
        self._model.fit(X_train.values, y_enc)
        # Single-threaded inference keeps the tree summation order fixed
        self._model.set_params(n_jobs=1)

        self._feature_importances = dict(
            sorted(
                zip(self._feature_names, (float(v) for v in self._model.feature_importances_)),
                key=lambda x: x[1],
                reverse=True,
            )
        )
        self._is_fitted = True
        logger.info(
            "[RandomForest] Training complete (horizon=%d). Top 5 features: %s",
            self._horizon,
            list(self._feature_importances.keys())[:5],
        )
        return self

    def predict(self, X: pd.DataFrame) -> np.ndarray:
        if not self._is_fitted or self._model is None:
            raise RuntimeError("Model is not fitted. Call fit() first.")
        r = self._model.predict(X[self._feature_names].values)
        return self._decode_target(X, r)

    def get_feature_importance(self, top_n: int = 20) -> dict[str, float]:
        return dict(list(self._feature_importances.items())[:top_n])

    def save_model(self, path: Path) -> None:
        path.mkdir(parents=True, exist_ok=True)
        with open(path / "random_forest.pkl", "wb") as f:
            pickle.dump(self._model, f)
        meta = self._base_meta()
        meta["feature_importances"] = self._feature_importances
        with open(path / "random_forest_meta.pkl", "wb") as f:
            pickle.dump(meta, f)
        logger.info("[RandomForest] Model saved to %s", path)

    def load_model(self, path: Path) -> None:
        with open(path / "random_forest.pkl", "rb") as f:
            self._model = pickle.load(f)
        with open(path / "random_forest_meta.pkl", "rb") as f:
            meta = pickle.load(f)
        self._restore_base_meta(meta)
        self._feature_importances = meta["feature_importances"]
        self._is_fitted = True
        logger.info("[RandomForest] Model loaded from %s", path)
