"""
Gradient-boosted close price predictor.

Learns the relative return to the next close (or to each of the next N
closes) from the tabular feature row, so one booster serves every symbol
regardless of its price level. Multi-step targets use XGBoost's native
multi-output trees.
"""

import logging
import pickle
from pathlib import Path

import numpy as np
import pandas as pd
import xgboost as xgb

from forecasting.models.base import BasePredictionModel, ModelFamily

logger = logging.getLogger(__name__)

_BOOSTER_FILE = "booster.json"
_META_FILE = "meta.pkl"


class XGBoostPredictor(BasePredictionModel):
    """Gradient-boosted trees; gain importances double as indicator drivers."""

    family = ModelFamily.GRADIENT_BOOSTED

    def __init__(
        self,
        n_estimators: int = 400,
        max_depth: int = 6,
        learning_rate: float = 0.05,
        subsample: float = 0.8,
        colsample_bytree: float = 0.8,
        early_stopping_rounds: int = 20,
        horizon: int = 1,
    ) -> None:
        super().__init__(name="XGBoost", horizon=horizon)
        self._params = {
            "n_estimators": n_estimators,
            "max_depth": max_depth,
            "learning_rate": learning_rate,
            "subsample": subsample,
            "colsample_bytree": colsample_bytree,
        }
        self._early_stopping_rounds = early_stopping_rounds
        self._booster: xgb.XGBRegressor | None = None
        self._importances: dict[str, float] = {}

    def fit(
        self,
        X_train: pd.DataFrame,
        y_train: pd.Series | pd.DataFrame,
        X_val: pd.DataFrame | None = None,
        y_val: pd.Series | pd.DataFrame | None = None,
    ) -> "XGBoostPredictor":
        self._feature_names = list(X_train.columns)
        validate = X_val is not None and y_val is not None and len(X_val) > 0

        self._booster = self._make_regressor(early_stopping=validate)
        eval_set = (
            [(X_val.to_numpy(dtype=float), self._encode_target(X_val, y_val))]
            if validate
            else None
        )
        self._booster.fit(
            X_train.to_numpy(dtype=float),
            self._encode_target(X_train, y_train),
            eval_set=eval_set,
            verbose=False,
        )

        self._importances = self._rank(self._booster.feature_importances_)
        self._is_fitted = True
        logger.info(
            "[XGBoost] Trained on %d rows (horizon=%d). Top drivers: %s",
            len(X_train), self._horizon, list(self._importances)[:5],
        )
        return self

    def predict(self, X: pd.DataFrame) -> np.ndarray:
        if self._booster is None:
            raise RuntimeError("XGBoost booster is not fitted")
        returns = self._booster.predict(X[self._feature_names].to_numpy(dtype=float))
        return self._decode_target(X, returns)

    def get_feature_importance(self, top_n: int = 20) -> dict[str, float]:
        return dict(list(self._importances.items())[:top_n])

    def save_model(self, path: Path) -> None:
        path.mkdir(parents=True, exist_ok=True)
        if self._booster is not None:
            self._booster.save_model(str(path / _BOOSTER_FILE))
        meta = self._base_meta()
        meta["params"] = self._params
        meta["importances"] = self._importances
        with open(path / _META_FILE, "wb") as f:
            pickle.dump(meta, f)
        logger.info("[XGBoost] Saved to %s", path)

    def load_model(self, path: Path) -> None:
        with open(path / _META_FILE, "rb") as f:
            meta = pickle.load(f)
        self._restore_base_meta(meta)
        self._params.update(meta.get("params", {}))
        self._importances = meta["importances"]

        self._booster = xgb.XGBRegressor()
        self._booster.load_model(str(path / _BOOSTER_FILE))
        self._is_fitted = True
        logger.info("[XGBoost] Loaded from %s", path)

    def _make_regressor(self, early_stopping: bool) -> xgb.XGBRegressor:
        return xgb.XGBRegressor(
            **self._params,
            objective="reg:squarederror",
            tree_method="hist",
            early_stopping_rounds=self._early_stopping_rounds if early_stopping else None,
            random_state=42,
            n_jobs=1,
            verbosity=0,
        )

    def _rank(self, scores: np.ndarray) -> dict[str, float]:
        pairs = zip(self._feature_names, (float(s) for s in scores))
        return dict(sorted(pairs, key=lambda kv: kv[1], reverse=True))
