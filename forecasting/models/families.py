"""
Model family → predictor class mapping.

Families are an explicit closed set; construction and loading go through
this table instead of resolving class names at runtime.
"""

from forecasting.config import ModelConfig
from forecasting.models.base import BasePredictionModel, ModelFamily
from forecasting.models.lstm import LSTMPredictor
from forecasting.models.random_forest import RandomForestPredictor
from forecasting.models.xgboost_model import XGBoostPredictor

MODEL_CLASSES: dict[ModelFamily, type[BasePredictionModel]] = {
    ModelFamily.GRADIENT_BOOSTED: XGBoostPredictor,
    ModelFamily.RECURRENT: LSTMPredictor,
    ModelFamily.BAGGED_FOREST: RandomForestPredictor,
}

BASE_FAMILIES: tuple[ModelFamily, ...] = tuple(MODEL_CLASSES)


def create_model(
    family: ModelFamily | str,
    cfg: ModelConfig | None = None,
    horizon: int = 1,
) -> BasePredictionModel:
    """Build an unfitted base model of the given family from ModelConfig."""
    family = ModelFamily(family)
    cfg = cfg or ModelConfig()

    if family == ModelFamily.GRADIENT_BOOSTED:
        return XGBoostPredictor(
            n_estimators=cfg.xgb_n_estimators,
            max_depth=cfg.xgb_max_depth,
            learning_rate=cfg.xgb_learning_rate,
            subsample=cfg.xgb_subsample,
            colsample_bytree=cfg.xgb_colsample_bytree,
            horizon=horizon,
        )
    if family == ModelFamily.RECURRENT:
        return LSTMPredictor(
            hidden_size=cfg.lstm_hidden_size,
            num_layers=cfg.lstm_num_layers,
            dropout=cfg.lstm_dropout,
            learning_rate=cfg.lstm_learning_rate,
            epochs=cfg.lstm_epochs,
            batch_size=cfg.lstm_batch_size,
            patience=cfg.lstm_patience,
            horizon=horizon,
        )
    if family == ModelFamily.BAGGED_FOREST:
        return RandomForestPredictor(
            n_estimators=cfg.rf_n_estimators,
            max_depth=cfg.rf_max_depth,
            min_samples_leaf=cfg.rf_min_samples_leaf,
            horizon=horizon,
        )
    raise ValueError(f"Not a base model family: {family.value}")


def default_weight(family: ModelFamily, cfg: ModelConfig | None = None) -> float:
    """Configured ensemble weight for a base family."""
    cfg = cfg or ModelConfig()
    return {
        ModelFamily.GRADIENT_BOOSTED: cfg.ensemble_xgb_weight,
        ModelFamily.RECURRENT: cfg.ensemble_lstm_weight,
        ModelFamily.BAGGED_FOREST: cfg.ensemble_rf_weight,
    }[ModelFamily(family)]
