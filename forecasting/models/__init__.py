"""
ML models sub-package.

Strategy Pattern — every model implements `BasePredictionModel`:
    fit(X, y) → predict(X) → evaluate(X, y) → save/load
    predict_next(features) / predict_steps(features, n)

Concrete models (`ModelFamily`)
-------------------------------
- `XGBoostPredictor`       — gradient-boosted trees, feature interactions
- `LSTMPredictor`          — LSTM over the lagged close/volume sequence
- `RandomForestPredictor`  — bagged trees, robust to noisy features

Ensemble
--------
- `EnsemblePredictor` — static weighted average; reports member variance

Registry
--------
- `ModelRegistry` — versioned storage with a JSON manifest per version
"""

from forecasting.models.base import BasePredictionModel, ModelFamily, ModelMetrics
from forecasting.models.ensemble import (
    EnsemblePrediction,
    EnsemblePredictor,
    EnsembleStepsPrediction,
)
from forecasting.models.families import MODEL_CLASSES, create_model
from forecasting.models.lstm import LSTMPredictor
from forecasting.models.random_forest import RandomForestPredictor
from forecasting.models.registry import ModelManifest, ModelRegistry
from forecasting.models.xgboost_model import XGBoostPredictor

__all__ = [
    "BasePredictionModel",
    "ModelFamily",
    "ModelMetrics",
    "XGBoostPredictor",
    "LSTMPredictor",
    "RandomForestPredictor",
    "EnsemblePredictor",
    "EnsemblePrediction",
    "EnsembleStepsPrediction",
    "MODEL_CLASSES",
    "create_model",
    "ModelManifest",
    "ModelRegistry",
]
