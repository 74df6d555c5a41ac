"""
Tests for the offline training pipeline.

Covers:
- Top-N symbol selection by USD volume
- Targets and the chronological split
- Multi-family run → ensemble → registry → forecast
- Direct (multi-output) training
- Failure handling
"""

from pathlib import Path

import numpy as np
import pandas as pd
import pytest


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _universe(spec=(("AAA", 50.0, 1000.0), ("BBB", 20.0, 500.0), ("CCC", 5.0, 100.0)), n=220, seed=11):
    """Long OHLCV frame; spec is (symbol, price level, base volume)."""
    rng = np.random.default_rng(seed)
    frames = []
    for symbol, level, volume in spec:
        close = level + np.cumsum(rng.normal(0, level * 0.005, n))
        close = np.maximum(close, level * 0.2)
        open_ = np.r_[close[0], close[:-1]]
        frames.append(pd.DataFrame({
            "symbol": symbol,
            "timestamp": pd.date_range("2024-01-01", periods=n, freq="h", tz="UTC"),
            "open": open_,
            "high": np.maximum(open_, close) * 1.002,
            "low": np.minimum(open_, close) * 0.998,
            "close": close,
            "volume": volume * (1 + rng.random(n)),
        }))
    return pd.concat(frames, ignore_index=True)


@pytest.fixture(scope="module")
def universe() -> pd.DataFrame:
    return _universe()


def _small_config(**training):
    from forecasting.config import ForecastingConfig, ModelConfig, TrainingConfig
    return ForecastingConfig(
        model=ModelConfig(
            xgb_n_estimators=20,
            xgb_max_depth=3,
            rf_n_estimators=10,
            rf_max_depth=5,
            lstm_hidden_size=8,
            lstm_num_layers=1,
            lstm_epochs=1,
        ),
        training=TrainingConfig(min_training_samples=10, **training),
    )


def _pipeline(tmp_path: Path, **training):
    from forecasting.models.registry import ModelRegistry
    from forecasting.training import TrainingPipeline
    return TrainingPipeline(
        _small_config(**training),
        registry=ModelRegistry(tmp_path / "models"),
        track=False,
    )


# ---------------------------------------------------------------------------
# Symbol selection
# ---------------------------------------------------------------------------


class TestSelectTopSymbols:
    def test_ranked_by_usd_volume(self, universe):
        from forecasting.training import select_top_symbols
        assert select_top_symbols(universe, 2) == ["AAA", "BBB"]
        assert select_top_symbols(universe, 10) == ["AAA", "BBB", "CCC"]

    def test_ties_broken_by_name(self):
        from forecasting.training import select_top_symbols
        df = pd.DataFrame({
            "symbol": ["ZZZ", "AAA"],
            "close": [2.0, 2.0],
            "volume": [5.0, 5.0],
        })
        assert select_top_symbols(df, 2) == ["AAA", "ZZZ"]

    def test_empty(self):
        from forecasting.training import select_top_symbols
        assert select_top_symbols(pd.DataFrame(columns=["symbol", "close", "volume"]), 3) == []


# ---------------------------------------------------------------------------
# Dataset preparation
# ---------------------------------------------------------------------------


class TestPrepareDataset:
    def test_targets_are_future_closes(self, universe, tmp_path):
        pipeline = _pipeline(tmp_path)
        data = pipeline.prepare_dataset(universe, symbols=["AAA"])
        aaa = universe[universe["symbol"] == "AAA"].reset_index(drop=True)
        w = pipeline.builder.required_lookback
        assert data.X_train["close"].iloc[0] == pytest.approx(aaa["close"].iloc[w])
        assert data.y_train.iloc[0] == pytest.approx(aaa["close"].iloc[w + 1])
        # last row has no future close; one row before the cutoff is purged
        assert len(data.X_train) + len(data.X_val) == len(aaa) - w - 2

    def test_chronological_split(self, universe, tmp_path):
        from forecasting.features import FeatureBuilder
        pipeline = _pipeline(tmp_path)
        data = pipeline.prepare_dataset(universe)
        assert data.symbols == ["AAA", "BBB", "CCC"]
        assert list(data.X_train.columns) == list(FeatureBuilder().feature_names)
        total = len(data.X_train) + len(data.X_val)
        assert len(data.X_val) == pytest.approx(0.2 * total, rel=0.1)
        assert data.training_start < data.training_end

    def test_validation_follows_training(self, universe, tmp_path):
        pipeline = _pipeline(tmp_path)
        matrix = pipeline.builder.build_matrix(universe)
        train, val = pipeline._chronological_split(matrix)
        assert train["timestamp"].max() < val["timestamp"].min()

    def test_training_targets_stay_before_validation(self, universe, tmp_path):
        pipeline = _pipeline(tmp_path)
        matrix = pipeline.builder.build_matrix(universe)
        timestamps = matrix["timestamp"].drop_duplicates().sort_values().tolist()
        for horizon in (1, 3):
            train, val = pipeline._chronological_split(matrix, horizon)
            last_train = timestamps.index(train["timestamp"].max())
            first_val = timestamps.index(val["timestamp"].min())
            assert first_val - last_train == horizon + 1

    def test_multi_step_targets(self, universe, tmp_path):
        data = _pipeline(tmp_path).prepare_dataset(universe, horizon=3, symbols=["BBB"])
        assert list(data.y_train.columns) == ["target_1", "target_2", "target_3"]
        bbb = universe[universe["symbol"] == "BBB"].reset_index(drop=True)
        assert data.y_train["target_3"].iloc[0] == pytest.approx(bbb["close"].iloc[50 + 3])

    def test_too_short(self, universe, tmp_path):
        from forecasting.errors import ForecastingError
        short = universe.groupby("symbol").head(30)
        with pytest.raises(ForecastingError):
            _pipeline(tmp_path).prepare_dataset(short)

    def test_invalid_horizon(self, universe, tmp_path):
        with pytest.raises(ValueError):
            _pipeline(tmp_path).prepare_dataset(universe, horizon=0)


# ---------------------------------------------------------------------------
# Full run
# ---------------------------------------------------------------------------


class TestTrainingRun:
    def test_two_families_make_an_ensemble(self, universe, tmp_path):
        from forecasting.entities import Timeframe
        from forecasting.models import EnsemblePredictor
        pipeline = _pipeline(tmp_path)
        result = pipeline.run(
            universe, Timeframe.H1, families=["xgboost", "random_forest"]
        )
        assert isinstance(result.model, EnsemblePredictor)
        assert set(result.weights) == {"XGBoost", "RandomForest"}
        assert sum(result.weights.values()) == pytest.approx(1.0)
        assert set(result.metrics) == {"XGBoost", "RandomForest", "Ensemble"}
        assert result.failed == []
        assert result.manifest is not None
        assert result.manifest.family == "ensemble"
        assert result.manifest.num_symbols == 3
        assert result.manifest.timeframe == "1h"

    def test_trained_model_serves_a_forecast(self, universe, tmp_path):
        from forecasting.entities import Timeframe
        from forecasting.forecaster import ForecastOrchestrator
        from forecasting.models.registry import ModelRegistry
        _pipeline(tmp_path).run(universe, Timeframe.H4, families=["xgboost", "random_forest"])

        model = ModelRegistry(tmp_path / "models").load(Timeframe.H4)
        aaa = universe[universe["symbol"] == "AAA"][
            ["timestamp", "open", "high", "low", "close", "volume"]
        ]
        forecast = ForecastOrchestrator().generate_forecast(aaa, model, 5, Timeframe.H4, "AAA")
        assert forecast.num_steps == 5
        assert all(np.isfinite(forecast.closes))
        assert all(0.0 < s.confidence < 1.0 for s in forecast.steps)
        assert len(forecast.indicator_drivers) == 5

    def test_single_family(self, universe, tmp_path):
        from forecasting.models import RandomForestPredictor
        result = _pipeline(tmp_path).run(universe, "1d", families=["random_forest"], save=False)
        assert isinstance(result.model, RandomForestPredictor)
        assert result.weights == {"RandomForest": 1.0}
        assert result.manifest is None

    def test_direct_horizon(self, universe, tmp_path):
        from forecasting.entities import Timeframe
        from forecasting.models.registry import ModelRegistry
        result = _pipeline(tmp_path).run(
            universe, Timeframe.D1, families=["xgboost"], horizon=3
        )
        assert result.model.horizon == 3
        restored = ModelRegistry(tmp_path / "models").load(Timeframe.D1)
        assert restored.horizon == 3

    def test_explicit_symbols(self, universe, tmp_path):
        result = _pipeline(tmp_path).run(
            universe, "1h", families=["random_forest"], symbols=["CCC"], save=False
        )
        assert result.symbols == ["CCC"]

    def test_failed_family_is_reported(self, universe, tmp_path, monkeypatch):
        from forecasting.models import XGBoostPredictor

        def explode(self, *args, **kwargs):
            raise RuntimeError("no xgboost today")

        monkeypatch.setattr(XGBoostPredictor, "fit", explode)
        result = _pipeline(tmp_path).run(
            universe, "1h", families=["xgboost", "random_forest"], save=False
        )
        assert result.failed == ["XGBoost"]
        assert result.model.name == "RandomForest"

    def test_all_families_fail(self, universe, tmp_path, monkeypatch):
        from forecasting.errors import ForecastingError
        from forecasting.models import RandomForestPredictor

        def explode(self, *args, **kwargs):
            raise RuntimeError("broken")

        monkeypatch.setattr(RandomForestPredictor, "fit", explode)
        with pytest.raises(ForecastingError):
            _pipeline(tmp_path).run(universe, "1h", families=["random_forest"], save=False)

    def test_ensemble_is_not_a_family(self, universe, tmp_path):
        with pytest.raises(ValueError):
            _pipeline(tmp_path).run(universe, "1h", families=["ensemble"], save=False)
