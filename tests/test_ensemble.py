"""
Tests for the ensemble predictor.

Covers:
- Weighted mean / variance of member predictions
- Weight validation and normalisation
- Single-member degeneracy
- Parallel member evaluation
- Direct multi-step detail
- Feature importance merge
"""

import numpy as np
import pandas as pd
import pytest


NAMES = ("open", "high", "low", "close", "volume")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _constant_model(name: str, value, horizon: int = 1, importance=None):
    """Fitted stand-in that always predicts ``value`` (or a path of values)."""
    from forecasting.models.base import BasePredictionModel, ModelFamily

    class Constant(BasePredictionModel):
        family = ModelFamily.GRADIENT_BOOSTED

        def __init__(self):
            super().__init__(name=name, horizon=horizon)
            self._feature_names = list(NAMES)
            self._is_fitted = True

        def fit(self, X_train, y_train, X_val=None, y_val=None):
            return self

        def predict(self, X):
            if horizon == 1:
                return np.full(len(X), float(value))
            return np.tile(np.asarray(value, dtype=float), (len(X), 1))

        def get_feature_importance(self, top_n=20):
            return dict(list((importance or {}).items())[:top_n])

        def save_model(self, path):
            pass

        def load_model(self, path):
            pass

    return Constant()


@pytest.fixture
def features():
    from forecasting.entities import FeatureVector
    return FeatureVector(names=NAMES, values=(101.0, 103.0, 99.0, 102.0, 1000.0))


# ---------------------------------------------------------------------------
# Mean / variance
# ---------------------------------------------------------------------------


class TestEnsembleVariance:
    def test_equal_weights(self, features):
        from forecasting.models import EnsemblePredictor
        ens = EnsemblePredictor(models={
            "a": _constant_model("a", 100),
            "b": _constant_model("b", 102),
            "c": _constant_model("c", 104),
        })
        result = ens.predict_next_detailed(features)
        assert result.mean == pytest.approx(102.0)
        assert result.variance == pytest.approx(8 / 3)
        assert result.std == pytest.approx(np.sqrt(8 / 3))
        assert result.member_predictions == {"a": 100.0, "b": 102.0, "c": 104.0}
        assert ens.predict_next(features) == pytest.approx(102.0)

    def test_lower_spread_lower_variance(self, features):
        from forecasting.models import EnsemblePredictor
        ens = EnsemblePredictor(models={
            "a": _constant_model("a", 101),
            "b": _constant_model("b", 102),
            "c": _constant_model("c", 103),
        })
        assert ens.predict_next_detailed(features).variance == pytest.approx(2 / 3)

    def test_weighted(self, features):
        from forecasting.models import EnsemblePredictor
        ens = EnsemblePredictor(
            models={"a": _constant_model("a", 100), "b": _constant_model("b", 110)},
            weights={"a": 3.0, "b": 1.0},
        )
        result = ens.predict_next_detailed(features)
        assert result.weights == {"a": 0.75, "b": 0.25}
        assert result.mean == pytest.approx(102.5)
        assert result.variance == pytest.approx(0.75 * 2.5 ** 2 + 0.25 * 7.5 ** 2)

    def test_agreeing_members_zero_variance(self, features):
        from forecasting.models import EnsemblePredictor
        ens = EnsemblePredictor(models={
            "a": _constant_model("a", 105),
            "b": _constant_model("b", 105),
        })
        assert ens.predict_next_detailed(features).variance == 0.0

    def test_batch_predict(self):
        from forecasting.models import EnsemblePredictor
        ens = EnsemblePredictor(models={
            "a": _constant_model("a", 100),
            "b": _constant_model("b", 104),
        })
        X = pd.DataFrame([[1, 2, 0, 1, 10]] * 4, columns=list(NAMES))
        np.testing.assert_allclose(ens.predict(X), np.full(4, 102.0))


# ---------------------------------------------------------------------------
# Weights
# ---------------------------------------------------------------------------


class TestEnsembleWeights:
    def test_normalised(self):
        from forecasting.models import EnsemblePredictor
        ens = EnsemblePredictor(
            models={"a": _constant_model("a", 1), "b": _constant_model("b", 2)},
            weights={"a": 2.0, "b": 3.0},
        )
        assert sum(ens.weights.values()) == pytest.approx(1.0)
        assert ens.weights["a"] == pytest.approx(0.4)

    def test_missing_weight_defaults_to_one(self):
        from forecasting.models import EnsemblePredictor
        ens = EnsemblePredictor(
            models={"a": _constant_model("a", 1), "b": _constant_model("b", 2)},
            weights={"a": 1.0},
        )
        assert ens.weights == {"a": 0.5, "b": 0.5}

    def test_negative_weight_rejected(self):
        from forecasting.models import EnsemblePredictor
        with pytest.raises(ValueError):
            EnsemblePredictor(
                models={"a": _constant_model("a", 1)},
                weights={"a": -0.5},
            )

    def test_all_zero_weights_rejected(self):
        from forecasting.models import EnsemblePredictor
        with pytest.raises(ValueError):
            EnsemblePredictor(
                models={"a": _constant_model("a", 1), "b": _constant_model("b", 2)},
                weights={"a": 0.0, "b": 0.0},
            )

    def test_add_model_renormalises(self):
        from forecasting.models import EnsemblePredictor
        ens = EnsemblePredictor(models={"a": _constant_model("a", 1)})
        ens.add_model(_constant_model("b", 2), weight=1.0)
        assert ens.weights == {"a": 0.5, "b": 0.5}
        assert ens.member_count == 2

    def test_empty_ensemble(self, features):
        from forecasting.errors import EmptyEnsembleError
        from forecasting.models import EnsemblePredictor
        ens = EnsemblePredictor()
        with pytest.raises(EmptyEnsembleError):
            ens.predict_next_detailed(features)
        with pytest.raises(EmptyEnsembleError):
            ens.predict_steps_detailed(features, 1)


# ---------------------------------------------------------------------------
# Degeneracy / determinism
# ---------------------------------------------------------------------------


class TestEnsembleDegeneracy:
    def test_single_member_matches_member(self, features):
        from forecasting.models import EnsemblePredictor
        member = _constant_model("only", 123.456)
        ens = EnsemblePredictor(models={"only": member}, weights={"only": 1.0})
        result = ens.predict_next_detailed(features)
        assert result.mean == member.predict_next(features)
        assert result.variance == 0.0

    def test_parallel_matches_sequential(self, features):
        from forecasting.models import EnsemblePredictor
        members = {n: _constant_model(n, v) for n, v in [("a", 99.5), ("b", 101.25), ("c", 104.0), ("d", 100.0)]}
        seq = EnsemblePredictor(models=members, max_workers=1).predict_next_detailed(features)
        par = EnsemblePredictor(models=members, max_workers=4).predict_next_detailed(features)
        assert seq == par
        assert list(par.member_predictions) == ["a", "b", "c", "d"]

    def test_member_failure_propagates(self, features):
        from forecasting.entities import FeatureVector
        from forecasting.errors import SchemaMismatchError
        from forecasting.models import EnsemblePredictor
        ens = EnsemblePredictor(models={"a": _constant_model("a", 1)})
        bad = FeatureVector(names=NAMES[::-1], values=features.values[::-1])
        with pytest.raises(SchemaMismatchError):
            ens.predict_next(bad)


# ---------------------------------------------------------------------------
# Direct mode
# ---------------------------------------------------------------------------


class TestEnsembleSteps:
    def test_per_step_mean_and_variance(self, features):
        from forecasting.models import EnsemblePredictor
        ens = EnsemblePredictor(models={
            "a": _constant_model("a", [100, 101, 102], horizon=3),
            "b": _constant_model("b", [100, 103, 106], horizon=3),
        })
        result = ens.predict_steps_detailed(features, 3)
        assert result.means == pytest.approx([100.0, 102.0, 104.0])
        assert result.variances == pytest.approx([0.0, 1.0, 4.0])
        assert len(result) == 3
        assert ens.predict_steps(features, 2) == pytest.approx([100.0, 102.0])

    def test_horizon_is_smallest_member_horizon(self, features):
        from forecasting.errors import UnsupportedHorizonError
        from forecasting.models import EnsemblePredictor
        ens = EnsemblePredictor(models={
            "a": _constant_model("a", [1, 2, 3], horizon=3),
            "b": _constant_model("b", [1, 2], horizon=2),
        })
        assert ens.horizon == 2
        with pytest.raises(UnsupportedHorizonError):
            ens.predict_steps_detailed(features, 3)


# ---------------------------------------------------------------------------
# Feature importance
# ---------------------------------------------------------------------------


class TestEnsembleImportance:
    def test_weighted_merge(self):
        from forecasting.models import EnsemblePredictor
        ens = EnsemblePredictor(
            models={
                "a": _constant_model("a", 1, importance={"close": 0.6, "volume": 0.4}),
                "b": _constant_model("b", 1, importance={"high": 0.9, "close": 0.1}),
            },
            weights={"a": 0.5, "b": 0.5},
        )
        top = ens.get_feature_importance(top_n=2)
        assert list(top) == ["high", "close"]
        assert top["close"] == pytest.approx(0.35)

    def test_no_importance(self):
        from forecasting.models import EnsemblePredictor
        ens = EnsemblePredictor(models={"a": _constant_model("a", 1)})
        assert ens.get_feature_importance() == {}


# ---------------------------------------------------------------------------
# Training
# ---------------------------------------------------------------------------


class TestEnsembleFit:
    def test_failed_member_is_dropped(self):
        from forecasting.models import EnsemblePredictor
        good = _constant_model("good", 100)
        bad = _constant_model("bad", 100)

        def explode(*args, **kwargs):
            raise RuntimeError("cannot train")

        bad.fit = explode
        X = pd.DataFrame([[1, 2, 0, 100, 10]] * 6, columns=list(NAMES))
        y = pd.Series([100.0] * 6)
        ens = EnsemblePredictor(models={"good": good, "bad": bad})
        ens.fit(X, y)
        assert list(ens.models) == ["good"]
        assert ens.weights == {"good": 1.0}
        assert ens.is_fitted

    def test_inverse_rmse_weights(self):
        from forecasting.models import EnsemblePredictor
        X = pd.DataFrame([[1, 2, 0, 100, 10], [1, 2, 0, 101, 10]], columns=list(NAMES))
        y = pd.Series([100.0, 101.0])
        close_1 = _constant_model("close_1", 101)   # rmse 0.7071
        far = _constant_model("far", 110)          # rmse ~9.51
        ens = EnsemblePredictor(models={"close_1": close_1, "far": far})
        ens.optimize_weights(X, y)
        assert ens.weights["close_1"] > ens.weights["far"]
        assert sum(ens.weights.values()) == pytest.approx(1.0)
