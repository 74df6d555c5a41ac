"""
Tests for per-step confidence estimation.
"""

import pytest


class TestTimeDecayConfidence:
    def test_linear_decay_over_five_steps(self):
        from forecasting.confidence import TimeDecayConfidence
        est = TimeDecayConfidence()
        values = [est.confidence_for_step(i, 5) for i in range(1, 6)]
        assert values == pytest.approx([0.85, 0.7875, 0.725, 0.6625, 0.60])

    def test_single_step_is_high(self):
        from forecasting.confidence import TimeDecayConfidence
        assert TimeDecayConfidence().confidence_for_step(1, 1) == 0.85

    def test_monotone_and_bounded(self):
        from forecasting.confidence import TimeDecayConfidence
        est = TimeDecayConfidence(high=0.9, low=0.5)
        values = [est.confidence_for_step(i, 30) for i in range(1, 31)]
        assert values == sorted(values, reverse=True)
        assert all(0.5 <= v <= 0.9 for v in values)
        assert values[-1] == pytest.approx(0.5)

    def test_ignores_variance(self):
        from forecasting.confidence import TimeDecayConfidence
        est = TimeDecayConfidence()
        assert est.confidence_for_step(2, 5, ensemble_variance=100.0) == est.confidence_for_step(2, 5)

    @pytest.mark.parametrize("step,total", [(0, 5), (6, 5), (1, 0)])
    def test_invalid_step(self, step, total):
        from forecasting.confidence import TimeDecayConfidence
        with pytest.raises(ValueError):
            TimeDecayConfidence().confidence_for_step(step, total)

    def test_invalid_bounds(self):
        from forecasting.confidence import TimeDecayConfidence
        with pytest.raises(ValueError):
            TimeDecayConfidence(high=0.5, low=0.6)
        with pytest.raises(ValueError):
            TimeDecayConfidence(high=1.2, low=0.6)


class TestEnsembleVarianceConfidence:
    def test_higher_variance_lower_confidence(self):
        from forecasting.confidence import EnsembleVarianceConfidence
        est = EnsembleVarianceConfidence()
        wide = est.confidence_for_step(1, 5, ensemble_variance=8 / 3, mean_prediction=102.0)
        narrow = est.confidence_for_step(1, 5, ensemble_variance=2 / 3, mean_prediction=102.0)
        assert wide < narrow

    def test_zero_variance_matches_time_decay(self):
        from forecasting.confidence import EnsembleVarianceConfidence, TimeDecayConfidence
        est = EnsembleVarianceConfidence()
        decay = TimeDecayConfidence()
        for step in range(1, 6):
            assert est.confidence_for_step(step, 5, ensemble_variance=0.0) == pytest.approx(
                decay.confidence_for_step(step, 5)
            )

    def test_formula(self):
        from forecasting.confidence import EnsembleVarianceConfidence
        est = EnsembleVarianceConfidence(sensitivity=10.0)
        # spread = sqrt(4) / 100 = 0.02 -> 0.85 / 1.2
        value = est.confidence_for_step(1, 1, ensemble_variance=4.0, mean_prediction=100.0)
        assert value == pytest.approx(0.85 / 1.2)

    def test_never_exactly_zero_or_one(self):
        from forecasting.confidence import EnsembleVarianceConfidence
        est = EnsembleVarianceConfidence(high=1.0, low=1.0)
        assert est.confidence_for_step(1, 1, ensemble_variance=0.0) < 1.0
        huge = est.confidence_for_step(1, 1, ensemble_variance=1e30, mean_prediction=1.0)
        assert 0.0 < huge < 1.0

    def test_zero_mean_is_continuous(self):
        from forecasting.confidence import EnsembleVarianceConfidence
        est = EnsembleVarianceConfidence()
        at_zero = est.confidence_for_step(1, 5, ensemble_variance=1e-10, mean_prediction=0.0)
        near_zero = est.confidence_for_step(1, 5, ensemble_variance=1e-10, mean_prediction=1e-6)
        assert at_zero == pytest.approx(near_zero)
        # sqrt(1e-10) / 1e-4 = 0.1 -> 0.85 / 2
        assert at_zero == pytest.approx(0.85 / 2.0)

    def test_negative_variance_rejected(self):
        from forecasting.confidence import EnsembleVarianceConfidence
        with pytest.raises(ValueError):
            EnsembleVarianceConfidence().confidence_for_step(1, 3, ensemble_variance=-1.0)

    def test_invalid_parameters(self):
        from forecasting.confidence import EnsembleVarianceConfidence
        with pytest.raises(ValueError):
            EnsembleVarianceConfidence(sensitivity=0.0)
        with pytest.raises(ValueError):
            EnsembleVarianceConfidence(epsilon=0.0)


class TestSelectEstimator:
    def test_auto_without_variance(self):
        from forecasting.confidence import TimeDecayConfidence, select_confidence_estimator
        assert isinstance(select_confidence_estimator(), TimeDecayConfidence)

    def test_auto_with_variance(self):
        from forecasting.confidence import (
            EnsembleVarianceConfidence,
            select_confidence_estimator,
        )
        est = select_confidence_estimator(variance_available=True)
        assert isinstance(est, EnsembleVarianceConfidence)

    def test_forced_strategy(self):
        from forecasting.config import ConfidenceConfig
        from forecasting.confidence import (
            EnsembleVarianceConfidence,
            TimeDecayConfidence,
            select_confidence_estimator,
        )
        forced = select_confidence_estimator(ConfidenceConfig(strategy="time_decay"), True)
        assert isinstance(forced, TimeDecayConfidence)
        forced = select_confidence_estimator(ConfidenceConfig(strategy="ensemble_variance"))
        assert isinstance(forced, EnsembleVarianceConfidence)

    def test_config_bounds_applied(self):
        from forecasting.config import ConfidenceConfig
        from forecasting.confidence import select_confidence_estimator
        est = select_confidence_estimator(ConfidenceConfig(high=0.9, low=0.4))
        assert est.confidence_for_step(1, 2) == 0.9
        assert est.confidence_for_step(2, 2) == pytest.approx(0.4)

    def test_unknown_strategy(self):
        from forecasting.config import ConfidenceConfig
        from forecasting.confidence import select_confidence_estimator
        with pytest.raises(ValueError):
            select_confidence_estimator(ConfidenceConfig(strategy="bayesian"))
