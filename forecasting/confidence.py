"""
Per-step confidence estimation.

Two strategies share one contract:

- `TimeDecayConfidence` — linear decay from ``high`` at step 1 to ``low``
  at the last step.
- `EnsembleVarianceConfidence` — the same decay, divided by
  ``1 + k * spread`` where spread is the ensemble's standard deviation
  (relative to the mean when one is given). More member disagreement means
  lower confidence; the result never reaches exactly 0 or 1.
"""

import math
from abc import ABC, abstractmethod

from forecasting.config import ConfidenceConfig

STRATEGIES = ("auto", "time_decay", "ensemble_variance")


class ConfidenceEstimator(ABC):
    """Maps a step position (and optionally ensemble variance) to [0, 1]."""

    @abstractmethod
    def confidence_for_step(
        self,
        step_number: int,
        total_steps: int,
        ensemble_variance: float | None = None,
        mean_prediction: float | None = None,
    ) -> float:
        ...

    @staticmethod
    def _check_step(step_number: int, total_steps: int) -> None:
        if total_steps < 1:
            raise ValueError(f"total_steps must be >= 1, got {total_steps}")
        if not 1 <= step_number <= total_steps:
            raise ValueError(
                f"step_number must be in [1, {total_steps}], got {step_number}"
            )


class TimeDecayConfidence(ConfidenceEstimator):
    """Linear decay between two bounds."""

    def __init__(self, high: float = 0.85, low: float = 0.60) -> None:
        if not 0.0 <= low <= high <= 1.0:
            raise ValueError(f"Expected 0 <= low <= high <= 1, got low={low} high={high}")
        self.high = high
        self.low = low

    def confidence_for_step(
        self,
        step_number: int,
        total_steps: int,
        ensemble_variance: float | None = None,
        mean_prediction: float | None = None,
    ) -> float:
        self._check_step(step_number, total_steps)
        if total_steps == 1:
            return self.high
        decay = (step_number - 1) * (self.high - self.low) / (total_steps - 1)
        return max(self.low, self.high - decay)


class EnsembleVarianceConfidence(ConfidenceEstimator):
    """Time decay scaled down by ensemble disagreement.

    confidence = decay(step) / (1 + k * spread), clamped to
    [epsilon, 1 - epsilon]. spread is the standard deviation relative to
    the mean, whose magnitude is floored at epsilon. Without a variance it
    degrades to pure decay (still clamped).
    """

    def __init__(
        self,
        sensitivity: float = 10.0,
        high: float = 0.85,
        low: float = 0.60,
        epsilon: float = 1e-4,
    ) -> None:
        if sensitivity <= 0:
            raise ValueError(f"sensitivity must be > 0, got {sensitivity}")
        if not 0.0 < epsilon < 0.5:
            raise ValueError(f"epsilon must be in (0, 0.5), got {epsilon}")
        self.sensitivity = sensitivity
        self.epsilon = epsilon
        self._decay = TimeDecayConfidence(high=high, low=low)

    def confidence_for_step(
        self,
        step_number: int,
        total_steps: int,
        ensemble_variance: float | None = None,
        mean_prediction: float | None = None,
    ) -> float:
        base = self._decay.confidence_for_step(step_number, total_steps)
        spread = 0.0
        if ensemble_variance is not None:
            if ensemble_variance < 0 or not math.isfinite(ensemble_variance):
                raise ValueError(f"ensemble_variance must be finite and >= 0, got {ensemble_variance}")
            spread = math.sqrt(ensemble_variance)
            if mean_prediction is not None:
                spread /= max(abs(mean_prediction), self.epsilon)
        value = base / (1.0 + self.sensitivity * spread)
        return min(1.0 - self.epsilon, max(self.epsilon, value))


def select_confidence_estimator(
    cfg: ConfidenceConfig | None = None,
    variance_available: bool = False,
) -> ConfidenceEstimator:
    """Pick the configured strategy; "auto" uses variance when it exists."""
    cfg = cfg or ConfidenceConfig()
    if cfg.strategy not in STRATEGIES:
        raise ValueError(f"Unknown confidence strategy: {cfg.strategy!r}")

    use_variance = cfg.strategy == "ensemble_variance" or (
        cfg.strategy == "auto" and variance_available
    )
    if use_variance:
        return EnsembleVarianceConfidence(
            sensitivity=cfg.variance_sensitivity,
            high=cfg.high,
            low=cfg.low,
            epsilon=cfg.epsilon,
        )
    return TimeDecayConfidence(high=cfg.high, low=cfg.low)
