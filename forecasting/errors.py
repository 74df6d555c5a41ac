"""
Errors raised by the forecasting engine.

All errors raised from the core are defined here. None of them is
retried or recovered locally; they propagate to the caller, which decides
what the user sees.
"""


class ForecastingError(Exception):
    """Base error for all forecasting engine errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)


class InsufficientHistoryError(ForecastingError):
    """Raised when fewer candles precede the as-of index than the lookback."""

    def __init__(self, required: int, available: int) -> None:
        super().__init__(
            f"Insufficient history: {required} leading candles required, "
            f"{available} available"
        )
        self.required = required
        self.available = available


class SchemaMismatchError(ForecastingError):
    """Raised when a feature vector does not match a model's feature schema."""

    def __init__(self, expected: tuple[str, ...], actual: tuple[str, ...]) -> None:
        missing = [n for n in expected if n not in actual]
        extra = [n for n in actual if n not in expected]
        detail = f"missing={missing[:5]} extra={extra[:5]}"
        if not missing and not extra:
            detail = "same names, different order"
        super().__init__(f"Feature schema mismatch: {detail}")
        self.expected = expected
        self.actual = actual


class EmptyEnsembleError(ForecastingError):
    """Raised when an ensemble is asked to predict with no members."""

    def __init__(self) -> None:
        super().__init__("Ensemble has no members")


class ModelInferenceError(ForecastingError):
    """Raised when the underlying model computation fails."""

    def __init__(self, model_name: str, reason: str) -> None:
        super().__init__(f"Inference failed for {model_name}: {reason}")
        self.model_name = model_name
        self.reason = reason


class InvalidHorizonError(ForecastingError):
    """Raised when the number of forecast steps is outside the allowed range."""

    def __init__(self, steps: int, max_steps: int) -> None:
        super().__init__(
            f"Invalid forecast horizon: {steps}. Must be between 1 and {max_steps}."
        )
        self.steps = steps
        self.max_steps = max_steps


class UnsupportedHorizonError(ForecastingError):
    """Raised when a direct model is asked for more steps than it was trained for."""

    def __init__(self, model_name: str, horizon: int, requested: int) -> None:
        super().__init__(
            f"{model_name} emits {horizon} step(s), {requested} requested"
        )
        self.model_name = model_name
        self.horizon = horizon
        self.requested = requested


class ModelNotFoundError(ForecastingError):
    """Raised when the registry holds no model for a timeframe/version."""

    def __init__(self, timeframe: str, version: str | None = None) -> None:
        target = f"{timeframe}/{version}" if version else timeframe
        super().__init__(f"No trained model found for {target}")
        self.timeframe = timeframe
        self.version = version
