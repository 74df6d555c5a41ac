"""
Core value objects of the forecasting engine.

Candles come in, forecasts go out. Everything here is immutable and free
of IO; ownership of a Forecast passes to the caller as soon as it is built.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterator

import pandas as pd


class Timeframe(str, Enum):
    """Candle granularity; also the spacing of forecast steps."""

    H1 = "1h"
    H4 = "4h"
    D1 = "1d"
    W1 = "1w"
    M1 = "1m"

    @property
    def offset(self) -> pd.DateOffset:
        """Calendar offset of one candle of this timeframe."""
        return _OFFSETS[self]


_OFFSETS = {
    Timeframe.H1: pd.DateOffset(hours=1),
    Timeframe.H4: pd.DateOffset(hours=4),
    Timeframe.D1: pd.DateOffset(days=1),
    Timeframe.W1: pd.DateOffset(weeks=1),
    Timeframe.M1: pd.DateOffset(months=1),
}


class Direction(str, Enum):
    """Direction of a forecast step relative to the previous close."""

    UP = "up"
    DOWN = "down"
    FLAT = "flat"


class ForecastMode(str, Enum):
    """Multi-step rollout strategy."""

    ITERATIVE = "iterative"
    DIRECT = "direct"


@dataclass(frozen=True)
class Candle:
    """A single OHLCV bar."""

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class FeatureVector:
    """Ordered, named feature values computed at one timestep.

    The order of ``names`` is the schema: a model trained on one order
    will refuse a vector with another.
    """

    names: tuple[str, ...]
    values: tuple[float, ...]

    def __post_init__(self) -> None:
        if len(self.names) != len(self.values):
            raise ValueError(
                f"{len(self.names)} feature names but {len(self.values)} values"
            )

    @property
    def schema(self) -> tuple[str, ...]:
        return self.names

    def __getitem__(self, name: str) -> float:
        try:
            return self.values[self.names.index(name)]
        except ValueError:
            raise KeyError(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self.names

    def __iter__(self) -> Iterator[str]:
        return iter(self.names)

    def __len__(self) -> int:
        return len(self.names)

    def get(self, name: str, default: float | None = None) -> float | None:
        if name in self.names:
            return self[name]
        return default

    def to_frame(self) -> pd.DataFrame:
        """One-row DataFrame with columns in schema order."""
        return pd.DataFrame([list(self.values)], columns=list(self.names))


@dataclass(frozen=True)
class ForecastStep:
    """One predicted future candle."""

    step_number: int
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    confidence: float
    direction: Direction

    def to_dict(self) -> dict:
        return {
            "step_number": self.step_number,
            "timestamp": self.timestamp.isoformat(),
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "confidence": self.confidence,
            "direction": self.direction.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ForecastStep":
        return cls(
            step_number=int(data["step_number"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            open=float(data["open"]),
            high=float(data["high"]),
            low=float(data["low"]),
            close=float(data["close"]),
            confidence=float(data["confidence"]),
            direction=Direction(data["direction"]),
        )


@dataclass(frozen=True)
class Forecast:
    """A full multi-step forecast for one (symbol, timeframe, as-of) request.

    Attributes:
        confidence_avg: Mean of the per-step confidences.
        direction: Direction of the first step (near-term signal).
        indicator_drivers: Feature names with the largest influence on the
            model, most important first. Empty when the model exposes none.
    """

    symbol: str
    timeframe: Timeframe
    as_of: datetime
    steps: tuple[ForecastStep, ...]
    mode: ForecastMode = ForecastMode.ITERATIVE
    model_name: str = ""
    indicator_drivers: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not self.steps:
            raise ValueError("A forecast needs at least one step")

    @property
    def num_steps(self) -> int:
        return len(self.steps)

    @property
    def predict_until(self) -> datetime:
        return self.steps[-1].timestamp

    @property
    def confidence_avg(self) -> float:
        return math.fsum(s.confidence for s in self.steps) / len(self.steps)

    @property
    def direction(self) -> Direction:
        return self.steps[0].direction

    @property
    def closes(self) -> list[float]:
        return [s.close for s in self.steps]

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "timeframe": self.timeframe.value,
            "as_of": self.as_of.isoformat(),
            "mode": self.mode.value,
            "model_name": self.model_name,
            "num_steps": self.num_steps,
            "predict_until": self.predict_until.isoformat(),
            "confidence_avg": self.confidence_avg,
            "direction": self.direction.value,
            "indicator_drivers": list(self.indicator_drivers),
            "steps": [s.to_dict() for s in self.steps],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Forecast":
        return cls(
            symbol=data["symbol"],
            timeframe=Timeframe(data["timeframe"]),
            as_of=datetime.fromisoformat(data["as_of"]),
            steps=tuple(ForecastStep.from_dict(s) for s in data["steps"]),
            mode=ForecastMode(data.get("mode", ForecastMode.ITERATIVE.value)),
            model_name=data.get("model_name", ""),
            indicator_drivers=tuple(data.get("indicator_drivers", ())),
        )
