"""
Port interfaces (ABCs) for the forecasting engine.

Ports define what the core needs from the outside world: candle history
and trained models. Adapters implement them; the core never depends on a
concrete data source or storage layout.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from forecasting.entities import Candle, Timeframe

if TYPE_CHECKING:
    from forecasting.models.base import BasePredictionModel


class CandleHistoryProvider(ABC):
    """Port for retrieving cleaned, time-ordered candle history."""

    @abstractmethod
    def get_candles(
        self, symbol: str, timeframe: Timeframe, limit: int
    ) -> list[Candle]:
        """Return up to ``limit`` most recent candles, oldest first.

        Implementations are responsible for deduplication, gap filling and
        OHLC repair before candles reach the core.
        """
        raise NotImplementedError


class ModelLoader(ABC):
    """Port for loading a trained model (or ensemble) for a timeframe."""

    @abstractmethod
    def load(self, timeframe: Timeframe) -> "BasePredictionModel":
        """Return a fitted, read-only model ready for inference."""
        raise NotImplementedError
