"""
Forecast inference service.

Wires the collaborators for one forecast request:
1. Check the forecast cache
2. Load the active model for the timeframe (kept in memory afterwards)
3. Fetch recent candles from the history provider
4. Run the forecast orchestrator
5. Cache the result

Errors from the core propagate unchanged; nothing is retried here.
"""

import logging
import threading

from forecasting.config import ForecastingConfig, config
from forecasting.entities import Forecast, ForecastMode, Timeframe
from forecasting.errors import InvalidHorizonError
from forecasting.forecaster import ForecastOrchestrator
from forecasting.models.base import BasePredictionModel
from forecasting.ports import CandleHistoryProvider, ModelLoader
from forecasting.utils.cache import CacheClient

logger = logging.getLogger(__name__)


class ForecastService:
    """Main inference service for multi-step price forecasts."""

    def __init__(
        self,
        provider: CandleHistoryProvider,
        loader: ModelLoader,
        orchestrator: ForecastOrchestrator | None = None,
        cache: CacheClient | None = None,
        cfg: ForecastingConfig | None = None,
    ) -> None:
        self._cfg = cfg or config
        self._provider = provider
        self._loader = loader
        self._orchestrator = orchestrator or ForecastOrchestrator(
            confidence_cfg=self._cfg.confidence,
            forecast_cfg=self._cfg.forecast,
        )
        self._cache = cache
        self._models: dict[Timeframe, BasePredictionModel] = {}
        self._lock = threading.Lock()

    def forecast(
        self,
        symbol: str,
        timeframe: Timeframe | str,
        steps: int | None = None,
        mode: ForecastMode | str | None = None,
    ) -> Forecast:
        """Generate (or fetch from cache) a forecast for one symbol.

        Args:
            symbol: Ticker symbol, e.g. "BTC".
            timeframe: Candle timeframe; also the step spacing.
            steps: Number of future candles (default from config).
            mode: Force "iterative" or "direct". When omitted, direct
                mode is used if the model was trained for enough steps,
                and the result is cached.
        """
        tf = Timeframe(timeframe)
        symbol = symbol.upper()
        if steps is None:
            steps = self._cfg.forecast.default_steps
        if not 1 <= steps <= self._cfg.forecast.max_steps:
            raise InvalidHorizonError(steps, self._cfg.forecast.max_steps)
        use_cache = self._cache is not None and mode is None

        if use_cache:
            cached = self._cache.get_forecast(symbol, tf, steps)
            if cached is not None:
                logger.info("[Cache HIT] %s/%s/%d", symbol, tf.value, steps)
                return cached
            logger.info("[Cache MISS] %s/%s/%d — running inference", symbol, tf.value, steps)

        model = self.get_model(tf)
        if mode is None:
            mode = (
                ForecastMode.DIRECT
                if model.horizon > 1 and model.horizon >= steps
                else ForecastMode.ITERATIVE
            )

        limit = max(
            self._cfg.forecast.required_candles,
            self._orchestrator.builder.required_lookback + 1,
        )
        candles = self._provider.get_candles(symbol, tf, limit)

        forecast = self._orchestrator.generate_forecast(
            candles,
            model,
            total_steps=steps,
            timeframe=tf,
            symbol=symbol,
            mode=mode,
        )

        if use_cache:
            self._cache.set_forecast(forecast)
        return forecast

    def get_model(self, timeframe: Timeframe | str) -> BasePredictionModel:
        """Active model for a timeframe, loaded once and then shared."""
        tf = Timeframe(timeframe)
        with self._lock:
            model = self._models.get(tf)
            if model is None:
                model = self._loader.load(tf)
                self._models[tf] = model
        return model

    def reload(self, timeframe: Timeframe | str) -> None:
        """Drop the in-memory model and cached forecasts for a timeframe."""
        tf = Timeframe(timeframe)
        with self._lock:
            self._models.pop(tf, None)
        if self._cache is not None:
            removed = self._cache.invalidate_forecasts(timeframe=tf)
            logger.info("Reloading %s model; %d cached forecasts dropped", tf.value, removed)
