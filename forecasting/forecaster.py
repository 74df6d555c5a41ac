"""
Multi-step forecast orchestration.

Iterative mode predicts one close at a time and feeds the predicted candle
back into the trailing window before the next step. The window and its
features live in an immutable ForecastState that is replaced, never
mutated, so the caller's candle history is left untouched.

Direct mode asks a multi-output model for every step at once.

Derived OHLC per step:
    open      = previous close
    high/low  = close ± ½·ATR of the current features, widened to contain open
    volume    = volume SMA of the current features (fed back only)
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

import pandas as pd

from forecasting.config import ConfidenceConfig, ForecastConfig, config
from forecasting.confidence import (
    ConfidenceEstimator,
    EnsembleVarianceConfidence,
    select_confidence_estimator,
)
from forecasting.data.candles import frame_to_candles
from forecasting.entities import (
    Candle,
    Direction,
    FeatureVector,
    Forecast,
    ForecastMode,
    ForecastStep,
    Timeframe,
)
from forecasting.errors import InvalidHorizonError
from forecasting.features.builder import FeatureBuilder
from forecasting.models.base import BasePredictionModel
from forecasting.models.ensemble import EnsemblePredictor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ForecastState:
    """Trailing candle window plus the features of its last candle."""

    window: tuple[Candle, ...]
    features: FeatureVector

    @classmethod
    def initial(cls, candles: Sequence[Candle], builder: FeatureBuilder) -> "ForecastState":
        window = tuple(candles[-(builder.required_lookback + 1):])
        return cls(window=window, features=builder.build_features(list(candles)))

    @property
    def last(self) -> Candle:
        return self.window[-1]

    def advance(self, candle: Candle, builder: FeatureBuilder) -> "ForecastState":
        """New state with ``candle`` appended and the oldest candle dropped."""
        window = self.window[1:] + (candle,)
        return ForecastState(window=window, features=builder.build_features(list(window)))


class ForecastOrchestrator:
    """Turns candle history + a trained predictor into a Forecast."""

    def __init__(
        self,
        builder: FeatureBuilder | None = None,
        confidence_cfg: ConfidenceConfig | None = None,
        forecast_cfg: ForecastConfig | None = None,
    ) -> None:
        self._builder = builder or FeatureBuilder()
        self._confidence_cfg = confidence_cfg or config.confidence
        self._cfg = forecast_cfg or config.forecast

    @property
    def builder(self) -> FeatureBuilder:
        return self._builder

    def generate_forecast(
        self,
        candles: Sequence[Candle] | pd.DataFrame,
        predictor: BasePredictionModel,
        total_steps: int,
        timeframe: Timeframe | str,
        symbol: str = "",
        mode: ForecastMode | str = ForecastMode.ITERATIVE,
        as_of: datetime | None = None,
    ) -> Forecast:
        """Produce a ``total_steps`` forecast from the last candle onward.

        Raises:
            InvalidHorizonError: total_steps outside [1, max_steps].
            InsufficientHistoryError: not enough candles for the features.
            SchemaMismatchError / ModelInferenceError /
            UnsupportedHorizonError / EmptyEnsembleError: from the predictor.
        """
        if not 1 <= total_steps <= self._cfg.max_steps:
            raise InvalidHorizonError(total_steps, self._cfg.max_steps)

        tf = Timeframe(timeframe)
        mode = ForecastMode(mode)
        if isinstance(candles, pd.DataFrame):
            candles = frame_to_candles(candles)

        state = ForecastState.initial(candles, self._builder)
        estimator = select_confidence_estimator(
            self._confidence_cfg, variance_available=self._reports_variance(predictor)
        )

        if mode == ForecastMode.DIRECT:
            steps = self._direct(state, predictor, total_steps, tf, estimator)
        else:
            steps = self._iterative(state, predictor, total_steps, tf, estimator)

        drivers = tuple(
            predictor.get_feature_importance(top_n=self._cfg.top_k_drivers)
        )[: self._cfg.top_k_drivers]

        forecast = Forecast(
            symbol=symbol,
            timeframe=tf,
            as_of=as_of or state.last.timestamp,
            steps=tuple(steps),
            mode=mode,
            model_name=predictor.name,
            indicator_drivers=drivers,
        )
        logger.info(
            "Forecast %s %s (%s, %s): %d steps, last close %.6g → %.6g, "
            "direction=%s, confidence_avg=%.3f",
            symbol or "-", tf.value, mode.value, predictor.name,
            forecast.num_steps, state.last.close, forecast.steps[-1].close,
            forecast.direction.value, forecast.confidence_avg,
        )
        return forecast

    # ------------------------------------------------------------------
    # Rollout strategies
    # ------------------------------------------------------------------

    def _iterative(
        self,
        state: ForecastState,
        predictor: BasePredictionModel,
        total_steps: int,
        tf: Timeframe,
        estimator: ConfidenceEstimator,
    ) -> list[ForecastStep]:
        origin = state.last.timestamp
        steps: list[ForecastStep] = []

        for step in range(1, total_steps + 1):
            close, variance = self._predict_one(predictor, state.features)
            confidence = self._confidence(estimator, step, total_steps, variance, close)
            forecast_step = self._make_step(
                step=step,
                timestamp=self._step_timestamp(origin, tf, step),
                prev_close=state.last.close,
                close=close,
                atr=state.features.get(self._builder.atr_column, 0.0),
                confidence=confidence,
            )
            steps.append(forecast_step)

            if step < total_steps:
                predicted = Candle(
                    timestamp=forecast_step.timestamp,
                    open=forecast_step.open,
                    high=forecast_step.high,
                    low=forecast_step.low,
                    close=forecast_step.close,
                    volume=state.features.get(self._builder.volume_sma_column, state.last.volume),
                )
                state = state.advance(predicted, self._builder)

        return steps

    def _direct(
        self,
        state: ForecastState,
        predictor: BasePredictionModel,
        total_steps: int,
        tf: Timeframe,
        estimator: ConfidenceEstimator,
    ) -> list[ForecastStep]:
        if isinstance(predictor, EnsemblePredictor):
            detailed = predictor.predict_steps_detailed(state.features, total_steps)
            closes, variances = detailed.means, detailed.variances
        else:
            closes = predictor.predict_steps(state.features, total_steps)
            variances = [None] * total_steps

        origin = state.last.timestamp
        atr = state.features.get(self._builder.atr_column, 0.0)
        prev_close = state.last.close
        steps: list[ForecastStep] = []
        for step, (close, variance) in enumerate(zip(closes, variances), start=1):
            steps.append(self._make_step(
                step=step,
                timestamp=self._step_timestamp(origin, tf, step),
                prev_close=prev_close,
                close=close,
                atr=atr,
                confidence=self._confidence(estimator, step, total_steps, variance, close),
            ))
            prev_close = close
        return steps

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _reports_variance(predictor: BasePredictionModel) -> bool:
        return isinstance(predictor, EnsemblePredictor) and predictor.member_count > 1

    @staticmethod
    def _predict_one(
        predictor: BasePredictionModel, features: FeatureVector
    ) -> tuple[float, float | None]:
        if isinstance(predictor, EnsemblePredictor):
            result = predictor.predict_next_detailed(features)
            return result.mean, result.variance
        return predictor.predict_next(features), None

    @staticmethod
    def _confidence(
        estimator: ConfidenceEstimator,
        step: int,
        total_steps: int,
        variance: float | None,
        mean: float,
    ) -> float:
        if isinstance(estimator, EnsembleVarianceConfidence):
            return estimator.confidence_for_step(
                step, total_steps, ensemble_variance=variance, mean_prediction=mean
            )
        return estimator.confidence_for_step(step, total_steps)

    def _make_step(
        self,
        step: int,
        timestamp: datetime,
        prev_close: float,
        close: float,
        atr: float,
        confidence: float,
    ) -> ForecastStep:
        open_ = prev_close
        half_range = 0.5 * abs(atr)
        high = max(close + half_range, open_, close)
        low = min(close - half_range, open_, close)
        # prices stay non-negative
        low = max(low, min(open_, close, 0.0))
        return ForecastStep(
            step_number=step,
            timestamp=timestamp,
            open=open_,
            high=high,
            low=low,
            close=close,
            confidence=confidence,
            direction=self._direction(prev_close, close),
        )

    def _direction(self, prev_close: float, close: float) -> Direction:
        tol = self._cfg.flat_tolerance
        if close == prev_close or (tol > 0 and math.isclose(close, prev_close, rel_tol=tol)):
            return Direction.FLAT
        return Direction.UP if close > prev_close else Direction.DOWN

    @staticmethod
    def _step_timestamp(origin: datetime, tf: Timeframe, step: int) -> datetime:
        return (pd.Timestamp(origin) + tf.offset * step).to_pydatetime()
