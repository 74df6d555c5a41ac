"""
Tests for the forecast cache (in-memory backend).
"""

from datetime import datetime, timedelta, timezone

import pytest


def _forecast(symbol: str = "BTC", steps: int = 3, timeframe: str = "1h"):
    from forecasting.entities import Direction, Forecast, ForecastStep, Timeframe
    t0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return Forecast(
        symbol=symbol,
        timeframe=Timeframe(timeframe),
        as_of=t0,
        steps=tuple(
            ForecastStep(
                step_number=i,
                timestamp=t0 + timedelta(hours=i),
                open=100.0 + i - 1,
                high=101.0 + i,
                low=99.0 + i - 1,
                close=100.0 + i,
                confidence=0.85 - 0.05 * (i - 1),
                direction=Direction.UP,
            )
            for i in range(1, steps + 1)
        ),
        model_name="XGBoost",
        indicator_drivers=("rsi_14",),
    )


@pytest.fixture
def cache():
    from forecasting.utils.cache import CacheClient
    return CacheClient(redis_url=None)


class TestCacheClient:
    def test_memory_backend(self, cache):
        assert cache.backend == "memory"

    def test_key_format(self):
        from forecasting.utils.cache import CacheClient
        assert CacheClient.forecast_key("btc", "4h", 10) == "prediction:BTC:4h:10"

    def test_miss_then_hit(self, cache):
        assert cache.get_forecast("BTC", "1h", 3) is None
        forecast = _forecast()
        cache.set_forecast(forecast)
        assert cache.get_forecast("btc", "1h", 3) == forecast
        assert cache.get_forecast("BTC", "1h", 5) is None

    def test_invalidate_symbol(self, cache):
        cache.set_forecast(_forecast("BTC"))
        cache.set_forecast(_forecast("ETH"))
        assert cache.invalidate_forecasts("btc") == 1
        assert cache.get_forecast("BTC", "1h", 3) is None
        assert cache.get_forecast("ETH", "1h", 3) is not None

    def test_invalidate_all(self, cache):
        cache.set_forecast(_forecast("BTC", 3))
        cache.set_forecast(_forecast("BTC", 5))
        cache.set_forecast(_forecast("ETH"))
        assert cache.invalidate_forecasts() == 3
        assert cache.get_forecast("ETH", "1h", 3) is None

    def test_invalidate_timeframe(self, cache):
        cache.set_forecast(_forecast("BTC", timeframe="1h"))
        cache.set_forecast(_forecast("BTC", timeframe="4h"))
        cache.set_forecast(_forecast("ETH", timeframe="1h"))
        assert cache.invalidate_forecasts(timeframe="1h") == 2
        assert cache.get_forecast("BTC", "4h", 3) is not None
        assert cache.invalidate_forecasts("btc", "4h") == 1

    def test_expired_entries(self):
        from forecasting.utils.cache import CacheClient
        cache = CacheClient(redis_url=None, prediction_ttl=0)
        cache.set_forecast(_forecast())
        assert cache.get_forecast("BTC", "1h", 3) is None

    def test_unreachable_redis_falls_back(self):
        pytest.importorskip("redis")
        from forecasting.utils.cache import CacheClient
        cache = CacheClient(redis_url="redis://127.0.0.1:1/0")
        assert cache.backend == "memory"
        cache.set_forecast(_forecast())
        assert cache.get_forecast("BTC", "1h", 3) is not None
