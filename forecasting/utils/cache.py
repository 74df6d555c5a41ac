"""
Redis cache client for generated forecasts.

Key pattern: prediction:{SYMBOL}:{timeframe}:{steps}
TTL: 15 minutes by default (forecasts go stale with the next candle).

Falls back to an in-memory dict (with the same TTL) when Redis is not
installed or not reachable.
"""

import fnmatch
import json
import logging
import time
from typing import Any

from forecasting.entities import Forecast, Timeframe

logger = logging.getLogger(__name__)

try:
    import redis
    HAS_REDIS = True
except ImportError:
    HAS_REDIS = False
    logger.warning("Redis not installed. Caching will use process memory.")


class CacheClient:
    """Redis-backed forecast cache.

    Falls back to an in-memory dict if Redis is unavailable. Pass
    ``redis_url=None`` to force the in-memory cache.
    """

    def __init__(
        self,
        redis_url: str | None = "redis://localhost:6379/0",
        prediction_ttl: int = 900,
    ) -> None:
        self._prediction_ttl = prediction_ttl
        self._redis: "redis.Redis | None" = None
        self._memory_cache: dict[str, tuple[float, Any]] = {}

        if HAS_REDIS and redis_url:
            try:
                self._redis = redis.from_url(
                    redis_url,
                    decode_responses=True,
                    socket_timeout=5,
                )
                self._redis.ping()
                logger.info("Connected to Redis at %s", redis_url)
            except Exception:
                logger.warning("Cannot connect to Redis. Using in-memory cache.")
                self._redis = None

    @classmethod
    def from_config(cls) -> "CacheClient":
        from forecasting.config import config
        return cls(
            redis_url=config.redis.url,
            prediction_ttl=config.redis.prediction_ttl_seconds,
        )

    @property
    def backend(self) -> str:
        return "redis" if self._redis is not None else "memory"

    # ------------------------------------------------------------------
    # Forecast cache
    # ------------------------------------------------------------------

    @staticmethod
    def forecast_key(symbol: str, timeframe: Timeframe | str, steps: int) -> str:
        return f"prediction:{symbol.upper()}:{Timeframe(timeframe).value}:{steps}"

    def get_forecast(
        self, symbol: str, timeframe: Timeframe | str, steps: int
    ) -> Forecast | None:
        """Retrieve a cached forecast, or None on a miss."""
        data = self._get(self.forecast_key(symbol, timeframe, steps))
        if data is None:
            return None
        return Forecast.from_dict(data)

    def set_forecast(self, forecast: Forecast) -> None:
        """Cache a forecast under its symbol, timeframe and step count."""
        key = self.forecast_key(forecast.symbol, forecast.timeframe, forecast.num_steps)
        self._set(key, forecast.to_dict(), self._prediction_ttl)

    def invalidate_forecasts(
        self,
        symbol: str | None = None,
        timeframe: Timeframe | str | None = None,
    ) -> int:
        """Invalidate cached forecasts.

        Args:
            symbol: Specific symbol to invalidate, or None for all.
            timeframe: Restrict to one timeframe, or None for all.

        Returns:
            Number of keys invalidated.
        """
        sym = symbol.upper() if symbol else "*"
        tf = Timeframe(timeframe).value if timeframe else "*"
        pattern = f"prediction:{sym}:{tf}:*"
        return self._delete_pattern(pattern)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _get(self, key: str) -> dict | None:
        """Get a value from cache."""
        if self._redis is not None:
            try:
                val = self._redis.get(key)
                if val is not None:
                    return json.loads(val)
            except Exception:
                logger.warning("Redis GET failed for key %s", key)

        entry = self._memory_cache.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if time.monotonic() >= expires_at:
            del self._memory_cache[key]
            return None
        return value

    def _set(self, key: str, value: dict, ttl: int) -> None:
        """Set a value in cache with TTL."""
        serialized = json.dumps(value, default=str)
        if self._redis is not None:
            try:
                self._redis.setex(key, ttl, serialized)
                return
            except Exception:
                logger.warning("Redis SET failed for key %s", key)
        self._memory_cache[key] = (time.monotonic() + ttl, json.loads(serialized))

    def _delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching a pattern."""
        if self._redis is not None:
            try:
                keys = list(self._redis.scan_iter(match=pattern))
                if keys:
                    self._redis.delete(*keys)
                return len(keys)
            except Exception:
                logger.warning("Redis DELETE failed for pattern %s", pattern)

        to_delete = [k for k in self._memory_cache if fnmatch.fnmatch(k, pattern)]
        for k in to_delete:
            del self._memory_cache[k]
        return len(to_delete)
