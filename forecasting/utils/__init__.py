"""
Utilities sub-package.

- `CacheClient`        — Redis + in-memory fallback, TTL-aware forecast cache
- `configure_logging`  — one log format for the command-line entry points
"""

from forecasting.utils.cache import CacheClient
from forecasting.utils.logging import configure_logging

__all__ = [
    "CacheClient",
    "configure_logging",
]
