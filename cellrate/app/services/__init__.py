"""Services package for the limiter.

This package provides:
- GCRA decision engine and its Redis Lua counterpart
- Redis and in-memory stores
- The Limiter façade
"""

from cellrate.app.services.gcra import (
    InMemoryStore,
    Limit,
    Limiter,
    LimiterConfig,
    RedisStore,
    Result,
    get_limiter,
    reset_limiter,
)

__all__ = [
    "Limit",
    "Result",
    "Limiter",
    "LimiterConfig",
    "RedisStore",
    "InMemoryStore",
    "get_limiter",
    "reset_limiter",
]
