"""cellrate: distributed rate limiting with the Generic Cell Rate Algorithm."""

from cellrate.app.exceptions import InvalidLimitError, MalformedResultError, RateLimitError
from cellrate.app.services.gcra import (
    NO_WAIT,
    InMemoryStore,
    Limit,
    Limiter,
    LimiterConfig,
    LimitOverrides,
    RedisStore,
    Result,
    StoreBackend,
    get_limiter,
    reset_limiter,
)

__version__ = "0.1.0"

__all__ = [
    "Limit",
    "Result",
    "NO_WAIT",
    "Limiter",
    "LimiterConfig",
    "LimitOverrides",
    "StoreBackend",
    "RedisStore",
    "InMemoryStore",
    "get_limiter",
    "reset_limiter",
    "RateLimitError",
    "InvalidLimitError",
    "MalformedResultError",
]
