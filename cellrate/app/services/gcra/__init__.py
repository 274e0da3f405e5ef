"""Distributed GCRA rate limiting.

This package provides atomic per-key admission decisions using Redis Lua
scripts, with an in-process store for tests and single-instance deployments.
"""

from .backends import InMemoryStore, RedisStore, StoreBackend, create_store
from .config import LimiterConfig, LimitOverrides, limit_from_spec
from .engine import CELL_EPSILON, gcra_allow_at_most, gcra_allow_n
from .models import NO_WAIT, Decision, Limit, Result
from .redis_lua import ALLOW_AT_MOST_SCRIPT, ALLOW_N_SCRIPT
from .service import Limiter, get_limiter, parse_reply, reset_limiter

__all__ = [
    # Models
    "Limit",
    "Result",
    "Decision",
    "NO_WAIT",
    # Engine
    "CELL_EPSILON",
    "gcra_allow_n",
    "gcra_allow_at_most",
    "ALLOW_N_SCRIPT",
    "ALLOW_AT_MOST_SCRIPT",
    # Stores
    "StoreBackend",
    "RedisStore",
    "InMemoryStore",
    "create_store",
    # Configuration
    "LimiterConfig",
    "LimitOverrides",
    "limit_from_spec",
    # Façade
    "Limiter",
    "parse_reply",
    "get_limiter",
    "reset_limiter",
]
