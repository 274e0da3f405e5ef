"""Stores that hold per-key GCRA state and execute decisions atomically."""

import asyncio
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from cellrate.app.core.config import Settings, settings as default_settings
from cellrate.app.core.logging import get_logger

from .engine import gcra_allow_at_most, gcra_allow_n
from .models import Limit
from .redis_lua import ALLOW_AT_MOST_SCRIPT, ALLOW_N_SCRIPT

logger = get_logger(__name__)


class StoreBackend(ABC):
    """Abstract base class for rate limit stores.

    A store runs one decision per call as a single atomic step for the key
    and replies with the raw ``[allowed, remaining, retry_after, reset_after]``
    sequence. Parsing that reply is the limiter's job.
    """

    name: str = "abstract"

    @abstractmethod
    async def allow_n(self, key: str, limit: Limit, n: int) -> Sequence[Any]:
        """Admit all ``n`` events for ``key`` or none.

        Args:
            key: Prefixed storage key
            limit: Limit to apply
            n: Events requested

        Returns:
            Raw four-field reply
        """
        pass

    @abstractmethod
    async def allow_at_most(self, key: str, limit: Limit, n: int) -> Sequence[Any]:
        """Admit up to ``n`` events for ``key``."""
        pass

    @abstractmethod
    async def reset(self, key: str) -> None:
        """Delete the state stored for ``key``. Unknown keys are a no-op."""
        pass

    async def close(self) -> None:
        """Release connections held by the store."""
        pass


def _script_args(limit: Limit, n: int) -> tuple[str, str, str, str]:
    return (
        str(limit.burst),
        str(limit.rate),
        f"{limit.period:.6f}",
        str(n),
    )


class RedisStore(StoreBackend):
    """Redis store shared by every limiter pointing at the same server.

    Decisions run as Lua scripts, which Redis executes without interleaving
    other commands, so same-key decisions from any host serialize.
    Errors raised by the client are not caught here.
    """

    name = "redis"

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        socket_timeout: Optional[float] = None,
        connect_timeout: Optional[float] = None,
    ) -> None:
        """Initialize the Redis store.

        Args:
            redis_client: Optional ``redis.asyncio`` client instance
            redis_url: Redis connection URL, used when no client is given
            socket_timeout: Per-command timeout in seconds
            connect_timeout: Connection timeout in seconds
        """
        self._redis = redis_client
        self._redis_url = redis_url or default_settings.redis_url
        self._socket_timeout = socket_timeout
        self._connect_timeout = connect_timeout

    def _get_redis(self) -> Any:
        """Get or create Redis client."""
        if self._redis is None:
            import redis.asyncio as aioredis
            self._redis = aioredis.from_url(
                self._redis_url,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._connect_timeout,
            )
        return self._redis

    async def allow_n(self, key: str, limit: Limit, n: int) -> Sequence[Any]:
        redis = self._get_redis()
        return await redis.eval(
            ALLOW_N_SCRIPT,
            1,  # Number of keys
            key,  # KEYS[1]
            *_script_args(limit, n),  # ARGV[1..4]
        )

    async def allow_at_most(self, key: str, limit: Limit, n: int) -> Sequence[Any]:
        redis = self._get_redis()
        return await redis.eval(
            ALLOW_AT_MOST_SCRIPT,
            1,
            key,
            *_script_args(limit, n),
        )

    async def reset(self, key: str) -> None:
        redis = self._get_redis()
        await redis.delete(key)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


@dataclass
class _StoredTat:
    """TAT held by the in-memory store with its expiry."""

    tat: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class InMemoryStore(StoreBackend):
    """Single-process store running the GCRA engine in Python.

    Decisions serialize on one store-wide lock. State is lost on restart
    and is not shared between processes, so this store only suits tests and
    single-instance deployments.

    Memory optimization:
    - Uses OrderedDict for LRU behavior
    - Limits max entries to prevent unbounded memory growth
    - Entries expire once their bucket has fully replenished
    """

    name = "memory"

    DEFAULT_MAX_ENTRIES = 10000

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the in-memory store.

        Args:
            max_entries: Maximum number of keys to hold (LRU eviction)
            clock: Source of "now" in seconds; must never go backwards
        """
        self._max_entries = max_entries
        self._clock = clock
        self._data: OrderedDict[str, _StoredTat] = OrderedDict()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._data)

    def _load(self, key: str, now: float) -> Optional[float]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.is_expired(now):
            del self._data[key]
            return None
        self._data.move_to_end(key)
        return entry.tat

    def _save(self, key: str, tat: float, now: float) -> None:
        reset_after = tat - now
        if reset_after <= 0:
            return
        self._data[key] = _StoredTat(tat=tat, expires_at=tat)
        self._data.move_to_end(key)
        self._enforce_lru_limit(now)

    def _enforce_lru_limit(self, now: float) -> None:
        """Evict keys beyond max_entries, expired ones first.

        Expired entries already behave as full buckets. Only when none are
        left is the least recently used live key dropped, which hands that
        key a full bucket early.
        """
        if len(self._data) <= self._max_entries:
            return
        self._purge_expired(now)
        while len(self._data) > self._max_entries:
            evicted, _ = self._data.popitem(last=False)
            logger.warning(f"In-memory rate limit store full, evicted live key {evicted}")

    def _purge_expired(self, now: float) -> int:
        expired = [key for key, entry in self._data.items() if entry.is_expired(now)]
        for key in expired:
            del self._data[key]
        return len(expired)

    async def allow_n(self, key: str, limit: Limit, n: int) -> Sequence[Any]:
        async with self._lock:
            now = self._clock()
            decision = gcra_allow_n(
                self._load(key, now), now, limit.burst, limit.rate, limit.period, n
            )
            if decision.new_tat is not None:
                self._save(key, decision.new_tat, now)
            return decision.as_reply()

    async def allow_at_most(self, key: str, limit: Limit, n: int) -> Sequence[Any]:
        async with self._lock:
            now = self._clock()
            decision = gcra_allow_at_most(
                self._load(key, now), now, limit.burst, limit.rate, limit.period, n
            )
            if decision.new_tat is not None:
                self._save(key, decision.new_tat, now)
            return decision.as_reply()

    async def reset(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def cleanup(self) -> int:
        """Remove expired entries.

        Returns:
            Number of entries removed.
        """
        async with self._lock:
            return self._purge_expired(self._clock())


def create_store(settings: Optional[Settings] = None) -> StoreBackend:
    """Create the store selected by ``rate_limit_backend``.

    There is no fallback from Redis to memory: a limiter that silently
    stopped sharing state would admit more than its limit.
    """
    settings = settings or default_settings
    if settings.rate_limit_backend == "memory":
        logger.info("Using in-memory rate limit store")
        return InMemoryStore(max_entries=settings.rate_limit_memory_max_keys)
    logger.info("Using Redis rate limit store")
    return RedisStore(
        redis_url=settings.redis_url,
        socket_timeout=settings.redis_socket_timeout,
        connect_timeout=settings.redis_connect_timeout,
    )
