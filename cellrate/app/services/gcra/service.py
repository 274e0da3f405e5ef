"""Rate limiter façade over a GCRA store.

Resolves which limit applies to a key, runs exactly one atomic decision in the
store and maps the raw reply into a Result. Store errors are logged and
re-raised untouched: a failed call is never reported as an allow or a deny.
"""

import asyncio
import math
import time
from typing import Any, Awaitable, Optional, Sequence

from cellrate.app.core.config import Settings
from cellrate.app.core.logging import get_log_context, get_logger
from cellrate.app.exceptions import MalformedResultError

from .backends import StoreBackend, create_store
from .config import LimiterConfig
from .models import Limit, Result

logger = get_logger(__name__)


def _to_number(value: Any) -> float:
    if isinstance(value, bytes):
        value = value.decode()
    number = float(value)
    if math.isnan(number):
        raise ValueError("NaN")
    return number


def parse_reply(reply: Any, limit: Limit) -> Result:
    """Map a store reply ``[allowed, remaining, retry_after, reset_after]`` to a Result.

    Raises:
        MalformedResultError: reply has the wrong arity or a non-numeric field
    """
    if not isinstance(reply, (list, tuple)) or len(reply) != 4:
        raise MalformedResultError(reply)
    try:
        allowed, remaining, retry_after, reset_after = (_to_number(v) for v in reply)
    except (TypeError, ValueError, UnicodeDecodeError) as e:
        raise MalformedResultError(reply) from e
    if allowed < 0 or remaining < 0 or reset_after < 0:
        raise MalformedResultError(reply)

    return Result(
        limit=limit,
        allowed=int(allowed),
        remaining=int(remaining),
        retry_after=retry_after,
        reset_after=reset_after,
    )


class Limiter:
    """Controls how frequently events for a key may happen.

    Every limiter pointing at the same store shares per-key state, so limits
    hold across processes and hosts.

    Example:
        >>> limiter = Limiter(RedisStore(redis_url="redis://localhost:6379/0"),
        ...                   LimiterConfig(default_limit=Limit.per_second(10)))
        >>> result = await limiter.allow("user:42")
        >>> if not result.allowed:
        ...     wait(result.retry_after)
    """

    def __init__(
        self,
        store: StoreBackend,
        config: Optional[LimiterConfig] = None,
    ) -> None:
        """Initialize the limiter.

        Args:
            store: Store executing decisions
            config: Default limit, per-key overrides, key prefix and deadline
        """
        self._store = store
        self._config = config or LimiterConfig()

    @property
    def config(self) -> LimiterConfig:
        return self._config

    @property
    def store(self) -> StoreBackend:
        return self._store

    async def allow(self, key: str, limit: Optional[Limit] = None) -> Result:
        """Shortcut for ``allow_n(key, 1, limit)``."""
        return await self.allow_n(key, 1, limit)

    async def allow_n(self, key: str, n: int, limit: Optional[Limit] = None) -> Result:
        """Report whether ``n`` events may happen now, admitting all or none.

        Args:
            key: Caller identity
            n: Events requested, at least 1
            limit: Limit to apply instead of the key's configured one

        Returns:
            Result with ``allowed`` either ``n`` or 0
        """
        _check_count(n)
        applied = self._config.resolve(key, limit)
        reply = await self._run(
            key, applied, "allow_n",
            self._store.allow_n(self._config.storage_key(key), applied, n),
        )
        return self._finish(key, applied, n, reply)

    async def allow_at_most(self, key: str, limit: Optional[Limit], n: int) -> Result:
        """Report how many of ``n`` events may happen now.

        Admits as many as fit, which may be fewer than ``n`` or none.

        Args:
            key: Caller identity
            limit: Limit to apply, or None for the key's configured one
            n: Most events wanted, at least 1
        """
        _check_count(n)
        applied = self._config.resolve(key, limit)
        reply = await self._run(
            key, applied, "allow_at_most",
            self._store.allow_at_most(self._config.storage_key(key), applied, n),
        )
        return self._finish(key, applied, n, reply)

    async def reset(self, key: str) -> None:
        """Forget all usage recorded for ``key``."""
        try:
            await self._with_deadline(self._store.reset(self._config.storage_key(key)))
        except Exception as e:
            logger.warning(
                f"Rate limit reset failed for {key}: {e!r}",
                extra=get_log_context(key=key, backend=self._store.name),
            )
            raise
        logger.debug(f"Rate limit reset for {key}", extra=get_log_context(key=key))

    async def close(self) -> None:
        await self._store.close()

    async def _with_deadline(self, call: Awaitable[Any]) -> Any:
        if self._config.timeout is None:
            return await call
        return await asyncio.wait_for(call, timeout=self._config.timeout)

    async def _run(
        self, key: str, limit: Limit, operation: str, call: Awaitable[Sequence[Any]]
    ) -> Sequence[Any]:
        started = time.perf_counter()
        try:
            return await self._with_deadline(call)
        except Exception as e:
            logger.warning(
                f"Rate limit {operation} failed for {key}: {e!r}",
                extra=get_log_context(
                    key=key,
                    limit=limit,
                    backend=self._store.name,
                    duration_ms=round((time.perf_counter() - started) * 1000, 3),
                ),
            )
            raise

    def _finish(self, key: str, limit: Limit, n: int, reply: Sequence[Any]) -> Result:
        result = parse_reply(reply, limit)
        context = get_log_context(
            key=key,
            limit=limit,
            backend=self._store.name,
            allowed=result.allowed,
            remaining=result.remaining,
            retry_after=result.retry_after,
            reset_after=result.reset_after,
        )
        if result.allowed == 0:
            logger.info(f"Rate limited {key}: 0/{n} admitted", extra=context)
        else:
            logger.debug(f"Admitted {result.allowed}/{n} for {key}", extra=context)
        return result


def _check_count(n: int) -> None:
    if isinstance(n, bool) or not isinstance(n, int) or n < 1:
        raise ValueError(f"event count must be a positive integer, got {n!r}")


_limiter: Optional[Limiter] = None


def get_limiter(settings: Optional[Settings] = None) -> Limiter:
    """Get the global limiter instance, built from settings on first use."""
    global _limiter
    if _limiter is None:
        _limiter = Limiter(
            store=create_store(settings),
            config=LimiterConfig.from_settings(settings),
        )
    return _limiter


def reset_limiter() -> None:
    """Reset the global limiter instance."""
    global _limiter
    _limiter = None
