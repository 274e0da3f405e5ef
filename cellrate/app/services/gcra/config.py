"""Limit selection: process-wide default and per-key overrides."""

import threading
from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping, Optional

from cellrate.app.core.config import Settings, settings as default_settings
from cellrate.app.exceptions import InvalidLimitError

from .models import Limit

DEFAULT_PREFIX = "rl:"


def default_limit() -> Limit:
    return Limit(rate=1, burst=1, period=1.0)


def _require_usable(limit: Limit, what: str) -> Limit:
    if not isinstance(limit, Limit):
        raise InvalidLimitError(f"{what} must be a Limit, got {type(limit).__name__}")
    if limit.is_zero():
        raise InvalidLimitError(f"{what} must not be the zero limit")
    return limit


def limit_from_spec(value: Any) -> Limit:
    """Build a Limit from a config value: Limit, ``"10/s"`` shorthand or mapping."""
    if isinstance(value, Limit):
        return value
    if isinstance(value, str):
        return Limit.parse(value)
    if isinstance(value, Mapping):
        return Limit.from_dict(dict(value))
    raise InvalidLimitError(f"Unsupported rate limit definition: {value!r}")


class LimitOverrides:
    """Per-key limits matched on the exact caller key.

    Reads and writes are guarded by a lock so a reconfiguring thread never
    exposes a half-applied update to readers.
    """

    def __init__(self, limits: Optional[Mapping[str, Limit]] = None) -> None:
        self._lock = threading.RLock()
        self._limits: dict[str, Limit] = {}
        if limits:
            self.replace(limits)

    def get(self, key: str) -> Optional[Limit]:
        with self._lock:
            return self._limits.get(key)

    def set(self, key: str, limit: Limit) -> None:
        _require_usable(limit, f"override for {key!r}")
        with self._lock:
            self._limits[key] = limit

    def remove(self, key: str) -> bool:
        """Drop the override for ``key``. Returns whether one existed."""
        with self._lock:
            return self._limits.pop(key, None) is not None

    def replace(self, limits: Mapping[str, Limit]) -> None:
        """Swap in a whole new override table at once."""
        validated = {
            str(key): _require_usable(limit, f"override for {key!r}")
            for key, limit in limits.items()
        }
        with self._lock:
            self._limits = validated

    def snapshot(self) -> dict[str, Limit]:
        with self._lock:
            return dict(self._limits)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._limits

    def __len__(self) -> int:
        with self._lock:
            return len(self._limits)

    def __iter__(self) -> Iterator[str]:
        return iter(self.snapshot())


@dataclass
class LimiterConfig:
    """Limit selection for a Limiter.

    Attributes:
        default_limit: Limit used when no override matches
        overrides: Per-key limits, exact key match
        prefix: Namespace prepended to every stored key
        timeout: Deadline in seconds for one decision, None for no deadline
    """
    default_limit: Limit = field(default_factory=default_limit)
    overrides: LimitOverrides = field(default_factory=LimitOverrides)
    prefix: str = DEFAULT_PREFIX
    timeout: Optional[float] = None

    def __post_init__(self) -> None:
        _require_usable(self.default_limit, "default_limit")
        if isinstance(self.overrides, Mapping):
            self.overrides = LimitOverrides(self.overrides)
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive when set")

    def resolve(self, key: str, limit: Optional[Limit] = None) -> Limit:
        """Pick the limit for a call.

        Explicit ``limit`` wins, then the override for ``key``, then the
        default. Limits are never merged.
        """
        if limit is not None:
            return _require_usable(limit, "limit")
        override = self.overrides.get(key)
        if override is not None:
            return override
        return self.default_limit

    def storage_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "LimiterConfig":
        settings = settings or default_settings
        overrides = {
            key: limit_from_spec(value)
            for key, value in settings.rate_limit_overrides.items()
        }
        return cls(
            default_limit=Limit(
                rate=settings.rate_limit_rate,
                burst=settings.rate_limit_burst,
                period=settings.rate_limit_period_seconds,
            ),
            overrides=LimitOverrides(overrides),
            prefix=settings.rate_limit_prefix,
            timeout=settings.rate_limit_timeout,
        )
