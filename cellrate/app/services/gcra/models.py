"""Data models for GCRA rate limiting."""

import math
import re
from dataclasses import dataclass, field
from typing import Optional

from cellrate.app.core.config import MIN_PERIOD_SECONDS
from cellrate.app.exceptions import InvalidLimitError

# retry_after value meaning "not throttled"
NO_WAIT = -1.0

_PERIOD_UNITS = {
    "s": 1.0,
    "sec": 1.0,
    "second": 1.0,
    "m": 60.0,
    "min": 60.0,
    "minute": 60.0,
    "h": 3600.0,
    "hour": 3600.0,
    "d": 86400.0,
    "day": 86400.0,
}

_SHORTHAND_RE = re.compile(r"^\s*(\d+)\s*/\s*([a-z]+)\s*(?::\s*(\d+))?\s*$")


@dataclass(frozen=True)
class Limit:
    """Admission rate for a key.

    Attributes:
        rate: Maximum sustained events per period
        burst: Maximum events admissible at once from a full bucket
        period: Seconds over which rate applies

    All three must be positive. ``Limit()`` (all zero) is the "unset" value.
    """
    rate: int = 0
    burst: int = 0
    period: float = 0.0

    def __post_init__(self) -> None:
        for name in ("rate", "burst"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidLimitError(f"{name} must be an integer, got {value!r}")
        if isinstance(self.period, bool) or not isinstance(self.period, (int, float)):
            raise InvalidLimitError(f"period must be a number, got {self.period!r}")
        if self.is_zero():
            return
        if self.rate < 1:
            raise InvalidLimitError(f"rate must be at least 1, got {self.rate}")
        if self.burst < 1:
            raise InvalidLimitError(f"burst must be at least 1, got {self.burst}")
        if not math.isfinite(self.period) or self.period < MIN_PERIOD_SECONDS:
            raise InvalidLimitError(
                f"period must be finite and at least {MIN_PERIOD_SECONDS}s, got {self.period}"
            )

    def is_zero(self) -> bool:
        return self.rate == 0 and self.burst == 0 and self.period == 0

    @property
    def emission_interval(self) -> float:
        """Seconds charged per admitted event."""
        return self.period / self.rate

    def __str__(self) -> str:
        return f"{self.rate} req/{_format_period(self.period)} (burst {self.burst})"

    @classmethod
    def per_second(cls, rate: int) -> "Limit":
        return cls(rate=rate, burst=rate, period=1.0)

    @classmethod
    def per_minute(cls, rate: int) -> "Limit":
        return cls(rate=rate, burst=rate, period=60.0)

    @classmethod
    def per_hour(cls, rate: int) -> "Limit":
        return cls(rate=rate, burst=rate, period=3600.0)

    @classmethod
    def per_day(cls, rate: int) -> "Limit":
        return cls(rate=rate, burst=rate, period=86400.0)

    @classmethod
    def parse(cls, value: str) -> "Limit":
        """Parse shorthand such as ``"10/s"`` or ``"100/m:20"`` (rate/unit:burst).

        Burst defaults to the rate.
        """
        match = _SHORTHAND_RE.match(value.lower())
        if match is None:
            raise InvalidLimitError(f"Cannot parse rate limit {value!r}")
        rate = int(match.group(1))
        unit = match.group(2)
        if unit not in _PERIOD_UNITS:
            raise InvalidLimitError(f"Unknown period unit {unit!r} in {value!r}")
        burst = int(match.group(3)) if match.group(3) else rate
        return cls(rate=rate, burst=burst, period=_PERIOD_UNITS[unit])

    @classmethod
    def from_dict(cls, data: dict) -> "Limit":
        """Create from a mapping with ``rate``, ``burst`` and ``period`` (seconds).

        Burst defaults to the rate and period to one second.
        """
        try:
            rate = _whole_number(data["rate"])
            burst = _whole_number(data.get("burst", rate))
            period = float(data.get("period", 1.0))
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidLimitError(f"Invalid rate limit definition {data!r}: {e}") from e
        return cls(rate=rate, burst=burst, period=period)

    def to_dict(self) -> dict:
        return {"rate": self.rate, "burst": self.burst, "period": self.period}


def _whole_number(value: object) -> int:
    """Accept ints, integral floats and digit strings; reject anything that would truncate."""
    if isinstance(value, bool):
        raise TypeError(f"expected an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"expected an integer, got {value!r}")
        return int(value)
    if isinstance(value, str):
        return int(value.strip())
    raise TypeError(f"expected an integer, got {value!r}")


def _format_period(period: float) -> str:
    if period == 1.0:
        return "s"
    if period == 60.0:
        return "m"
    if period == 3600.0:
        return "h"
    return f"{period:g}s"


@dataclass
class Decision:
    """Outcome of one GCRA evaluation against a key's stored state.

    Attributes:
        allowed: Events admitted
        remaining: Events that could still be admitted right now
        retry_after: Seconds until one more event fits, or NO_WAIT
        reset_after: Seconds until the bucket is full again
        new_tat: TAT to store, or None when the stored state must not change
    """
    allowed: int
    remaining: int
    retry_after: float
    reset_after: float
    new_tat: Optional[float] = field(default=None)

    def as_reply(self) -> list:
        """Encode the way the Redis scripts reply: ``[allowed, remaining, retry_after, reset_after]``."""
        return [
            self.allowed,
            self.remaining,
            repr(float(self.retry_after)),
            repr(float(self.reset_after)),
        ]


@dataclass(frozen=True)
class Result:
    """Result of a rate limit call.

    Attributes:
        limit: The limit that was used to obtain this result
        allowed: Number of events admitted at this moment
        remaining: Maximum number of events that could be admitted
            instantaneously for this key after this decision. With 10/s and
            six events already admitted this second, remaining is 4.
        retry_after: Seconds until the next event will be admitted. NO_WAIT (-1)
            unless the limit has been exceeded.
        reset_after: Seconds until the key returns to its initial state, i.e.
            until remaining equals burst again. With 1/s and one event 200ms
            ago this is 0.8.
    """
    limit: Limit
    allowed: int
    remaining: int
    retry_after: float
    reset_after: float

    @property
    def limited(self) -> bool:
        """True when the caller has to wait before the next event fits."""
        return self.retry_after != NO_WAIT

    def to_dict(self) -> dict:
        return {
            "limit": self.limit.to_dict(),
            "allowed": self.allowed,
            "remaining": self.remaining,
            "retry_after": self.retry_after,
            "reset_after": self.reset_after,
        }
