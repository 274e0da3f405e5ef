"""Generic Cell Rate Algorithm decision functions.

Pure functions of (stored TAT, limit, requested quantity, now). The Redis
scripts in ``redis_lua`` run the same arithmetic server side; the in-memory
store calls these directly. Keep the two in step.

TAT (theoretical arrival time) is the instant at which the bucket would be
empty if no further events arrived. A key with no stored TAT behaves as a
full bucket.
"""

import math
from typing import Optional

from .models import NO_WAIT, Decision

# Slack, in cells, absorbed when converting time to whole events.
CELL_EPSILON = 0.001


def _whole_cells(seconds: float, emission_interval: float) -> int:
    return math.floor(seconds / emission_interval + CELL_EPSILON)


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def gcra_allow_n(
    tat: Optional[float],
    now: float,
    burst: int,
    rate: int,
    period: float,
    n: int,
) -> Decision:
    """Admit all ``n`` events or none of them.

    Args:
        tat: Stored TAT for the key, None when the key has no state
        now: Current time in seconds, same clock as ``tat``
        burst: Bucket capacity in events
        rate: Events per period
        period: Period length in seconds
        n: Events requested

    Returns:
        Decision; ``new_tat`` is None on denial since the stored state must
        stay as it was.
    """
    emission_interval = period / rate
    tolerance = emission_interval * burst

    base = now if tat is None else max(tat, now)
    new_tat = base + emission_interval * n
    allow_at = new_tat - tolerance
    diff = now - allow_at

    if diff / emission_interval < -CELL_EPSILON:
        remaining = _clamp(_whole_cells(tolerance - (base - now), emission_interval), 0, burst)
        return Decision(
            allowed=0,
            remaining=remaining,
            retry_after=-diff,
            reset_after=base - now,
        )

    remaining = _clamp(_whole_cells(diff, emission_interval), 0, burst)
    return Decision(
        allowed=n,
        remaining=remaining,
        retry_after=NO_WAIT,
        reset_after=max(0.0, new_tat - now),
        new_tat=new_tat,
    )


def gcra_allow_at_most(
    tat: Optional[float],
    now: float,
    burst: int,
    rate: int,
    period: float,
    n: int,
) -> Decision:
    """Admit as many of ``n`` events as currently fit, possibly none.

    The largest admissible count is
    ``floor((now + tolerance - max(tat, now)) / emission_interval)``
    clamped to ``[0, n]``. Admitting zero is a denial and leaves the
    stored state untouched.
    """
    emission_interval = period / rate
    tolerance = emission_interval * burst

    base = now if tat is None else max(tat, now)
    available = now + tolerance - base
    allowed = _clamp(_whole_cells(available, emission_interval), 0, n)

    if allowed < 1:
        return Decision(
            allowed=0,
            remaining=0,
            retry_after=max(0.0, emission_interval - available),
            reset_after=base - now,
        )

    new_tat = base + emission_interval * allowed
    remaining = _clamp(_whole_cells(now + tolerance - new_tat, emission_interval), 0, burst)
    return Decision(
        allowed=allowed,
        remaining=remaining,
        retry_after=NO_WAIT,
        reset_after=max(0.0, new_tat - now),
        new_tat=new_tat,
    )
