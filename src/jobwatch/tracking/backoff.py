"""Poll interval schedule.

The delay between two polls grows with the number of polls already made:

    attempts  0-4   ->  5s
    attempts  5-14  -> 10s
    attempts 15-29  -> 30s
    attempts 30+    -> 60s

After ``ceiling_attempts`` polls without a terminal state the poll worker gives
up and the job is reported as timed out.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence, Tuple

DEFAULT_TIERS: Tuple[Tuple[int, float], ...] = (
    (0, 5.0),
    (5, 10.0),
    (15, 30.0),
    (30, 60.0),
)
DEFAULT_CEILING_ATTEMPTS = 60


@dataclass(frozen=True)
class BackoffSchedule:
    """Tiered poll delays.

    ``tiers`` is a sequence of ``(first_attempt, delay_seconds)`` pairs sorted by
    first attempt; the first tier must start at 0 and delays may not decrease.
    """

    tiers: Tuple[Tuple[int, float], ...] = DEFAULT_TIERS
    ceiling_attempts: int = DEFAULT_CEILING_ATTEMPTS

    def __post_init__(self) -> None:
        tiers = tuple((int(start), float(delay)) for start, delay in self.tiers)
        if not tiers or tiers[0][0] != 0:
            raise ValueError("backoff tiers must start at attempt 0")
        for (prev_start, prev_delay), (start, delay) in zip(tiers, tiers[1:]):
            if start <= prev_start:
                raise ValueError("backoff tiers must be sorted by first attempt")
            if delay < prev_delay:
                raise ValueError("backoff delays must not decrease")
        if any(delay < 0 for _, delay in tiers):
            raise ValueError("backoff delays must be >= 0")
        if int(self.ceiling_attempts) < 1:
            raise ValueError("ceiling_attempts must be >= 1")
        object.__setattr__(self, "tiers", tiers)
        object.__setattr__(self, "ceiling_attempts", int(self.ceiling_attempts))

    @property
    def max_delay(self) -> float:
        return self.tiers[-1][1]

    def next_delay(self, attempt: int) -> float:
        """Seconds to wait after poll number ``attempt`` (0-based)."""
        if attempt < 0:
            raise ValueError("attempt must be >= 0")
        delay = self.tiers[0][1]
        for start, tier_delay in self.tiers:
            if attempt < start:
                break
            delay = tier_delay
        return delay

    def exhausted(self, attempts: int) -> bool:
        return attempts >= self.ceiling_attempts

    @classmethod
    def from_dict(cls, payload: Optional[Mapping[str, Any]]) -> "BackoffSchedule":
        payload = payload or {}
        tiers: Iterable[Sequence[Any]] = payload.get("tiers") or DEFAULT_TIERS
        return cls(
            tiers=tuple((int(t[0]), float(t[1])) for t in tiers),
            ceiling_attempts=int(payload.get("ceiling_attempts", DEFAULT_CEILING_ATTEMPTS)),
        )


DEFAULT_SCHEDULE = BackoffSchedule()


def next_delay(attempt: int) -> float:
    return DEFAULT_SCHEDULE.next_delay(attempt)


class AttemptCounter:
    """Per-job poll counter shared by a tracker and its poll worker."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    def reset(self) -> None:
        with self._lock:
            self._value = 0
