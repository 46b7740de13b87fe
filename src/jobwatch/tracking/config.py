from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

from .backoff import BackoffSchedule


@dataclass(frozen=True)
class TrackingConfig:
    """Settings shared by every tracker in a registry."""

    schedule: BackoffSchedule = field(default_factory=BackoffSchedule)
    push_enabled: bool = True
    slow_attempt_threshold: int = 15
    finished_history: int = 100

    @classmethod
    def from_profile(cls, profile: Dict[str, Any]) -> "TrackingConfig":
        tracking = profile.get("tracking", {}) or {}
        return cls(
            schedule=BackoffSchedule.from_dict(tracking.get("backoff")),
            push_enabled=bool(tracking.get("push_enabled", True)),
            slow_attempt_threshold=int(tracking.get("slow_attempt_threshold", 15)),
            finished_history=max(0, int(tracking.get("finished_history", 100))),
        )
