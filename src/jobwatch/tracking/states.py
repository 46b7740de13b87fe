"""Shared status vocabulary for tracked jobs.

Backends describe progress with many near-synonymous labels ("published",
"analyzed", "done", "completed"...). Everything is normalized to a small set
of states with a total order so that updates from different sources can be
merged by keeping the most advanced one.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from ..errors import UnknownStatusError


class JobKind(str, Enum):
    TRANSCRIPTION = "transcription"
    ANALYSIS = "analysis"
    VIDEO_GENERATION = "video_generation"


class JobState(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    TRANSCRIBING = "transcribing"  # transcription jobs only
    DONE = "done"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


_RANK: Dict[JobState, int] = {
    JobState.QUEUED: 0,
    JobState.PROCESSING: 1,
    JobState.TRANSCRIBING: 2,
    JobState.DONE: 3,
    JobState.FAILED: 3,
}

TERMINAL_STATES = frozenset({JobState.DONE, JobState.FAILED})

INITIAL_STATE = JobState.QUEUED

CANCELLED = "cancelled"

DEFAULT_ALIASES: Dict[str, JobState] = {
    # queued
    "queued": JobState.QUEUED,
    "draft": JobState.QUEUED,
    "pending": JobState.QUEUED,
    "uploading": JobState.QUEUED,
    "uploaded": JobState.QUEUED,
    "accepted": JobState.QUEUED,
    # processing
    "processing": JobState.PROCESSING,
    "analyzing": JobState.PROCESSING,
    "generating": JobState.PROCESSING,
    "running": JobState.PROCESSING,
    # transcribing
    "transcribing": JobState.TRANSCRIBING,
    # done
    "done": JobState.DONE,
    "published": JobState.DONE,
    "analyzed": JobState.DONE,
    "completed": JobState.DONE,
    "complete": JobState.DONE,
    "succeeded": JobState.DONE,
    "success": JobState.DONE,
    "transcribed": JobState.DONE,
    "completed_full": JobState.DONE,
    "completed_basic": JobState.DONE,
    "transcription_only": JobState.DONE,
    # failed
    "failed": JobState.FAILED,
    "error": JobState.FAILED,
    "failed_transcription": JobState.FAILED,
    "cancelled": JobState.FAILED,
    "canceled": JobState.FAILED,
}

STATUS_LABELS: Dict[str, str] = {
    JobState.QUEUED.value: "Waiting to start",
    JobState.PROCESSING.value: "Processing",
    JobState.TRANSCRIBING.value: "Transcribing",
    JobState.DONE.value: "Done",
    JobState.FAILED.value: "Failed",
    CANCELLED: "Tracking cancelled",
}


def coerce_kind(kind: Union[JobKind, str]) -> JobKind:
    """Return ``kind`` as a JobKind, raising ValueError for unknown kinds."""
    if isinstance(kind, JobKind):
        return kind
    return JobKind(str(kind).strip().lower())


def status_label(status: Union[JobState, str]) -> str:
    key = status.value if isinstance(status, JobState) else str(status)
    return STATUS_LABELS.get(key, key)


class StatusNormalizer:
    """Maps raw backend labels to JobState.

    ``extra`` entries override or extend the default table; values may be
    JobState members or their string values.
    """

    def __init__(self, extra: Optional[Mapping[str, Any]] = None) -> None:
        self._aliases: Dict[str, JobState] = dict(DEFAULT_ALIASES)
        for label, state in (extra or {}).items():
            self._aliases[str(label).strip().lower()] = JobState(state)

    def normalize(self, label: Any) -> JobState:
        if isinstance(label, JobState):
            return label
        key = str(label or "").strip().lower()
        state = self._aliases.get(key)
        if state is None:
            raise UnknownStatusError(label)
        return state

    def is_backend_cancellation(self, label: Any) -> bool:
        return str(label or "").strip().lower() in {"cancelled", "canceled"}


def normalize_state(label: Any) -> JobState:
    """Normalize ``label`` with the default alias table."""
    return _DEFAULT_NORMALIZER.normalize(label)


_DEFAULT_NORMALIZER = StatusNormalizer()
