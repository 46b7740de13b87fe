from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional

from ..utils import utc_iso as _utc_iso
from .states import CANCELLED, INITIAL_STATE, JobKind, JobState, status_label


class ErrorKind(str, Enum):
    BACKEND_UNAVAILABLE = "backend_unavailable"
    JOB_REPORTED_FAILURE = "job_reported_failure"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class ErrorDetail:
    kind: ErrorKind
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message}

    @classmethod
    def reported(cls, message: Optional[str] = None) -> "ErrorDetail":
        return cls(ErrorKind.JOB_REPORTED_FAILURE, message or "The job failed on the server.")

    @classmethod
    def timeout(cls, attempts: int) -> "ErrorDetail":
        return cls(
            ErrorKind.TIMEOUT,
            f"The job is taking unusually long (no result after {attempts} status checks). "
            "You can keep waiting by retrying later.",
        )

    @classmethod
    def not_found(cls, job_id: str) -> "ErrorDetail":
        return cls(ErrorKind.NOT_FOUND, f"The server does not know job {job_id}.")


@dataclass(frozen=True)
class JobSnapshot:
    """One observation of a job, from either the push channel or a poll."""

    state: JobState
    raw_status: str = ""
    error: Optional[ErrorDetail] = None
    result: Any = None
    observed_at: str = field(default_factory=_utc_iso)


@dataclass
class JobRecord:
    id: str
    kind: JobKind
    state: JobState = INITIAL_STATE
    attempt: int = 0
    raw_status: str = ""
    created_at: str = field(default_factory=_utc_iso)
    last_observed_at: Optional[str] = None
    error: Optional[ErrorDetail] = None
    result: Any = None

    def apply(self, snapshot: JobSnapshot) -> bool:
        """Merge ``snapshot`` into the record.

        Returns True when the snapshot advanced the state. Snapshots that do not
        rank above the current state are discarded; they only refresh
        ``last_observed_at``.
        """
        self.last_observed_at = snapshot.observed_at
        if snapshot.state.rank <= self.state.rank:
            return False
        self.state = snapshot.state
        self.raw_status = snapshot.raw_status or snapshot.state.value
        if snapshot.state is JobState.DONE:
            self.result = snapshot.result
            self.error = None
        elif snapshot.state is JobState.FAILED:
            self.error = snapshot.error or ErrorDetail.reported()
            self.result = None
        else:
            self.result = None
            self.error = None
        return True

    def copy(self) -> "JobRecord":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "state": self.state.value,
            "label": status_label(self.state),
            "attempt": self.attempt,
            "raw_status": self.raw_status,
            "created_at": self.created_at,
            "last_observed_at": self.last_observed_at,
            "error": self.error.to_dict() if self.error else None,
            "result": self.result,
        }


@dataclass(frozen=True)
class JobUpdate:
    """A published notification about one job.

    ``cancelled`` marks the one-shot notification sent when tracking is
    cancelled locally; ``state`` then holds the last state that was observed.
    """

    job_id: str
    kind: JobKind
    state: JobState
    attempt: int
    result: Any = None
    error: Optional[ErrorDetail] = None
    cancelled: bool = False
    slow: bool = False
    observed_at: str = field(default_factory=_utc_iso)

    @property
    def status(self) -> str:
        return CANCELLED if self.cancelled else self.state.value

    @property
    def is_final(self) -> bool:
        return self.cancelled or self.state.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "kind": self.kind.value,
            "status": self.status,
            "label": status_label(self.status),
            "state": self.state.value,
            "attempt": self.attempt,
            "result": self.result,
            "error": self.error.to_dict() if self.error else None,
            "cancelled": self.cancelled,
            "slow": self.slow,
            "final": self.is_final,
            "observed_at": self.observed_at,
        }
