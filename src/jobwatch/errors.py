"""Exception hierarchy for jobwatch.

Backend transport problems, unknown jobs and misuse of a tracker each get their
own type so callers can decide what to absorb and what to surface.
"""

from __future__ import annotations

from typing import Any, Optional


class JobWatchError(Exception):
    """Base exception for all jobwatch errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class BackendUnavailableError(JobWatchError):
    """Raised when the backend cannot be reached or answers with a server error."""

    def __init__(
        self,
        message: str,
        job_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if job_id:
            details["job_id"] = job_id
        super().__init__(message, details)


class SubscriptionError(BackendUnavailableError):
    """Raised when a change subscription cannot be set up or breaks."""

    pass


class JobNotFoundError(JobWatchError):
    """Raised when the backend does not know the job id."""

    def __init__(self, job_id: str, details: Optional[dict[str, Any]] = None) -> None:
        details = details or {}
        details["job_id"] = job_id
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}", details)


class UnknownStatusError(JobWatchError):
    """Raised when a backend status label has no known state."""

    def __init__(self, label: Any) -> None:
        self.label = label
        super().__init__(f"Unknown job status: {label!r}", {"label": label})


class TrackerRetiredError(JobWatchError):
    """Raised when starting a tracker that already reached its end."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Tracker for job {job_id} is retired", {"job_id": job_id})


class TrackerStateError(JobWatchError):
    """Raised when an operation does not make sense in the tracker's current state."""

    pass
