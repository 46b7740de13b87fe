from __future__ import annotations

from typing import Any, Dict, Iterator, Protocol

from ..tracking.models import JobSnapshot
from ..tracking.states import JobKind


class Subscription(Protocol):
    """A live stream of change notifications for one job.

    Iterating blocks until the next snapshot arrives and ends when the stream is
    closed. Implementations raise ``SubscriptionError`` if the stream breaks.
    """

    def __iter__(self) -> Iterator[JobSnapshot]:
        ...

    def close(self) -> None:
        ...


class JobBackend(Protocol):
    name: str

    def fetch_job_snapshot(self, job_id: str) -> JobSnapshot:
        """Authoritative current snapshot.

        Raises ``BackendUnavailableError`` on transport failures and
        ``JobNotFoundError`` for unknown ids.
        """
        ...

    def subscribe_job_changes(self, job_id: str) -> Subscription:
        """Open a change subscription, raising ``SubscriptionError`` on failure."""
        ...

    def request_job_cancellation(self, job_id: str) -> None:
        ...

    def start_job(self, kind: JobKind, params: Dict[str, Any]) -> str:
        ...
