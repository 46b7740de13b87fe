from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from ..errors import TrackerStateError
from .config import TrackingConfig
from .models import JobRecord, JobSnapshot
from .states import JobKind, JobState, coerce_kind
from .tracker import JobTracker, validate_job_id

if TYPE_CHECKING:
    from ..backend.base import JobBackend

log = logging.getLogger(__name__)


class TrackerRegistry:
    """Owns every job tracked by this client, one tracker per job id.

    Finished trackers leave the live set but are remembered (up to
    ``config.finished_history``) so that a failed job can still be retried.
    """

    def __init__(self, backend: "JobBackend", config: Optional[TrackingConfig] = None) -> None:
        self.backend = backend
        self.config = config or TrackingConfig()
        self._live: Dict[str, JobTracker] = {}
        self._finished: "OrderedDict[str, JobTracker]" = OrderedDict()
        # Ids claimed by a retry that has not switched its tracker over yet.
        self._pending: Dict[str, JobTracker] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._live)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._live

    def track(
        self,
        job_id: str,
        kind: Union[JobKind, str],
        params: Optional[Dict[str, Any]] = None,
    ) -> JobTracker:
        """Start tracking ``job_id``, or return the tracker already doing so."""
        validate_job_id(job_id)
        kind = coerce_kind(kind)
        with self._lock:
            existing = self._live.get(job_id) or self._pending.get(job_id)
            if existing is not None:
                if existing.kind is not kind:
                    log.warning(
                        "Job %s already tracked as %s, ignoring kind %s",
                        job_id,
                        existing.kind.value,
                        kind.value,
                    )
                return existing
            tracker = JobTracker(job_id=job_id, kind=kind, backend=self.backend, config=self.config, params=params)
            tracker.add_retire_listener(self._on_retired)
            tracker.add_restart_listener(self._on_restarted)
            self._live[job_id] = tracker
            self._finished.pop(job_id, None)
        tracker.start()
        return tracker

    def get(self, job_id: str) -> Optional[JobTracker]:
        with self._lock:
            return self._live.get(job_id) or self._finished.get(job_id)

    def require(self, job_id: str) -> JobTracker:
        tracker = self.get(job_id)
        if tracker is None:
            raise KeyError(f"job_not_tracked: {job_id}")
        return tracker

    def cancel(self, job_id: str) -> bool:
        with self._lock:
            tracker = self._live.get(job_id)
        if tracker is None:
            return False
        return tracker.cancel()

    def cancel_all(self) -> int:
        with self._lock:
            trackers = list(self._live.values())
        return sum(1 for tracker in trackers if tracker.cancel())

    def retry(self, job_id: str, new_job_id: Optional[str] = None) -> JobTracker:
        """Restart ``job_id``'s tracker against a replacement backend job.

        The new id is claimed before the tracker switches over, so a concurrent
        ``track`` of that id gets this tracker. Raises ``TrackerStateError`` if
        the id belongs to another tracker or the job already completed.
        """
        tracker = self.require(job_id)
        if tracker.record.state is JobState.DONE:
            raise TrackerStateError(f"Job {tracker.job_id} already completed", {"job_id": tracker.job_id})
        if new_job_id is None:
            new_job_id = self.backend.start_job(tracker.kind, tracker.params)
        new_job_id = validate_job_id(new_job_id)

        with self._lock:
            other = self._live.get(new_job_id) or self._pending.get(new_job_id)
            if other is not None and other is not tracker:
                raise TrackerStateError(f"Job {new_job_id} is already tracked", {"job_id": new_job_id})
            self._pending[new_job_id] = tracker
        try:
            tracker.retry(new_job_id)
        finally:
            with self._lock:
                if self._pending.get(new_job_id) is tracker:
                    del self._pending[new_job_id]
        return tracker

    def refresh_now(self, job_id: str) -> Optional[JobSnapshot]:
        return self.require(job_id).refresh_now()

    def request_backend_cancellation(self, job_id: str) -> None:
        """Ask the backend to stop the job (video generation "Cancel" action).

        Local tracking continues: the backend's cancelled status arrives like
        any other update and ends the job.
        """
        validate_job_id(job_id)
        log.info("Requesting backend cancellation of job %s", job_id)
        self.backend.request_job_cancellation(job_id)

    def list(self, include_finished: bool = False) -> List[JobRecord]:
        with self._lock:
            trackers = list(self._live.values())
            if include_finished:
                trackers += [t for t in self._finished.values() if t not in trackers]
        records = [tracker.record for tracker in trackers]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records

    def _on_retired(self, tracker: JobTracker) -> None:
        with self._lock:
            # Retried before this notification ran: it is live again under a new id.
            if not tracker.retired:
                return
            job_id = tracker.job_id
            if self._live.get(job_id) is tracker:
                del self._live[job_id]
            if self.config.finished_history <= 0:
                return
            self._finished[job_id] = tracker
            self._finished.move_to_end(job_id)
            while len(self._finished) > self.config.finished_history:
                self._finished.popitem(last=False)

    def _on_restarted(self, tracker: JobTracker, old_id: str, new_id: str) -> None:
        with self._lock:
            if self._live.get(old_id) is tracker:
                del self._live[old_id]
            if self._finished.get(old_id) is tracker:
                del self._finished[old_id]
            owner = self._live.get(new_id)
            conflict = owner is not None and owner is not tracker
            if not conflict:
                self._live[new_id] = tracker
        if conflict:
            # JobTracker.retry called directly with an id another tracker owns.
            log.warning("Job %s is already tracked, stopping the retried tracker", new_id)
            tracker.cancel()
