"""Tracking of a single backend job.

A JobTracker runs two sources side by side for the whole life of the job: a
PushChannel fed by the backend's change subscription and a PollWorker that
fetches the job on a backoff schedule. Both deliver snapshots to one
reconciliation point, serialized by the tracker lock:

- snapshots that do not move the job forward are discarded, so the published
  states never go backwards whichever source wins a race;
- the first terminal snapshot retires the tracker: both sources are told to
  stop, then the terminal update is published exactly once;
- anything arriving after retirement (or from a previous retry generation) is
  dropped.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple, Union

from ..errors import TrackerRetiredError, TrackerStateError
from ..utils import utc_iso as _utc_iso
from .backoff import AttemptCounter
from .config import TrackingConfig
from .models import JobRecord, JobSnapshot, JobUpdate
from .poll import PollWorker
from .push import PushChannel
from .states import JobKind, JobState, coerce_kind

if TYPE_CHECKING:
    from ..backend.base import JobBackend

log = logging.getLogger(__name__)

UpdateCallback = Callable[[JobUpdate], None]
RetireCallback = Callable[["JobTracker"], None]
RestartCallback = Callable[["JobTracker", str, str], None]

SOURCE_JOIN_TIMEOUT_S = 2.0


def validate_job_id(job_id: Any) -> str:
    if not isinstance(job_id, str):
        raise TypeError(f"job id must be a string, got {type(job_id).__name__}")
    if not job_id.strip():
        raise ValueError("job id must not be empty")
    return job_id


class JobTracker:
    def __init__(
        self,
        *,
        job_id: str,
        kind: Union[JobKind, str],
        backend: "JobBackend",
        config: Optional[TrackingConfig] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.kind = coerce_kind(kind)
        self.backend = backend
        self.config = config or TrackingConfig()
        self.params: Dict[str, Any] = dict(params or {})

        self._lock = threading.RLock()
        self._record = JobRecord(id=validate_job_id(job_id), kind=self.kind)
        self._counter = AttemptCounter()
        self._generation = 0
        self._started = False
        self._retired = False
        self._finished = threading.Event()
        self._last_update: Optional[JobUpdate] = None
        self._push: Optional[PushChannel] = None
        self._poll: Optional[PollWorker] = None
        self._subscribers: List[UpdateCallback] = []
        self._retire_listeners: List[RetireCallback] = []
        self._restart_listeners: List[RestartCallback] = []

    def __repr__(self) -> str:
        return f"JobTracker(job_id={self.job_id!r}, kind={self.kind.value!r}, state={self._record.state.value!r})"

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def job_id(self) -> str:
        return self._record.id

    @property
    def retired(self) -> bool:
        return self._retired

    @property
    def push_channel(self) -> Optional[PushChannel]:
        return self._push

    @property
    def poll_worker(self) -> Optional[PollWorker]:
        return self._poll

    @property
    def record(self) -> JobRecord:
        with self._lock:
            record = self._record.copy()
            if not self._retired:
                record.attempt = self._counter.value
            return record

    @property
    def last_update(self) -> Optional[JobUpdate]:
        return self._last_update

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the job is finished or tracking is cancelled."""
        return self._finished.wait(timeout)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, callback: UpdateCallback, *, replay: bool = True) -> Callable[[], None]:
        """Register ``callback`` for every published update.

        With ``replay`` the latest update, if any, is delivered immediately so
        late subscribers see the current state. Returns an unsubscribe function.
        """
        with self._lock:
            self._subscribers.append(callback)
            last = self._last_update
            if replay and last is not None:
                self._deliver(callback, last)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def subscribe_queue(self, maxsize: int = 1000) -> Tuple["queue.Queue[JobUpdate]", Callable[[], None]]:
        events: "queue.Queue[JobUpdate]" = queue.Queue(maxsize=maxsize)

        def put(update: JobUpdate) -> None:
            try:
                events.put_nowait(update)
            except queue.Full:
                # Drop if the consumer is slow; the next update carries the full state.
                pass

        return events, self.subscribe(put)

    def add_retire_listener(self, callback: RetireCallback) -> None:
        with self._lock:
            self._retire_listeners.append(callback)

    def add_restart_listener(self, callback: RestartCallback) -> None:
        with self._lock:
            self._restart_listeners.append(callback)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> "JobTracker":
        with self._lock:
            if self._retired:
                raise TrackerRetiredError(self.job_id)
            if self._started:
                return self
            self._started = True
            log.info("Tracking %s job %s", self.kind.value, self.job_id)
            self._publish(self._make_update())
            self._open_sources()
        return self

    def cancel(self) -> bool:
        """Stop tracking locally. The backend job itself keeps running.

        Publishes a one-shot cancelled update. Returns False if the tracker
        was already retired.
        """
        with self._lock:
            if self._retired:
                return False
            self._retire_sources()
            log.info("Tracking of job %s cancelled", self.job_id)
            self._publish(self._make_update(cancelled=True))
            self._finished.set()
            listeners = list(self._retire_listeners)
        self._notify_retired(listeners)
        self._join_sources()
        return True

    def refresh_now(self) -> Optional[JobSnapshot]:
        """Fetch the job right away without touching the poll schedule."""
        with self._lock:
            poll = self._poll
            if self._retired or poll is None:
                return None
        return poll.refresh_now()

    def retry(self, new_job_id: Optional[str] = None) -> str:
        """Restart tracking from Queued against a new backend job.

        ``new_job_id`` is used when the caller already started the replacement
        job; otherwise one is started through the backend with the tracker's
        params. Returns the new job id.
        """
        with self._lock:
            if self._record.state is JobState.DONE:
                raise TrackerStateError(f"Job {self.job_id} already completed", {"job_id": self.job_id})

        if new_job_id is None:
            new_job_id = self.backend.start_job(self.kind, self.params)
        new_job_id = validate_job_id(new_job_id)

        with self._lock:
            if self._record.state is JobState.DONE:
                raise TrackerStateError(f"Job {self.job_id} already completed", {"job_id": self.job_id})
            old_id = self._record.id
            old_push, old_poll = self._push, self._poll
            if not self._retired:
                self._retire_sources()
            self._generation += 1
            self._counter = AttemptCounter()
            self._record = JobRecord(id=new_job_id, kind=self.kind)
            self._retired = False
            self._started = True
            self._finished.clear()
            log.info("Retrying %s job %s as %s", self.kind.value, old_id, new_job_id)
            self._publish(self._make_update())
            self._open_sources()
            listeners = list(self._restart_listeners)

        for callback in listeners:
            callback(self, old_id, new_job_id)
        for source in (old_push, old_poll):
            if source is not None:
                source.join(timeout=SOURCE_JOIN_TIMEOUT_S)
        return new_job_id

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _open_sources(self) -> None:
        generation = self._generation
        job_id = self._record.id

        def from_poll(snapshot: JobSnapshot) -> None:
            self._on_snapshot(snapshot, source="poll", generation=generation)

        def from_push(snapshot: JobSnapshot) -> None:
            self._on_snapshot(snapshot, source="push", generation=generation)

        def from_timeout(snapshot: JobSnapshot) -> None:
            self._on_snapshot(snapshot, source="timeout", generation=generation)

        self._poll = PollWorker(
            job_id=job_id,
            backend=self.backend,
            on_snapshot=from_poll,
            on_exhausted=from_timeout,
            schedule=self.config.schedule,
            counter=self._counter,
        )
        self._push = None
        if self.config.push_enabled:
            self._push = PushChannel(
                job_id=job_id,
                backend=self.backend,
                on_snapshot=from_push,
                on_channel_error=self._on_channel_error,
            )
            self._push.open()
        self._poll.start()

    def _retire_sources(self) -> None:
        # The retired flag goes up first so that in-flight snapshots are dropped.
        self._retired = True
        if self._push is not None:
            self._push.close()
        if self._poll is not None:
            self._poll.stop()

    def _join_sources(self) -> None:
        for source in (self._push, self._poll):
            if source is not None:
                source.join(timeout=SOURCE_JOIN_TIMEOUT_S)

    def _on_snapshot(self, snapshot: JobSnapshot, *, source: str, generation: int) -> None:
        with self._lock:
            if self._retired or generation != self._generation:
                log.debug("Dropping %s snapshot for retired tracker %s", source, self.job_id)
                return
            if not self._record.apply(snapshot):
                log.debug(
                    "Discarding %s snapshot %s for %s (current %s)",
                    source,
                    snapshot.state.value,
                    self.job_id,
                    self._record.state.value,
                )
                return
            if source == "push":
                self._counter.reset()
            self._record.attempt = self._counter.value

            terminal = snapshot.state.is_terminal
            update = self._make_update()
            if terminal:
                self._retire_sources()
                if snapshot.state is JobState.FAILED and self._record.error is not None:
                    log.warning(
                        "Job %s failed (%s): %s",
                        self.job_id,
                        self._record.error.kind.value,
                        self._record.error.message,
                    )
                else:
                    log.info("Job %s finished via %s", self.job_id, source)
            self._publish(update)
            if not terminal:
                return
            self._finished.set()
            listeners = list(self._retire_listeners)
        self._notify_retired(listeners)

    def _on_channel_error(self, exc: Exception) -> None:
        log.debug("Job %s continues on polling only: %s", self.job_id, exc)

    def _make_update(self, *, cancelled: bool = False) -> JobUpdate:
        record = self._record
        attempt = self._counter.value
        record.attempt = attempt
        return JobUpdate(
            job_id=record.id,
            kind=record.kind,
            state=record.state,
            attempt=attempt,
            result=record.result,
            error=record.error,
            cancelled=cancelled,
            slow=not record.state.is_terminal and attempt >= self.config.slow_attempt_threshold,
            observed_at=record.last_observed_at or _utc_iso(),
        )

    def _publish(self, update: JobUpdate) -> None:
        self._last_update = update
        for callback in list(self._subscribers):
            self._deliver(callback, update)

    def _deliver(self, callback: UpdateCallback, update: JobUpdate) -> None:
        try:
            callback(update)
        except Exception:
            log.exception("Update subscriber for job %s failed", update.job_id)

    def _notify_retired(self, listeners: List[RetireCallback]) -> None:
        for callback in listeners:
            callback(self)
