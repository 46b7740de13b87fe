from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Callable, Optional

from ..errors import BackendUnavailableError, JobNotFoundError, UnknownStatusError
from .backoff import AttemptCounter, BackoffSchedule
from .models import ErrorDetail, JobSnapshot
from .states import JobState

if TYPE_CHECKING:
    from ..backend.base import JobBackend

log = logging.getLogger(__name__)


class PollWorker:
    """Fetches the authoritative job snapshot on a backoff schedule.

    The loop is: fetch, emit, count the attempt, sleep for
    ``schedule.next_delay(attempt)``, repeat. It ends when ``stop()`` is called
    or after ``schedule.ceiling_attempts`` polls, in which case
    ``on_exhausted`` receives a synthetic timeout snapshot.
    """

    def __init__(
        self,
        *,
        job_id: str,
        backend: "JobBackend",
        on_snapshot: Callable[[JobSnapshot], None],
        on_exhausted: Optional[Callable[[JobSnapshot], None]] = None,
        schedule: Optional[BackoffSchedule] = None,
        counter: Optional[AttemptCounter] = None,
    ) -> None:
        self.job_id = job_id
        self.backend = backend
        self.on_snapshot = on_snapshot
        self.on_exhausted = on_exhausted
        self.schedule = schedule or BackoffSchedule()
        self.counter = counter or AttemptCounter()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop.is_set()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_loop, name=f"jw-poll-{self.job_id}", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: Optional[float] = None) -> None:
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    def run_loop(self) -> None:
        while not self._stop.is_set():
            snapshot = self._fetch()
            if self._stop.is_set():
                break
            if snapshot is not None:
                self.on_snapshot(snapshot)
            if snapshot is not None and snapshot.state.is_terminal:
                break
            attempts = self.counter.increment()
            if self.schedule.exhausted(attempts):
                log.warning("Job %s still not finished after %d polls, giving up", self.job_id, attempts)
                self._stop.set()
                if self.on_exhausted is not None:
                    self.on_exhausted(
                        JobSnapshot(state=JobState.FAILED, raw_status="timeout", error=ErrorDetail.timeout(attempts))
                    )
                break
            if self._stop.wait(self.schedule.next_delay(attempts - 1)):
                break

    def refresh_now(self) -> Optional[JobSnapshot]:
        """Fetch once, out of band, on the calling thread.

        The scheduled loop and its attempt counter are left alone. Returns the
        emitted snapshot, or None if the backend could not be reached.
        """
        snapshot = self._fetch()
        if snapshot is not None:
            self.on_snapshot(snapshot)
        return snapshot

    def _fetch(self) -> Optional[JobSnapshot]:
        try:
            return self.backend.fetch_job_snapshot(self.job_id)
        except JobNotFoundError:
            return JobSnapshot(
                state=JobState.FAILED,
                raw_status="not_found",
                error=ErrorDetail.not_found(self.job_id),
            )
        except BackendUnavailableError as exc:
            log.info("Poll for %s skipped, backend unavailable: %s", self.job_id, exc)
        except UnknownStatusError as exc:
            log.warning("Poll for %s ignored: %s", self.job_id, exc)
        return None
