"""Push side of job tracking.

A PushChannel consumes the backend's change subscription for one job on a
background thread. If the subscription cannot be set up, is not acknowledged,
or breaks later, the channel reports the failure once and goes quiet. It never
reconnects: the poll worker keeps running next to it and covers the gap.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Callable, Optional

from ..errors import BackendUnavailableError, SubscriptionError
from .models import JobSnapshot

if TYPE_CHECKING:
    from ..backend.base import JobBackend, Subscription

log = logging.getLogger(__name__)

SnapshotCallback = Callable[[JobSnapshot], None]
ChannelErrorCallback = Callable[[Exception], None]


class PushChannel:
    def __init__(
        self,
        *,
        job_id: str,
        backend: "JobBackend",
        on_snapshot: SnapshotCallback,
        on_channel_error: Optional[ChannelErrorCallback] = None,
    ) -> None:
        self.job_id = job_id
        self.backend = backend
        self.on_snapshot = on_snapshot
        self.on_channel_error = on_channel_error
        self._lock = threading.Lock()
        self._closed = False
        self._error_reported = False
        self._subscription: Optional["Subscription"] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def failed(self) -> bool:
        return self._error_reported

    def open(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name=f"jw-push-{self.job_id}", daemon=True)
        self._thread.start()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            subscription = self._subscription
            self._subscription = None
        if subscription is not None:
            subscription.close()

    def join(self, timeout: Optional[float] = None) -> None:
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    def _run(self) -> None:
        try:
            subscription = self.backend.subscribe_job_changes(self.job_id)
        except BackendUnavailableError as exc:
            self._report(exc)
            return
        except Exception as exc:
            log.exception("Push subscription for %s failed unexpectedly", self.job_id)
            self._report(exc)
            return

        with self._lock:
            if self._closed:
                subscription.close()
                return
            self._subscription = subscription
        log.debug("Push channel subscribed for %s", self.job_id)

        error: Exception
        try:
            for snapshot in subscription:
                if self._closed:
                    return
                self.on_snapshot(snapshot)
            error = SubscriptionError("stream_ended", job_id=self.job_id)
        except BackendUnavailableError as exc:
            error = exc
        except Exception as exc:
            # Closing the stream from another thread can break the read with any error.
            if not self._closed:
                log.exception("Push channel for %s failed unexpectedly", self.job_id)
            error = exc
        finally:
            subscription.close()
        self._report(error)

    def _report(self, exc: Exception) -> None:
        if self._closed:
            return
        with self._lock:
            if self._error_reported:
                return
            self._error_reported = True
        log.warning("Push channel unavailable for %s, relying on polling: %s", self.job_id, exc)
        if self.on_channel_error is not None:
            self.on_channel_error(exc)
