"""Tests for the tracker registry."""

from __future__ import annotations

import threading

import pytest

from fakes import FakeBackend, Recorder, fast_config, wait_until
from jobwatch.errors import JobNotFoundError, TrackerStateError
from jobwatch.tracking.registry import TrackerRegistry
from jobwatch.tracking.states import JobKind, JobState


@pytest.fixture
def registry(backend: FakeBackend):
    reg = TrackerRegistry(backend, config=fast_config(delay=0.005))
    yield reg
    reg.cancel_all()


def test_track_is_idempotent(backend, registry):
    """Tracking a job twice returns the same tracker."""
    backend.set_state("v1", JobState.PROCESSING)
    first = registry.track("v1", JobKind.VIDEO_GENERATION)
    second = registry.track("v1", "video_generation")
    mismatched = registry.track("v1", JobKind.ANALYSIS)

    assert first is second is mismatched
    assert len(registry) == 1
    backend.subscription("v1")
    assert len(backend.subscriptions["v1"]) == 1


def test_concurrent_track_returns_one_tracker(backend, registry):
    """Concurrent track calls share one tracker and subscription."""
    backend.set_state("v1", JobState.PROCESSING)
    results = []
    barrier = threading.Barrier(8)

    def track():
        barrier.wait()
        results.append(registry.track("v1", JobKind.TRANSCRIPTION))

    threads = [threading.Thread(target=track) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len({id(t) for t in results}) == 1
    backend.subscription("v1")
    assert len(backend.subscriptions["v1"]) == 1


def test_jobs_are_independent(backend, registry):
    """One job finishing does not affect another."""
    backend.set_state("a", JobState.DONE)
    backend.set_state("b", JobState.PROCESSING)
    a = registry.track("a", JobKind.ANALYSIS)
    b = registry.track("b", JobKind.ANALYSIS)

    assert a.wait(timeout=5.0)
    assert not b.retired
    assert wait_until(lambda: "a" not in registry)
    assert "b" in registry
    assert registry.get("a") is a


def test_finished_jobs_leave_live_set(backend, registry):
    """Finished jobs are listed only on request."""
    backend.set_state("a", JobState.DONE)
    backend.set_state("b", JobState.QUEUED)
    a = registry.track("a", JobKind.ANALYSIS)
    registry.track("b", JobKind.ANALYSIS)
    assert a.wait(timeout=5.0)
    assert wait_until(lambda: len(registry) == 1)

    assert [r.id for r in registry.list()] == ["b"]
    assert {r.id for r in registry.list(include_finished=True)} == {"a", "b"}


def test_finished_history_is_bounded(backend):
    """The oldest finished trackers are forgotten first."""
    registry = TrackerRegistry(backend, config=fast_config(finished_history=2))
    for job_id in ("a", "b", "c"):
        backend.set_state(job_id, JobState.DONE)
        assert registry.track(job_id, JobKind.ANALYSIS).wait(timeout=5.0)
        assert wait_until(lambda: job_id not in registry)

    assert registry.get("a") is None
    assert registry.get("b") is not None
    assert registry.get("c") is not None


def test_tracking_again_after_finish_starts_fresh(backend, registry):
    """Tracking a finished id creates a new tracker."""
    backend.set_state("a", JobState.FAILED)
    first = registry.track("a", JobKind.ANALYSIS)
    assert first.wait(timeout=5.0)
    assert wait_until(lambda: "a" not in registry)

    backend.set_state("a", JobState.PROCESSING)
    second = registry.track("a", JobKind.ANALYSIS)
    assert second is not first
    assert registry.get("a") is second


def test_cancel_and_cancel_all(backend, registry):
    """Cancel reports whether a live tracker was stopped."""
    for job_id in ("a", "b", "c"):
        backend.set_state(job_id, JobState.PROCESSING)
        registry.track(job_id, JobKind.TRANSCRIPTION)

    assert registry.cancel("a")
    assert not registry.cancel("a")
    assert not registry.cancel("unknown")
    assert registry.cancel_all() == 2
    assert len(registry) == 0
    assert registry.get("b").last_update.cancelled


def test_require_unknown(registry):
    """require raises for unknown ids."""
    with pytest.raises(KeyError):
        registry.require("nope")


def test_retry_rekeys_tracker(backend, registry):
    """Retry moves the tracker to the replacement job id."""
    backend.set_state("orig", JobState.FAILED)
    tracker = registry.track("orig", JobKind.VIDEO_GENERATION, params={"prompt": "dog"})
    assert tracker.wait(timeout=5.0)

    registry.retry("orig")
    assert tracker.job_id == "job-1"
    assert registry.get("job-1") is tracker
    assert "job-1" in registry
    assert registry.get("orig") is None
    assert backend.started[0][2] == {"prompt": "dog"}


def test_retry_to_an_id_tracked_elsewhere_rejected(backend, registry):
    """Retry onto another tracker's id is rejected."""
    backend.set_state("orig", JobState.FAILED)
    backend.set_state("other", JobState.PROCESSING)
    tracker = registry.track("orig", JobKind.ANALYSIS)
    registry.track("other", JobKind.ANALYSIS)
    assert tracker.wait(timeout=5.0)

    with pytest.raises(TrackerStateError):
        registry.retry("orig", "other")


def test_refresh_now(backend, registry):
    """refresh_now updates the tracked record."""
    backend.set_state("a", JobState.QUEUED)
    registry.track("a", JobKind.ANALYSIS)
    backend.set_state("a", JobState.PROCESSING)
    snapshot = registry.refresh_now("a")
    assert snapshot is not None and snapshot.state is JobState.PROCESSING
    assert registry.get("a").record.state is JobState.PROCESSING


def test_backend_cancellation_finishes_tracked_job(backend, registry):
    """A backend cancellation ends the job as failed, not cancelled."""
    backend.set_state("v1", JobState.PROCESSING)
    recorder = Recorder()
    registry.track("v1", JobKind.VIDEO_GENERATION).subscribe(recorder)

    registry.request_backend_cancellation("v1")
    assert backend.cancel_requests == ["v1"]
    assert recorder.wait_final()
    final = recorder.updates[-1]
    assert final.state is JobState.FAILED
    assert not final.cancelled
    assert "cancelled" in final.error.message


def test_backend_cancellation_unknown_job(registry):
    """Remote cancel of unknown or empty ids raises."""
    with pytest.raises(JobNotFoundError):
        registry.request_backend_cancellation("missing")
    with pytest.raises(ValueError):
        registry.request_backend_cancellation("")


def test_retry_onto_an_id_the_backend_reuses_is_rejected(backend, registry):
    """A replacement id that is already tracked keeps its tracker; the retry fails."""
    backend.set_state("job-1", JobState.PROCESSING)
    live = registry.track("job-1", JobKind.VIDEO_GENERATION)
    backend.set_state("orig", JobState.FAILED)
    failed = registry.track("orig", JobKind.VIDEO_GENERATION)
    assert failed.wait(timeout=5.0)
    assert wait_until(lambda: "orig" not in registry)

    with pytest.raises(TrackerStateError):
        registry.retry("orig")

    assert registry.get("job-1") is live
    assert not live.retired
    assert failed.job_id == "orig"
    assert failed.retired
    assert registry.get("orig") is failed


def test_retry_of_completed_job_does_not_start_a_new_one(backend, registry):
    """Retrying a Done job raises before anything is started on the backend."""
    backend.set_state("a", JobState.DONE)
    assert registry.track("a", JobKind.ANALYSIS).wait(timeout=5.0)

    with pytest.raises(TrackerStateError):
        registry.retry("a")
    assert backend.started == []


def test_track_during_retry_returns_the_retrying_tracker(backend, registry):
    """Tracking the replacement id while the retry switches over reuses that tracker."""
    backend.set_state("orig", JobState.FAILED)
    backend.set_state("next", JobState.QUEUED)
    tracker = registry.track("orig", JobKind.TRANSCRIPTION)
    assert tracker.wait(timeout=5.0)

    seen = []

    def track_replacement(update):
        if update.job_id == "next" and not seen:
            seen.append(registry.track("next", JobKind.TRANSCRIPTION))

    tracker.subscribe(track_replacement, replay=False)
    registry.retry("orig", "next")

    assert seen == [tracker]
    assert registry.get("next") is tracker
    assert len(registry) == 1


def test_direct_retry_onto_a_tracked_id_stops_the_retried_tracker(backend, registry):
    """A tracker retried outside the registry never displaces the id's owner."""
    backend.set_state("owner", JobState.PROCESSING)
    owner = registry.track("owner", JobKind.ANALYSIS)
    backend.set_state("orig", JobState.FAILED)
    tracker = registry.track("orig", JobKind.ANALYSIS)
    assert tracker.wait(timeout=5.0)

    tracker.retry("owner")

    assert registry.get("owner") is owner
    assert not owner.retired
    assert tracker.retired
    assert tracker.last_update.cancelled
