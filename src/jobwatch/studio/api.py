"""Job tracking API router.

Provides endpoints for:
- Starting a backend job and tracking it
- Tracking an existing job
- Listing tracked jobs
- Job management (cancel, retry, refresh, backend-side cancel)
- SSE job update streaming
"""

from __future__ import annotations

import json
import queue
from typing import Any, Dict, Iterator

from fastapi import APIRouter, Body, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse

from ..errors import BackendUnavailableError, JobNotFoundError, TrackerStateError
from ..tracking.registry import TrackerRegistry
from ..tracking.states import coerce_kind
from ..tracking.tracker import JobTracker

KEEPALIVE_S = 15.0


def _tracker_payload(tracker: JobTracker) -> Dict[str, Any]:
    update = tracker.last_update
    return {
        "job": tracker.record.to_dict(),
        "update": update.to_dict() if update else None,
        "retired": tracker.retired,
    }


def create_tracking_router(*, registry: TrackerRegistry) -> APIRouter:
    """Create the job tracking API router.

    Args:
        registry: The registry every request operates on.
    """
    router = APIRouter(prefix="/api/jobs", tags=["jobs"])

    def require_tracker(job_id: str) -> JobTracker:
        tracker = registry.get(job_id)
        if tracker is None:
            raise HTTPException(status_code=404, detail="job_not_tracked")
        return tracker

    def parse_kind(value: Any):
        try:
            return coerce_kind(str(value or ""))
        except ValueError:
            raise HTTPException(status_code=400, detail=f"invalid_kind: {value}")

    # -------------------------------------------------------------------------
    # Start / track
    # -------------------------------------------------------------------------

    @router.post("")
    def start_job(body: Dict[str, Any] = Body(...)) -> JSONResponse:  # type: ignore[valid-type]
        """Start a backend job and track it.

        Body:
            kind: str - transcription | analysis | video_generation
            params: dict - Passed through to the backend
        """
        kind = parse_kind(body.get("kind"))
        params = body.get("params") or {}
        if not isinstance(params, dict):
            raise HTTPException(status_code=400, detail="params_must_be_object")
        try:
            job_id = registry.backend.start_job(kind, params)
        except BackendUnavailableError as e:
            raise HTTPException(status_code=502, detail=f"backend_unavailable: {e.message}")
        tracker = registry.track(job_id, kind, params=params)
        return JSONResponse(_tracker_payload(tracker), status_code=201)

    @router.post("/track")
    def track_job(body: Dict[str, Any] = Body(...)) -> JSONResponse:  # type: ignore[valid-type]
        """Track a job that already exists on the backend.

        Body:
            job_id: str - Backend job id
            kind: str - transcription | analysis | video_generation
            params: dict - Optional, used to start a replacement job on retry
        """
        job_id = body.get("job_id")
        if not isinstance(job_id, str) or not job_id.strip():
            raise HTTPException(status_code=400, detail="job_id_required")
        kind = parse_kind(body.get("kind"))
        params = body.get("params") or {}
        if not isinstance(params, dict):
            raise HTTPException(status_code=400, detail="params_must_be_object")
        tracker = registry.track(job_id, kind, params=params)
        return JSONResponse(_tracker_payload(tracker))

    # -------------------------------------------------------------------------
    # Read
    # -------------------------------------------------------------------------

    @router.get("")
    def list_jobs(include_finished: bool = False) -> JSONResponse:
        records = registry.list(include_finished=include_finished)
        return JSONResponse({"jobs": [r.to_dict() for r in records]})

    @router.get("/{job_id}")
    def get_job(job_id: str) -> JSONResponse:
        return JSONResponse(_tracker_payload(require_tracker(job_id)))

    # -------------------------------------------------------------------------
    # Job management
    # -------------------------------------------------------------------------

    @router.post("/{job_id}/cancel")
    def cancel_job(job_id: str) -> JSONResponse:
        """Stop tracking locally; the backend job keeps running."""
        tracker = require_tracker(job_id)
        cancelled = tracker.cancel()
        return JSONResponse({"job_id": job_id, "cancelled": cancelled})

    @router.post("/{job_id}/retry")
    def retry_job(job_id: str, body: Dict[str, Any] = Body(default={})) -> JSONResponse:  # type: ignore[valid-type]
        """Restart tracking against a new backend job.

        Body:
            new_job_id: str - Optional, otherwise a new job is started with the original params
        """
        require_tracker(job_id)
        new_job_id = (body or {}).get("new_job_id")
        try:
            tracker = registry.retry(job_id, new_job_id)
        except TrackerStateError as e:
            raise HTTPException(status_code=409, detail=e.message)
        except BackendUnavailableError as e:
            raise HTTPException(status_code=502, detail=f"backend_unavailable: {e.message}")
        except (TypeError, ValueError) as e:
            raise HTTPException(status_code=400, detail=str(e))
        return JSONResponse(_tracker_payload(tracker))

    @router.post("/{job_id}/refresh")
    def refresh_job(job_id: str) -> JSONResponse:
        """Check the backend right away without waiting for the next poll."""
        tracker = require_tracker(job_id)
        snapshot = tracker.refresh_now()
        payload = _tracker_payload(tracker)
        payload["refreshed"] = snapshot is not None
        return JSONResponse(payload)

    @router.post("/{job_id}/cancel-remote")
    def cancel_remote_job(job_id: str) -> JSONResponse:
        """Ask the backend to cancel the job (video generation)."""
        try:
            registry.request_backend_cancellation(job_id)
        except JobNotFoundError:
            raise HTTPException(status_code=404, detail="job_not_found")
        except BackendUnavailableError as e:
            raise HTTPException(status_code=502, detail=f"backend_unavailable: {e.message}")
        return JSONResponse({"job_id": job_id, "requested": True})

    # -------------------------------------------------------------------------
    # SSE stream
    # -------------------------------------------------------------------------

    @router.get("/{job_id}/events")
    def stream_job(job_id: str) -> StreamingResponse:
        """Stream updates as Server-Sent Events until the job is final."""
        tracker = require_tracker(job_id)
        events, unsubscribe = tracker.subscribe_queue()

        def event_stream() -> Iterator[str]:
            try:
                while True:
                    try:
                        update = events.get(timeout=KEEPALIVE_S)
                    except queue.Empty:
                        yield ": keepalive\n\n"
                        continue
                    yield f"event: update\ndata: {json.dumps(update.to_dict())}\n\n"
                    if update.is_final:
                        break
            finally:
                unsubscribe()

        return StreamingResponse(event_stream(), media_type="text/event-stream")

    return router
