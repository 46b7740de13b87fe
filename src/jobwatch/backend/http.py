from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Generator, Iterator, List, Mapping, Optional, Tuple

import requests

from ..errors import BackendUnavailableError, JobNotFoundError, SubscriptionError, UnknownStatusError
from ..tracking.models import ErrorDetail, JobSnapshot
from ..tracking.states import JobKind, JobState, StatusNormalizer

log = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "http://127.0.0.1:54321"

# Fields that carry the success payload, depending on which service produced
# the job (transcript text, analysis object, generated video reference).
RESULT_FIELDS = ("result", "video_url", "transcription", "transcription_data", "analysis", "metadata")


def iter_sse_events(response: requests.Response) -> Generator[Tuple[str, Dict[str, Any]], None, None]:
    """Yield ``(event_name, payload)`` pairs from a text/event-stream response."""
    event_name = "message"
    data_lines: List[str] = []
    for raw_line in response.iter_lines(decode_unicode=True):
        if raw_line is None:
            continue
        line = raw_line.strip()
        if not line:
            if data_lines:
                data_str = "\n".join(data_lines)
                try:
                    payload = json.loads(data_str)
                except json.JSONDecodeError:
                    payload = {"raw": data_str}
                yield event_name or "message", payload
            elif event_name != "message":
                yield event_name, {}
            event_name = "message"
            data_lines = []
            continue
        if line.startswith(":"):
            continue
        if line.startswith("event:"):
            event_name = line.split(":", 1)[1].strip()
        elif line.startswith("data:"):
            data_lines.append(line[5:].lstrip())


def _error_message(payload: Mapping[str, Any]) -> Optional[str]:
    err = payload.get("error_message") or payload.get("error")
    if isinstance(err, Mapping):
        err = err.get("message")
    return str(err) if err else None


def _result(payload: Mapping[str, Any]) -> Any:
    if payload.get("result") is not None:
        return payload["result"]
    found = {key: payload[key] for key in RESULT_FIELDS if payload.get(key) is not None}
    return found or None


def snapshot_from_payload(payload: Mapping[str, Any], normalizer: StatusNormalizer) -> JobSnapshot:
    raw = str(payload.get("status") or "")
    state = normalizer.normalize(raw)
    error = None
    result = None
    if state is JobState.FAILED:
        message = _error_message(payload)
        if not message and normalizer.is_backend_cancellation(raw):
            message = "The job was cancelled on the server."
        error = ErrorDetail.reported(message)
    elif state is JobState.DONE:
        result = _result(payload)
    return JobSnapshot(state=state, raw_status=raw, error=error, result=result)


class SseSubscription:
    """Change stream for one job over Server-Sent Events."""

    def __init__(
        self,
        *,
        job_id: str,
        response: requests.Response,
        events: Iterator[Tuple[str, Dict[str, Any]]],
        normalizer: StatusNormalizer,
    ) -> None:
        self.job_id = job_id
        self._response = response
        self._events = events
        self._normalizer = normalizer
        self._closed = False

    def __iter__(self) -> Iterator[JobSnapshot]:
        try:
            for name, payload in self._events:
                if self._closed:
                    return
                if name == "error":
                    raise SubscriptionError(_error_message(payload) or "subscription_error", job_id=self.job_id)
                if name not in {"snapshot", "message", "update"}:
                    continue
                try:
                    yield snapshot_from_payload(payload, self._normalizer)
                except UnknownStatusError as exc:
                    log.warning("Ignoring push update for %s: %s", self.job_id, exc)
        except requests.RequestException as exc:
            if self._closed:
                return
            raise SubscriptionError(f"stream_broken: {exc}", job_id=self.job_id) from exc

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._response.close()


class HttpJobBackend:
    """Job service reachable over HTTP.

    ``GET /jobs/{id}`` returns the job as JSON, ``GET /jobs/{id}/events`` streams
    changes as Server-Sent Events (the first event must be ``subscribed``),
    ``POST /jobs/{id}/cancel`` asks the service to stop a job and
    ``POST /jobs`` starts a new one.
    """

    name = "http"

    def __init__(
        self,
        *,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout_s: float = 15.0,
        api_key: Optional[str] = None,
        status_aliases: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.timeout_s = float(timeout_s)
        self.api_key = api_key or os.getenv("JW_API_KEY")
        self.normalizer = StatusNormalizer(status_aliases)

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _job_url(self, job_id: str, suffix: str = "") -> str:
        return f"{self.endpoint}/jobs/{job_id}{suffix}"

    def fetch_job_snapshot(self, job_id: str) -> JobSnapshot:
        try:
            resp = requests.get(self._job_url(job_id), headers=self._headers(), timeout=self.timeout_s)
        except requests.RequestException as exc:
            raise BackendUnavailableError(f"fetch_failed: {exc}", job_id=job_id) from exc
        if resp.status_code == 404:
            raise JobNotFoundError(job_id)
        if resp.status_code != 200:
            raise BackendUnavailableError(f"fetch_failed: {resp.status_code} {resp.text}", job_id=job_id)
        try:
            payload = resp.json()
        except ValueError as exc:
            raise BackendUnavailableError("fetch_failed: invalid JSON", job_id=job_id) from exc
        return snapshot_from_payload(payload, self.normalizer)

    def subscribe_job_changes(self, job_id: str) -> SseSubscription:
        headers = self._headers() | {"Accept": "text/event-stream"}
        try:
            resp = requests.get(
                self._job_url(job_id, "/events"),
                headers=headers,
                stream=True,
                timeout=(self.timeout_s, None),
            )
        except requests.RequestException as exc:
            raise SubscriptionError(f"subscribe_failed: {exc}", job_id=job_id) from exc
        if resp.status_code != 200:
            resp.close()
            raise SubscriptionError(f"subscribe_failed: {resp.status_code}", job_id=job_id)

        events = iter_sse_events(resp)
        try:
            first = next(events, None)
        except requests.RequestException as exc:
            resp.close()
            raise SubscriptionError(f"subscribe_failed: {exc}", job_id=job_id) from exc
        if first is None or first[0] != "subscribed":
            resp.close()
            ack = first[0] if first else "eof"
            raise SubscriptionError(f"subscription_not_acknowledged: {ack}", job_id=job_id)
        return SseSubscription(job_id=job_id, response=resp, events=events, normalizer=self.normalizer)

    def request_job_cancellation(self, job_id: str) -> None:
        try:
            resp = requests.post(self._job_url(job_id, "/cancel"), headers=self._headers(), timeout=self.timeout_s)
        except requests.RequestException as exc:
            raise BackendUnavailableError(f"cancel_failed: {exc}", job_id=job_id) from exc
        if resp.status_code == 404:
            raise JobNotFoundError(job_id)
        if resp.status_code not in {200, 202, 204}:
            raise BackendUnavailableError(f"cancel_failed: {resp.status_code} {resp.text}", job_id=job_id)

    def start_job(self, kind: JobKind, params: Dict[str, Any]) -> str:
        body = {"kind": JobKind(kind).value, "params": dict(params or {})}
        try:
            resp = requests.post(
                f"{self.endpoint}/jobs",
                headers=self._headers() | {"Content-Type": "application/json"},
                data=json.dumps(body),
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            raise BackendUnavailableError(f"start_failed: {exc}") from exc
        if resp.status_code not in {200, 201, 202}:
            raise BackendUnavailableError(f"start_failed: {resp.status_code} {resp.text}")
        job_id = (resp.json() or {}).get("id")
        if not job_id:
            raise BackendUnavailableError("start_failed: missing_job_id")
        return str(job_id)
