from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .backend import get_backend
from .errors import BackendUnavailableError, JobNotFoundError
from .logging_config import setup_logging
from .profile import load_profile
from .tracking.config import TrackingConfig
from .tracking.models import JobUpdate
from .tracking.registry import TrackerRegistry
from .tracking.states import JobKind, JobState, status_label


def _load(args: argparse.Namespace) -> Dict[str, Any]:
    profile = load_profile(args.profile)
    if getattr(args, "endpoint", None):
        profile["backend"]["endpoint"] = args.endpoint
    log_cfg = profile.get("logging", {}) or {}
    log_file = log_cfg.get("file")
    setup_logging(
        level=args.log_level or log_cfg.get("level") or "INFO",
        log_file=Path(log_file) if log_file else None,
    )
    return profile


def _parse_params(items: List[str]) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    for item in items:
        if "=" not in item:
            raise SystemExit(f"invalid --param (expected key=value): {item}")
        key, value = item.split("=", 1)
        try:
            params[key.strip()] = json.loads(value)
        except json.JSONDecodeError:
            params[key.strip()] = value
    return params


def _print_update(update: JobUpdate, as_json: bool) -> None:
    if as_json:
        print(json.dumps(update.to_dict()), flush=True)
        return
    line = f"[{update.job_id}] {status_label(update.status)} (attempt {update.attempt})"
    if update.slow:
        line += " - taking longer than usual"
    if update.error is not None:
        line += f": {update.error.message}"
    print(line, flush=True)
    if update.state is JobState.DONE and update.result is not None:
        print(json.dumps(update.result, indent=2, ensure_ascii=False), flush=True)


def _follow(registry: TrackerRegistry, job_id: str, kind: JobKind, params: Dict[str, Any], as_json: bool) -> int:
    tracker = registry.track(job_id, kind, params=params)
    tracker.subscribe(lambda update: _print_update(update, as_json))
    try:
        while not tracker.wait(timeout=0.5):
            pass
    except KeyboardInterrupt:
        tracker.cancel()
        return 130
    last = tracker.last_update
    if last is not None and last.state is JobState.DONE and not last.cancelled:
        return 0
    return 1


def cmd_track(args: argparse.Namespace) -> int:
    profile = _load(args)
    registry = TrackerRegistry(get_backend(profile), config=TrackingConfig.from_profile(profile))
    return _follow(registry, args.job_id, JobKind(args.kind), {}, args.json)


def cmd_start(args: argparse.Namespace) -> int:
    profile = _load(args)
    backend = get_backend(profile)
    kind = JobKind(args.kind)
    params = _parse_params(args.param)
    try:
        job_id = backend.start_job(kind, params)
    except BackendUnavailableError as e:
        print(f"Could not start job: {e}", file=sys.stderr)
        return 2
    print(f"Started {kind.value} job {job_id}", flush=True)
    registry = TrackerRegistry(backend, config=TrackingConfig.from_profile(profile))
    return _follow(registry, job_id, kind, params, args.json)


def cmd_cancel_remote(args: argparse.Namespace) -> int:
    profile = _load(args)
    backend = get_backend(profile)
    try:
        backend.request_job_cancellation(args.job_id)
    except JobNotFoundError:
        print(f"Job not found: {args.job_id}", file=sys.stderr)
        return 1
    except BackendUnavailableError as e:
        print(f"Cancellation failed: {e}", file=sys.stderr)
        return 2
    print(f"Cancellation requested for {args.job_id}")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    profile = _load(args)
    from .studio.app import create_app

    app = create_app(profile=profile)
    server_cfg = profile.get("server", {}) or {}
    host = args.host or server_cfg.get("host", "127.0.0.1")
    port = args.port or int(server_cfg.get("port", 8766))

    import uvicorn

    uvicorn.run(app, host=host, port=port, log_level="warning")
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="jw", description="Track long-running backend jobs")
    parser.add_argument("--profile", type=Path, default=None, help="Path to a YAML profile")
    parser.add_argument("--log-level", type=str, default=None, help="DEBUG, INFO, WARNING...")
    sub = parser.add_subparsers(dest="cmd", required=True)
    kinds = [k.value for k in JobKind]

    t = sub.add_parser("track", help="Follow an existing backend job until it finishes.")
    t.add_argument("job_id", type=str)
    t.add_argument("--kind", choices=kinds, required=True)
    t.add_argument("--endpoint", type=str, default=None, help="Backend base URL")
    t.add_argument("--json", action="store_true", help="Print updates as JSON lines")
    t.set_defaults(func=cmd_track)

    s = sub.add_parser("start", help="Start a backend job and follow it.")
    s.add_argument("kind", choices=kinds)
    s.add_argument("--param", action="append", default=[], help="key=value (value may be JSON)")
    s.add_argument("--endpoint", type=str, default=None, help="Backend base URL")
    s.add_argument("--json", action="store_true", help="Print updates as JSON lines")
    s.set_defaults(func=cmd_start)

    c = sub.add_parser("cancel-remote", help="Ask the backend to cancel a job (video generation).")
    c.add_argument("job_id", type=str)
    c.add_argument("--endpoint", type=str, default=None, help="Backend base URL")
    c.set_defaults(func=cmd_cancel_remote)

    v = sub.add_parser("serve", help="Serve the job tracking HTTP API.")
    v.add_argument("--host", type=str, default=None)
    v.add_argument("--port", type=int, default=None)
    v.add_argument("--endpoint", type=str, default=None, help="Backend base URL")
    v.set_defaults(func=cmd_serve)

    args = parser.parse_args(argv)
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
