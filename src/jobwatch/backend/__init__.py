from __future__ import annotations

from typing import Any, Dict

from .base import JobBackend, Subscription
from .http import HttpJobBackend


def get_backend(profile: Dict[str, Any]) -> JobBackend:
    cfg = profile.get("backend", {}) or {}
    backend_type = str(cfg.get("type") or "http")
    if backend_type == "http":
        return HttpJobBackend(
            endpoint=str(cfg.get("endpoint") or "http://127.0.0.1:54321"),
            timeout_s=float(cfg.get("timeout_s", 15.0)),
            api_key=cfg.get("api_key"),
            status_aliases=profile.get("status_aliases") or {},
        )
    raise ValueError(f"unsupported_backend: {backend_type}")


__all__ = ["HttpJobBackend", "JobBackend", "Subscription", "get_backend"]
