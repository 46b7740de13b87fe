"""Shared utility functions for jobwatch."""

from __future__ import annotations

from datetime import datetime, timezone


def utc_iso() -> str:
    """Current UTC time as an ISO 8601 string, used to stamp records and snapshots."""
    return datetime.now(timezone.utc).isoformat()
