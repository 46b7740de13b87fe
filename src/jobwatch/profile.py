from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


def default_profile() -> Dict[str, Any]:
    return {
        "backend": {
            "type": "http",
            "endpoint": "http://127.0.0.1:54321",
            "timeout_s": 15.0,
            "api_key": None,  # falls back to JW_API_KEY
        },
        "tracking": {
            "push_enabled": True,
            # Polls after which updates are flagged as "taking longer than usual".
            "slow_attempt_threshold": 15,
            # Finished trackers kept around so failed jobs can still be retried.
            "finished_history": 100,
            "backoff": {
                "tiers": [[0, 5], [5, 10], [15, 30], [30, 60]],
                "ceiling_attempts": 60,
            },
        },
        # Extra backend status labels, e.g. {"rendering": "processing"}.
        "status_aliases": {},
        "logging": {
            "level": "INFO",
            "file": None,
        },
        "server": {
            "host": "127.0.0.1",
            "port": 8766,
        },
    }


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


def load_profile(profile_path: Optional[Path]) -> Dict[str, Any]:
    """Load a YAML profile layered over ``default_profile()``."""
    if profile_path is None:
        return default_profile()

    profile_path = Path(profile_path)
    if not profile_path.exists():
        raise FileNotFoundError(f"Profile not found: {profile_path}")

    data = yaml.safe_load(profile_path.read_text(encoding="utf-8"))
    if data is None:
        return default_profile()
    if not isinstance(data, dict):
        raise ValueError("Profile YAML must be a mapping")
    return _merge(default_profile(), data)

