"""Tests for profile loading and logging configuration."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from jobwatch import logging_config
from jobwatch.logging_config import module_levels, resolve_level, setup_logging
from jobwatch.profile import default_profile, load_profile
from jobwatch.tracking.config import TrackingConfig


class TestLoadProfile:
    def test_none_gives_defaults(self):
        """No path means the built-in defaults."""
        assert load_profile(None) == default_profile()

    def test_yaml_is_layered_over_defaults(self, tmp_path: Path):
        """YAML values override defaults key by key."""
        path = tmp_path / "profile.yaml"
        path.write_text(
            "backend:\n"
            "  endpoint: http://jobs.internal:8080\n"
            "tracking:\n"
            "  push_enabled: false\n"
            "  backoff:\n"
            "    ceiling_attempts: 10\n"
            "status_aliases:\n"
            "  rendering: processing\n",
            encoding="utf-8",
        )
        profile = load_profile(path)

        assert profile["backend"]["endpoint"] == "http://jobs.internal:8080"
        assert profile["backend"]["timeout_s"] == 15.0
        assert profile["tracking"]["push_enabled"] is False
        assert profile["tracking"]["backoff"]["ceiling_attempts"] == 10
        assert profile["tracking"]["backoff"]["tiers"] == [[0, 5], [5, 10], [15, 30], [30, 60]]
        assert profile["status_aliases"] == {"rendering": "processing"}
        assert profile["server"]["port"] == 8766

    def test_empty_file_gives_defaults(self, tmp_path: Path):
        """An empty file means the built-in defaults."""
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert load_profile(path) == default_profile()

    def test_missing_file(self, tmp_path: Path):
        """A missing profile is an error."""
        with pytest.raises(FileNotFoundError):
            load_profile(tmp_path / "nope.yaml")

    def test_non_mapping_rejected(self, tmp_path: Path):
        """Profiles must be YAML mappings."""
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_profile(path)

    def test_defaults_are_fresh_copies(self):
        """Each call returns an independent copy."""
        first = default_profile()
        first["backend"]["endpoint"] = "changed"
        assert default_profile()["backend"]["endpoint"] != "changed"


class TestTrackingConfig:
    def test_from_default_profile(self):
        """TrackingConfig reads the default profile."""
        config = TrackingConfig.from_profile(default_profile())
        assert config == TrackingConfig()
        assert config.schedule.next_delay(0) == 5.0
        assert config.schedule.ceiling_attempts == 60

    def test_overrides(self):
        """Profile values override TrackingConfig defaults."""
        profile = default_profile()
        profile["tracking"].update(
            {
                "push_enabled": False,
                "slow_attempt_threshold": 3,
                "finished_history": -5,
                "backoff": {"tiers": [[0, 1], [2, 4]], "ceiling_attempts": 5},
            }
        )
        config = TrackingConfig.from_profile(profile)
        assert config.push_enabled is False
        assert config.slow_attempt_threshold == 3
        assert config.finished_history == 0
        assert config.schedule.next_delay(2) == 4.0
        assert config.schedule.ceiling_attempts == 5

    def test_invalid_backoff_rejected(self):
        """Decreasing backoff tiers are rejected."""
        profile = default_profile()
        profile["tracking"]["backoff"] = {"tiers": [[0, 10], [5, 1]]}
        with pytest.raises(ValueError):
            TrackingConfig.from_profile(profile)


class TestLogging:
    @pytest.fixture
    def fresh_logging(self, monkeypatch):
        """Let setup_logging run again and undo its changes to the logger tree."""
        root = logging.getLogger("jobwatch")
        poll = logging.getLogger("jobwatch.tracking.poll")
        saved = (root.level, list(root.handlers), root.propagate, poll.level)
        monkeypatch.setattr(logging_config, "_CONFIGURED", False)
        yield root
        for handler in root.handlers:
            if handler not in saved[1]:
                handler.close()
        root.setLevel(saved[0])
        root.handlers[:] = saved[1]
        root.propagate = saved[2]
        poll.setLevel(saved[3])

    def test_module_levels(self):
        """Relative names join the jobwatch tree; malformed pairs are dropped."""
        levels = module_levels("tracking.poll=DEBUG, jobwatch.backend=warning, bogus, x=NOPE, =INFO")
        assert levels == {"jobwatch.tracking.poll": logging.DEBUG, "jobwatch.backend": logging.WARNING}

    def test_module_levels_empty(self):
        """An unset variable gives no overrides."""
        assert module_levels("") == {}

    @pytest.mark.parametrize("value,expected", [("debug", logging.DEBUG), (logging.ERROR, logging.ERROR), ("loud", logging.INFO)])
    def test_resolve_level(self, value, expected):
        """Level names and ints resolve; unknown names fall back to INFO."""
        assert resolve_level(value) == expected

    def test_setup_logging_writes_file_and_applies_module_levels(self, fresh_logging, tmp_path: Path, monkeypatch):
        """The CLI's logging setup writes to the profile's log file once."""
        monkeypatch.setenv("JW_LOG_MODULE_LEVELS", "tracking.poll=DEBUG")
        log_file = tmp_path / "logs" / "jw.log"

        setup_logging(level="warning", log_file=log_file)
        setup_logging(level="debug")

        assert fresh_logging.level == logging.WARNING
        assert len(fresh_logging.handlers) == 2
        assert fresh_logging.propagate is False
        assert logging.getLogger("jobwatch.tracking.poll").level == logging.DEBUG

        logging.getLogger("jobwatch.tracking.poll").debug("poll detail")
        logging.getLogger("jobwatch.backend").info("hidden")
        for handler in fresh_logging.handlers:
            handler.flush()
        text = log_file.read_text(encoding="utf-8")
        assert "poll detail" in text
        assert "hidden" not in text
