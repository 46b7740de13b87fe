from __future__ import annotations

import pytest

from fakes import FakeBackend, Recorder


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()
