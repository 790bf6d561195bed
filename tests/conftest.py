"""
Pytest configuration and shared fixtures for the interpreter test suite.
"""

from __future__ import annotations

import os

# Settings are read at import time; keep them deterministic for tests.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("INTERPRETER_LOG_LEVEL", "DEBUG")
os.environ.setdefault("PERSISTENCE_API_URL", "http://persistence.test")

import pytest  # noqa: E402
from interpreter.services.presentation_channel import PresentationChannel  # noqa: E402

from tests.fakes import FakeBackend, FakeTransport, NotificationRecorder, build_coordinator  # noqa: E402


@pytest.fixture
def transport() -> FakeTransport:
    """Transport that reports the channel ready on connect."""
    return FakeTransport()


@pytest.fixture
def backend() -> FakeBackend:
    """In-memory storage collaborator."""
    return FakeBackend()


@pytest.fixture
def recorder() -> NotificationRecorder:
    return NotificationRecorder()


@pytest.fixture
def channel(recorder) -> PresentationChannel:
    channel = PresentationChannel()
    channel.subscribe(recorder)
    return channel


@pytest.fixture
def coordinator(transport, backend, recorder):
    """Coordinator with millisecond-scale timeouts."""
    coordinator = build_coordinator(transport, backend)
    coordinator.subscribe(recorder)
    return coordinator
