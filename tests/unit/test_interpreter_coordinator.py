"""
Unit Tests for the Interpreter Coordinator

Tests:
- aclose() stops a running session and closes the HTTP client it created
- A persistence backend passed in by the caller is left open
- The factory configures logging
"""

from unittest.mock import MagicMock

import httpx
import pytest
from interpreter.services import interpreter_coordinator
from interpreter.services.interpreter_coordinator import InterpreterCoordinator, create_interpreter_coordinator
from interpreter.services.persistence_client import (
    PersistenceClient,
    PersistenceClientConfig,
    create_persistence_client,
)
from interpreter.services.session_lifecycle import LifecycleState

from tests.fakes import (
    FAST_DISPATCH,
    FAST_LIFECYCLE,
    FAST_RECOVERY,
    FakeBackend,
    FakeTransport,
    feed,
    translated_response,
    utterance,
)


def build_with_default_backend(transport):
    return InterpreterCoordinator(
        transport,
        recovery_config=FAST_RECOVERY,
        dispatcher_config=FAST_DISPATCH,
        lifecycle_config=FAST_LIFECYCLE,
    )


class TestAclose:
    """Test releasing the coordinator's resources."""

    @pytest.mark.asyncio
    async def test_closes_owned_persistence_client(self, monkeypatch):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(200, json={})

        client = create_persistence_client(transport=httpx.MockTransport(handler))
        monkeypatch.setattr(interpreter_coordinator, "create_persistence_client", lambda: client)

        coordinator = build_with_default_backend(FakeTransport())
        await coordinator.start()
        await feed(coordinator, utterance("hello"), *translated_response("hola"))
        await coordinator.wait_for_side_effects()
        await coordinator.stop()

        assert client.is_closed is False
        await coordinator.aclose()

        assert client.is_closed is True
        assert "/conversations/sess_test/messages" in paths
        assert "/conversations/sess_test/end" in paths

    @pytest.mark.asyncio
    async def test_aclose_stops_running_session(self, monkeypatch):
        client = create_persistence_client(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
        monkeypatch.setattr(interpreter_coordinator, "create_persistence_client", lambda: client)
        transport = FakeTransport()

        coordinator = build_with_default_backend(transport)
        await coordinator.start()
        await coordinator.aclose()

        assert coordinator.state == LifecycleState.IDLE
        assert transport.closed is True
        assert client.is_closed is True

    @pytest.mark.asyncio
    async def test_injected_backend_is_left_open(self):
        http = httpx.AsyncClient(
            base_url="http://storage.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(200)),
        )
        backend = PersistenceClient(config=PersistenceClientConfig(base_url="http://storage.test"), client=http)

        coordinator = InterpreterCoordinator(FakeTransport(), backend=backend, lifecycle_config=FAST_LIFECYCLE)
        await coordinator.aclose()

        assert http.is_closed is False
        await http.aclose()


class TestFactory:
    """Test create_interpreter_coordinator."""

    def test_configures_logging(self, monkeypatch):
        configure = MagicMock()
        monkeypatch.setattr(interpreter_coordinator, "configure_logging", configure)

        coordinator = create_interpreter_coordinator(FakeTransport(), backend=FakeBackend())

        configure.assert_called_once_with()
        assert coordinator.state == LifecycleState.IDLE
