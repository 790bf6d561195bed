"""
Interpreter Coordinator

Entry point for one live interpretation session. Wires the session
components around a single serial event queue:

- ProtocolEventRouter: normalizes and applies transport events
- TranslationUnitStore: translation units and LastTranslation
- RecoverySupervisor: layered recovery timeouts
- SideEffectDispatcher: medical actions and best-effort persistence
- SessionLifecycleManager: start/stop and session identity

Transport callbacks, timer expiries and detached completions all re-enter
through the queue, so no two handlers ever run concurrently.
"""

from typing import Any, Callable, Dict, List, Optional

from interpreter.core.logging import configure_logging, get_logger
from interpreter.schemas.realtime_events import normalize_connection_state
from interpreter.services.event_queue import SerialEventQueue
from interpreter.services.outbound_messages import OutboundMessenger
from interpreter.services.persistence_client import PersistenceBackend, PersistenceClient, create_persistence_client
from interpreter.services.presentation_channel import NotificationListener, PresentationChannel
from interpreter.services.protocol_event_router import ProtocolEventRouter
from interpreter.services.recovery_supervisor import RecoveryConfig, RecoverySupervisor, create_recovery_supervisor
from interpreter.services.session_lifecycle import (
    LifecycleConfig,
    LifecycleState,
    Session,
    SessionLifecycleManager,
    create_lifecycle_config,
)
from interpreter.services.side_effect_dispatcher import (
    ActionHandler,
    DispatcherConfig,
    SideEffectDispatcher,
    create_side_effect_dispatcher,
)
from interpreter.services.translation_unit_store import TranslationUnit, TranslationUnitStore
from interpreter.services.transport import RealtimeTransport

logger = get_logger(__name__)


class InterpreterCoordinator:
    """
    Interpretation session coordinator.

    Usage:
        coordinator = create_interpreter_coordinator(transport)
        coordinator.subscribe(on_notification)
        await coordinator.start()
        ...
        await coordinator.stop()
        await coordinator.aclose()
    """

    def __init__(
        self,
        transport: RealtimeTransport,
        backend: Optional[PersistenceBackend] = None,
        recovery_config: Optional[RecoveryConfig] = None,
        dispatcher_config: Optional[DispatcherConfig] = None,
        lifecycle_config: Optional[LifecycleConfig] = None,
    ):
        # Only a client created here is closed by aclose()
        self._owned_client: Optional[PersistenceClient] = None
        if backend is None:
            self._owned_client = create_persistence_client()
        self._backend = backend or self._owned_client
        self._queue = SerialEventQueue()
        self._channel = PresentationChannel()
        self._store = TranslationUnitStore(self._channel)
        self._messenger = OutboundMessenger(transport)

        if recovery_config is not None:
            self._supervisor = RecoverySupervisor(self._queue.put, config=recovery_config)
        else:
            self._supervisor = create_recovery_supervisor(self._queue.put)

        if dispatcher_config is not None:
            self._dispatcher = SideEffectDispatcher(
                self._backend,
                self._queue.put,
                self._store,
                self._supervisor,
                self._channel,
                self._messenger,
                config=dispatcher_config,
            )
        else:
            self._dispatcher = create_side_effect_dispatcher(
                self._backend,
                self._queue.put,
                self._store,
                self._supervisor,
                self._channel,
                self._messenger,
            )

        self._router = ProtocolEventRouter(
            self._store,
            self._supervisor,
            self._dispatcher,
            self._messenger,
            self._channel,
        )
        self._lifecycle = SessionLifecycleManager(
            transport,
            self._backend,
            self._queue,
            self._router,
            self._store,
            self._supervisor,
            self._dispatcher,
            self._messenger,
            self._channel,
            config=lifecycle_config or create_lifecycle_config(),
        )

    # -------------------------------------------------------------------------
    # Session control
    # -------------------------------------------------------------------------

    async def start(self) -> Session:
        """Start a session and wait until the channel is ready."""
        return await self._lifecycle.start(self.submit_event, self.on_connection_state)

    async def stop(self) -> Optional[Session]:
        """Stop the session; open work is force-completed first."""
        return await self._lifecycle.stop()

    async def aclose(self) -> None:
        """Stop a running session and close the persistence client created by the coordinator."""
        if self._lifecycle.state in (LifecycleState.CONNECTING, LifecycleState.ACTIVE):
            await self._lifecycle.stop()
        if self._owned_client is not None:
            await self._owned_client.aclose()
            logger.debug("persistence_client_closed")

    # -------------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------------

    def submit_event(self, raw: Dict[str, Any]) -> bool:
        """Queue one inbound protocol event."""
        return self._queue.put(raw)

    def on_connection_state(self, state: str) -> bool:
        """Queue a transport connection-state change."""
        return self._queue.put(normalize_connection_state(state))

    def subscribe(self, listener: NotificationListener) -> Callable[[], None]:
        """Register the presentation listener (replaces any previous one)."""
        return self._channel.subscribe(listener)

    def register_action_handler(self, action: str, handler: ActionHandler) -> None:
        self._dispatcher.register_handler(action, handler)

    async def drain(self) -> None:
        """Wait until every queued event has been handled."""
        await self._queue.join()

    async def wait_for_side_effects(self) -> None:
        """Wait until detached side effects and the events they queued have settled."""
        while True:
            await self._dispatcher.wait_idle()
            await self._queue.join()
            # Applying a result can start new work (acknowledgment summary)
            if not self._dispatcher.pending_tasks:
                return

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> LifecycleState:
        return self._lifecycle.state

    @property
    def session(self) -> Optional[Session]:
        return self._lifecycle.session

    @property
    def units(self) -> List[TranslationUnit]:
        return self._store.units

    @property
    def open_unit(self) -> Optional[TranslationUnit]:
        return self._store.open_unit

    @property
    def last_translation(self) -> str:
        return self._store.last_translation

    @property
    def last_status(self) -> Optional[Dict[str, Any]]:
        return self._channel.last_status

    @property
    def router(self) -> ProtocolEventRouter:
        return self._router

    @property
    def supervisor(self) -> RecoverySupervisor:
        return self._supervisor

    @property
    def store(self) -> TranslationUnitStore:
        return self._store


def create_interpreter_coordinator(
    transport: RealtimeTransport,
    backend: Optional[PersistenceBackend] = None,
) -> InterpreterCoordinator:
    """Create a coordinator configured from settings."""
    configure_logging()
    return InterpreterCoordinator(transport, backend=backend)
