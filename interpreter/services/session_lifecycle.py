"""
Session Lifecycle Manager

Owns session identity and the high-level session state.

States: IDLE -> CONNECTING -> ACTIVE -> ENDING -> IDLE

- ``start`` is valid only from IDLE. It acquires the transport and waits,
  bounded by the handshake timeout, for the channel-ready event.
- ``stop`` is valid from CONNECTING or ACTIVE. It force-completes any open
  unit, cancels timers, marks detached work as ignore-result, persists the
  session end and summary best-effort, closes the transport and returns to
  IDLE whether or not persistence succeeded.
- A fatal transport error ends an active session through the same stop
  sequence, scheduled outside the event queue.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from interpreter.core.config import settings
from interpreter.core.interpreter_errors import (
    LIFECYCLE_001,
    LIFECYCLE_002,
    LIFECYCLE_003,
    PERSIST_002,
    PERSIST_003,
    TRANSPORT_001,
    TRANSPORT_002,
    InterpreterErrorCode,
    LifecycleError,
    PersistenceFailure,
    TransportError,
)
from interpreter.core.logging import get_interpreter_logger, get_logger
from interpreter.services.event_queue import SerialEventQueue
from interpreter.services.outbound_messages import OutboundMessenger
from interpreter.services.persistence_client import PersistenceBackend
from interpreter.services.presentation_channel import PresentationChannel
from interpreter.services.protocol_event_router import ProtocolEventRouter
from interpreter.services.recovery_supervisor import RecoverySupervisor
from interpreter.services.side_effect_dispatcher import SideEffectDispatcher
from interpreter.services.translation_unit_store import CompletionReason, TranslationUnitStore, UnitKind
from interpreter.services.transport import RealtimeTransport

logger = get_logger(__name__)
session_log = get_interpreter_logger(__name__)


class LifecycleState(str, Enum):
    """High-level session state."""

    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"
    ENDING = "ending"


@dataclass
class Session:
    """One interpretation session."""

    id: str
    state: LifecycleState = LifecycleState.CONNECTING
    started_at: Optional[float] = None
    ended_at: Optional[float] = None
    end_status: Optional[str] = None

    @property
    def duration_ms(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.ended_at or time.time()
        return (end - self.started_at) * 1000

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "state": self.state.value,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "end_status": self.end_status,
        }


@dataclass
class LifecycleConfig:
    """Configuration for session start/stop."""

    handshake_timeout_sec: float = 15.0
    shutdown_persistence_timeout_sec: float = 10.0


class SessionLifecycleManager:
    """
    Drives session start/stop and coordinates the other components.

    Usage:
        lifecycle = SessionLifecycleManager(transport, backend, queue, router, ...)
        session = await lifecycle.start(on_event, on_connection_state)
        ...
        await lifecycle.stop()
    """

    def __init__(
        self,
        transport: RealtimeTransport,
        backend: PersistenceBackend,
        queue: SerialEventQueue,
        router: ProtocolEventRouter,
        store: TranslationUnitStore,
        supervisor: RecoverySupervisor,
        dispatcher: SideEffectDispatcher,
        messenger: OutboundMessenger,
        channel: PresentationChannel,
        config: Optional[LifecycleConfig] = None,
    ):
        self._transport = transport
        self._backend = backend
        self._queue = queue
        self._router = router
        self._store = store
        self._supervisor = supervisor
        self._dispatcher = dispatcher
        self._messenger = messenger
        self._channel = channel
        self._config = config or LifecycleConfig()

        self._state = LifecycleState.IDLE
        self._session: Optional[Session] = None
        self._ready: Optional[asyncio.Event] = None
        self._fatal_error: Optional[TransportError] = None
        self._stop_task: Optional[asyncio.Task] = None
        self._awaiting_transport = False
        self._channel_ready_seen = False

        router.attach_lifecycle(self)

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def session_id(self) -> Optional[str]:
        return self._session.id if self._session else None

    def _transition(self, to_state: LifecycleState, trigger: str) -> None:
        from_state = self._state
        self._state = to_state
        if self._session is not None:
            self._session.state = to_state
        session_log.state_change(self.session_id, from_state.value, to_state.value, trigger=trigger)

    # -------------------------------------------------------------------------
    # Start
    # -------------------------------------------------------------------------

    async def start(
        self,
        on_event: Callable[[Dict[str, Any]], None],
        on_connection_state: Callable[[str], None],
    ) -> Session:
        """
        Start a session.

        Raises:
            LifecycleError: Not IDLE
            TransportError: Transport acquisition failed or timed out
        """
        if self._state != LifecycleState.IDLE:
            raise LifecycleError(
                LIFECYCLE_001,
                message=f"start() is not valid in state {self._state.value}",
                session_id=self.session_id,
            )

        self._session = Session(id=f"pending_{uuid.uuid4().hex[:12]}")
        self._ready = asyncio.Event()
        self._fatal_error = None
        self._channel_ready_seen = False
        self._transition(LifecycleState.CONNECTING, "start")

        self._store.reset()
        self._router.reset()
        self._messenger.reset()
        self._dispatcher.reset()
        self._channel.status("Connecting...")
        await self._queue.start(self._router.handle)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.handshake_timeout_sec
        self._awaiting_transport = True
        try:
            try:
                transport_session_id = await asyncio.wait_for(
                    self._transport.connect(on_event, on_connection_state),
                    timeout=self._config.handshake_timeout_sec,
                )
            finally:
                self._awaiting_transport = False
            if transport_session_id:
                self._adopt_session_id(transport_session_id, replace=True)
            if self._channel_ready_seen and self._fatal_error is None and self._state == LifecycleState.CONNECTING:
                # The channel reported ready while connect() was still running
                self._activate()
            await asyncio.wait_for(self._ready.wait(), timeout=max(deadline - loop.time(), 0))
        except asyncio.TimeoutError:
            error = TransportError(TRANSPORT_002, session_id=self.session_id)
            await self._abort_start(error)
            raise error
        except TransportError as e:
            await self._abort_start(e)
            raise
        except Exception as e:
            error = TransportError(TRANSPORT_001, session_id=self.session_id, original_error=e)
            await self._abort_start(error)
            raise error from e

        if self._fatal_error is not None:
            error = self._fatal_error
            await self._abort_start(error)
            raise error

        if self._state != LifecycleState.ACTIVE:
            # stop() ran while connecting and owns the teardown
            raise LifecycleError(LIFECYCLE_003, session_id=self.session_id)

        return self._session

    def _adopt_session_id(self, session_id: str, replace: bool = False) -> None:
        """Take over an id for the session. Only the transport's id may replace another."""
        if self._session is None or self._session.id == session_id:
            return
        if not replace and not self._session.id.startswith("pending_"):
            return
        session_log.info("session_id_adopted", session_id=session_id, previous_id=self._session.id)
        self._session.id = session_id
        self._store.bind_session(session_id)
        self._messenger.bind_session(session_id)

    async def _abort_start(self, error: TransportError) -> None:
        self._channel.status(**error.to_status())
        await self._queue.stop()
        await self._close_transport()
        if self._session is not None:
            self._session.ended_at = time.time()
            self._session.end_status = "failed"
        self._transition(LifecycleState.IDLE, "start_failed")

    # -------------------------------------------------------------------------
    # Router hooks (run inside the event queue)
    # -------------------------------------------------------------------------

    def on_channel_ready(self, session_id: Optional[str]) -> None:
        if self._state != LifecycleState.CONNECTING:
            logger.debug("channel_ready_ignored", state=self._state.value)
            return
        if session_id:
            self._adopt_session_id(session_id)
        self._channel_ready_seen = True
        if self._awaiting_transport:
            # start() activates once connect() has returned the transport's id
            return
        self._activate()

    def _activate(self) -> None:
        if self._session.id.startswith("pending_"):
            self._adopt_session_id(f"session_{uuid.uuid4().hex[:12]}")

        self._session.started_at = time.time()
        self._transition(LifecycleState.ACTIVE, "channel_ready")
        session_log.session_start(self.session_id)
        self._channel.status("Ready - speak in English or Spanish", session_id=self.session_id)
        if self._ready is not None:
            self._ready.set()

    def on_fatal_error(self, error: TransportError) -> None:
        if self._state == LifecycleState.CONNECTING:
            self._fatal_error = error
            if self._ready is not None:
                self._ready.set()
            return
        if self._state == LifecycleState.ACTIVE and self._stop_task is None:
            # stop() waits on the event queue, so it cannot run inside it
            self._stop_task = asyncio.create_task(self._stop(status="error"))

    # -------------------------------------------------------------------------
    # Stop
    # -------------------------------------------------------------------------

    async def stop(self) -> Optional[Session]:
        """
        Stop the session.

        Raises:
            LifecycleError: No session is running
        """
        if self._stop_task is not None:
            return await self._stop_task
        if self._state not in (LifecycleState.ACTIVE, LifecycleState.CONNECTING):
            raise LifecycleError(
                LIFECYCLE_002,
                message=f"stop() is not valid in state {self._state.value}",
                session_id=self.session_id,
            )
        self._stop_task = asyncio.create_task(self._stop(status="completed"))
        return await self._stop_task

    async def _stop(self, status: str) -> Optional[Session]:
        session = self._session
        session_id = self.session_id
        was_active = self._state == LifecycleState.ACTIVE
        self._transition(LifecycleState.ENDING, "stop" if status == "completed" else "fatal_error")
        self._channel.status("Ending session...")
        if self._ready is not None:
            self._ready.set()

        await self._queue.call(self._close_out)

        if was_active and session_id:
            await self._persist(self._backend.end_session(session_id), PERSIST_002, session_id)
            await self._persist(self._backend.generate_summary(session_id), PERSIST_003, session_id)

        await self._close_transport()
        await self._queue.stop()

        if session is not None:
            session.ended_at = time.time()
            session.end_status = status
            session_log.session_end(
                session_id,
                session.duration_ms,
                status=status,
                unit_count=len(self._store.units),
            )
        self._transition(LifecycleState.IDLE, "stopped")
        self._channel.status("Session ended", session_id=session_id)
        self._stop_task = None
        return session

    def _close_out(self) -> None:
        """Force-complete open work. Runs inside the event queue."""
        unit = self._store.open_unit
        if unit is not None:
            self._supervisor.resolve(unit.id)
            text = self._store.force_finalize(unit.id, None, CompletionReason.SESSION_STOP)
            if unit.kind == UnitKind.TRANSLATION and text and text != unit.fallback_text:
                self._dispatcher.record_translation(self.session_id, text)
        self._supervisor.cancel_all()
        self._router.halt()
        self._dispatcher.ignore_results()

    async def _persist(self, call: Awaitable, code: InterpreterErrorCode, session_id: str) -> None:
        try:
            await asyncio.wait_for(call, timeout=self._config.shutdown_persistence_timeout_sec)
        except PersistenceFailure:
            # Logged on construction
            return
        except asyncio.TimeoutError:
            self._log_persistence_failure(code, session_id, "timed out")
        except Exception as e:
            self._log_persistence_failure(code, session_id, str(e))

    @staticmethod
    def _log_persistence_failure(code: InterpreterErrorCode, session_id: str, detail: str) -> None:
        session_log.error(
            "persistence_failed",
            session_id=session_id,
            error_code=code.code,
            error_category=code.category.value,
            recoverable=True,
            error=detail,
        )

    async def _close_transport(self) -> None:
        try:
            await self._transport.close()
        except Exception as e:
            logger.warning("transport_close_failed", session_id=self.session_id, error=str(e))


def create_lifecycle_config() -> LifecycleConfig:
    """Lifecycle configuration from settings."""
    return LifecycleConfig(
        handshake_timeout_sec=settings.HANDSHAKE_TIMEOUT_SEC,
        shutdown_persistence_timeout_sec=settings.SHUTDOWN_PERSISTENCE_TIMEOUT_SEC,
    )
