"""
Side-Effect Dispatcher

Runs medical actions and conversation persistence as detached, best-effort
work that never blocks the live turn.

Medical actions:
- ``dispatch`` calls the registered handler under a timeout and always
  returns an ActionResult; it never raises.
- ``dispatch_detached`` runs ``dispatch`` in a background task and enqueues
  an ACTION_COMPLETED event with the result, so the outcome is applied from
  inside the serial event queue.
- ``apply_result`` acknowledges success to the backend, completes the
  correlated unit with a confirmation text and schedules a summary. Failures
  go to the status channel and complete the unit with its fallback text; the
  session stays usable.

Persistence (messages, summaries) is fire-and-forget: failures are logged
as PersistenceFailure and never reach the live turn.

After ``ignore_results`` (session stop) detached completions are logged but
no longer mutate state.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Set

from interpreter.core.config import settings
from interpreter.core.interpreter_errors import (
    ACTION_001,
    ACTION_002,
    ACTION_003,
    ACTION_004,
    PERSIST_001,
    PERSIST_003,
    ActionDispatchFailure,
    InterpreterError,
    InterpreterErrorCode,
    PersistenceFailure,
)
from interpreter.core.logging import get_interpreter_logger, get_logger
from interpreter.schemas.realtime_events import InternalEvent, InternalEventType
from interpreter.services.command_interceptor import MedicalActionType
from interpreter.services.outbound_messages import OutboundMessenger
from interpreter.services.persistence_client import PersistenceBackend
from interpreter.services.presentation_channel import PresentationChannel
from interpreter.services.recovery_supervisor import RecoverySupervisor
from interpreter.services.translation_unit_store import (
    CONFIRMATION_TEXTS,
    CompletionReason,
    TranslationUnitStore,
    UnitKind,
)

logger = get_logger(__name__)
session_log = get_interpreter_logger(__name__)


ACTION_UNIT_KINDS: Dict[str, UnitKind] = {
    MedicalActionType.LAB_ORDER.value: UnitKind.LAB_ORDER,
    MedicalActionType.FOLLOWUP_APPOINTMENT.value: UnitKind.APPOINTMENT,
}

ACTION_ERROR_CODES: Dict[str, InterpreterErrorCode] = {
    MedicalActionType.LAB_ORDER.value: ACTION_001,
    MedicalActionType.FOLLOWUP_APPOINTMENT.value: ACTION_002,
}

# Characters per second of speech, for the audio duration estimate
ASSISTANT_SECONDS_PER_CHAR = 0.1
USER_CONFIDENCE = 0.95
ASSISTANT_CONFIDENCE = 0.98


# ==============================================================================
# Data Classes
# ==============================================================================


@dataclass
class ActionContext:
    """What a handler knows about the request."""

    action: str
    call_id: Optional[str]
    session_id: Optional[str]
    unit_id: Optional[str]


@dataclass
class ActionResult:
    """Outcome of one medical action."""

    action: str
    success: bool
    call_id: Optional[str] = None
    unit_id: Optional[str] = None
    session_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[InterpreterError] = None
    duration_ms: float = 0.0
    dispatch_id: int = 0
    completed_at: float = field(default_factory=time.monotonic)

    @property
    def unit_kind(self) -> Optional[UnitKind]:
        return ACTION_UNIT_KINDS.get(self.action)


@dataclass
class DispatcherConfig:
    """Configuration for side-effect dispatch."""

    dispatch_timeout_sec: float = 10.0
    summary_delay_sec: float = 2.0
    # How long a result with no unit may still be claimed by its utterance
    unclaimed_result_ttl_sec: float = 5.0


ActionHandler = Callable[[Dict[str, Any], ActionContext], Awaitable[Dict[str, Any]]]


# ==============================================================================
# Side-Effect Dispatcher
# ==============================================================================


class SideEffectDispatcher:
    """
    Detached medical actions and best-effort persistence.

    Usage:
        dispatcher = SideEffectDispatcher(backend, queue.put, store, supervisor, channel, messenger)
        dispatcher.register_handler("send_lab_order", my_handler)
        dispatcher.dispatch_detached("send_lab_order", {"tests": ["cbc"]}, call_id="call_1")
    """

    def __init__(
        self,
        backend: PersistenceBackend,
        enqueue: Callable[[InternalEvent], object],
        store: TranslationUnitStore,
        supervisor: RecoverySupervisor,
        channel: PresentationChannel,
        messenger: OutboundMessenger,
        config: Optional[DispatcherConfig] = None,
    ):
        self._backend = backend
        self._enqueue = enqueue
        self._store = store
        self._supervisor = supervisor
        self._channel = channel
        self._messenger = messenger
        self._config = config or DispatcherConfig()

        self._handlers: Dict[str, ActionHandler] = {}
        for action in MedicalActionType:
            self._handlers[action.value] = self._webhook_handler

        self._tasks: Set[asyncio.Task] = set()
        self._summary_tasks: Set[asyncio.Task] = set()
        self._inflight: Dict[int, ActionContext] = {}
        self._unclaimed: Deque[ActionResult] = deque()
        self._dispatch_seq = 0
        self._ignore_results = False

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def register_handler(self, action: str, handler: ActionHandler) -> None:
        """Register or replace the handler for an action name."""
        self._handlers[action] = handler
        logger.debug("action_handler_registered", action=action)

    @property
    def ignoring_results(self) -> bool:
        return self._ignore_results

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    def reset(self) -> None:
        """Accept results again for a new session."""
        self._ignore_results = False
        self._inflight.clear()
        self._unclaimed.clear()

    def ignore_results(self) -> None:
        """Stop applying detached completions and drop scheduled summaries."""
        self._ignore_results = True
        for task in list(self._summary_tasks):
            task.cancel()
        self._summary_tasks.clear()
        self._unclaimed.clear()

    # -------------------------------------------------------------------------
    # Medical actions
    # -------------------------------------------------------------------------

    async def dispatch(
        self,
        action: str,
        arguments: Dict[str, Any],
        call_id: Optional[str] = None,
        session_id: Optional[str] = None,
        unit_id: Optional[str] = None,
    ) -> ActionResult:
        """
        Run one medical action with a bounded wait.

        Returns:
            ActionResult. Handler errors and timeouts become failed results.
        """
        context = ActionContext(action=action, call_id=call_id, session_id=session_id, unit_id=unit_id)
        return await self._run_handler(context, arguments)

    def dispatch_detached(
        self,
        action: str,
        arguments: Dict[str, Any],
        call_id: Optional[str] = None,
        session_id: Optional[str] = None,
        unit_id: Optional[str] = None,
    ) -> asyncio.Task:
        """Run ``dispatch`` in the background; the result re-enters the event queue."""
        context = ActionContext(action=action, call_id=call_id, session_id=session_id, unit_id=unit_id)
        self._dispatch_seq += 1
        seq = self._dispatch_seq
        self._inflight[seq] = context

        async def run() -> None:
            result = await self._run_handler(context, arguments)
            result.dispatch_id = seq
            if self._ignore_results:
                self._inflight.pop(seq, None)
                logger.info(
                    "action_result_ignored",
                    action=action,
                    call_id=call_id,
                    success=result.success,
                )
                return
            self._enqueue(InternalEvent(type=InternalEventType.ACTION_COMPLETED, payload=result))

        return self._track(asyncio.create_task(run()))

    def claim_unit(self, action: str, unit_id: str) -> bool:
        """
        Correlate a freshly opened action unit with an action requested
        before the utterance that named it was finalized.

        Returns:
            True if the unit is now owned by an in-flight or completed action
        """
        for context in self._inflight.values():
            if context.action == action and context.unit_id is None:
                context.unit_id = unit_id
                return True

        now = time.monotonic()
        for result in list(self._unclaimed):
            if now - result.completed_at > self._config.unclaimed_result_ttl_sec:
                self._unclaimed.remove(result)
                continue
            if result.action == action:
                self._unclaimed.remove(result)
                result.unit_id = unit_id
                self._settle_unit(result)
                return True
        return False

    def apply_result(self, result: ActionResult) -> None:
        """Apply a completed action. Runs inside the event queue."""
        context = self._inflight.pop(result.dispatch_id, None)
        if context is not None and context.unit_id is not None:
            result.unit_id = context.unit_id

        if self._ignore_results:
            logger.info("action_result_ignored", action=result.action, call_id=result.call_id)
            return

        if result.success:
            if result.call_id:
                output = {"success": True, "message": _success_message(result)}
                output.update(result.data or {})
                self._messenger.send_action_ack(result.call_id, output)
            self._channel.status(
                CONFIRMATION_TEXTS.get(result.unit_kind, "Action completed"),
                action=result.action,
            )
            if result.session_id:
                self.record_message(
                    result.session_id,
                    "system",
                    f"Medical action: {result.action} executed successfully",
                )
                self.schedule_summary(result.session_id, result.action)
        else:
            error = result.error
            status = error.to_status() if error else {"message": "Action failed", "is_error": True}
            self._channel.status(**status, action=result.action)

        if result.unit_id is None:
            self._unclaimed.append(result)
            return
        self._settle_unit(result)

    def _settle_unit(self, result: ActionResult) -> None:
        unit = self._store.get(result.unit_id)
        if unit is None or unit.is_complete:
            return
        self._supervisor.resolve(unit.id)
        if result.success:
            self._store.finalize(
                unit.id,
                CONFIRMATION_TEXTS.get(unit.kind, "Done"),
                CompletionReason.ACTION_CONFIRMED,
            )
        else:
            self._store.force_finalize(unit.id, None, CompletionReason.ACTION_FAILED)

    async def _run_handler(self, context: ActionContext, arguments: Dict[str, Any]) -> ActionResult:
        start = time.monotonic()
        result = ActionResult(
            action=context.action,
            success=False,
            call_id=context.call_id,
            unit_id=context.unit_id,
            session_id=context.session_id,
        )

        handler = self._handlers.get(context.action)
        if handler is None:
            result.error = ActionDispatchFailure(ACTION_003, session_id=context.session_id, action=context.action)
            return result
        if not context.session_id:
            result.error = ActionDispatchFailure(ACTION_004, action=context.action)
            return result

        error_code = ACTION_ERROR_CODES.get(context.action, ACTION_003)
        try:
            data = await asyncio.wait_for(handler(arguments, context), timeout=self._config.dispatch_timeout_sec)
            result.success = True
            result.data = data or {}
        except asyncio.TimeoutError:
            result.error = ActionDispatchFailure(
                error_code,
                message=f"{error_code.description}: timed out after {self._config.dispatch_timeout_sec}s",
                session_id=context.session_id,
                call_id=context.call_id,
            )
        except Exception as e:
            result.error = ActionDispatchFailure(
                error_code,
                session_id=context.session_id,
                original_error=e,
                call_id=context.call_id,
            )
        finally:
            result.unit_id = context.unit_id
            result.duration_ms = (time.monotonic() - start) * 1000
            result.completed_at = time.monotonic()

        session_log.latency(
            "medical_action",
            result.duration_ms,
            session_id=context.session_id,
            action=context.action,
            success=result.success,
        )
        return result

    async def _webhook_handler(self, arguments: Dict[str, Any], context: ActionContext) -> Dict[str, Any]:
        return await self._backend.handle_function_call(
            context.action,
            arguments,
            context.call_id,
            context.session_id,
        )

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def record_message(
        self,
        session_id: Optional[str],
        role: str,
        content: str,
        meta: Optional[Dict[str, Any]] = None,
    ) -> Optional[asyncio.Task]:
        """Save a conversation message in the background."""
        if not session_id or not content:
            return None

        async def save() -> None:
            try:
                await self._backend.save_message(session_id, role, content, meta or {})
            except Exception as e:
                _log_persistence_failure(PERSIST_001, session_id, e, role=role)

        return self._track(asyncio.create_task(save()))

    def record_user_utterance(self, session_id: Optional[str], text: str) -> Optional[asyncio.Task]:
        return self.record_message(session_id, "user", text, {"confidence_score": USER_CONFIDENCE})

    def record_translation(self, session_id: Optional[str], text: str) -> Optional[asyncio.Task]:
        return self.record_message(
            session_id,
            "assistant",
            text,
            {
                "audio_duration": round(len(text) * ASSISTANT_SECONDS_PER_CHAR, 2),
                "confidence_score": ASSISTANT_CONFIDENCE,
            },
        )

    def schedule_summary(self, session_id: str, action: Optional[str] = None) -> asyncio.Task:
        """Generate a summary after the configured delay, in the background."""

        async def summarize() -> None:
            await asyncio.sleep(self._config.summary_delay_sec)
            try:
                summary = await self._backend.generate_summary(session_id)
            except Exception as e:
                _log_persistence_failure(PERSIST_003, session_id, e)
                return
            if self._ignore_results:
                logger.info("summary_result_ignored", session_id=session_id)
                return
            self._enqueue(
                InternalEvent(
                    type=InternalEventType.STATUS_ONLY,
                    message="Medical summary saved",
                    payload={"summary": summary},
                )
            )
            note = f"Medical summary automatically generated after {action}" if action else "Medical summary generated"
            self.record_message(session_id, "system", note)

        task = self._track(asyncio.create_task(summarize()))
        self._summary_tasks.add(task)
        task.add_done_callback(self._summary_tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait for every detached task started so far (used by tests and shutdown)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _track(self, task: asyncio.Task) -> asyncio.Task:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


def _success_message(result: ActionResult) -> str:
    return CONFIRMATION_TEXTS.get(result.unit_kind, f"{result.action} completed")


def _log_persistence_failure(code: InterpreterErrorCode, session_id: str, error: Exception, **extra) -> None:
    if isinstance(error, PersistenceFailure):
        # Logged on construction
        return
    session_log.error(
        "persistence_failed",
        session_id=session_id,
        error_code=code.code,
        error_category=code.category.value,
        recoverable=True,
        error=str(error),
        **extra,
    )


def create_side_effect_dispatcher(
    backend: PersistenceBackend,
    enqueue: Callable[[InternalEvent], object],
    store: TranslationUnitStore,
    supervisor: RecoverySupervisor,
    channel: PresentationChannel,
    messenger: OutboundMessenger,
) -> SideEffectDispatcher:
    """Create a dispatcher configured from settings."""
    config = DispatcherConfig(
        dispatch_timeout_sec=settings.ACTION_DISPATCH_TIMEOUT_SEC,
        summary_delay_sec=settings.SUMMARY_DELAY_SEC,
    )
    return SideEffectDispatcher(backend, enqueue, store, supervisor, channel, messenger, config=config)
