"""
Protocol Event Router

Normalizes the backend's event stream and drives the translation unit store,
command interceptor, recovery supervisor and side-effect dispatcher in the
right order. Runs only inside the serial event queue: one event is handled
to completion before the next.

Attribution rules:
- Fragments and final transcripts go to the open translation unit.
- With no open unit they are queued as PendingFragments (FIFO) and drained
  into the next ordinary unit.
- Output of responses the coordinator requested itself (repeat replay,
  action acknowledgment) is discarded.
- The backend's own response to a repeat, a medical action or a failed
  transcription is discarded too, whether it started before or after the
  utterance event.
- Once a response's unit is finalized, late events of the same response are
  dropped instead of leaking into the next unit.
- Action units never receive fragments; the dispatcher completes them.

Completion of the open unit on response-end uses, in order: the delivered
text, the accumulated fragment text, and otherwise leaves the unit open for
the recovery grace window. The true final text is sometimes delivered after
the output-done signal.
"""

from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Deque, Mapping, Optional, Protocol, Union

from interpreter.core.interpreter_errors import (
    ERROR_CODE_MAP,
    STALL_001,
    STALL_002,
    TRANSPORT_003,
    InterpreterErrorCategory,
    ProtocolEventError,
    TranscriptionStall,
    TransportError,
)
from interpreter.core.logging import get_interpreter_logger, get_logger
from interpreter.schemas.realtime_events import InternalEvent, InternalEventType, normalize_event
from interpreter.services.command_interceptor import (
    CommandKind,
    CommandMatch,
    Language,
    MedicalActionType,
    classify_utterance,
)
from interpreter.services.outbound_messages import OutboundMessenger
from interpreter.services.presentation_channel import PresentationChannel
from interpreter.services.recovery_supervisor import RecoverySupervisor, TimeoutLayer, TimerToken
from interpreter.services.side_effect_dispatcher import ActionResult, SideEffectDispatcher
from interpreter.services.translation_unit_store import (
    PLACEHOLDER_TEXTS,
    CompletionReason,
    TranslationUnit,
    TranslationUnitStore,
    UnitKind,
)

logger = get_logger(__name__)
session_log = get_interpreter_logger(__name__)


class PendingKind(str, Enum):
    """Kind of a queued, not yet attributed fragment."""

    DELTA = "delta"
    FINAL = "final"


@dataclass
class PendingFragment:
    """Fragment that arrived before a unit could take it."""

    kind: PendingKind
    text: str


class LifecycleHooks(Protocol):
    """What the router needs from the session lifecycle manager."""

    @property
    def session_id(self) -> Optional[str]:
        ...

    def on_channel_ready(self, session_id: Optional[str]) -> None:
        ...

    def on_fatal_error(self, error: TransportError) -> None:
        ...


ACTION_UNIT_KINDS = {
    MedicalActionType.LAB_ORDER: UnitKind.LAB_ORDER,
    MedicalActionType.FOLLOWUP_APPOINTMENT: UnitKind.APPOINTMENT,
}

RECOVERY_REASONS = {
    TimeoutLayer.GRACE: CompletionReason.GRACE_TIMEOUT,
    TimeoutLayer.CEILING: CompletionReason.CEILING_TIMEOUT,
}

# Clinician speaks English, patient speaks Spanish
ACTION_LANGUAGES = (Language.ENGLISH, Language.SPANISH)


class ProtocolEventRouter:
    """
    Dispatches normalized events to the session components.

    Usage:
        router = ProtocolEventRouter(store, supervisor, dispatcher, messenger, channel)
        router.attach_lifecycle(lifecycle)
        await queue.start(router.handle)
    """

    def __init__(
        self,
        store: TranslationUnitStore,
        supervisor: RecoverySupervisor,
        dispatcher: SideEffectDispatcher,
        messenger: OutboundMessenger,
        channel: PresentationChannel,
    ):
        self._store = store
        self._supervisor = supervisor
        self._dispatcher = dispatcher
        self._messenger = messenger
        self._channel = channel
        self._lifecycle: Optional[LifecycleHooks] = None

        self._pending: Deque[PendingFragment] = deque()
        self._user_turn_active = False
        self._response_in_flight = False
        self._discard_response = False
        self._response_unit_id: Optional[str] = None
        self._discard_turn_response = False
        self._turn_response_seen = False
        self._unattributed_output_done = False
        self._halted = False

    def attach_lifecycle(self, lifecycle: LifecycleHooks) -> None:
        self._lifecycle = lifecycle

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def session_id(self) -> Optional[str]:
        return self._lifecycle.session_id if self._lifecycle else None

    @property
    def user_turn_active(self) -> bool:
        return self._user_turn_active

    @property
    def response_in_flight(self) -> bool:
        return self._response_in_flight

    @property
    def pending_fragments(self) -> list:
        return list(self._pending)

    @property
    def halted(self) -> bool:
        return self._halted

    def reset(self) -> None:
        """Clear per-session flags for a new session."""
        self._pending.clear()
        self._user_turn_active = False
        self._response_in_flight = False
        self._discard_response = False
        self._discard_turn_response = False
        self._turn_response_seen = False
        self._response_unit_id = None
        self._unattributed_output_done = False
        self._halted = False

    def halt(self) -> None:
        """Stop processing stream events until the next session."""
        self._halted = True
        self._pending.clear()

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def handle(self, item: Union[InternalEvent, Mapping[str, Any]]) -> None:
        """Handle one queued item: a raw protocol event or an internal event."""
        if isinstance(item, InternalEvent):
            event = item
        else:
            try:
                event = normalize_event(item)
            except ProtocolEventError:
                # Logged on construction; skip and keep going
                return
            if event is None:
                return

        session_log.protocol_event(event.raw_type or event.type.value, session_id=self.session_id)

        if event.type == InternalEventType.ACTION_COMPLETED:
            self._on_action_completed(event.payload)
            return
        if event.type == InternalEventType.STATUS_ONLY:
            self._on_status(event)
            return
        if self._halted:
            logger.debug("event_ignored_while_halted", event_type=event.type.value)
            return

        handler = self._HANDLERS.get(event.type)
        if handler is None:
            logger.debug("event_without_handler", event_type=event.type.value)
            return
        handler(self, event)

    # -------------------------------------------------------------------------
    # Channel and turn events
    # -------------------------------------------------------------------------

    def _on_channel_ready(self, event: InternalEvent) -> None:
        if self._lifecycle is not None:
            self._lifecycle.on_channel_ready(event.session_id)

    def _on_status(self, event: InternalEvent) -> None:
        if event.message:
            extra = event.payload if isinstance(event.payload, dict) else {}
            self._channel.status(event.message, **extra)

    def _on_turn_begin(self, event: InternalEvent) -> None:
        self._user_turn_active = True
        self._channel.status("Listening...")

    def _on_turn_end(self, event: InternalEvent) -> None:
        self._channel.status("Processing speech...")

    def _on_utterance_failed(self, event: InternalEvent) -> None:
        self._user_turn_active = False
        self._discard_turn_response = False
        # The backend may still be answering audio that produced no transcript
        self._drop_current_output()
        self._turn_response_seen = False
        error = TranscriptionStall(STALL_002, message=event.message, session_id=self.session_id)
        self._channel.status(**error.to_status())

    # -------------------------------------------------------------------------
    # Utterances
    # -------------------------------------------------------------------------

    def _on_utterance_finalized(self, event: InternalEvent) -> None:
        text = (event.text or "").strip()
        if not text:
            logger.debug("empty_utterance_ignored")
            self._user_turn_active = False
            return

        self._discard_turn_response = False
        match = classify_utterance(text)
        self._channel.status(
            f"Detected: {match.intent.label}",
            intent=match.intent.value,
            intent_label=match.intent.label,
        )
        self._dispatcher.record_user_utterance(self.session_id, text)

        if match.kind == CommandKind.REPEAT:
            self._handle_repeat(match)
        elif match.kind == CommandKind.MEDICAL_ACTION:
            self._handle_medical_action(text, match)
        else:
            self._handle_ordinary(text, match)
        self._turn_response_seen = False

    def _handle_repeat(self, match: CommandMatch) -> None:
        self._user_turn_active = False

        # The backend may already be translating the word "repeat"
        self._drop_current_output()

        last = self._store.last_translation
        if not last:
            logger.info("repeat_without_history", session_id=self.session_id)
            self._channel.status("Nothing to repeat yet")
            return

        if self._messenger.send_repeat(last):
            self._channel.status("Repeating last translation...")
        else:
            self._channel.status("Could not repeat - connection not ready", is_error=True)

    def _handle_medical_action(self, text: str, match: CommandMatch) -> None:
        self._user_turn_active = False
        self._supersede_open_unit()
        self._drop_current_output()

        kind = ACTION_UNIT_KINDS[match.action]
        source, target = ACTION_LANGUAGES
        unit_id = self._store.open(text, source, target, kind=kind, placeholder=PLACEHOLDER_TEXTS[kind])

        if not self._dispatcher.claim_unit(match.action.value, unit_id):
            self._supervisor.arm(unit_id, TimeoutLayer.CEILING)
        self._channel.status(f"Performing action: {match.intent.label}...", intent=match.intent.value)

    def _handle_ordinary(self, text: str, match: CommandMatch) -> None:
        self._user_turn_active = False
        self._supersede_open_unit()

        unit_id = self._store.open(text, match.source_language, match.target_language)
        if self._response_unit_id is None and (
            self._response_in_flight or self._pending or self._unattributed_output_done
        ):
            self._response_unit_id = unit_id
        self._supervisor.arm(unit_id, TimeoutLayer.CEILING)

        self._drain_pending(unit_id)

        unit = self._store.get(unit_id)
        if not unit.is_complete and self._unattributed_output_done:
            self._supervisor.arm(unit_id, TimeoutLayer.GRACE)
        self._unattributed_output_done = False

    def _drain_pending(self, unit_id: str) -> None:
        while self._pending:
            fragment = self._pending.popleft()
            if fragment.kind == PendingKind.DELTA:
                self._store.append(unit_id, fragment.text)
            else:
                self._complete_translation(unit_id, fragment.text)
        self._pending.clear()

    def _supersede_open_unit(self) -> None:
        unit = self._store.open_unit
        if unit is None:
            return
        logger.info("open_unit_superseded", unit_id=unit.id, kind=unit.kind.value)
        self._supervisor.resolve(unit.id)
        text = self._store.force_finalize(unit.id, None, CompletionReason.SUPERSEDED)
        if unit.kind == UnitKind.TRANSLATION and text and text != unit.fallback_text:
            self._dispatcher.record_translation(self.session_id, text)

    def _drop_current_output(self) -> None:
        """Discard anything streamed so far for a turn that is not translated."""
        if self._pending:
            logger.debug("pending_fragments_dropped", count=len(self._pending))
        self._pending.clear()
        self._unattributed_output_done = False
        if self._response_in_flight and self._response_unit_id is None:
            self._discard_response = True
        elif not self._turn_response_seen:
            # The backend has not started its own response to this turn yet
            self._discard_turn_response = True

    # -------------------------------------------------------------------------
    # Responses
    # -------------------------------------------------------------------------

    def _on_response_begin(self, event: InternalEvent) -> None:
        self._response_in_flight = True
        self._unattributed_output_done = False

        if self._messenger.claim_self_response() or self._claim_turn_response():
            self._discard_response = True
            self._response_unit_id = None
            session_log.debug("response_discarded", session_id=self.session_id)
            return

        self._discard_response = False
        unit = self._store.open_unit
        self._response_unit_id = unit.id if unit else None
        if unit is None:
            self._turn_response_seen = True
        self._channel.status("Generating translation...")

        if unit is not None and unit.kind == UnitKind.TRANSLATION:
            self._supervisor.arm(unit.id, TimeoutLayer.CEILING)

    def _claim_turn_response(self) -> bool:
        if self._discard_turn_response:
            self._discard_turn_response = False
            return True
        return False

    def _on_fragment(self, event: InternalEvent) -> None:
        if self._discard_response or not event.delta:
            return

        unit = self._store.open_unit
        if unit is not None:
            if unit.kind == UnitKind.TRANSLATION:
                self._store.append(unit.id, event.delta)
            return

        if self._response_unit_id is not None:
            logger.debug("late_fragment_dropped", unit_id=self._response_unit_id)
            return
        self._pending.append(PendingFragment(PendingKind.DELTA, event.delta))

    def _on_response_end(self, event: InternalEvent) -> None:
        if self._discard_response:
            return

        unit = self._store.open_unit
        if unit is not None:
            if unit.kind == UnitKind.TRANSLATION:
                self._complete_translation(unit.id, event.text)
            return

        if self._response_unit_id is not None:
            logger.debug("late_final_dropped", unit_id=self._response_unit_id)
            return
        self._pending.append(PendingFragment(PendingKind.FINAL, event.text or ""))

    def _on_output_done(self, event: InternalEvent) -> None:
        self._response_in_flight = False
        if self._discard_response:
            self._discard_response = False
            return

        unit = self._store.open_unit
        if unit is not None:
            if unit.kind == UnitKind.TRANSLATION:
                self._supervisor.arm(unit.id, TimeoutLayer.GRACE)
            return

        if self._response_unit_id is None and self._pending:
            self._unattributed_output_done = True

    def _complete_translation(self, unit_id: str, text: Optional[str]) -> None:
        unit: TranslationUnit = self._store.get(unit_id)
        if text:
            self._store.finalize(unit_id, text, CompletionReason.RESPONSE_END)
        elif unit.accumulated_text:
            self._store.finalize(unit_id, None, CompletionReason.RESPONSE_END)
        else:
            logger.info("final_transcript_empty", unit_id=unit_id)
            self._supervisor.arm(unit_id, TimeoutLayer.GRACE)
            return

        self._supervisor.resolve(unit_id)
        self._dispatcher.record_translation(self.session_id, unit.accumulated_text)
        self._channel.status("Translation complete")

    # -------------------------------------------------------------------------
    # Actions, timers, errors
    # -------------------------------------------------------------------------

    def _on_action_requested(self, event: InternalEvent) -> None:
        name = event.name or ""
        unit = self._store.open_unit
        unit_id = None
        if unit is not None and unit.kind != UnitKind.TRANSLATION and unit.kind.value == _action_unit_kind(name):
            unit_id = unit.id
            # The dispatch timeout bounds the wait from here on
            self._supervisor.resolve(unit_id)

        self._channel.status("Performing action...", action=name)
        self._dispatcher.dispatch_detached(
            name,
            event.arguments,
            call_id=event.call_id,
            session_id=self.session_id,
            unit_id=unit_id,
        )

    def _on_action_completed(self, result: ActionResult) -> None:
        if not isinstance(result, ActionResult):
            logger.warning("action_completed_without_result")
            return
        self._dispatcher.apply_result(result)

    def _on_timer_expired(self, event: InternalEvent) -> None:
        token: TimerToken = event.payload
        if not self._supervisor.handle_expiry(token):
            return

        unit = self._store.get(token.unit_id)
        if unit is None or unit.is_complete:
            return

        had_partial = bool(unit.accumulated_text)
        text = self._store.force_finalize(unit.id, None, RECOVERY_REASONS[token.layer])

        self._user_turn_active = False
        self._pending.clear()
        self._unattributed_output_done = False

        if had_partial and unit.kind == UnitKind.TRANSLATION:
            self._dispatcher.record_translation(self.session_id, text)
            self._channel.status("Translation complete")
        else:
            stall = TranscriptionStall(
                STALL_001,
                session_id=self.session_id,
                unit_id=unit.id,
                layer=token.layer.value,
            )
            self._channel.status(**stall.to_status())

    def _on_fatal_error(self, event: InternalEvent) -> None:
        self.halt()
        code = ERROR_CODE_MAP.get(event.error_code or "", TRANSPORT_003)
        if code.category != InterpreterErrorCategory.TRANSPORT:
            code = TRANSPORT_003
        error = TransportError(code, message=event.message, session_id=self.session_id)
        self._channel.status(**error.to_status())
        if self._lifecycle is not None:
            self._lifecycle.on_fatal_error(error)

    _HANDLERS = {
        InternalEventType.CHANNEL_READY: _on_channel_ready,
        InternalEventType.TURN_BEGIN: _on_turn_begin,
        InternalEventType.TURN_END: _on_turn_end,
        InternalEventType.UTTERANCE_FINALIZED: _on_utterance_finalized,
        InternalEventType.UTTERANCE_FAILED: _on_utterance_failed,
        InternalEventType.RESPONSE_BEGIN: _on_response_begin,
        InternalEventType.FRAGMENT: _on_fragment,
        InternalEventType.RESPONSE_END: _on_response_end,
        InternalEventType.OUTPUT_DONE: _on_output_done,
        InternalEventType.ACTION_REQUESTED: _on_action_requested,
        InternalEventType.TIMER_EXPIRED: _on_timer_expired,
        InternalEventType.FATAL_ERROR: _on_fatal_error,
    }


def _action_unit_kind(action_name: str) -> Optional[str]:
    try:
        return ACTION_UNIT_KINDS[MedicalActionType(action_name)].value
    except ValueError:
        return None
