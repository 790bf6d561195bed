"""Realtime Protocol Event Schemas.

Pydantic schema for the inbound events emitted by the realtime translation
backend, and the table that normalizes them into the coordinator's small
internal vocabulary.

Both the backend's native event names (``response.audio_transcript.delta``)
and the canonical names (``streaming-fragment``) are accepted.

Internal Event Types:
- CHANNEL_READY: transport confirmed a channel
- TURN_BEGIN / TURN_END: user speech started / stopped
- UTTERANCE_FINALIZED / UTTERANCE_FAILED: user transcript available / failed
- RESPONSE_BEGIN / RESPONSE_END: translated response started / final transcript
- FRAGMENT: streamed translation text
- OUTPUT_DONE: backend finished producing output
- ACTION_REQUESTED: backend asked for a medical action
- FATAL_ERROR: backend or transport failure
- TIMER_EXPIRED / ACTION_COMPLETED: re-entrant events produced by the coordinator
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from interpreter.core.interpreter_errors import PROTOCOL_001, ProtocolEventError
from interpreter.core.logging import get_logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = get_logger(__name__)


# =============================================================================
# Inbound Schema
# =============================================================================


class RealtimeErrorDetail(BaseModel):
    """Error object carried by backend ``error`` events."""

    model_config = ConfigDict(extra="allow")

    type: Optional[str] = None
    code: Optional[str] = None
    message: Optional[str] = None


class RealtimeEvent(BaseModel):
    """Inbound protocol event.

    Only ``type`` is required. Unknown fields are kept so DEBUG logging can
    show the full payload.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str = Field(..., min_length=1)
    delta: Optional[str] = None
    transcript: Optional[str] = None
    text: Optional[str] = None
    name: Optional[str] = None
    arguments: Optional[Union[str, Dict[str, Any]]] = Field(None, alias="argumentsJson")
    call_id: Optional[str] = Field(None, alias="callId")
    message: Optional[str] = None
    error: Optional[Union[RealtimeErrorDetail, str]] = None
    session: Optional[Dict[str, Any]] = None


# =============================================================================
# Internal Vocabulary
# =============================================================================


class InternalEventType(str, Enum):
    """Normalized event kinds consumed by the protocol event router."""

    CHANNEL_READY = "channel_ready"
    STATUS_ONLY = "status_only"
    TURN_BEGIN = "turn_begin"
    TURN_END = "turn_end"
    UTTERANCE_FINALIZED = "utterance_finalized"
    UTTERANCE_FAILED = "utterance_failed"
    RESPONSE_BEGIN = "response_begin"
    FRAGMENT = "fragment"
    RESPONSE_END = "response_end"
    OUTPUT_DONE = "output_done"
    ACTION_REQUESTED = "action_requested"
    FATAL_ERROR = "fatal_error"

    # Produced by the coordinator itself
    TIMER_EXPIRED = "timer_expired"
    ACTION_COMPLETED = "action_completed"


@dataclass
class InternalEvent:
    """A normalized event ready for the router."""

    type: InternalEventType
    text: Optional[str] = None
    delta: Optional[str] = None
    name: Optional[str] = None
    arguments: Dict[str, Any] = field(default_factory=dict)
    call_id: Optional[str] = None
    message: Optional[str] = None
    error_code: Optional[str] = None
    session_id: Optional[str] = None
    raw_type: Optional[str] = None
    payload: Any = None


EVENT_TYPE_MAP: Dict[str, InternalEventType] = {
    # Native backend names
    "session.created": InternalEventType.CHANNEL_READY,
    "session.updated": InternalEventType.STATUS_ONLY,
    "input_audio_buffer.speech_started": InternalEventType.TURN_BEGIN,
    "input_audio_buffer.speech_stopped": InternalEventType.TURN_END,
    "conversation.item.input_audio_transcription.completed": InternalEventType.UTTERANCE_FINALIZED,
    "conversation.item.input_audio_transcription.failed": InternalEventType.UTTERANCE_FAILED,
    "response.created": InternalEventType.RESPONSE_BEGIN,
    "response.audio_transcript.delta": InternalEventType.FRAGMENT,
    "response.audio_transcript.done": InternalEventType.RESPONSE_END,
    "response.done": InternalEventType.OUTPUT_DONE,
    "response.function_call_arguments.done": InternalEventType.ACTION_REQUESTED,
    "error": InternalEventType.FATAL_ERROR,
    # Canonical names
    "channel-ready": InternalEventType.CHANNEL_READY,
    "turn-begin": InternalEventType.TURN_BEGIN,
    "turn-end": InternalEventType.TURN_END,
    "utterance-finalized": InternalEventType.UTTERANCE_FINALIZED,
    "utterance-failed": InternalEventType.UTTERANCE_FAILED,
    "response-begin": InternalEventType.RESPONSE_BEGIN,
    "streaming-fragment": InternalEventType.FRAGMENT,
    "response-end": InternalEventType.RESPONSE_END,
    "output-done": InternalEventType.OUTPUT_DONE,
    "action-requested": InternalEventType.ACTION_REQUESTED,
    "fatal-error": InternalEventType.FATAL_ERROR,
}

# Backend events that carry nothing the coordinator acts on
IGNORED_EVENT_TYPES = frozenset(
    {
        "input_audio_buffer.committed",
        "input_audio_buffer.cleared",
        "conversation.created",
        "conversation.item.created",
        "conversation.item.truncated",
        "conversation.item.deleted",
        "response.output_item.added",
        "response.output_item.done",
        "response.content_part.added",
        "response.content_part.done",
        "response.audio.delta",
        "response.audio.done",
        "response.text.delta",
        "response.text.done",
        "response.function_call_arguments.delta",
        "rate_limits.updated",
    }
)

FATAL_CONNECTION_STATES: Dict[str, str] = {
    "failed": "TRANSPORT_001",
    "disconnected": "TRANSPORT_004",
    "closed": "TRANSPORT_004",
}


def _parse_arguments(raw_type: str, arguments: Optional[Union[str, Dict[str, Any]]]) -> Dict[str, Any]:
    if arguments is None or arguments == "":
        return {}
    if isinstance(arguments, dict):
        return arguments
    try:
        parsed = json.loads(arguments)
    except (TypeError, ValueError) as e:
        logger.warning("action_arguments_unparseable", event_type=raw_type, error=str(e))
        return {}
    if not isinstance(parsed, dict):
        logger.warning("action_arguments_not_object", event_type=raw_type)
        return {}
    return parsed


def _error_message(event: RealtimeEvent) -> str:
    if isinstance(event.error, RealtimeErrorDetail) and event.error.message:
        return event.error.message
    if isinstance(event.error, str) and event.error:
        return event.error
    return event.message or "Unknown backend error"


def normalize_event(raw: Mapping[str, Any]) -> Optional[InternalEvent]:
    """
    Normalize one inbound protocol event.

    Args:
        raw: Decoded JSON event from the transport

    Returns:
        InternalEvent, or None when the event type is not one the
        coordinator acts on

    Raises:
        ProtocolEventError: The payload is not a valid event
    """
    if not isinstance(raw, Mapping):
        raise ProtocolEventError(PROTOCOL_001, message=f"Event is not an object: {type(raw).__name__}")

    try:
        event = RealtimeEvent.model_validate(dict(raw))
    except ValidationError as e:
        raise ProtocolEventError(PROTOCOL_001, original_error=e, event_type=raw.get("type"))

    kind = EVENT_TYPE_MAP.get(event.type)
    if kind is None:
        if event.type not in IGNORED_EVENT_TYPES:
            logger.debug("unknown_protocol_event", event_type=event.type)
        return None

    normalized = InternalEvent(type=kind, raw_type=event.type)

    if kind == InternalEventType.CHANNEL_READY:
        if event.session:
            normalized.session_id = event.session.get("id")
    elif kind == InternalEventType.FRAGMENT:
        normalized.delta = event.delta or ""
    elif kind in (InternalEventType.UTTERANCE_FINALIZED, InternalEventType.RESPONSE_END):
        normalized.text = event.transcript if event.transcript is not None else event.text
    elif kind == InternalEventType.UTTERANCE_FAILED:
        normalized.message = _error_message(event)
    elif kind == InternalEventType.ACTION_REQUESTED:
        normalized.name = event.name
        normalized.call_id = event.call_id
        normalized.arguments = _parse_arguments(event.type, event.arguments)
    elif kind == InternalEventType.FATAL_ERROR:
        normalized.message = _error_message(event)
        normalized.error_code = "TRANSPORT_003"

    return normalized


def normalize_connection_state(state: str) -> InternalEvent:
    """Map a transport connection-state change onto an internal event."""
    state = (state or "").lower()
    if state == "connected":
        return InternalEvent(type=InternalEventType.CHANNEL_READY, raw_type=f"connection.{state}")
    if state in FATAL_CONNECTION_STATES:
        return InternalEvent(
            type=InternalEventType.FATAL_ERROR,
            raw_type=f"connection.{state}",
            message=f"Connection {state}",
            error_code=FATAL_CONNECTION_STATES[state],
        )
    return InternalEvent(
        type=InternalEventType.STATUS_ONLY,
        raw_type=f"connection.{state}",
        message=f"Connection: {state}",
    )
