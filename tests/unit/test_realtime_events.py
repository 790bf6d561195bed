"""
Unit Tests for Realtime Event Schemas

Tests:
- Native and canonical event names map to the same internal events
- Payload field extraction and aliases
- Malformed payloads raise ProtocolEventError
- Connection-state normalization
"""

import pytest
from interpreter.core.interpreter_errors import ProtocolEventError
from interpreter.schemas.realtime_events import (
    EVENT_TYPE_MAP,
    InternalEventType,
    normalize_connection_state,
    normalize_event,
)


class TestEventTypeMapping:
    """Test the normalization table."""

    @pytest.mark.parametrize(
        "native,canonical,expected",
        [
            ("session.created", "channel-ready", InternalEventType.CHANNEL_READY),
            ("input_audio_buffer.speech_started", "turn-begin", InternalEventType.TURN_BEGIN),
            ("input_audio_buffer.speech_stopped", "turn-end", InternalEventType.TURN_END),
            (
                "conversation.item.input_audio_transcription.completed",
                "utterance-finalized",
                InternalEventType.UTTERANCE_FINALIZED,
            ),
            ("response.created", "response-begin", InternalEventType.RESPONSE_BEGIN),
            ("response.audio_transcript.delta", "streaming-fragment", InternalEventType.FRAGMENT),
            ("response.audio_transcript.done", "response-end", InternalEventType.RESPONSE_END),
            ("response.function_call_arguments.done", "action-requested", InternalEventType.ACTION_REQUESTED),
            ("error", "fatal-error", InternalEventType.FATAL_ERROR),
        ],
    )
    def test_native_and_canonical_names(self, native, canonical, expected):
        assert EVENT_TYPE_MAP[native] == expected
        assert EVENT_TYPE_MAP[canonical] == expected
        assert normalize_event({"type": native}).type == expected
        assert normalize_event({"type": canonical}).type == expected

    def test_output_done(self):
        assert normalize_event({"type": "response.done"}).type == InternalEventType.OUTPUT_DONE

    def test_ignored_event_returns_none(self):
        assert normalize_event({"type": "input_audio_buffer.committed"}) is None

    def test_unknown_event_returns_none(self):
        assert normalize_event({"type": "something.new"}) is None

    def test_raw_type_is_kept(self):
        event = normalize_event({"type": "response.created"})
        assert event.raw_type == "response.created"


class TestPayloadExtraction:
    """Test field extraction per event type."""

    def test_fragment_delta(self):
        event = normalize_event({"type": "response.audio_transcript.delta", "delta": "ho"})
        assert event.delta == "ho"

    def test_utterance_transcript(self):
        event = normalize_event(
            {"type": "conversation.item.input_audio_transcription.completed", "transcript": "hello"}
        )
        assert event.text == "hello"

    def test_canonical_utterance_text(self):
        event = normalize_event({"type": "utterance-finalized", "text": "hello"})
        assert event.text == "hello"

    def test_response_end_without_text(self):
        event = normalize_event({"type": "response.audio_transcript.done"})
        assert event.text is None

    def test_channel_ready_session_id(self):
        event = normalize_event({"type": "session.created", "session": {"id": "sess_42"}})
        assert event.session_id == "sess_42"

    def test_action_arguments_json(self):
        event = normalize_event(
            {
                "type": "response.function_call_arguments.done",
                "name": "send_lab_order",
                "arguments": '{"tests": ["cbc"]}',
                "call_id": "call_9",
            }
        )
        assert event.name == "send_lab_order"
        assert event.arguments == {"tests": ["cbc"]}
        assert event.call_id == "call_9"

    def test_action_camel_case_aliases(self):
        event = normalize_event(
            {
                "type": "action-requested",
                "name": "send_lab_order",
                "argumentsJson": '{"priority": "stat"}',
                "callId": "call_3",
            }
        )
        assert event.arguments == {"priority": "stat"}
        assert event.call_id == "call_3"

    def test_unparseable_arguments_become_empty(self):
        event = normalize_event(
            {"type": "response.function_call_arguments.done", "name": "send_lab_order", "arguments": "{not json"}
        )
        assert event.arguments == {}

    def test_error_message_from_object(self):
        event = normalize_event({"type": "error", "error": {"message": "rate limited"}})
        assert event.message == "rate limited"
        assert event.error_code == "TRANSPORT_003"

    def test_error_message_from_top_level(self):
        event = normalize_event({"type": "fatal-error", "message": "boom"})
        assert event.message == "boom"


class TestMalformedEvents:
    """Test validation failures."""

    def test_missing_type(self):
        with pytest.raises(ProtocolEventError):
            normalize_event({"delta": "x"})

    def test_empty_type(self):
        with pytest.raises(ProtocolEventError):
            normalize_event({"type": ""})

    def test_not_an_object(self):
        with pytest.raises(ProtocolEventError):
            normalize_event(["response.created"])

    def test_wrong_field_type(self):
        with pytest.raises(ProtocolEventError):
            normalize_event({"type": "response.audio_transcript.delta", "delta": {"nested": True}})


class TestConnectionStates:
    """Test connection-state normalization."""

    def test_connected_is_channel_ready(self):
        assert normalize_connection_state("connected").type == InternalEventType.CHANNEL_READY

    @pytest.mark.parametrize(
        "state,code",
        [("failed", "TRANSPORT_001"), ("disconnected", "TRANSPORT_004"), ("closed", "TRANSPORT_004")],
    )
    def test_fatal_states(self, state, code):
        event = normalize_connection_state(state)
        assert event.type == InternalEventType.FATAL_ERROR
        assert event.error_code == code

    def test_other_states_are_status_only(self):
        event = normalize_connection_state("checking")
        assert event.type == InternalEventType.STATUS_ONLY
        assert "checking" in event.message
