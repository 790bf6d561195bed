"""
Interpretation Session Scenarios

End-to-end conversations through the coordinator with fake transport and
storage. A listener checks after every notification that at most one unit
is open.

Tests:
- Lab order confirmed without touching LastTranslation
- Ordinary English -> Spanish translation
- Stalled response recovered by the hard ceiling
- Stop with an open unit and failing persistence
- Mixed conversation
"""

import asyncio

import pytest
from interpreter.services.session_lifecycle import LifecycleState
from interpreter.services.translation_unit_store import CompletionReason, UnitKind

from tests.fakes import (
    NotificationRecorder,
    build_coordinator,
    delta,
    feed,
    function_call,
    open_units,
    response_created,
    response_done,
    speech_started,
    speech_stopped,
    transcript_done,
    translated_response,
    utterance,
)


class InvariantListener(NotificationRecorder):
    """Records notifications and the largest number of open units seen."""

    def __init__(self):
        super().__init__()
        self.coordinator = None
        self.max_open_units = 0

    def __call__(self, notification):
        super().__call__(notification)
        if self.coordinator is not None:
            self.max_open_units = max(self.max_open_units, len(open_units(self.coordinator)))


@pytest.fixture
def listener():
    return InvariantListener()


@pytest.fixture
def session(transport, backend, listener):
    coordinator = build_coordinator(transport, backend)
    listener.coordinator = coordinator
    coordinator.subscribe(listener)
    return coordinator


class TestScenarios:
    """Reference conversations."""

    @pytest.mark.asyncio
    async def test_lab_order(self, session, backend, listener):
        """Placeholder unit is confirmed by the dispatch result."""
        await session.start()
        await feed(session, utterance("hello"), *translated_response("hola"))

        await feed(session, speech_started(), speech_stopped(), utterance("send lab order"))
        placeholder = session.open_unit
        assert placeholder.kind == UnitKind.LAB_ORDER
        assert placeholder.display_text == "Processing lab order..."

        await feed(session, function_call("send_lab_order", {"tests": ["cbc", "bmp"]}))
        await session.wait_for_side_effects()

        unit = session.units[-1]
        assert unit.id == placeholder.id
        assert unit.accumulated_text == "Lab order sent"
        assert session.last_translation == "hola"
        assert backend.function_calls[0]["arguments"] == {"tests": ["cbc", "bmp"]}
        assert "Medical summary automatically generated after send_lab_order" in backend.messages_by_role("system")
        assert listener.max_open_units == 1
        await session.stop()

    @pytest.mark.asyncio
    async def test_ordinary_translation(self, session, listener):
        """Streamed fragments then the final text."""
        await session.start()

        await feed(session, utterance("hello"), response_created(), delta("h"), delta("o"), delta("la"))
        unit = session.open_unit
        assert unit.original_text == "hello"
        assert unit.target_language.value == "es"
        assert unit.accumulated_text == "hola"

        await feed(session, transcript_done("hola"), response_done())

        assert unit.accumulated_text == "hola"
        assert unit.is_complete is True
        assert session.last_translation == "hola"
        assert listener.max_open_units == 1
        await session.stop()

    @pytest.mark.asyncio
    async def test_stalled_response(self, session, listener):
        """No fragments and no response-end: the hard ceiling recovers."""
        await session.start()

        await feed(session, speech_started(), utterance("hello"), response_created())
        await asyncio.sleep(0.3)
        await session.drain()

        unit = session.units[0]
        assert unit.is_complete is True
        assert unit.forced is True
        assert unit.completion_reason == CompletionReason.CEILING_TIMEOUT
        assert unit.accumulated_text == "No response received - please try again"
        assert session.router.user_turn_active is False
        assert session.router.pending_fragments == []

        await feed(session, utterance("are you there"))
        assert session.open_unit is not None
        assert session.open_unit.original_text == "are you there"
        assert listener.max_open_units == 1
        await session.stop()

    @pytest.mark.asyncio
    async def test_stop_with_open_unit(self, session, backend, transport):
        """Open unit is force-finalized, failing persistence does not block IDLE."""
        backend.fail_end = True
        backend.fail_summary = True
        await session.start()
        await feed(session, utterance("hello"), response_created(), delta("ho"))

        await session.stop()

        unit = session.units[0]
        assert unit.is_complete is True
        assert unit.accumulated_text == "ho"
        assert unit.completion_reason == CompletionReason.SESSION_STOP
        assert session.state == LifecycleState.IDLE
        assert transport.closed is True


class TestConversation:
    """A longer mixed conversation."""

    @pytest.mark.asyncio
    async def test_mixed_conversation(self, session, backend, transport, listener):
        await session.start()

        # Clinician speaks
        await feed(session, speech_started(), speech_stopped(), utterance("where does it hurt"))
        await feed(session, *translated_response("¿dónde ", "le duele?"))

        # Patient answers, then asks for a repeat
        await feed(session, speech_started(), speech_stopped(), utterance("me duele el estómago"))
        await feed(session, *translated_response("my stomach ", "hurts"))
        assert session.last_translation == "my stomach hurts"

        await feed(session, utterance("¿puede repetir? otra vez"))
        await feed(session, *translated_response("my stomach hurts"))

        # Clinician orders labs and books a follow-up
        await feed(session, utterance("let's order tests"), function_call("send_lab_order", call_id="call_1"))
        await session.wait_for_side_effects()
        await feed(session, *translated_response("Done"))

        await feed(
            session,
            utterance("come back in two weeks"),
            function_call("schedule_followup_appointment", call_id="call_2"),
        )
        await session.wait_for_side_effects()
        await feed(session, *translated_response("Done"))

        kinds = [u.kind for u in session.units]
        assert kinds == [UnitKind.TRANSLATION, UnitKind.TRANSLATION, UnitKind.LAB_ORDER, UnitKind.APPOINTMENT]
        assert [u.accumulated_text for u in session.units] == [
            "¿dónde le duele?",
            "my stomach hurts",
            "Lab order sent",
            "Follow-up appointment scheduled",
        ]
        assert all(u.is_complete for u in session.units)
        assert session.last_translation == "my stomach hurts"
        assert listener.max_open_units == 1
        assert listener.error_statuses() == []

        await session.stop()
        assert backend.ended == ["sess_test"]
        assert backend.messages_by_role("assistant") == ["¿dónde le duele?", "my stomach hurts"]
