"""
Unit Tests for Outbound Messages

Tests:
- Repeat and acknowledgment message shapes
- Self-requested response counting
- Transport failures are reported, not raised
"""

import json

from interpreter.services.outbound_messages import (
    OutboundMessenger,
    build_action_ack_messages,
    build_repeat_messages,
)
from tests.fakes import FakeTransport


class TestMessageBuilders:
    """Test wire message construction."""

    def test_repeat_messages(self):
        messages = build_repeat_messages("hola")

        assert [m["type"] for m in messages] == ["conversation.item.create", "response.create"]
        assert messages[0]["item"]["role"] == "user"
        assert '"hola"' in messages[0]["item"]["content"][0]["text"]
        assert messages[1]["response"]["modalities"] == ["text", "audio"]
        assert '"hola"' in messages[1]["response"]["instructions"]

    def test_ack_messages(self):
        messages = build_action_ack_messages("call_1", {"success": True, "order_id": "ord_1"})

        item = messages[0]["item"]
        assert item["type"] == "function_call_output"
        assert item["call_id"] == "call_1"
        assert json.loads(item["output"]) == {"success": True, "order_id": "ord_1"}
        assert "Done" in messages[1]["response"]["instructions"]


class TestOutboundMessenger:
    """Test sending and self-response bookkeeping."""

    def test_repeat_counts_self_response(self):
        transport = FakeTransport()
        messenger = OutboundMessenger(transport)

        assert messenger.send_repeat("hola") is True

        assert transport.sent_types() == ["conversation.item.create", "response.create"]
        assert messenger.pending_self_responses == 1

    def test_claim_consumes_one(self):
        messenger = OutboundMessenger(FakeTransport())
        messenger.send_repeat("hola")
        messenger.send_action_ack("call_1", {"success": True})

        assert messenger.claim_self_response() is True
        assert messenger.claim_self_response() is True
        assert messenger.claim_self_response() is False

    def test_failed_send_is_not_counted(self):
        messenger = OutboundMessenger(FakeTransport(send_ok=False))

        assert messenger.send_repeat("hola") is False
        assert messenger.pending_self_responses == 0

    def test_transport_exception_is_reported(self):
        transport = FakeTransport()

        def explode(message):
            raise ConnectionError("channel closed")

        transport.send = explode
        messenger = OutboundMessenger(transport)

        assert messenger.send({"type": "response.create"}) is False

    def test_reset_clears_count(self):
        messenger = OutboundMessenger(FakeTransport())
        messenger.send_repeat("hola")
        messenger.reset("sess_2")
        assert messenger.pending_self_responses == 0
