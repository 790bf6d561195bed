"""
Outbound Messages

Builds and sends the instructions the coordinator itself issues to the
backend: repeat-replay and medical action acknowledgment.

Both ask the backend for a new response. Those responses are self-requested
and must not be attributed to a translation unit, so the messenger counts
them until the router claims them at response-begin.
"""

import json
from typing import Any, Dict, List, Optional

from interpreter.core.logging import get_interpreter_logger, get_logger
from interpreter.services.transport import RealtimeTransport

logger = get_logger(__name__)
session_log = get_interpreter_logger(__name__)


REPEAT_PROMPT = 'REPEAT_COMMAND: Please repeat exactly: "{text}"'
REPEAT_INSTRUCTIONS = (
    'Say exactly this again: "{text}". '
    "Do not translate this instruction - just repeat the translation."
)
ACK_INSTRUCTIONS = (
    "ONLY say 'Done' - one word only. Do NOT say anything else. "
    "Do NOT provide explanations. Do NOT translate. Just 'Done'."
)


def build_repeat_messages(text: str) -> List[Dict[str, Any]]:
    """Messages that make the backend speak ``text`` again."""
    return [
        {
            "type": "conversation.item.create",
            "item": {
                "type": "message",
                "role": "user",
                "content": [{"type": "input_text", "text": REPEAT_PROMPT.format(text=text)}],
            },
        },
        {
            "type": "response.create",
            "response": {
                "modalities": ["text", "audio"],
                "instructions": REPEAT_INSTRUCTIONS.format(text=text),
            },
        },
    ]


def build_action_ack_messages(call_id: str, output: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Messages that return a function result and ask for a one-word reply."""
    return [
        {
            "type": "conversation.item.create",
            "item": {
                "type": "function_call_output",
                "call_id": call_id,
                "output": json.dumps(output),
            },
        },
        {
            "type": "response.create",
            "response": {
                "modalities": ["text", "audio"],
                "instructions": ACK_INSTRUCTIONS,
            },
        },
    ]


class OutboundMessenger:
    """Sends coordinator-issued messages and tracks self-requested responses."""

    def __init__(self, transport: RealtimeTransport):
        self._transport = transport
        self._self_requested = 0
        self._session_id: Optional[str] = None

    @property
    def pending_self_responses(self) -> int:
        return self._self_requested

    def reset(self, session_id: Optional[str] = None) -> None:
        self._self_requested = 0
        self._session_id = session_id

    def bind_session(self, session_id: str) -> None:
        self._session_id = session_id

    def send(self, message: Dict[str, Any]) -> bool:
        """Send one message. Transport failures are logged and reported as False."""
        try:
            sent = self._transport.send(message)
        except Exception as e:
            logger.error("outbound_send_failed", message_type=message.get("type"), error=str(e))
            return False
        if sent is False:
            logger.warning("outbound_channel_not_ready", message_type=message.get("type"))
            return False
        session_log.protocol_event(message.get("type", ""), session_id=self._session_id, direction="outbound")
        return True

    def send_repeat(self, text: str) -> bool:
        return self._send_requesting_response(build_repeat_messages(text))

    def send_action_ack(self, call_id: str, output: Dict[str, Any]) -> bool:
        return self._send_requesting_response(build_action_ack_messages(call_id, output))

    def claim_self_response(self) -> bool:
        """Consume one expected self-requested response, if any."""
        if self._self_requested > 0:
            self._self_requested -= 1
            return True
        return False

    def _send_requesting_response(self, messages: List[Dict[str, Any]]) -> bool:
        for message in messages:
            if not self.send(message):
                return False
        self._self_requested += 1
        return True
