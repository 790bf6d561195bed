"""
Interpreter error taxonomy for structured error tracking.

Provides the error classification used across the session coordinator:
- Error categories (TRANSPORT, TRANSCRIPTION, ACTION, PERSISTENCE, ...)
- Error codes with user-facing status text
- Recoverability and fatality flags

Only TRANSPORT errors end a session. Every other category is reported on the
status channel and the session keeps accepting utterances.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from interpreter.core.logging import get_logger

logger = get_logger(__name__)


class InterpreterErrorCategory(str, Enum):
    """Interpreter error categories for classification."""

    TRANSPORT = "transport"  # Channel / handshake failures (fatal)
    TRANSCRIPTION = "transcription"  # Stalled or failed transcripts (recovered locally)
    ACTION = "action"  # Medical action dispatch failures
    PERSISTENCE = "persistence"  # Storage collaborator failures (logged only)
    CLASSIFICATION = "classification"  # Low-confidence command detection
    PROTOCOL = "protocol"  # Malformed inbound events
    LIFECYCLE = "lifecycle"  # Invalid start/stop transitions
    INTERNAL = "internal"  # Invariant violations


@dataclass
class InterpreterErrorCode:
    """Interpreter error code with metadata."""

    code: str
    category: InterpreterErrorCategory
    description: str
    user_message: str
    recoverable: bool
    fatal: bool = False


# ============================================================================
# Transport Errors
# ============================================================================

TRANSPORT_001 = InterpreterErrorCode(
    code="TRANSPORT_001",
    category=InterpreterErrorCategory.TRANSPORT,
    description="Transport connection failed",
    user_message="Voice connection failed. Please check your internet connection and try again.",
    recoverable=False,
    fatal=True,
)

TRANSPORT_002 = InterpreterErrorCode(
    code="TRANSPORT_002",
    category=InterpreterErrorCategory.TRANSPORT,
    description="Transport handshake timed out",
    user_message="Connection timed out. The server might be busy, please try again.",
    recoverable=False,
    fatal=True,
)

TRANSPORT_003 = InterpreterErrorCode(
    code="TRANSPORT_003",
    category=InterpreterErrorCategory.TRANSPORT,
    description="Translation backend reported an error",
    user_message="AI service temporarily unavailable. Please try again in a few moments.",
    recoverable=False,
    fatal=True,
)

TRANSPORT_004 = InterpreterErrorCode(
    code="TRANSPORT_004",
    category=InterpreterErrorCategory.TRANSPORT,
    description="Transport connection lost",
    user_message="Voice connection lost. Please start a new interpretation session.",
    recoverable=False,
    fatal=True,
)

# ============================================================================
# Transcription Errors
# ============================================================================

STALL_001 = InterpreterErrorCode(
    code="STALL_001",
    category=InterpreterErrorCategory.TRANSCRIPTION,
    description="No completion signal before timeout",
    user_message="Translation took too long. Ready for the next speaker.",
    recoverable=True,
)

STALL_002 = InterpreterErrorCode(
    code="STALL_002",
    category=InterpreterErrorCategory.TRANSCRIPTION,
    description="Speech recognition failed",
    user_message="Speech recognition failed. Please try again.",
    recoverable=True,
)

# ============================================================================
# Medical Action Errors
# ============================================================================

ACTION_001 = InterpreterErrorCode(
    code="ACTION_001",
    category=InterpreterErrorCategory.ACTION,
    description="Lab order submission failed",
    user_message="Lab order submission failed. Please try again or contact IT support.",
    recoverable=True,
)

ACTION_002 = InterpreterErrorCode(
    code="ACTION_002",
    category=InterpreterErrorCategory.ACTION,
    description="Appointment scheduling failed",
    user_message="Appointment scheduling failed. Please try again or use the manual booking system.",
    recoverable=True,
)

ACTION_003 = InterpreterErrorCode(
    code="ACTION_003",
    category=InterpreterErrorCategory.ACTION,
    description="Unknown medical action requested",
    user_message="The requested action is not supported.",
    recoverable=True,
)

ACTION_004 = InterpreterErrorCode(
    code="ACTION_004",
    category=InterpreterErrorCategory.ACTION,
    description="No active session for medical action",
    user_message="No active session found. Please start a new medical interpretation session.",
    recoverable=True,
)

# ============================================================================
# Persistence Errors
# ============================================================================

PERSIST_001 = InterpreterErrorCode(
    code="PERSIST_001",
    category=InterpreterErrorCategory.PERSISTENCE,
    description="Saving message failed",
    user_message="Data storage issue. Your conversation is temporarily saved in memory.",
    recoverable=True,
)

PERSIST_002 = InterpreterErrorCode(
    code="PERSIST_002",
    category=InterpreterErrorCategory.PERSISTENCE,
    description="Ending session failed",
    user_message="Data storage issue. Your conversation is temporarily saved in memory.",
    recoverable=True,
)

PERSIST_003 = InterpreterErrorCode(
    code="PERSIST_003",
    category=InterpreterErrorCategory.PERSISTENCE,
    description="Summary generation failed",
    user_message="Medical summary generation failed. Your conversation is still saved.",
    recoverable=True,
)

PERSIST_004 = InterpreterErrorCode(
    code="PERSIST_004",
    category=InterpreterErrorCategory.PERSISTENCE,
    description="Medical action webhook request failed",
    user_message="The medical action service could not be reached.",
    recoverable=True,
)

# ============================================================================
# Protocol / Lifecycle / Internal Errors
# ============================================================================

PROTOCOL_001 = InterpreterErrorCode(
    code="PROTOCOL_001",
    category=InterpreterErrorCategory.PROTOCOL,
    description="Malformed protocol event",
    user_message="Received an unreadable message from the translation service.",
    recoverable=True,
)

LIFECYCLE_001 = InterpreterErrorCode(
    code="LIFECYCLE_001",
    category=InterpreterErrorCategory.LIFECYCLE,
    description="Invalid session lifecycle transition",
    user_message="A session is already running.",
    recoverable=True,
)

LIFECYCLE_002 = InterpreterErrorCode(
    code="LIFECYCLE_002",
    category=InterpreterErrorCategory.LIFECYCLE,
    description="No session to stop",
    user_message="No interpretation session is running.",
    recoverable=True,
)

LIFECYCLE_003 = InterpreterErrorCode(
    code="LIFECYCLE_003",
    category=InterpreterErrorCategory.LIFECYCLE,
    description="Session stopped before the channel was ready",
    user_message="Session start was cancelled.",
    recoverable=True,
)

INTERNAL_001 = InterpreterErrorCode(
    code="INTERNAL_001",
    category=InterpreterErrorCategory.INTERNAL,
    description="A translation unit is already open",
    user_message="Something unexpected happened. Please try again.",
    recoverable=True,
)


# ============================================================================
# Error Code Registry
# ============================================================================

ERROR_CODE_MAP: Dict[str, InterpreterErrorCode] = {
    "TRANSPORT_001": TRANSPORT_001,
    "TRANSPORT_002": TRANSPORT_002,
    "TRANSPORT_003": TRANSPORT_003,
    "TRANSPORT_004": TRANSPORT_004,
    "STALL_001": STALL_001,
    "STALL_002": STALL_002,
    "ACTION_001": ACTION_001,
    "ACTION_002": ACTION_002,
    "ACTION_003": ACTION_003,
    "ACTION_004": ACTION_004,
    "PERSIST_001": PERSIST_001,
    "PERSIST_002": PERSIST_002,
    "PERSIST_003": PERSIST_003,
    "PERSIST_004": PERSIST_004,
    "PROTOCOL_001": PROTOCOL_001,
    "LIFECYCLE_001": LIFECYCLE_001,
    "LIFECYCLE_002": LIFECYCLE_002,
    "LIFECYCLE_003": LIFECYCLE_003,
    "INTERNAL_001": INTERNAL_001,
}

_RECOVERY_ACTIONS: Dict[str, List[str]] = {
    "TRANSPORT_001": [
        "Check your internet connection",
        "Try refreshing the page",
        "If on a corporate network, contact IT about WebRTC/firewall settings",
    ],
    "TRANSPORT_002": [
        "Try again in a few moments",
        "Try switching to a different network",
    ],
    "TRANSPORT_004": [
        "Start a new interpretation session",
        "Check your internet connection",
    ],
    "ACTION_001": [
        "Try submitting the lab order again",
        "Use the manual lab ordering system as backup",
        "Contact IT support for assistance",
    ],
    "ACTION_002": [
        "Try scheduling the appointment again",
        "Use the manual appointment booking system",
        "Contact scheduling department directly",
    ],
}

_DEFAULT_RECOVERY_ACTIONS = [
    "Try again",
    "Restart the interpretation session if the problem continues",
]


def get_error_code(code: str) -> Optional[InterpreterErrorCode]:
    """Get error code by string code."""
    return ERROR_CODE_MAP.get(code)


def get_recovery_actions(code: str) -> List[str]:
    """Get user-facing recovery suggestions for an error code."""
    return list(_RECOVERY_ACTIONS.get(code, _DEFAULT_RECOVERY_ACTIONS))


class InterpreterError(Exception):
    """
    Interpreter exception with structured error info.

    Usage:
        raise TransportError(TRANSPORT_002, session_id="abc123")
        raise PersistenceFailure(PERSIST_001, original_error=e)
    """

    def __init__(
        self,
        error_code: InterpreterErrorCode,
        message: Optional[str] = None,
        session_id: Optional[str] = None,
        original_error: Optional[Exception] = None,
        **extra,
    ):
        self.error_code = error_code
        self.session_id = session_id
        self.original_error = original_error
        self.extra = extra

        self.message = message or error_code.description
        if original_error:
            self.message = f"{self.message}: {str(original_error)}"

        super().__init__(self.message)

        self._log_error()

    def _log_error(self):
        log_data = {
            "error_code": self.error_code.code,
            "category": self.error_code.category.value,
            "recoverable": self.error_code.recoverable,
            "message": self.message,
        }
        if self.session_id:
            log_data["session_id"] = self.session_id
        if self.extra:
            log_data.update(self.extra)

        if self.error_code.recoverable:
            logger.warning("interpreter_error", **log_data)
        else:
            logger.error("interpreter_error", **log_data)

    @property
    def is_recoverable(self) -> bool:
        return self.error_code.recoverable

    @property
    def is_fatal(self) -> bool:
        return self.error_code.fatal

    @property
    def user_message(self) -> str:
        return self.error_code.user_message

    def to_dict(self) -> dict:
        """Convert to dictionary for logging and notifications."""
        result = {
            "code": self.error_code.code,
            "category": self.error_code.category.value,
            "message": self.message,
            "recoverable": self.error_code.recoverable,
        }
        if self.session_id:
            result["session_id"] = self.session_id
        return result

    def to_status(self) -> dict:
        """Convert to the payload carried by a status notification."""
        return {
            "message": self.error_code.user_message,
            "is_error": True,
            "error_code": self.error_code.code,
            "recovery_actions": get_recovery_actions(self.error_code.code),
        }


class TransportError(InterpreterError):
    """Channel or handshake failure. Fatal to the session."""


class TranscriptionStall(InterpreterError):
    """No completion signal within the timeout. Recovered locally."""


class ActionDispatchFailure(InterpreterError):
    """A medical action call failed. The session continues."""


class PersistenceFailure(InterpreterError):
    """A save/summary call failed. Logged only."""


class ProtocolEventError(InterpreterError):
    """An inbound event payload could not be parsed."""


class LifecycleError(InterpreterError):
    """start()/stop() called from a state that does not allow it."""


class UnitAlreadyOpenError(InterpreterError):
    """A translation unit was opened while another one is still open."""
