"""
Translation Unit Store

Owns the translation units of the current session and their lifecycle.

Guarantees:
- At most one unit is open (not complete) at any time. ``open`` rejects a
  second unit; callers force-finalize the stale one first.
- Unit identity is stable once assigned.
- ``accumulated_text`` is append-only until the unit is finalized.
- Finalizing an already complete unit is a no-op. Upstream subsystems send
  several completion signals for the same utterance.

Every mutation is published to the presentation channel.
"""

import itertools
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from interpreter.core.interpreter_errors import INTERNAL_001, UnitAlreadyOpenError
from interpreter.core.logging import get_interpreter_logger, get_logger
from interpreter.services.command_interceptor import Language
from interpreter.services.presentation_channel import NotificationType, PresentationChannel

logger = get_logger(__name__)
session_log = get_interpreter_logger(__name__)


# ==============================================================================
# Enums
# ==============================================================================


class UnitKind(str, Enum):
    """What a unit tracks. Selects its fallback and confirmation texts."""

    TRANSLATION = "translation"
    LAB_ORDER = "lab_order"
    APPOINTMENT = "appointment"


class CompletionReason(str, Enum):
    """Why a unit was finalized."""

    RESPONSE_END = "response_end"
    ACTION_CONFIRMED = "action_confirmed"
    ACTION_FAILED = "action_failed"
    GRACE_TIMEOUT = "grace_timeout"
    CEILING_TIMEOUT = "ceiling_timeout"
    SUPERSEDED = "superseded"
    SESSION_STOP = "session_stop"


FALLBACK_TEXTS: Dict[UnitKind, str] = {
    UnitKind.TRANSLATION: "No response received - please try again",
    UnitKind.LAB_ORDER: "Lab order could not be confirmed - please try again",
    UnitKind.APPOINTMENT: "Appointment could not be confirmed - please try again",
}

PLACEHOLDER_TEXTS: Dict[UnitKind, str] = {
    UnitKind.LAB_ORDER: "Processing lab order...",
    UnitKind.APPOINTMENT: "Scheduling follow-up appointment...",
}

CONFIRMATION_TEXTS: Dict[UnitKind, str] = {
    UnitKind.LAB_ORDER: "Lab order sent",
    UnitKind.APPOINTMENT: "Follow-up appointment scheduled",
}


# ==============================================================================
# Data Classes
# ==============================================================================


@dataclass
class TranslationUnit:
    """One utterance's original text and its streamed translation."""

    id: str
    original_text: str
    original_language: Language
    target_language: Language
    kind: UnitKind = UnitKind.TRANSLATION
    accumulated_text: str = ""
    placeholder: Optional[str] = None
    is_complete: bool = False
    created_at: float = field(default_factory=time.time)
    completed_at: Optional[float] = None
    completion_reason: Optional[CompletionReason] = None
    forced: bool = False

    @property
    def display_text(self) -> str:
        """Text the presentation layer shows for this unit."""
        if self.accumulated_text:
            return self.accumulated_text
        return self.placeholder or ""

    @property
    def fallback_text(self) -> str:
        return FALLBACK_TEXTS[self.kind]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "original_text": self.original_text,
            "original_language": self.original_language.value,
            "target_language": self.target_language.value,
            "text": self.display_text,
            "is_complete": self.is_complete,
            "created_at": self.created_at,
            "completed_at": self.completed_at,
            "completion_reason": self.completion_reason.value if self.completion_reason else None,
            "forced": self.forced,
        }


# ==============================================================================
# Translation Unit Store
# ==============================================================================


class TranslationUnitStore:
    """
    Collection of translation units with a single open-unit handle.

    Usage:
        store = TranslationUnitStore(channel)
        unit_id = store.open("hello", Language.ENGLISH, Language.SPANISH)
        store.append(unit_id, "ho")
        store.append(unit_id, "la")
        store.finalize(unit_id, "hola", CompletionReason.RESPONSE_END)
    """

    def __init__(self, channel: Optional[PresentationChannel] = None):
        self._channel = channel or PresentationChannel()
        self._units: List[TranslationUnit] = []
        self._by_id: Dict[str, TranslationUnit] = {}
        self._open_unit: Optional[TranslationUnit] = None
        self._last_translation: str = ""
        self._sequence = itertools.count(1)
        self._session_id: Optional[str] = None

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def open_unit(self) -> Optional[TranslationUnit]:
        return self._open_unit

    @property
    def open_unit_id(self) -> Optional[str]:
        return self._open_unit.id if self._open_unit else None

    @property
    def units(self) -> List[TranslationUnit]:
        return list(self._units)

    @property
    def last_translation(self) -> str:
        return self._last_translation

    def get(self, unit_id: str) -> Optional[TranslationUnit]:
        return self._by_id.get(unit_id)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def open(
        self,
        original_text: str,
        original_language: Language,
        target_language: Language,
        kind: UnitKind = UnitKind.TRANSLATION,
        placeholder: Optional[str] = None,
    ) -> str:
        """
        Open a new unit.

        Raises:
            UnitAlreadyOpenError: Another unit is still open
        """
        if self._open_unit is not None:
            raise UnitAlreadyOpenError(
                INTERNAL_001,
                session_id=self._session_id,
                open_unit_id=self._open_unit.id,
            )

        unit = TranslationUnit(
            id=f"unit_{next(self._sequence)}",
            original_text=original_text,
            original_language=original_language,
            target_language=target_language,
            kind=kind,
            placeholder=placeholder,
        )
        self._units.append(unit)
        self._by_id[unit.id] = unit
        self._open_unit = unit

        session_log.unit_opened(unit.id, kind.value, session_id=self._session_id)
        self._channel.publish(NotificationType.UNIT_CREATED, unit=unit.to_dict())
        return unit.id

    def append(self, unit_id: str, fragment: str) -> bool:
        """
        Append a streamed fragment to the open unit.

        Returns:
            True if the fragment was applied. Fragments for any unit other
            than the open one are ignored.
        """
        unit = self._open_unit
        if unit is None or unit.id != unit_id:
            logger.warning(
                "fragment_for_inactive_unit",
                unit_id=unit_id,
                open_unit_id=self.open_unit_id,
            )
            return False
        if not fragment:
            return False

        unit.accumulated_text += fragment
        self._channel.publish(NotificationType.UNIT_UPDATED, unit=unit.to_dict())
        return True

    def finalize(
        self,
        unit_id: str,
        final_text: Optional[str] = None,
        reason: CompletionReason = CompletionReason.RESPONSE_END,
    ) -> bool:
        """
        Complete a unit with its delivered text.

        An empty ``final_text`` keeps the accumulated text.

        Returns:
            True if the unit changed state, False if it was already complete
            or unknown
        """
        unit = self._by_id.get(unit_id)
        if unit is None:
            logger.warning("finalize_unknown_unit", unit_id=unit_id)
            return False
        if unit.is_complete:
            logger.debug("finalize_ignored_already_complete", unit_id=unit_id, reason=reason.value)
            return False

        if final_text:
            unit.accumulated_text = final_text
        self._complete(unit, reason, forced=False)

        if unit.kind == UnitKind.TRANSLATION and unit.accumulated_text:
            self._last_translation = unit.accumulated_text
        return True

    def force_finalize(
        self,
        unit_id: str,
        fallback_text: Optional[str] = None,
        reason: CompletionReason = CompletionReason.CEILING_TIMEOUT,
    ) -> Optional[str]:
        """
        Complete a stalled unit with the best text available.

        Accumulated streamed text wins over ``fallback_text``; the unit's own
        fallback string is used when neither is present.

        Returns:
            The text the unit was completed with, or None if the unit was
            already complete or unknown
        """
        unit = self._by_id.get(unit_id)
        if unit is None or unit.is_complete:
            return None

        used_partial = bool(unit.accumulated_text)
        if not used_partial:
            unit.accumulated_text = fallback_text or unit.fallback_text
        self._complete(unit, reason, forced=True)

        if used_partial and unit.kind == UnitKind.TRANSLATION:
            self._last_translation = unit.accumulated_text
        return unit.accumulated_text

    def reset(self, session_id: Optional[str] = None) -> None:
        """Drop all units for a new session. LastTranslation is cleared too."""
        self._units.clear()
        self._by_id.clear()
        self._open_unit = None
        self._last_translation = ""
        self._sequence = itertools.count(1)
        self._session_id = session_id

    def bind_session(self, session_id: str) -> None:
        """Use ``session_id`` in logs from now on. Units are kept."""
        self._session_id = session_id

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _complete(self, unit: TranslationUnit, reason: CompletionReason, forced: bool) -> None:
        unit.is_complete = True
        unit.completed_at = time.time()
        unit.completion_reason = reason
        unit.forced = forced
        if self._open_unit is unit:
            self._open_unit = None

        session_log.unit_finalized(unit.id, reason.value, forced=forced, session_id=self._session_id)
        session_log.latency(
            "unit_open_to_final",
            (unit.completed_at - unit.created_at) * 1000,
            session_id=self._session_id,
            unit_id=unit.id,
        )
        self._channel.publish(NotificationType.UNIT_FINALIZED, unit=unit.to_dict())
