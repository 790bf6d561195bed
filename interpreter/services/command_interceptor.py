"""
Command Interceptor - Priority Voice Command Classification

Classifies a finalized user utterance before ordinary translation proceeds.

Classification order is fixed:
1. Medical action keywords (lab order, then follow-up appointment)
2. Repeat keywords (English and Spanish)
3. Ordinary utterance

A medical action match stops classification immediately, even when the
utterance also contains a repeat keyword.

For ordinary utterances the source language is picked by a best-effort
heuristic: Spanish diacritics or a closed list of Spanish stop-words select
Spanish, anything else is treated as English. The heuristic can be wrong;
the result records whether it found any evidence.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Pattern, Tuple

from interpreter.core.logging import get_logger

logger = get_logger(__name__)


# ==============================================================================
# Enums
# ==============================================================================


class Language(str, Enum):
    """Languages of the two speakers."""

    ENGLISH = "en"  # Speaker A
    SPANISH = "es"  # Speaker B

    @property
    def other(self) -> "Language":
        return Language.SPANISH if self is Language.ENGLISH else Language.ENGLISH


class CommandKind(str, Enum):
    """Classification outcome."""

    REPEAT = "repeat"
    MEDICAL_ACTION = "medical_action"
    ORDINARY = "ordinary"


class MedicalActionType(str, Enum):
    """Medical actions the backend can be asked to perform.

    Values are the action (function) names used on the wire.
    """

    LAB_ORDER = "send_lab_order"
    FOLLOWUP_APPOINTMENT = "schedule_followup_appointment"


class Intent(str, Enum):
    """Intent indicator published for every finalized utterance."""

    TRANSLATION = "translation"
    LAB_ORDER = "lab_order"
    APPOINTMENT = "appointment"

    @property
    def label(self) -> str:
        return _INTENT_LABELS[self]


_INTENT_LABELS = {
    Intent.TRANSLATION: "Translation",
    Intent.LAB_ORDER: "Lab Order",
    Intent.APPOINTMENT: "Follow-up Appointment",
}


# ==============================================================================
# Keyword Tables
# ==============================================================================

# Checked in order, first match wins
MEDICAL_ACTION_KEYWORDS: List[Tuple[MedicalActionType, List[str]]] = [
    (
        MedicalActionType.LAB_ORDER,
        [
            "send lab order",
            "order tests",
            "get labs",
            "blood work",
            "run tests",
            "lab tests",
            "blood tests",
            "urine test",
            "x-ray",
            "scan",
        ],
    ),
    (
        MedicalActionType.FOLLOWUP_APPOINTMENT,
        [
            "schedule follow-up",
            "next appointment",
            "come back in",
            "see you again",
            "follow up",
            "schedule appointment",
            "book appointment",
        ],
    ),
]

REPEAT_KEYWORDS: List[str] = [
    "repeat that",
    "repeat",
    "say again",
    "repite eso",
    "repite",
    "otra vez",
    "repítelo",
    "dilo otra vez",
]

SPANISH_DIACRITICS = "ñáéíóúü"

SPANISH_STOP_WORDS: List[str] = [
    "el",
    "la",
    "es",
    "está",
    "son",
    "por",
    "para",
    "con",
    "sin",
    "muy",
    "más",
    "como",
    "qué",
    "cómo",
    "dónde",
    "cuándo",
]

ACTION_INTENTS = {
    MedicalActionType.LAB_ORDER: Intent.LAB_ORDER,
    MedicalActionType.FOLLOWUP_APPOINTMENT: Intent.APPOINTMENT,
}


def _keyword_pattern(keywords: List[str]) -> Pattern[str]:
    alternatives = "|".join(re.escape(k) for k in sorted(keywords, key=len, reverse=True))
    return re.compile(rf"(?<!\w)(?:{alternatives})(?!\w)")


_MEDICAL_ACTION_PATTERNS: List[Tuple[MedicalActionType, Pattern[str]]] = [
    (action, _keyword_pattern(keywords)) for action, keywords in MEDICAL_ACTION_KEYWORDS
]
_REPEAT_PATTERN = _keyword_pattern(REPEAT_KEYWORDS)
_SPANISH_PATTERN = re.compile(
    rf"[{SPANISH_DIACRITICS}]|\b(?:{'|'.join(SPANISH_STOP_WORDS)})\b"
)
_WHITESPACE = re.compile(r"\s+")


# ==============================================================================
# Data Classes
# ==============================================================================


@dataclass
class CommandMatch:
    """Result of classifying one utterance. Never persisted."""

    kind: CommandKind
    normalized_text: str
    action: Optional[MedicalActionType] = None
    matched_keyword: Optional[str] = None
    source_language: Optional[Language] = None
    target_language: Optional[Language] = None
    language_evidence: Optional[str] = None

    @property
    def intent(self) -> Intent:
        if self.kind == CommandKind.MEDICAL_ACTION and self.action is not None:
            return ACTION_INTENTS[self.action]
        return Intent.TRANSLATION

    @property
    def language_guessed(self) -> bool:
        """True when no language evidence was found and English was assumed."""
        return self.kind == CommandKind.ORDINARY and self.language_evidence is None


# ==============================================================================
# Classification
# ==============================================================================


def normalize_utterance(text: str) -> str:
    """Lower-case, trim and collapse whitespace."""
    return _WHITESPACE.sub(" ", (text or "").strip().lower())


def detect_language(normalized_text: str) -> Tuple[Language, Optional[str]]:
    """
    Best-effort source language detection.

    Returns:
        Tuple of (language, evidence). Evidence is the diacritic or stop-word
        that selected Spanish, or None when English was assumed.
    """
    match = _SPANISH_PATTERN.search(normalized_text)
    if match:
        return Language.SPANISH, match.group(0)
    return Language.ENGLISH, None


def classify_utterance(text: str) -> CommandMatch:
    """
    Classify a finalized user utterance.

    Args:
        text: Raw transcript text

    Returns:
        CommandMatch describing a repeat request, a medical action or an
        ordinary utterance with its translation direction
    """
    normalized = normalize_utterance(text)

    for action, pattern in _MEDICAL_ACTION_PATTERNS:
        match = pattern.search(normalized)
        if match:
            return CommandMatch(
                kind=CommandKind.MEDICAL_ACTION,
                normalized_text=normalized,
                action=action,
                matched_keyword=match.group(0),
            )

    match = _REPEAT_PATTERN.search(normalized)
    if match:
        return CommandMatch(
            kind=CommandKind.REPEAT,
            normalized_text=normalized,
            matched_keyword=match.group(0),
        )

    source, evidence = detect_language(normalized)
    if evidence is None:
        logger.debug("language_detection_defaulted", text_length=len(normalized))

    return CommandMatch(
        kind=CommandKind.ORDINARY,
        normalized_text=normalized,
        source_language=source,
        target_language=source.other,
        language_evidence=evidence,
    )
