"""
Unit Tests for the Command Interceptor

Tests:
- Medical action keyword detection (lab order, follow-up appointment)
- Repeat keyword detection in English and Spanish
- Fixed priority order (medical action before repeat)
- Word-boundary matching
- Best-effort language direction for ordinary utterances
"""

import pytest
from interpreter.services.command_interceptor import (
    CommandKind,
    Intent,
    Language,
    MedicalActionType,
    classify_utterance,
    detect_language,
    normalize_utterance,
)


class TestNormalization:
    """Test utterance normalization."""

    def test_lowercases_and_trims(self):
        assert normalize_utterance("  Hello THERE  ") == "hello there"

    def test_collapses_whitespace(self):
        assert normalize_utterance("send   lab\torder") == "send lab order"

    def test_none_is_empty(self):
        assert normalize_utterance(None) == ""


class TestMedicalActionDetection:
    """Test medical action keyword tables."""

    @pytest.mark.parametrize(
        "text",
        [
            "send lab order",
            "Please order tests for her",
            "we need to get labs today",
            "let's do some blood work",
            "I want to run tests",
            "I need an x-ray of the wrist",
            "schedule a scan",
        ],
    )
    def test_lab_order_keywords(self, text):
        match = classify_utterance(text)
        assert match.kind == CommandKind.MEDICAL_ACTION
        assert match.action == MedicalActionType.LAB_ORDER
        assert match.intent == Intent.LAB_ORDER

    @pytest.mark.parametrize(
        "text",
        [
            "schedule follow-up",
            "your next appointment is on monday",
            "come back in two weeks",
            "we will follow up next month",
            "book appointment for friday",
        ],
    )
    def test_appointment_keywords(self, text):
        match = classify_utterance(text)
        assert match.kind == CommandKind.MEDICAL_ACTION
        assert match.action == MedicalActionType.FOLLOWUP_APPOINTMENT
        assert match.intent == Intent.APPOINTMENT

    def test_lab_order_checked_before_appointment(self):
        match = classify_utterance("order tests and schedule appointment")
        assert match.action == MedicalActionType.LAB_ORDER

    def test_action_values_are_wire_names(self):
        assert MedicalActionType.LAB_ORDER.value == "send_lab_order"
        assert MedicalActionType.FOLLOWUP_APPOINTMENT.value == "schedule_followup_appointment"

    def test_keyword_inside_word_does_not_match(self):
        match = classify_utterance("the scanning machine is loud")
        assert match.kind == CommandKind.ORDINARY


class TestRepeatDetection:
    """Test repeat keyword table."""

    @pytest.mark.parametrize(
        "text",
        ["Repeat that", "could you repeat", "say again please", "repite eso", "otra vez", "repítelo", "dilo otra vez"],
    )
    def test_repeat_keywords(self, text):
        match = classify_utterance(text)
        assert match.kind == CommandKind.REPEAT
        assert match.intent == Intent.TRANSLATION

    def test_repeated_is_not_repeat(self):
        match = classify_utterance("the pain repeated twice")
        assert match.kind == CommandKind.ORDINARY


class TestPriority:
    """Medical action always wins over repeat."""

    def test_medical_action_beats_repeat(self):
        match = classify_utterance("repeat that and send lab order")
        assert match.kind == CommandKind.MEDICAL_ACTION
        assert match.action == MedicalActionType.LAB_ORDER

    def test_appointment_beats_spanish_repeat(self):
        match = classify_utterance("otra vez, book appointment")
        assert match.kind == CommandKind.MEDICAL_ACTION
        assert match.action == MedicalActionType.FOLLOWUP_APPOINTMENT


class TestLanguageDirection:
    """Test the best-effort language heuristic."""

    def test_english_translates_to_spanish(self):
        match = classify_utterance("hello")
        assert match.kind == CommandKind.ORDINARY
        assert match.source_language == Language.ENGLISH
        assert match.target_language == Language.SPANISH
        assert match.language_guessed is True

    def test_diacritic_selects_spanish(self):
        match = classify_utterance("Me duele mucho el estómago")
        assert match.source_language == Language.SPANISH
        assert match.target_language == Language.ENGLISH
        assert match.language_guessed is False

    def test_stop_word_selects_spanish(self):
        language, evidence = detect_language("tengo dolor con frecuencia")
        assert language == Language.SPANISH
        assert evidence == "con"

    def test_stop_word_inside_english_word_is_ignored(self):
        language, evidence = detect_language("yes the pain comes and goes")
        assert language == Language.ENGLISH
        assert evidence is None

    def test_other_language(self):
        assert Language.ENGLISH.other == Language.SPANISH
        assert Language.SPANISH.other == Language.ENGLISH


class TestIntentLabels:
    """Test intent indicator labels."""

    def test_labels(self):
        assert Intent.TRANSLATION.label == "Translation"
        assert Intent.LAB_ORDER.label == "Lab Order"
        assert Intent.APPOINTMENT.label == "Follow-up Appointment"
