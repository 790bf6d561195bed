"""
Unit Tests for Interpreter Session Logging

Tests:
- Runtime verbosity changes
- Level gating of session, latency and protocol event logs
- structlog configuration
"""

from unittest.mock import MagicMock

import pytest
import structlog
from interpreter.core.logging import (
    InterpreterLogger,
    InterpreterLogLevel,
    configure_logging,
    get_interpreter_log_level,
    get_interpreter_logger,
    set_interpreter_log_level,
)


@pytest.fixture(autouse=True)
def restore_log_level():
    previous = get_interpreter_log_level()
    yield
    set_interpreter_log_level(previous)


def make_logger() -> InterpreterLogger:
    session_log = InterpreterLogger("tests.session")
    session_log._logger = MagicMock()
    return session_log


class TestLogLevel:
    """Test verbosity gating."""

    def test_set_level(self):
        set_interpreter_log_level(InterpreterLogLevel.VERBOSE)
        assert get_interpreter_log_level() == InterpreterLogLevel.VERBOSE

    def test_minimal_keeps_errors_only(self):
        set_interpreter_log_level(InterpreterLogLevel.MINIMAL)
        session_log = make_logger()

        session_log.session_start("sess_1")
        session_log.info("session_id_adopted", session_id="sess_1")
        session_log.error("transport_failed", session_id="sess_1", error_code="TRANSPORT_001")

        session_log._logger.info.assert_not_called()
        session_log._logger.error.assert_called_once()

    def test_standard_hides_latency_and_protocol_events(self):
        set_interpreter_log_level(InterpreterLogLevel.STANDARD)
        session_log = make_logger()

        session_log.unit_opened("u1", "translation", session_id="sess_1")
        session_log.latency("unit_open_to_final", 820.0)
        session_log.protocol_event("response.created")
        session_log.debug("response_discarded")

        session_log._logger.info.assert_called_once()
        session_log._logger.debug.assert_not_called()

    def test_debug_logs_protocol_events(self):
        set_interpreter_log_level(InterpreterLogLevel.DEBUG)
        session_log = make_logger()

        session_log.protocol_event("response.create", direction="outbound")
        session_log.debug("response_discarded", session_id="sess_1")

        assert session_log._logger.debug.call_count == 2
        event_kwargs = session_log._logger.debug.call_args_list[0].kwargs
        assert event_kwargs["event_type"] == "response.create"
        assert event_kwargs["direction"] == "outbound"

    def test_loggers_are_cached_by_name(self):
        assert get_interpreter_logger("tests.cached") is get_interpreter_logger("tests.cached")


class TestConfigureLogging:
    """Test structlog setup."""

    def test_configures_structlog(self):
        try:
            configure_logging()
            assert structlog.is_configured() is True
        finally:
            structlog.reset_defaults()
