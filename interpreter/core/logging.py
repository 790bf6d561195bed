"""
Structured logging configuration using structlog

Includes interpreter-session logging with configurable verbosity levels:
- MINIMAL: Errors only
- STANDARD: + Session lifecycle and translation unit lifecycle
- VERBOSE: + Latency measurements
- DEBUG: + Raw protocol events
"""

import logging
import sys
from enum import IntEnum
from typing import Dict, Optional

import structlog
from interpreter.core.config import settings


class InterpreterLogLevel(IntEnum):
    """Interpreter logging verbosity levels.

    Higher values include all lower level logs.
    """

    MINIMAL = 1  # Errors only
    STANDARD = 2  # + Session and unit lifecycle
    VERBOSE = 3  # + Latency measurements
    DEBUG = 4  # + Raw protocol events


_LOG_LEVEL_MAP = {
    "MINIMAL": InterpreterLogLevel.MINIMAL,
    "STANDARD": InterpreterLogLevel.STANDARD,
    "VERBOSE": InterpreterLogLevel.VERBOSE,
    "DEBUG": InterpreterLogLevel.DEBUG,
}

_interpreter_log_level: InterpreterLogLevel = _LOG_LEVEL_MAP.get(
    settings.INTERPRETER_LOG_LEVEL.upper(), InterpreterLogLevel.STANDARD
)


def get_interpreter_log_level() -> InterpreterLogLevel:
    """Get the current interpreter logging level."""
    return _interpreter_log_level


def set_interpreter_log_level(level: InterpreterLogLevel) -> None:
    """Set the interpreter logging level (useful for testing)."""
    global _interpreter_log_level
    _interpreter_log_level = level


def configure_logging():
    """Configure structured logging for the application"""
    log_level = logging.DEBUG if settings.DEBUG else logging.INFO

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if not settings.DEBUG else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = None):
    """
    Get a structured logger instance

    Args:
        name: Logger name (usually __name__ of the module)

    Returns:
        Structured logger instance
    """
    return structlog.get_logger(name)


# =============================================================================
# Interpreter Session Logging
# =============================================================================


class InterpreterLogger:
    """
    Session logger with configurable verbosity levels.

    Usage:
        session_log = get_interpreter_logger(__name__)

        # Always logged (errors)
        session_log.error("transport_failed", session_id=sid, error_code="TRANSPORT_001")

        # Logged at STANDARD+
        session_log.session_start(session_id=sid)
        session_log.unit_finalized(session_id=sid, unit_id=uid, reason="transcript")

        # Logged at VERBOSE+
        session_log.latency("unit_open_to_final", duration_ms=820.0)

        # Logged at DEBUG only
        session_log.protocol_event(session_id=sid, event_type="response.audio_transcript.delta")
    """

    def __init__(self, name: str):
        self._logger = structlog.get_logger(name)
        self._name = name

    def _should_log(self, min_level: InterpreterLogLevel) -> bool:
        return _interpreter_log_level >= min_level

    # -------------------------------------------------------------------------
    # MINIMAL level - Errors (always logged)
    # -------------------------------------------------------------------------

    def error(
        self,
        event: str,
        session_id: Optional[str] = None,
        error_code: Optional[str] = None,
        error_category: Optional[str] = None,
        recoverable: bool = False,
        **kwargs,
    ):
        """Log interpreter error (always logged at any level)."""
        self._logger.error(
            event,
            session_id=session_id,
            error_code=error_code,
            error_category=error_category,
            recoverable=recoverable,
            interpreter_log_level="MINIMAL",
            **kwargs,
        )

    def warning(self, event: str, session_id: Optional[str] = None, **kwargs):
        """Log interpreter warning (always logged at any level)."""
        self._logger.warning(
            event,
            session_id=session_id,
            interpreter_log_level="MINIMAL",
            **kwargs,
        )

    # -------------------------------------------------------------------------
    # STANDARD level - Session and unit lifecycle
    # -------------------------------------------------------------------------

    def session_start(self, session_id: str, **kwargs):
        """Log interpretation session start."""
        if not self._should_log(InterpreterLogLevel.STANDARD):
            return
        self._logger.info(
            "interpreter_session_start",
            session_id=session_id,
            interpreter_log_level="STANDARD",
            **kwargs,
        )

    def session_end(
        self,
        session_id: Optional[str],
        duration_ms: float,
        status: str = "completed",
        unit_count: int = 0,
        **kwargs,
    ):
        """Log interpretation session end."""
        if not self._should_log(InterpreterLogLevel.STANDARD):
            return
        self._logger.info(
            "interpreter_session_end",
            session_id=session_id,
            duration_ms=round(duration_ms, 2),
            status=status,
            unit_count=unit_count,
            interpreter_log_level="STANDARD",
            **kwargs,
        )

    def state_change(
        self,
        session_id: Optional[str],
        from_state: str,
        to_state: str,
        trigger: Optional[str] = None,
        **kwargs,
    ):
        """Log lifecycle state change."""
        if not self._should_log(InterpreterLogLevel.STANDARD):
            return
        self._logger.info(
            "interpreter_state_change",
            session_id=session_id,
            from_state=from_state,
            to_state=to_state,
            trigger=trigger,
            interpreter_log_level="STANDARD",
            **kwargs,
        )

    def unit_opened(self, unit_id: str, kind: str, session_id: Optional[str] = None, **kwargs):
        """Log translation unit creation."""
        if not self._should_log(InterpreterLogLevel.STANDARD):
            return
        self._logger.info(
            "translation_unit_opened",
            session_id=session_id,
            unit_id=unit_id,
            kind=kind,
            interpreter_log_level="STANDARD",
            **kwargs,
        )

    def unit_finalized(
        self,
        unit_id: str,
        reason: str,
        forced: bool = False,
        session_id: Optional[str] = None,
        **kwargs,
    ):
        """Log translation unit completion."""
        if not self._should_log(InterpreterLogLevel.STANDARD):
            return
        self._logger.info(
            "translation_unit_finalized",
            session_id=session_id,
            unit_id=unit_id,
            reason=reason,
            forced=forced,
            interpreter_log_level="STANDARD",
            **kwargs,
        )

    def info(self, event: str, session_id: Optional[str] = None, **kwargs):
        """Log generic info message at STANDARD level."""
        if not self._should_log(InterpreterLogLevel.STANDARD):
            return
        self._logger.info(
            event,
            session_id=session_id,
            interpreter_log_level="STANDARD",
            **kwargs,
        )

    # -------------------------------------------------------------------------
    # VERBOSE level - Latency measurements
    # -------------------------------------------------------------------------

    def latency(
        self,
        stage: str,
        duration_ms: float,
        session_id: Optional[str] = None,
        **kwargs,
    ):
        """Log stage latency."""
        if not self._should_log(InterpreterLogLevel.VERBOSE):
            return
        self._logger.info(
            "interpreter_latency",
            stage=stage,
            duration_ms=round(duration_ms, 2),
            session_id=session_id,
            interpreter_log_level="VERBOSE",
            **kwargs,
        )

    # -------------------------------------------------------------------------
    # DEBUG level - Raw protocol events
    # -------------------------------------------------------------------------

    def protocol_event(
        self,
        event_type: str,
        session_id: Optional[str] = None,
        direction: str = "inbound",
        **kwargs,
    ):
        """Log a protocol event (very verbose)."""
        if not self._should_log(InterpreterLogLevel.DEBUG):
            return
        self._logger.debug(
            "interpreter_protocol_event",
            session_id=session_id,
            event_type=event_type,
            direction=direction,
            interpreter_log_level="DEBUG",
            **kwargs,
        )

    def debug(self, event: str, session_id: Optional[str] = None, **kwargs):
        """Log generic debug message at DEBUG level."""
        if not self._should_log(InterpreterLogLevel.DEBUG):
            return
        self._logger.debug(
            event,
            session_id=session_id,
            interpreter_log_level="DEBUG",
            **kwargs,
        )


_interpreter_loggers: Dict[str, InterpreterLogger] = {}


def get_interpreter_logger(name: str = None) -> InterpreterLogger:
    """
    Get an interpreter session logger with configurable verbosity.

    Args:
        name: Logger name (usually __name__ of the module)

    Returns:
        InterpreterLogger instance
    """
    key = name or "__root__"
    if key not in _interpreter_loggers:
        _interpreter_loggers[key] = InterpreterLogger(name)
    return _interpreter_loggers[key]
