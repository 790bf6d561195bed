"""
Resilience patterns: Retry Logic

Retry decorators with exponential backoff for transient failures of the
storage collaborator.

Usage:
    @retry_persistence_operation()
    async def call_storage():
        ...
"""

import logging

import httpx
import structlog
from tenacity import after_log, before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = structlog.get_logger(__name__)

# Connection-level failures worth another attempt. HTTP error statuses are
# not retried.
TRANSIENT_HTTP_ERRORS = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.ReadTimeout,
    httpx.RemoteProtocolError,
)


def retry_persistence_operation(max_attempts: int = 3, wait_min: float = 0.5, wait_max: float = 5.0):
    """
    Retry decorator for storage collaborator HTTP operations.

    Args:
        max_attempts: Maximum number of attempts including the first (default: 3)
        wait_min: Minimum backoff in seconds
        wait_max: Maximum backoff in seconds

    Usage:
        @retry_persistence_operation(max_attempts=2)
        async def save():
            ...
    """
    return retry(
        retry=retry_if_exception_type(TRANSIENT_HTTP_ERRORS),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=wait_min, max=wait_max),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        after=after_log(logger, logging.DEBUG),
        reraise=True,
    )
