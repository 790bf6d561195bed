"""
Persistence Client

HTTP adapter for the storage collaborator: conversation messages, session
end, medical summaries and the medical-action webhook.

All calls are best-effort from the coordinator's point of view. This client
raises PersistenceFailure on non-2xx responses or exhausted retries; callers
decide whether that is only logged or surfaced as a status.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx
from interpreter.core.config import settings
from interpreter.core.interpreter_errors import (
    PERSIST_001,
    PERSIST_002,
    PERSIST_003,
    PERSIST_004,
    InterpreterErrorCode,
    PersistenceFailure,
)
from interpreter.core.logging import get_logger
from interpreter.core.resilience import retry_persistence_operation

logger = get_logger(__name__)


class PersistenceBackend(Protocol):
    """Interface of the storage collaborator."""

    async def save_message(
        self,
        session_id: str,
        role: str,
        content: str,
        meta: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        ...

    async def end_session(self, session_id: str) -> Dict[str, Any]:
        ...

    async def generate_summary(self, session_id: str) -> Dict[str, Any]:
        ...

    async def handle_function_call(
        self,
        function_name: str,
        arguments: Dict[str, Any],
        call_id: Optional[str],
        session_id: Optional[str],
    ) -> Dict[str, Any]:
        ...


@dataclass
class PersistenceClientConfig:
    """Configuration for the HTTP persistence client."""

    base_url: str = "http://localhost:8000"
    timeout_sec: float = 10.0
    max_retries: int = 2
    retry_wait_min_sec: float = 0.5
    retry_wait_max_sec: float = 5.0


class PersistenceClient:
    """
    httpx-based implementation of PersistenceBackend.

    Usage:
        client = create_persistence_client()
        await client.save_message(session_id, "user", "hello", {"confidence_score": 0.95})
        await client.aclose()
    """

    def __init__(
        self,
        config: Optional[PersistenceClientConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._config = config or PersistenceClientConfig()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=self._config.timeout_sec,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )
        self._retrying = retry_persistence_operation(
            max_attempts=self._config.max_retries + 1,
            wait_min=self._config.retry_wait_min_sec,
            wait_max=self._config.retry_wait_max_sec,
        )

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # -------------------------------------------------------------------------
    # PersistenceBackend
    # -------------------------------------------------------------------------

    async def save_message(
        self,
        session_id: str,
        role: str,
        content: str,
        meta: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"message_type": role, "content": content}
        meta = meta or {}
        if meta.get("audio_duration") is not None:
            body["audio_duration"] = meta["audio_duration"]
        if meta.get("confidence_score") is not None:
            body["confidence_score"] = meta["confidence_score"]

        return await self._post(f"/conversations/{session_id}/messages", body, PERSIST_001, session_id)

    async def end_session(self, session_id: str) -> Dict[str, Any]:
        return await self._post(f"/conversations/{session_id}/end", None, PERSIST_002, session_id)

    async def generate_summary(self, session_id: str) -> Dict[str, Any]:
        return await self._post(f"/conversations/{session_id}/medical-summary", None, PERSIST_003, session_id)

    async def handle_function_call(
        self,
        function_name: str,
        arguments: Dict[str, Any],
        call_id: Optional[str],
        session_id: Optional[str],
    ) -> Dict[str, Any]:
        body = {
            "function_name": function_name,
            "arguments": arguments,
            "call_id": call_id,
            "session_id": session_id,
        }
        return await self._post("/webhook/function-call", body, PERSIST_004, session_id)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _post(
        self,
        path: str,
        body: Optional[Dict[str, Any]],
        error_code: InterpreterErrorCode,
        session_id: Optional[str],
    ) -> Dict[str, Any]:
        try:
            response = await self._retrying(self._send)(path, body)
        except httpx.HTTPError as e:
            raise PersistenceFailure(error_code, session_id=session_id, original_error=e, path=path)

        if response.status_code >= 400:
            raise PersistenceFailure(
                error_code,
                message=f"{error_code.description}: HTTP {response.status_code}",
                session_id=session_id,
                path=path,
                status_code=response.status_code,
            )

        logger.debug("persistence_request_ok", path=path, status_code=response.status_code)
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError:
            logger.warning("persistence_response_not_json", path=path)
            return {}
        return data if isinstance(data, dict) else {"data": data}

    async def _send(self, path: str, body: Optional[Dict[str, Any]]) -> httpx.Response:
        return await self._client.post(path, json=body)


def create_persistence_client(
    client: Optional[httpx.AsyncClient] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> PersistenceClient:
    """Create a persistence client configured from settings."""
    config = PersistenceClientConfig(
        base_url=settings.PERSISTENCE_API_URL,
        timeout_sec=settings.PERSISTENCE_TIMEOUT_SEC,
        max_retries=settings.PERSISTENCE_MAX_RETRIES,
    )
    return PersistenceClient(config=config, client=client, transport=transport)
