"""
Realtime Transport Interface

The physical connection to the translation backend (signaling, media, data
channel) lives outside this package. The coordinator only needs the surface
below.
"""

from typing import Any, Callable, Dict, Optional, Protocol

InboundEventCallback = Callable[[Dict[str, Any]], None]
ConnectionStateCallback = Callable[[str], None]


class RealtimeTransport(Protocol):
    """Transport surface consumed by the session coordinator."""

    async def connect(
        self,
        on_event: InboundEventCallback,
        on_connection_state: ConnectionStateCallback,
    ) -> Optional[str]:
        """
        Acquire the channel.

        Inbound protocol events are delivered to ``on_event`` and connection
        state changes ("connecting", "connected", "failed", "disconnected",
        "closed") to ``on_connection_state``.

        Returns:
            Backend session id if the transport knows it, else None
        """
        ...

    def send(self, message: Dict[str, Any]) -> bool:
        """Send one JSON message. Returns False if the channel is not open."""
        ...

    async def close(self) -> None:
        """Tear the channel down."""
        ...
