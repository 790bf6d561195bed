"""
Presentation Channel

Publishes unit and status notifications to the presentation layer.

There is exactly one consumer: subscribing replaces the previous listener
(last subscriber wins). Listener failures are logged and never propagate
into the event-processing path.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from interpreter.core.logging import get_logger

logger = get_logger(__name__)


class NotificationType(str, Enum):
    """Notification kinds delivered to the presentation layer."""

    UNIT_CREATED = "unit_created"
    UNIT_UPDATED = "unit_updated"
    UNIT_FINALIZED = "unit_finalized"
    STATUS_CHANGED = "status_changed"


@dataclass
class Notification:
    """One notification for the presentation layer."""

    type: NotificationType
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


NotificationListener = Callable[[Notification], None]


class PresentationChannel:
    """Single-listener notification channel."""

    def __init__(self):
        self._listener: Optional[NotificationListener] = None
        self._last_status: Optional[Dict[str, Any]] = None

    def subscribe(self, listener: NotificationListener) -> Callable[[], None]:
        """
        Register the presentation listener, replacing any previous one.

        Returns:
            Function that removes the listener if it is still the current one
        """
        if self._listener is not None and self._listener is not listener:
            logger.debug("presentation_listener_replaced")
        self._listener = listener

        def unsubscribe() -> None:
            if self._listener is listener:
                self._listener = None

        return unsubscribe

    @property
    def has_listener(self) -> bool:
        return self._listener is not None

    @property
    def last_status(self) -> Optional[Dict[str, Any]]:
        return self._last_status

    def publish(self, notification_type: NotificationType, **payload) -> None:
        """Deliver a notification to the current listener."""
        if notification_type == NotificationType.STATUS_CHANGED:
            self._last_status = dict(payload)

        listener = self._listener
        if listener is None:
            return

        try:
            listener(Notification(type=notification_type, payload=payload))
        except Exception as e:
            logger.error(
                "presentation_listener_error",
                notification_type=notification_type.value,
                error=str(e),
            )

    def status(
        self,
        message: str,
        is_error: bool = False,
        **extra,
    ) -> None:
        """Publish a status change."""
        self.publish(
            NotificationType.STATUS_CHANGED,
            message=message,
            is_error=is_error,
            **extra,
        )
