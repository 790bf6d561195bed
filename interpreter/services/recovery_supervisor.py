"""
Recovery Supervisor

Layered timeouts that force completion of a stalled translation unit.

Two layers:
- Grace window: short wait after the backend reports its output finished,
  for transcript completion events that arrive late.
- Hard ceiling: from response-begin (and from unit open), independent of
  the grace window. No unit stays open longer than this.

Timers never touch unit state. On expiry they enqueue a TIMER_EXPIRED event
carrying a TimerToken; the router asks the supervisor whether the token is
still current before acting on it. Tokens are keyed by unit id and a
generation counter, so a cancelled timer that fires late, or a timer armed
for a superseded unit, is ignored.

States: IDLE -> ARMED -> RESOLVED | ESCALATED
"""

import asyncio
import itertools
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from interpreter.core.config import settings
from interpreter.core.logging import get_interpreter_logger, get_logger
from interpreter.schemas.realtime_events import InternalEvent, InternalEventType

logger = get_logger(__name__)
session_log = get_interpreter_logger(__name__)


class TimeoutLayer(str, Enum):
    """Recovery timeout layers."""

    GRACE = "grace"
    CEILING = "ceiling"


class SupervisorState(str, Enum):
    """Recovery supervisor state."""

    IDLE = "idle"  # No timers
    ARMED = "armed"  # At least one timer pending
    RESOLVED = "resolved"  # Unit completed normally
    ESCALATED = "escalated"  # Timer elapsed with unit still open


@dataclass(frozen=True)
class TimerToken:
    """Identifies one armed timer."""

    unit_id: str
    layer: TimeoutLayer
    generation: int


@dataclass
class RecoveryConfig:
    """Configuration for recovery timeouts."""

    grace_window_sec: float = 1.5
    hard_ceiling_sec: float = 4.0


class RecoverySupervisor:
    """
    Arms, cancels and validates recovery timers.

    Usage:
        supervisor = RecoverySupervisor(queue.put)
        supervisor.arm(unit_id, TimeoutLayer.CEILING)
        ...
        supervisor.resolve(unit_id)          # normal completion
        if supervisor.handle_expiry(token):  # TIMER_EXPIRED event
            store.force_finalize(token.unit_id)
    """

    def __init__(
        self,
        enqueue: Callable[[InternalEvent], object],
        config: Optional[RecoveryConfig] = None,
    ):
        self._enqueue = enqueue
        self._config = config or RecoveryConfig()
        self._timers: Dict[TimeoutLayer, Tuple[TimerToken, asyncio.Task]] = {}
        self._generation = itertools.count(1)
        self._state = SupervisorState.IDLE

    @property
    def config(self) -> RecoveryConfig:
        return self._config

    @property
    def state(self) -> SupervisorState:
        return self._state

    def is_armed(self, layer: TimeoutLayer, unit_id: Optional[str] = None) -> bool:
        entry = self._timers.get(layer)
        if entry is None:
            return False
        return unit_id is None or entry[0].unit_id == unit_id

    def arm(self, unit_id: str, layer: TimeoutLayer) -> TimerToken:
        """
        Arm a timer for ``unit_id``.

        The ceiling restarts on every call. An already armed grace window
        for the same unit is not extended.
        """
        existing = self._timers.get(layer)
        if existing is not None:
            token, _ = existing
            if layer == TimeoutLayer.GRACE and token.unit_id == unit_id:
                return token
            self._cancel(layer)

        delay = self._config.grace_window_sec if layer == TimeoutLayer.GRACE else self._config.hard_ceiling_sec
        token = TimerToken(unit_id=unit_id, layer=layer, generation=next(self._generation))
        task = asyncio.create_task(self._timeout(token, delay))
        self._timers[layer] = (token, task)
        self._state = SupervisorState.ARMED

        logger.debug("recovery_timer_armed", unit_id=unit_id, layer=layer.value, delay_sec=delay)
        return token

    def resolve(self, unit_id: str) -> None:
        """Cancel every timer for ``unit_id`` after a normal completion."""
        cancelled = False
        for layer in list(self._timers):
            if self._timers[layer][0].unit_id == unit_id:
                self._cancel(layer)
                cancelled = True
        if cancelled or self._state == SupervisorState.ARMED:
            self._state = SupervisorState.RESOLVED if not self._timers else SupervisorState.ARMED

    def cancel_all(self) -> None:
        """Cancel every pending timer (session stop)."""
        for layer in list(self._timers):
            self._cancel(layer)
        self._state = SupervisorState.IDLE

    def is_current(self, token: TimerToken) -> bool:
        entry = self._timers.get(token.layer)
        return entry is not None and entry[0] == token

    def handle_expiry(self, token: TimerToken) -> bool:
        """
        Validate an expired token.

        Returns:
            True if the caller must force-finalize ``token.unit_id``. Stale
            tokens return False.
        """
        if not self.is_current(token):
            logger.debug(
                "recovery_timer_stale",
                unit_id=token.unit_id,
                layer=token.layer.value,
                generation=token.generation,
            )
            return False

        for layer in list(self._timers):
            if self._timers[layer][0].unit_id == token.unit_id:
                self._cancel(layer)
        self._state = SupervisorState.ESCALATED
        session_log.warning("recovery_escalated", unit_id=token.unit_id, layer=token.layer.value)
        return True

    def _cancel(self, layer: TimeoutLayer) -> None:
        entry = self._timers.pop(layer, None)
        if entry is None:
            return
        _, task = entry
        if not task.done():
            task.cancel()

    async def _timeout(self, token: TimerToken, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return
        self._enqueue(InternalEvent(type=InternalEventType.TIMER_EXPIRED, payload=token))


def create_recovery_supervisor(enqueue: Callable[[InternalEvent], object]) -> RecoverySupervisor:
    """Create a recovery supervisor configured from settings."""
    config = RecoveryConfig(
        grace_window_sec=settings.RESPONSE_GRACE_WINDOW_SEC,
        hard_ceiling_sec=settings.RESPONSE_HARD_CEILING_SEC,
    )
    return RecoverySupervisor(enqueue, config=config)
