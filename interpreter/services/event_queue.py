"""
Serial Event Queue

Single-consumer asyncio queue. Exactly one handler body runs to completion
before the next item is taken. Transport events, timer expiries and detached
side-effect completions all enter through ``put`` so their relative order is
the order they were enqueued.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Optional

from interpreter.core.logging import get_logger

logger = get_logger(__name__)

EventHandler = Callable[[Any], None]


@dataclass
class _QueuedCall:
    """A function to run inside the drain loop, resolving a future."""

    fn: Callable[[], Any]
    future: asyncio.Future


class SerialEventQueue:
    """
    Cooperative single-threaded event drain.

    Usage:
        queue = SerialEventQueue()
        await queue.start(router.handle)
        queue.put(event)
        await queue.join()
        await queue.stop()
    """

    def __init__(self, name: str = "interpreter"):
        self._name = name
        self._queue: asyncio.Queue = asyncio.Queue()
        self._handler: Optional[EventHandler] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def size(self) -> int:
        return self._queue.qsize()

    async def start(self, handler: EventHandler) -> None:
        """Start the drain loop."""
        if self._running:
            return
        self._handler = handler
        self._queue = asyncio.Queue()
        self._running = True
        self._task = asyncio.create_task(self._drain_loop())
        logger.debug("event_queue_started", queue=self._name)

    async def stop(self) -> None:
        """Stop the drain loop and drop anything still queued."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        dropped = 0
        while not self._queue.empty():
            item = self._queue.get_nowait()
            self._queue.task_done()
            if isinstance(item, _QueuedCall) and not item.future.done():
                item.future.cancel()
            dropped += 1
        logger.debug("event_queue_stopped", queue=self._name, dropped=dropped)

    def put(self, item: Any) -> bool:
        """Enqueue an item. Items put while stopped are dropped."""
        if not self._running:
            logger.debug("event_queue_item_dropped", queue=self._name, item_type=type(item).__name__)
            return False
        self._queue.put_nowait(item)
        return True

    async def call(self, fn: Callable[[], Any]) -> Any:
        """Run ``fn`` inside the drain loop, after everything already queued."""
        if not self._running:
            return fn()
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait(_QueuedCall(fn=fn, future=future))
        return await future

    async def join(self) -> None:
        """Wait until every queued item has been handled."""
        if self._running:
            await self._queue.join()

    async def _drain_loop(self) -> None:
        try:
            while self._running:
                item = await self._queue.get()
                try:
                    if isinstance(item, _QueuedCall):
                        self._run_call(item)
                    else:
                        self._handler(item)
                except Exception as e:
                    logger.error(
                        "event_handler_error",
                        queue=self._name,
                        item_type=type(item).__name__,
                        error=str(e),
                        exc_info=True,
                    )
                finally:
                    self._queue.task_done()
        except asyncio.CancelledError:
            pass

    @staticmethod
    def _run_call(call: _QueuedCall) -> None:
        if call.future.done():
            return
        try:
            call.future.set_result(call.fn())
        except Exception as e:
            call.future.set_exception(e)
