"""
Unit Tests for the Serial Event Queue

Tests:
- Items are handled one at a time in enqueue order
- Handler errors do not stop the drain loop
- call() runs after everything already queued
- Items put while stopped are dropped
"""

import pytest
from interpreter.services.event_queue import SerialEventQueue


class TestSerialEventQueue:
    """Test the single-consumer drain loop."""

    @pytest.mark.asyncio
    async def test_handles_in_order(self):
        handled = []
        queue = SerialEventQueue("test")
        await queue.start(handled.append)

        for i in range(5):
            assert queue.put(i) is True
        await queue.join()

        assert handled == [0, 1, 2, 3, 4]
        await queue.stop()

    @pytest.mark.asyncio
    async def test_items_enqueued_by_handler_run_after_current(self):
        handled = []
        queue = SerialEventQueue("test")

        def handler(item):
            handled.append(f"start {item}")
            if item == "a":
                queue.put("b")
            handled.append(f"end {item}")

        await queue.start(handler)
        queue.put("a")
        await queue.join()

        assert handled == ["start a", "end a", "start b", "end b"]
        await queue.stop()

    @pytest.mark.asyncio
    async def test_handler_error_is_contained(self):
        handled = []

        def handler(item):
            if item == "bad":
                raise ValueError("boom")
            handled.append(item)

        queue = SerialEventQueue("test")
        await queue.start(handler)
        queue.put("bad")
        queue.put("good")
        await queue.join()

        assert handled == ["good"]
        assert queue.is_running
        await queue.stop()

    @pytest.mark.asyncio
    async def test_call_runs_after_queued_items(self):
        handled = []
        queue = SerialEventQueue("test")
        await queue.start(handled.append)

        queue.put(1)
        queue.put(2)
        result = await queue.call(lambda: list(handled))

        assert result == [1, 2]
        await queue.stop()

    @pytest.mark.asyncio
    async def test_call_propagates_exception(self):
        queue = SerialEventQueue("test")
        await queue.start(lambda item: None)

        def fail():
            raise RuntimeError("nope")

        with pytest.raises(RuntimeError):
            await queue.call(fail)
        await queue.stop()

    @pytest.mark.asyncio
    async def test_call_when_stopped_runs_inline(self):
        queue = SerialEventQueue("test")
        assert await queue.call(lambda: 42) == 42

    @pytest.mark.asyncio
    async def test_put_when_stopped_is_dropped(self):
        handled = []
        queue = SerialEventQueue("test")
        await queue.start(handled.append)
        await queue.stop()

        assert queue.put("late") is False
        assert queue.size == 0
        assert handled == []

    @pytest.mark.asyncio
    async def test_restart_after_stop(self):
        handled = []
        queue = SerialEventQueue("test")
        await queue.start(handled.append)
        await queue.stop()
        await queue.start(handled.append)

        queue.put("again")
        await queue.join()

        assert handled == ["again"]
        await queue.stop()
