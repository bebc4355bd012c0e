"""
Unit tests for with_deadline and BackgroundTaskQueue.
"""

import asyncio
import pytest
from storykeeper.core.tasks import BackgroundTaskQueue, Ok, TimedOut, with_deadline


class TestWithDeadline:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_returns_ok_when_fast(self):
        async def work():
            return 42

        result = await with_deadline(work(), 1.0, fallback=0)
        assert isinstance(result, Ok)
        assert result.value == 42
        assert result.timed_out is False

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_returns_fallback_on_timeout(self):
        async def slow():
            await asyncio.sleep(5)
            return "late"

        result = await with_deadline(slow(), 0.01, fallback="empty")
        assert isinstance(result, TimedOut)
        assert result.value == "empty"
        assert result.timed_out is True

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_errors_propagate(self):
        async def broken():
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await with_deadline(broken(), 1.0, fallback=None)


class TestBackgroundTaskQueue:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_submit_returns_immediately(self):
        queue = BackgroundTaskQueue("t")
        started = asyncio.Event()
        release = asyncio.Event()

        async def job():
            started.set()
            await release.wait()

        task = queue.submit(job(), label="job")
        assert task is not None
        assert queue.pending == 1
        await started.wait()
        release.set()
        await task
        assert queue.pending == 0
        assert queue.stats["completed"] == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failures_are_logged_not_raised(self):
        queue = BackgroundTaskQueue("t")

        async def job():
            raise RuntimeError("background failure")

        task = queue.submit(job(), label="failing")
        result = await task
        assert result is None
        assert queue.stats["failed"] == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_drain_cancels_stragglers(self):
        queue = BackgroundTaskQueue("t")

        async def forever():
            await asyncio.sleep(60)

        task = queue.submit(forever(), label="forever")
        await queue.drain(timeout=0.01)
        assert task.cancelled()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_submit_after_drain_is_dropped(self):
        queue = BackgroundTaskQueue("t")
        await queue.drain()

        async def job():
            return 1

        assert queue.submit(job(), label="late") is None
        assert queue.stats["submitted"] == 0
