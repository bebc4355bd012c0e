"""
Deadline racing and fire-and-forget task submission.

- with_deadline(): race an awaitable against a duration and always come back
  with a value, either Ok(result) or TimedOut(fallback).
- BackgroundTaskQueue: owns background tasks spawned from request handlers.
  Errors are terminal to the task: they are logged, never raised to whoever
  submitted the work.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Generic, Optional, Set, TypeVar, Union
from storykeeper.core.logger import Logger

logger = Logger("Tasks")

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    timed_out: bool = False


@dataclass(frozen=True)
class TimedOut(Generic[T]):
    value: T
    timed_out: bool = True


DeadlineResult = Union[Ok[T], TimedOut[T]]


async def with_deadline(aw: Awaitable[T], seconds: float, fallback: T) -> DeadlineResult:
    """
    Await `aw` for at most `seconds`.

    On timeout the underlying work is cancelled and TimedOut(fallback) is
    returned. Exceptions raised by `aw` propagate; callers decide whether an
    error also maps to the fallback.
    """
    try:
        value = await asyncio.wait_for(aw, timeout=seconds)
    except asyncio.TimeoutError:
        return TimedOut(fallback)
    return Ok(value)


class BackgroundTaskQueue:
    """Tracks spawned tasks so they are neither garbage-collected nor orphaned."""

    def __init__(self, name: str = "background"):
        self.name = name
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False
        self.stats = {"submitted": 0, "completed": 0, "failed": 0}

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, coro: Awaitable[Any], label: str = "") -> Optional[asyncio.Task]:
        if self._closed:
            logger.warn(f"Queue {self.name} closed; dropping task {label}")
            # Close the coroutine so it is not reported as never awaited
            if asyncio.iscoroutine(coro):
                coro.close()
            return None

        task = asyncio.get_running_loop().create_task(self._run(coro, label))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self.stats["submitted"] += 1
        return task

    async def _run(self, coro: Awaitable[Any], label: str):
        try:
            result = await coro
            self.stats["completed"] += 1
            return result
        except asyncio.CancelledError:
            logger.warn(f"Background task cancelled: {label}")
            raise
        except Exception as e:
            self.stats["failed"] += 1
            logger.error(f"Background task failed: {label}", e)
            return None

    async def drain(self, timeout: float = 5.0):
        """Wait for in-flight tasks, cancelling whatever outlives `timeout`."""
        self._closed = True
        if not self._tasks:
            return
        pending = list(self._tasks)
        done, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warn(f"Cancelled {len(still_running)} background task(s) on shutdown")
            await asyncio.gather(*still_running, return_exceptions=True)
