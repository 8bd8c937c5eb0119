"""
In-flight request registry.

Coalesces concurrent requests for the same purpose into one underlying
operation: the first caller starts a task under a key, later callers with
the same key await that task, and the key is released when it finishes.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Hashable, TypeVar

from ...utils.logging_setup import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class InFlightMetrics:
    started: int = 0
    joined: int = 0


class InFlightRegistry:
    """Keyed registry of running tasks shared by concurrent callers."""

    def __init__(self) -> None:
        self._tasks: Dict[Hashable, asyncio.Task] = {}
        self._lock = asyncio.Lock()
        self.metrics = InFlightMetrics()

    def is_running(self, key: Hashable) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    async def run(self, key: Hashable, factory: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``factory()`` under ``key``, or join the task already running under it.

        A joiner being cancelled does not cancel the shared task.
        """
        async with self._lock:
            task = self._tasks.get(key)
            if task is not None and not task.done():
                self.metrics.joined += 1
                logger.debug(f"Joining in-flight {key}")
            else:
                task = asyncio.ensure_future(factory())
                self._tasks[key] = task
                self.metrics.started += 1
                task.add_done_callback(lambda done, k=key: self._release(k, done))
        return await asyncio.shield(task)

    def _release(self, key: Hashable, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]

    async def wait_idle(self) -> None:
        """Wait for every running task to finish (results and errors ignored)."""
        tasks = [task for task in self._tasks.values() if not task.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def __len__(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    def __contains__(self, key: Any) -> bool:
        return self.is_running(key)
