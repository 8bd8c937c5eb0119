"""
Clock abstraction for live vs simulated time.

Escrow deadlines, cache lifetimes and batch pacing all read time through a
Clock so the same code runs against wall-clock time and against a clock that
tests advance by hand (e.g. skipping the 7-day escrow period).

Usage:
    # Live
    clock = SystemClock()
    now = clock.now()

    # Tests
    clock = SimulatedClock(start_time=datetime(2024, 1, 1, tzinfo=timezone.utc))
    clock.advance_by(timedelta(days=7))
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

logger = logging.getLogger(__name__)


class Clock(ABC):
    """
    Abstract clock interface.

    All time-dependent code should use Clock instead of direct time functions.
    """

    @abstractmethod
    def now(self) -> datetime:
        """
        Get current time.

        Returns:
            Current timezone-aware UTC datetime.
        """
        ...

    @abstractmethod
    def timestamp(self) -> float:
        """
        Get current timestamp (seconds since epoch).

        Returns:
            Unix timestamp as float.
        """
        ...

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """
        Sleep for specified duration.

        In live mode, this performs real sleep.
        In simulated mode, this advances time immediately.
        """
        ...

    def elapsed_since(self, reference: datetime) -> float:
        """Elapsed seconds since a reference datetime."""
        return (self.now() - reference).total_seconds()

    def is_after(self, target: datetime) -> bool:
        """Check if current time is after target."""
        return self.now() > target


class SystemClock(Clock):
    """Real system clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def timestamp(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class SimulatedClock(Clock):
    """
    Simulated clock for tests.

    Time advances only when explicitly advanced via advance_to() or
    advance_by(), or when code under test sleeps.
    """

    def __init__(self, start_time: datetime):
        if start_time.tzinfo is None:
            start_time = start_time.replace(tzinfo=timezone.utc)
        self._current_time = start_time

    def now(self) -> datetime:
        return self._current_time

    def timestamp(self) -> float:
        return self._current_time.timestamp()

    async def sleep(self, seconds: float) -> None:
        """Advance time immediately, yielding once so other tasks can run."""
        self.advance_by(timedelta(seconds=seconds))
        await asyncio.sleep(0)

    def advance_to(self, new_time: datetime) -> None:
        """
        Advance clock to new time.

        Raises:
            ValueError: If new_time is before current time.
        """
        if new_time.tzinfo is None:
            new_time = new_time.replace(tzinfo=timezone.utc)
        if new_time < self._current_time:
            raise ValueError(f"Cannot advance backwards: {self._current_time} -> {new_time}")
        logger.debug(f"Simulated clock {self._current_time} -> {new_time}")
        self._current_time = new_time

    def advance_by(self, delta: timedelta) -> None:
        """Advance clock by a duration."""
        self.advance_to(self._current_time + delta)
