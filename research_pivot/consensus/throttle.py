"""Clock abstraction and per-analyzer minimum-interval throttle."""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import AsyncIterator, Dict, Protocol

import structlog

logger = structlog.get_logger(__name__)


class Clock(Protocol):
    """Time source used by throttling and backoff so tests can run on virtual time."""

    def now(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Monotonic wall clock backed by asyncio.sleep."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)


class RateLimiter:
    """
    Enforces a minimum interval between calls to the same analyzer.

    The interval runs from the completion of one call to the dispatch of the
    next. Calls to one analyzer are serialized under a per-analyzer lock, so the
    last-call timestamp is never written concurrently. Different analyzers do
    not block each other.
    """

    def __init__(self, clock: Clock, min_interval: float):
        self.clock = clock
        self.min_interval = min_interval
        self._last_completed: Dict[str, float] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = asyncio.Lock()
        return lock

    def pending_delay(self, name: str) -> float:
        """Seconds until the next call to ``name`` may be dispatched."""
        last = self._last_completed.get(name)
        if last is None:
            return 0.0
        return max(0.0, self.min_interval - (self.clock.now() - last))

    @contextlib.asynccontextmanager
    async def slot(self, name: str) -> AsyncIterator[float]:
        """Hold the analyzer slot for one call; yields the throttle delay applied."""
        async with self._lock(name):
            delay = self.pending_delay(name)
            if delay > 0:
                logger.debug("analyzer_throttled", analyzer=name, delay=round(delay, 3))
                await self.clock.sleep(delay)
            try:
                yield delay
            finally:
                self._last_completed[name] = self.clock.now()
