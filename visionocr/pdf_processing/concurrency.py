"""
Concurrency limiter for vision calls.

One limiter is created per pipeline run and shared by every chunk of every
page in that run, so a page with many chunks cannot starve the others.
Semaphore-based, with in-flight tracking for stats and tests.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from visionocr.utils.logging import get_logger

logger = get_logger("visionocr.pdf_processing.concurrency")


class ConcurrencyLimiter:
    """
    Counting semaphore around backend calls.

    Usage:
        limiter = ConcurrencyLimiter(5)
        async with limiter.slot():
            await backend.extract_text(...)
    """

    def __init__(self, max_concurrency: int):
        """
        Args:
            max_concurrency: Number of permits (must be > 0)
        """
        if max_concurrency <= 0:
            raise ValueError("max_concurrency must be greater than 0")
        self.max_concurrency = max_concurrency
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self.in_flight = 0
        self.peak_in_flight = 0
        self.total_acquired = 0

    async def acquire(self) -> None:
        await self._semaphore.acquire()
        self.in_flight += 1
        self.total_acquired += 1
        if self.in_flight > self.peak_in_flight:
            self.peak_in_flight = self.in_flight
        if self.in_flight == self.max_concurrency:
            logger.debug(
                "[LIMITER] All %d slots in use", self.max_concurrency
            )

    def release(self) -> None:
        self.in_flight -= 1
        self._semaphore.release()

    @asynccontextmanager
    async def slot(self) -> AsyncIterator["ConcurrencyLimiter"]:
        """Hold one permit for the duration of the block; always released."""
        await self.acquire()
        try:
            yield self
        finally:
            self.release()

    @property
    def remaining_capacity(self) -> int:
        return max(0, self.max_concurrency - self.in_flight)

    def get_stats(self) -> Dict:
        return {
            "max_capacity": self.max_concurrency,
            "in_flight": self.in_flight,
            "peak_in_flight": self.peak_in_flight,
            "total_acquired": self.total_acquired,
            "remaining_capacity": self.remaining_capacity,
            "utilization_percent": (self.in_flight / self.max_concurrency) * 100,
        }
