"""
Cooperative cancellation for a pipeline run.

A token combines an explicit ``cancel()`` with an optional wall-clock
deadline.  The orchestrator checks it at every state transition; the
extractor checks it before each chunk call, during retry backoff, and
races it against in-flight backend calls.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable

from visionocr.core.errors import PipelineCancelled


class CancellationToken:
    def __init__(self, deadline_seconds: float | None = None):
        self._event = asyncio.Event()
        self._deadline = (
            time.monotonic() + deadline_seconds if deadline_seconds is not None else None
        )
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if self.reason is None:
            self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            if self.reason is None:
                self.reason = "pipeline deadline exceeded"
            return True
        return False

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None without a deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self, stage: str) -> None:
        if self.cancelled:
            raise PipelineCancelled(f"Pipeline cancelled: {self.reason}", stage=stage)

    async def sleep(self, delay: float, stage: str = "extracting") -> None:
        """Sleep for ``delay`` seconds, waking early on cancellation."""
        timeout = delay
        remaining = self.remaining()
        if remaining is not None:
            timeout = min(timeout, remaining)
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(0.0, timeout))
        except asyncio.TimeoutError:
            pass
        self.raise_if_cancelled(stage)

    async def guard(self, awaitable: Awaitable[Any], stage: str = "extracting") -> Any:
        """
        Await ``awaitable`` unless the token fires first, in which case the
        call is cancelled and PipelineCancelled is raised.
        """
        self.raise_if_cancelled(stage)
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait(
                {task, waiter}, timeout=self.remaining(), return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()

        if task.done() and not task.cancelled():
            return task.result()

        await asyncio.gather(task, return_exceptions=True)
        if self.reason is None:
            self.reason = "pipeline deadline exceeded"
        raise PipelineCancelled(f"Pipeline cancelled: {self.reason}", stage=stage)
