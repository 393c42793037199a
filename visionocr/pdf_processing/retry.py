"""
Retry policy for chunk extraction.

Failures come back as a value (RetryOutcome) instead of an exception so
they never cross the concurrency boundary.  Only errors marked
``retryable`` are retried; an invalid request fails on the first attempt.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, Field
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from visionocr.core.config import Settings
from visionocr.core.errors import PipelineCancelled
from visionocr.utils.logging import get_logger

logger = get_logger("visionocr.pdf_processing.retry")


def is_retryable(error: BaseException) -> bool:
    return bool(getattr(error, "retryable", False))


class RetryPolicy(BaseModel):
    max_attempts: int = Field(2, ge=1)
    backoff_seconds: float = Field(2.0, ge=0)

    @classmethod
    def from_settings(cls, cfg: Settings) -> "RetryPolicy":
        return cls(max_attempts=cfg.max_vision_attempts, backoff_seconds=cfg.retry_backoff_seconds)

    def retrying(self, sleep: Callable[[float], Awaitable[None]], label: str) -> AsyncRetrying:
        """tenacity controller: backoff, 2×backoff, 4×backoff, ..."""

        def log_retry(state: RetryCallState) -> None:
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                label, state.attempt_number, self.max_attempts,
                state.next_action.sleep, state.outcome.exception(),
            )

        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_seconds, exp_base=2),
            retry=retry_if_exception(is_retryable),
            sleep=sleep,
            before_sleep=log_retry,
            reraise=True,
        )


class RetryOutcome(BaseModel):
    value: Any = None
    error: Any = None  # The last exception when every attempt failed
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.error is None


async def run_with_retry(
    operation: Callable[[], Awaitable[Any]],
    policy: RetryPolicy,
    *,
    label: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RetryOutcome:
    """
    Call ``operation`` until it succeeds, fails permanently, or attempts
    run out.  PipelineCancelled always propagates.
    """
    attempts = 0
    try:
        async for attempt in policy.retrying(sleep, label):
            with attempt:
                attempts = attempt.retry_state.attempt_number
                value = await operation()
    except PipelineCancelled:
        raise
    except Exception as e:
        if is_retryable(e):
            logger.error("%s failed after %d attempt(s): %s", label, attempts, e)
        else:
            logger.error("%s failed with non-retryable error: %s", label, e)
        return RetryOutcome(error=e, attempts=attempts)

    return RetryOutcome(value=value, attempts=attempts)
