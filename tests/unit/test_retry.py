import asyncio

import pytest

from visionocr.core.errors import (
    InvalidRequestError,
    PipelineCancelled,
    RateLimitedError,
)
from visionocr.pdf_processing.retry import RetryPolicy, run_with_retry

from tests.helpers import make_settings


class Operation:
    def __init__(self, failures: list[Exception], value: str = "ok"):
        self.failures = list(failures)
        self.value = value
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.value


def _run(operation: Operation, policy: RetryPolicy):
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    outcome = asyncio.run(run_with_retry(operation, policy, label="test", sleep=fake_sleep))
    return outcome, delays


def test_policy_from_settings() -> None:
    policy = RetryPolicy.from_settings(make_settings(max_vision_retries=2, retry_backoff_seconds=1.5))
    assert policy.max_attempts == 3
    assert policy.backoff_seconds == 1.5


def test_backoff_doubles_after_each_failure() -> None:
    op = Operation([RateLimitedError("429")] * 3)
    outcome, delays = _run(op, RetryPolicy(max_attempts=4, backoff_seconds=2.0))

    assert outcome.succeeded
    assert delays == [2.0, 4.0, 8.0]


def test_transient_errors_are_retried_until_success() -> None:
    op = Operation([RateLimitedError("429"), RateLimitedError("429")])
    outcome, delays = _run(op, RetryPolicy(max_attempts=3, backoff_seconds=1.0))

    assert outcome.succeeded
    assert outcome.value == "ok"
    assert outcome.attempts == 3
    assert delays == [1.0, 2.0]


def test_exhausted_retries_return_the_last_error() -> None:
    op = Operation([RateLimitedError("first"), RateLimitedError("second")])
    outcome, delays = _run(op, RetryPolicy(max_attempts=2, backoff_seconds=1.0))

    assert not outcome.succeeded
    assert str(outcome.error).endswith("second")
    assert outcome.attempts == 2
    assert delays == [1.0]


def test_invalid_request_is_not_retried() -> None:
    op = Operation([InvalidRequestError("bad image")])
    outcome, delays = _run(op, RetryPolicy(max_attempts=3, backoff_seconds=1.0))

    assert not outcome.succeeded
    assert op.calls == 1
    assert delays == []


def test_unknown_errors_are_not_retried() -> None:
    op = Operation([KeyError("surprise")])
    outcome, _ = _run(op, RetryPolicy(max_attempts=3))
    assert op.calls == 1
    assert isinstance(outcome.error, KeyError)


def test_cancellation_propagates() -> None:
    op = Operation([PipelineCancelled("stop")])
    with pytest.raises(PipelineCancelled):
        _run(op, RetryPolicy(max_attempts=3))


def test_single_attempt_policy_never_sleeps() -> None:
    op = Operation([RateLimitedError("429")])
    outcome, delays = _run(op, RetryPolicy(max_attempts=1, backoff_seconds=1.0))

    assert not outcome.succeeded
    assert outcome.attempts == 1
    assert delays == []


def test_cancellation_during_backoff_propagates() -> None:
    op = Operation([RateLimitedError("429")])

    async def cancelled_sleep(delay: float) -> None:
        raise PipelineCancelled("deadline")

    with pytest.raises(PipelineCancelled):
        asyncio.run(
            run_with_retry(op, RetryPolicy(max_attempts=3), label="test", sleep=cancelled_sleep)
        )
    assert op.calls == 1
