from __future__ import annotations

import random

import pytest

from energy_api.services.client import (
    EmptyNotFound,
    FatalFailure,
    RetryableFailure,
    Success,
)
from energy_api.services.retry import RetryExecutor
from tests.shared.fakes import RecordingSleep


def scripted(*outcomes):
    remaining = list(outcomes)
    calls = []

    async def operation():
        calls.append(1)
        return remaining.pop(0)

    return operation, calls


@pytest.mark.asyncio
async def test_retries_until_success_with_exponential_backoff() -> None:
    sleep = RecordingSleep()
    retry = RetryExecutor(max_attempts=3, base_delay=1.0, jitter=0.0, sleep=sleep)
    operation, calls = scripted(RetryableFailure(503), RetryableFailure(429), Success([{"a": 1}]))

    outcome = await retry.run(operation)

    assert outcome == Success([{"a": 1}])
    assert len(calls) == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_returns_last_retryable_failure_when_attempts_exhausted() -> None:
    sleep = RecordingSleep()
    retry = RetryExecutor(max_attempts=3, jitter=0.0, sleep=sleep)
    operation, calls = scripted(*[RetryableFailure(503)] * 3)

    outcome = await retry.run(operation)

    assert outcome == RetryableFailure(503)
    assert len(calls) == 3
    assert len(sleep.delays) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "outcome",
    [Success([]), EmptyNotFound(404), FatalFailure(RuntimeError("boom"))],
    ids=["success", "empty", "fatal"],
)
async def test_non_retryable_outcomes_return_immediately(outcome) -> None:
    sleep = RecordingSleep()
    retry = RetryExecutor(sleep=sleep)
    operation, calls = scripted(outcome)

    assert await retry.run(operation) is outcome
    assert len(calls) == 1
    assert sleep.delays == []


def test_backoff_jitter_stays_within_bounds() -> None:
    retry = RetryExecutor(base_delay=1.0, jitter=0.1, rng=random.Random(7))

    for attempt, base in ((1, 1.0), (2, 2.0)):
        delay = retry.backoff(attempt)
        assert base <= delay <= base * 1.1


def test_max_attempts_must_be_positive() -> None:
    with pytest.raises(ValueError):
        RetryExecutor(max_attempts=0)
