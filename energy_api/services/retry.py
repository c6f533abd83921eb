"""
RetryExecutor - bounded exponential backoff for retryable upstream outcomes.

Only RetryableFailure (HTTP 429/503) is retried. Success, EmptyNotFound and
FatalFailure return immediately. After the last attempt the final outcome is
returned as-is; translating it into a response-level failure is the caller's
job.
"""

import asyncio
import random
from typing import Awaitable, Callable

from loguru import logger

from energy_api.services.client import RetryableFailure, UpstreamOutcome

Sleep = Callable[[float], Awaitable[None]]


class RetryExecutor:
    """
    Usage:
        retry = RetryExecutor(max_attempts=3, base_delay=1.0)
        outcome = await retry.run(lambda: client.fetch(query))
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        jitter: float = 0.1,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.jitter = jitter
        self._sleep = sleep
        self._rng = rng or random.Random()

    def backoff(self, attempt: int) -> float:
        """Delay after the given 1-based failed attempt."""
        delay = self.base_delay * (2 ** (attempt - 1))
        if delay <= 0:
            return 0.0
        if self.jitter > 0:
            delay += self._rng.uniform(0, self.jitter * delay)
        return delay

    async def run(self, operation: Callable[[], Awaitable[UpstreamOutcome]]) -> UpstreamOutcome:
        """Execute operation, retrying while it reports a retryable failure."""
        outcome = await operation()
        attempt = 1

        while isinstance(outcome, RetryableFailure) and attempt < self.max_attempts:
            delay = self.backoff(attempt)
            logger.info(
                f"[Retry] Attempt {attempt} got HTTP {outcome.status_code}, "
                f"retrying in {delay:.2f}s..."
            )
            await self._sleep(delay)
            outcome = await operation()
            attempt += 1

        if isinstance(outcome, RetryableFailure):
            logger.error(f"[Retry] All {self.max_attempts} attempts failed")
        return outcome
