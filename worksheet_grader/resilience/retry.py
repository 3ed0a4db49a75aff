"""
Retry with capped exponential backoff.

Wraps a fallible coroutine factory, retrying only errors tagged as
rate limiting, transient server failure or timeout.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from worksheet_grader.config import PipelineTuning
from worksheet_grader.errors import PipelineError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and backoff curve."""

    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    backoff_multiplier: float = 2.0

    @classmethod
    def from_tuning(cls, tuning: PipelineTuning) -> "RetryPolicy":
        return cls(
            max_retries=tuning.max_retries,
            base_delay_ms=tuning.base_delay_ms,
            max_delay_ms=tuning.max_delay_ms,
            backoff_multiplier=tuning.backoff_multiplier,
        )

    def delay_for(self, retry: int) -> float:
        """
        Calculate delay before a retry.

        Args:
            retry: Retry number, 1 for the first retry.

        Returns:
            Delay in seconds.
        """
        delay_ms = self.base_delay_ms * (self.backoff_multiplier ** (retry - 1))
        return min(delay_ms, self.max_delay_ms) / 1000.0


class RetryExecutor:
    """
    Runs an operation with retry on transient failures.

    Fatal errors are re-raised on the spot without spending the remaining
    budget. When the budget runs out the last error is re-raised unchanged.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._policy = policy or RetryPolicy()
        self._sleep = sleep

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
    ) -> T:
        """
        Call ``operation`` until it succeeds or fails for good.

        Args:
            operation: Zero-argument callable returning a fresh awaitable per attempt.
            policy: Override the executor's policy for this call.

        Returns:
            The operation's result.

        Raises:
            Exception: The fatal error, or the last error once retries are exhausted.
        """
        policy = policy or self._policy
        attempts = policy.max_retries + 1

        for attempt in range(1, attempts + 1):
            if attempt > 1:
                delay = policy.delay_for(attempt - 1)
                logger.info("Retrying in %.2fs (attempt %d/%d)", delay, attempt, attempts)
                await self._sleep(delay)

            try:
                result = await operation()
            except Exception as e:
                error = PipelineError.from_exception(e)
                if not error.retryable:
                    logger.warning(
                        "Attempt %d/%d failed with fatal %s error: %s",
                        attempt,
                        attempts,
                        error.kind.value,
                        e,
                    )
                    raise
                if attempt == attempts:
                    logger.warning(
                        "Attempt %d/%d failed with %s error, retries exhausted: %s",
                        attempt,
                        attempts,
                        error.kind.value,
                        e,
                    )
                    raise
                logger.info(
                    "Attempt %d/%d failed with retryable %s error: %s",
                    attempt,
                    attempts,
                    error.kind.value,
                    e,
                )
                continue

            logger.debug("Attempt %d/%d succeeded", attempt, attempts)
            return result

        # Unreachable: the loop either returns or raises
        raise PipelineError(f"Failed after {policy.max_retries} retries")
