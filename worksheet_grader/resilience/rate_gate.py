"""
Process-wide spacing of outbound LLM calls.

The gate holds the only mutable state shared between grading runs: the
time the previous caller was released.
"""

import asyncio
import logging
import time
from functools import lru_cache
from typing import Callable

logger = logging.getLogger(__name__)


class RateGate:
    """
    Enforces a minimum interval between outbound calls.

    The read-compare-write of the last release time happens under one
    lock, so concurrent callers are released one at a time, in the order
    they started waiting, each at least ``min_interval_ms`` after the last.
    """

    def __init__(
        self,
        min_interval_ms: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the gate.

        Args:
            min_interval_ms: Minimum spacing between releases in milliseconds.
            clock: Monotonic clock in seconds. Injectable for tests.
        """
        if min_interval_ms < 0:
            raise ValueError("min_interval_ms must be >= 0")
        self._min_interval = min_interval_ms / 1000.0
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_release: float | None = None

    @property
    def min_interval_ms(self) -> int:
        return int(self._min_interval * 1000)

    async def acquire(self) -> float:
        """
        Wait until the caller may issue its call.

        Returns:
            The clock value at which the caller was released.
        """
        async with self._lock:
            if self._last_release is not None:
                wait = self._min_interval - (self._clock() - self._last_release)
                if wait > 0:
                    logger.debug("Rate gate holding caller for %.3fs", wait)
                # Sleep may wake early by the loop's clock resolution
                while wait > 0:
                    await asyncio.sleep(wait)
                    wait = self._min_interval - (self._clock() - self._last_release)
            self._last_release = self._clock()
            return self._last_release


@lru_cache()
def shared_rate_gate(min_interval_ms: int) -> RateGate:
    """
    Get the process-wide gate for an interval.

    Cached so every pipeline configured with the same interval shares one
    timestamp for the life of the process.
    """
    return RateGate(min_interval_ms)
