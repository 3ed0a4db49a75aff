"""
Stream accumulator.

Buffers the incremental response, reports progress at a bounded rate, and
every few chunks tries to pull a partial grading result out of the
unfinished text.
"""

import inspect
import logging
import time
from typing import Any, AsyncIterator, Callable

from worksheet_grader.grading.extractor import ResultExtractor
from worksheet_grader.models import GradingResult, StreamChunk

logger = logging.getLogger(__name__)

Callback = Callable[..., Any]


async def call_maybe_async(callback: Callback | None, *args: Any) -> None:
    """Invoke a plain or coroutine callback."""
    if callback is None:
        return
    outcome = callback(*args)
    if inspect.isawaitable(outcome):
        await outcome


class StreamAccumulator:
    """
    Consumes one response stream.

    Two independent throttles apply: ``on_chunk`` fires on the first chunk
    and then at most once per ``callback_throttle_ms``; speculative
    extraction runs only on every ``partial_interval``-th chunk.
    """

    def __init__(
        self,
        extractor: ResultExtractor | None = None,
        callback_throttle_ms: int = 100,
        partial_interval: int = 5,
        clock: Callable[[], float] = time.monotonic,
    ):
        if partial_interval < 1:
            raise ValueError("partial_interval must be >= 1")
        self._extractor = extractor or ResultExtractor()
        self._throttle = callback_throttle_ms / 1000.0
        self._partial_interval = partial_interval
        self._clock = clock

    async def consume(
        self,
        stream: AsyncIterator[StreamChunk],
        on_chunk: Callback | None = None,
        on_partial: Callback | None = None,
        on_complete: Callback | None = None,
    ) -> str:
        """
        Read the stream to its end.

        Args:
            stream: Chunks in delivery order.
            on_chunk: Called with ``(chunk, chunk_count)``, throttled.
            on_partial: Called with each new partial GradingResult.
            on_complete: Called once with the full text after the last chunk.

        Returns:
            The concatenated response text.
        """
        parts: list[str] = []
        chunk_count = 0
        last_callback: float | None = None
        last_partial: GradingResult | None = None

        try:
            async for chunk in stream:
                parts.append(chunk.text)
                chunk_count += 1

                now = self._clock()
                if last_callback is None or now - last_callback >= self._throttle:
                    last_callback = now
                    await call_maybe_async(on_chunk, chunk, chunk_count)

                if chunk_count % self._partial_interval == 0:
                    partial = self._try_partial("".join(parts))
                    if partial is not None and not _same_content(partial, last_partial):
                        last_partial = partial
                        await call_maybe_async(on_partial, partial)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        text = "".join(parts)
        logger.debug("Stream finished after %d chunks, %d characters", chunk_count, len(text))
        await call_maybe_async(on_complete, text)
        return text

    def _try_partial(self, text: str) -> GradingResult | None:
        try:
            return self._extractor.parse_partial(text)
        except Exception as e:
            logger.debug("Speculative extraction discarded: %s", e)
            return None


def _same_content(current: GradingResult, previous: GradingResult | None) -> bool:
    if previous is None:
        return False
    exclude = {"graded_at"}
    return current.model_dump(exclude=exclude) == previous.model_dump(exclude=exclude)
