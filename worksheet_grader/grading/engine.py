"""
Grading pipeline - the core orchestrator.

Runs one grading request through the rate gate, the retrying remote call,
stream consumption and result extraction. Every failure ends in an
offline fallback result, so callers always receive a usable answer.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable

from worksheet_grader.config import Settings, get_settings
from worksheet_grader.errors import ErrorKind, PipelineError
from worksheet_grader.grading.accumulator import StreamAccumulator, call_maybe_async
from worksheet_grader.grading.extractor import ResultExtractor
from worksheet_grader.grading.fallback import FallbackGenerator
from worksheet_grader.grading.llm_client import LLMClient
from worksheet_grader.grading.prompt_builder import PromptBuilder
from worksheet_grader.models import (
    FeedbackReport,
    FeedbackTone,
    GradingContext,
    GradingResult,
    PayloadKind,
    ProgressEvent,
    RawResponse,
    RequestDescriptor,
    StreamChunk,
)
from worksheet_grader.resilience.rate_gate import RateGate, shared_rate_gate
from worksheet_grader.resilience.retry import RetryExecutor, RetryPolicy

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Lifecycle states of one grading invocation."""

    IDLE = "idle"
    RATE_LIMITED = "rate_limited"
    CALLING = "calling"
    STREAMING = "streaming"
    PARSING = "parsing"
    SUCCEEDED = "succeeded"
    FALLEN_BACK = "fallen_back"


StateListener = Callable[[PipelineState], None]


class _Run:
    """State of a single invocation."""

    def __init__(self, request: RequestDescriptor, listener: StateListener | None):
        self.request = request
        self.state = PipelineState.IDLE
        self._listener = listener

    def transition(self, state: PipelineState) -> None:
        logger.debug("Pipeline %s -> %s", self.state.value, state.value)
        self.state = state
        if self._listener is not None:
            self._listener(state)

    async def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        """Deliver a progress event; sink failures are logged and ignored."""
        sink = self.request.progress_sink
        if sink is None:
            return
        try:
            await call_maybe_async(sink, ProgressEvent(type=event_type, payload=payload))
        except Exception as e:
            logger.warning("Progress sink failed on %s event: %s", event_type, e)


class GradingPipeline:
    """
    Resilient streaming grading pipeline.

    Stateless across invocations apart from the shared rate gate.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        llm_client: LLMClient | None = None,
        rate_gate: RateGate | None = None,
        retry_executor: RetryExecutor | None = None,
        extractor: ResultExtractor | None = None,
        fallback: FallbackGenerator | None = None,
        state_listener: StateListener | None = None,
    ):
        """
        Initialize the grading pipeline.

        Args:
            settings: Configuration settings. Uses global settings if not provided.
            llm_client: Remote transport. Built from settings if not provided.
            rate_gate: Gate spacing outbound calls. Defaults to the process-wide gate.
            retry_executor: Retry executor. Built from the tuning if not provided.
            extractor: Result extractor.
            fallback: Offline fallback generator.
            state_listener: Called with every state transition.
        """
        self._settings = settings or get_settings()
        self._tuning = self._settings.tuning()
        self._llm_client = llm_client or LLMClient(self._settings)
        self._rate_gate = rate_gate or shared_rate_gate(self._tuning.min_request_interval_ms)
        self._retry = retry_executor or RetryExecutor(RetryPolicy.from_tuning(self._tuning))
        self._extractor = extractor or ResultExtractor()
        self._fallback = fallback or FallbackGenerator()
        self._state_listener = state_listener

    async def grade_direct(self, request: RequestDescriptor) -> GradingResult | RawResponse:
        """
        Grade one submission.

        Never raises for pipeline failures: any error is logged and turned
        into a fallback result whose provenance records the reason.

        Args:
            request: The submission and its grading context.

        Returns:
            GradingResult, or RawResponse when a custom prompt override is set.
        """
        run = _Run(request, self._state_listener)
        context = request.context
        prompt = self._build_prompt(request)

        run.transition(PipelineState.RATE_LIMITED)
        await self._rate_gate.acquire()

        run.transition(PipelineState.CALLING)
        problem = self._settings.credential_problem()
        if problem is not None:
            logger.warning("No usable API key (%s); grading offline", problem.value)
            return await self._fall_back(run, prompt, problem)

        try:
            text, method = await asyncio.wait_for(
                self._call_remote(run, prompt),
                timeout=self._tuning.operation_timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Grading exceeded %.1fs; cancelled in-flight call",
                self._tuning.operation_timeout_s,
            )
            return await self._fall_back(run, prompt, ErrorKind.TIMEOUT)
        except Exception as e:
            error = PipelineError.from_exception(e)
            logger.error("Remote grading failed (%s): %s", error.kind.value, e)
            return await self._fall_back(run, prompt, error.kind)

        run.transition(PipelineState.PARSING)
        result: GradingResult | RawResponse
        if context.custom_prompt_override:
            result = RawResponse(custom_prompt_response=text, source_prompt=prompt)
        else:
            try:
                result = self._extractor.parse(text, context, processing_method=method)
            except PipelineError as e:
                logger.error("Could not extract grading result: %s", e)
                return await self._fall_back(run, prompt, e.kind)

        run.transition(PipelineState.SUCCEEDED)
        await run.emit("complete", result.model_dump(mode="json", by_alias=True))
        return result

    async def generate_feedback(
        self,
        result: GradingResult,
        context: GradingContext,
        tone: FeedbackTone = FeedbackTone.ENCOURAGING,
    ) -> FeedbackReport:
        """
        Write personalized feedback for a graded worksheet.

        Uses a single non-streaming call behind the same gate and retry
        policy; falls back to templated feedback on any failure.
        """
        await self._rate_gate.acquire()

        problem = self._settings.credential_problem()
        if problem is not None:
            logger.warning("No usable API key (%s); using templated feedback", problem.value)
            return self._fallback.generate_feedback(result, context, tone)

        prompt = PromptBuilder.build_feedback_prompt(result, context, tone)
        try:
            text = await asyncio.wait_for(
                self._retry.run(lambda: self._llm_client.call_once(prompt)),
                timeout=self._tuning.operation_timeout_s,
            )
            return self._extractor.parse_feedback(text)
        except asyncio.TimeoutError:
            logger.warning("Feedback generation timed out; using templated feedback")
        except Exception as e:
            error = PipelineError.from_exception(e)
            logger.error("Feedback generation failed (%s): %s", error.kind.value, e)

        return self._fallback.generate_feedback(result, context, tone)

    async def health_check(self) -> bool:
        """
        Check if the grading pipeline can reach the LLM.

        Returns:
            True if an API key is configured and the API is reachable.
        """
        if self._settings.credential_problem() is not None:
            return False
        return await self._llm_client.health_check()

    def _build_prompt(self, request: RequestDescriptor) -> str:
        context = request.context
        if context.custom_prompt_override:
            return context.custom_prompt_override

        if request.payload_kind == PayloadKind.IMAGE:
            return PromptBuilder.build_grading_prompt(context)

        text = request.payload
        if isinstance(text, bytes):
            text = text.decode("utf-8", errors="replace")
        return PromptBuilder.build_grading_prompt(context, text)

    def _should_stream(self, request: RequestDescriptor) -> bool:
        if request.payload_kind == PayloadKind.IMAGE:
            return True
        return request.payload_size >= self._settings.streaming_threshold_bytes

    async def _call_remote(self, run: _Run, prompt: str) -> tuple[str, str]:
        """
        Call the LLM and collect its full response text.

        Returns:
            Tuple of (response text, processing method).
        """
        request = run.request
        system_prompt = None
        if not request.context.custom_prompt_override:
            system_prompt = PromptBuilder.get_system_prompt()

        if not self._should_stream(request):
            text = await self._retry.run(
                lambda: self._llm_client.call_once(prompt, system_prompt=system_prompt)
            )
            return text, "direct"

        image: bytes | None = None
        if request.payload_kind == PayloadKind.IMAGE:
            image = request.payload if isinstance(request.payload, bytes) else request.payload.encode()

        stream = await self._retry.run(
            lambda: self._llm_client.open_stream(
                prompt,
                payload=image,
                mime_type=request.mime_type,
                system_prompt=system_prompt,
            )
        )

        run.transition(PipelineState.STREAMING)
        accumulator = StreamAccumulator(
            self._extractor,
            callback_throttle_ms=self._tuning.callback_throttle_ms,
            partial_interval=self._tuning.partial_extraction_interval,
        )

        async def on_chunk(chunk: StreamChunk, chunk_count: int) -> None:
            await run.emit(
                "chunk",
                {
                    "sequenceNumber": chunk.sequence_number,
                    "chunkCount": chunk_count,
                    "characters": chunk.cumulative_length,
                    "text": chunk.text,
                },
            )

        async def on_partial(partial: GradingResult) -> None:
            await run.emit("partial_results", partial.model_dump(mode="json", by_alias=True))

        text = await accumulator.consume(stream, on_chunk=on_chunk, on_partial=on_partial)
        return text, "streaming"

    async def _fall_back(
        self, run: _Run, prompt: str, reason: ErrorKind
    ) -> GradingResult | RawResponse:
        context = run.request.context
        result: GradingResult | RawResponse
        if context.custom_prompt_override:
            result = self._fallback.generate_raw(prompt, reason)
        else:
            result = self._fallback.generate(context, reason=reason)

        run.transition(PipelineState.FALLEN_BACK)
        logger.info("Returning fallback result (reason: %s)", reason.value)
        await run.emit("complete", result.model_dump(mode="json", by_alias=True))
        return result
