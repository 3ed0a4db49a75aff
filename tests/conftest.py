"""
Pytest configuration and fixtures.

Provides common test fixtures for all test modules.
"""

import asyncio
import json
import tempfile
from pathlib import Path
from typing import Any, Callable, Generator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from worksheet_grader.config import Settings
from worksheet_grader.grading import GradingPipeline
from worksheet_grader.models import (
    GradingContext,
    GradingResult,
    PayloadKind,
    QuestionResult,
    RequestDescriptor,
    StreamChunk,
)
from worksheet_grader.resilience import RateGate, RetryExecutor, RetryPolicy


# ==============================================================================
# Stream Helpers
# ==============================================================================


class FakeStream:
    """Async iterator over canned response chunks that records being closed."""

    def __init__(
        self,
        texts: list[str],
        error: Exception | None = None,
        delay: float = 0.0,
    ):
        self._texts = list(texts)
        self._error = error
        self._delay = delay
        self._index = 0
        self._total = 0
        self.closed = False

    def __aiter__(self) -> "FakeStream":
        return self

    async def __anext__(self) -> StreamChunk:
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._index < len(self._texts):
            text = self._texts[self._index]
            self._index += 1
            self._total += len(text)
            return StreamChunk(
                sequence_number=self._index,
                text=text,
                cumulative_length=self._total,
            )
        if self._error is not None:
            raise self._error
        raise StopAsyncIteration

    async def aclose(self) -> None:
        self.closed = True


def split_text(text: str, size: int = 40) -> list[str]:
    """Cut a response into fixed-size pieces."""
    return [text[i : i + size] for i in range(0, len(text), size)]


@pytest.fixture
def make_stream() -> Callable[..., FakeStream]:
    """Factory for fake response streams."""
    return FakeStream


# ==============================================================================
# Directory Fixtures
# ==============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# ==============================================================================
# Context and Request Fixtures
# ==============================================================================


@pytest.fixture
def sample_context() -> GradingContext:
    """Grading context for a grade 4 math worksheet."""
    return GradingContext(
        subject="Math",
        grade_level="Grade 4",
        student_name="Alex",
        assignment_name="Fractions Practice",
    )


@pytest.fixture
def sample_worksheet_text() -> str:
    """Worksheet as plain text with the student's answers."""
    return """Fractions Practice

1. What is 1/2 + 1/4?        Answer: 3/4
2. Simplify 6/8.             Answer: 4/6
"""


@pytest.fixture
def sample_request(sample_worksheet_text: str, sample_context: GradingContext) -> RequestDescriptor:
    """Text grading request without a progress sink."""
    return RequestDescriptor(
        payload=sample_worksheet_text,
        payload_kind=PayloadKind.TEXT,
        context=sample_context,
    )


# ==============================================================================
# LLM Response Fixtures
# ==============================================================================


@pytest.fixture
def sample_llm_response() -> str:
    """Sample LLM grading response in JSON format."""
    return json.dumps(
        {
            "totalScore": 80,
            "questions": [
                {
                    "number": 1,
                    "question": "What is 1/2 + 1/4?",
                    "studentAnswer": "3/4",
                    "correctAnswer": "3/4",
                    "score": 5,
                    "maxScore": 5,
                    "isCorrect": True,
                    "partialCredit": False,
                    "showWork": "2/4 + 1/4",
                    "hasCorrections": False,
                    "feedback": "Correct, nice use of a common denominator.",
                },
                {
                    "number": 2,
                    "question": "Simplify 6/8.",
                    "studentAnswer": "4/6",
                    "correctAnswer": "3/4",
                    "score": 3,
                    "maxScore": 5,
                    "isCorrect": False,
                    "partialCredit": True,
                    "showWork": "",
                    "hasCorrections": True,
                    "feedback": "Divide the numerator and denominator by the same number.",
                },
            ],
            "strengths": ["Adds fractions with unlike denominators"],
            "weaknesses": ["Simplifying fractions"],
            "commonErrors": ["Changing numerator and denominator by different amounts"],
            "recommendations": ["Practice finding the greatest common factor"],
            "presentationNotes": "Neat and easy to follow.",
            "visualElements": [],
        }
    )


@pytest.fixture
def sample_feedback_response() -> str:
    """Sample LLM feedback response in JSON format."""
    return json.dumps(
        {
            "summary": "Alex did well adding fractions.",
            "praise": "Your common denominators were spot on.",
            "improvements": "Review how to simplify fractions.",
            "nextSteps": "Try five simplification problems tonight.",
            "encouragement": "Keep it up, Alex!",
        }
    )


@pytest.fixture
def sample_grading_result() -> GradingResult:
    """Remote grading result matching the sample response."""
    return GradingResult(
        total_score=80,
        questions=(
            QuestionResult(number=1, score=5.0, max_score=5.0, is_correct=True, feedback="Correct"),
            QuestionResult(
                number=2, score=3.0, max_score=5.0, partial_credit=True, feedback="Simplify fully"
            ),
        ),
        strengths=("Adds fractions with unlike denominators",),
        weaknesses=("Simplifying fractions",),
        common_errors=("Changing numerator and denominator by different amounts",),
        recommendations=("Practice finding the greatest common factor",),
    )


# ==============================================================================
# Settings Fixtures
# ==============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with fast tuning."""
    return Settings(
        zenmux_api_key="test-api-key-for-testing",
        zenmux_base_url="https://test.api.local",
        zenmux_model="test-model",
        min_request_interval_ms=0,
        max_retries=2,
        base_delay_ms=1,
        max_delay_ms=5,
        callback_throttle_ms=0,
        partial_extraction_interval=1,
        streaming_threshold_bytes=0,
        operation_timeout_s=5.0,
    )


# ==============================================================================
# Mock Fixtures
# ==============================================================================


@pytest.fixture
def mock_llm_client(sample_llm_response: str) -> Generator[MagicMock, None, None]:
    """Mock the LLM client to avoid actual API calls."""
    with patch("worksheet_grader.grading.engine.LLMClient") as mock_class:
        mock_instance = MagicMock()
        mock_instance.open_stream = AsyncMock(
            side_effect=lambda *args, **kwargs: FakeStream(split_text(sample_llm_response))
        )
        mock_instance.call_once = AsyncMock(return_value=sample_llm_response)
        mock_instance.health_check = AsyncMock(return_value=True)
        mock_class.return_value = mock_instance
        yield mock_instance


@pytest.fixture
def make_pipeline(
    test_settings: Settings,
    mock_llm_client: MagicMock,
) -> Callable[..., GradingPipeline]:
    """
    Factory for pipelines wired to the mocked LLM client.

    Every pipeline gets its own zero-interval gate and a retry executor
    that does not actually sleep.
    """

    def factory(settings: Settings | None = None, **kwargs: Any) -> GradingPipeline:
        settings = settings or test_settings
        kwargs.setdefault("rate_gate", RateGate(0))
        kwargs.setdefault(
            "retry_executor",
            RetryExecutor(RetryPolicy.from_tuning(settings.tuning()), sleep=AsyncMock()),
        )
        return GradingPipeline(settings, **kwargs)

    return factory
