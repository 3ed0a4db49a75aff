"""
Pydantic models for the Worksheet Grader pipeline.

These models define the schemas for:
- Grading requests and their context
- Stream chunks and progress events
- Grading results, raw custom-prompt responses and feedback reports

Attributes are snake_case; the camelCase aliases are the field names the
model is asked to produce, and are used when results are serialized.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from worksheet_grader.errors import ErrorKind


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


_RESULT_CONFIG = ConfigDict(
    frozen=True,
    strict=True,
    alias_generator=to_camel,
    populate_by_name=True,
)


# ==============================================================================
# Request Models
# ==============================================================================


class PayloadKind(str, Enum):
    """Kind of submission payload."""

    IMAGE = "image"
    TEXT = "text"


class ResultSource(str, Enum):
    """Provenance tag of a result."""

    REMOTE = "remote"
    FALLBACK = "fallback"


class GradingContext(BaseModel):
    """
    Read-only grading configuration for one submission.

    When ``custom_prompt_override`` is set it replaces the generated prompt
    entirely and the pipeline answers with a RawResponse.
    """

    model_config = ConfigDict(frozen=True)

    subject: str = Field(default="General", description="Subject of the worksheet")
    grade_level: str = Field(default="", description="Grade level of the student")
    student_name: str = Field(default="", description="Student's name")
    assignment_name: str = Field(default="", description="Worksheet or assignment title")
    rubric: str | None = Field(default=None, description="Optional grading rubric")
    custom_instructions: str | None = Field(
        default=None,
        description="Extra instructions appended to the generated prompt",
    )
    custom_prompt_override: str | None = Field(
        default=None,
        description="Prompt that replaces the generated prompt entirely",
    )


class ProgressEvent(BaseModel):
    """Event delivered to a caller's progress sink."""

    model_config = ConfigDict(frozen=True)

    type: str = Field(..., pattern="^(chunk|partial_results|complete)$")
    payload: dict[str, Any] = Field(default_factory=dict)


ProgressSink = Callable[[ProgressEvent], Any]


class RequestDescriptor(BaseModel):
    """One grading request: the submission plus its grading context."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    payload: bytes | str = Field(..., description="Image bytes or worksheet text")
    payload_kind: PayloadKind = Field(default=PayloadKind.TEXT)
    context: GradingContext = Field(default_factory=GradingContext)
    progress_sink: ProgressSink | None = Field(default=None, exclude=True)
    mime_type: str | None = Field(
        default=None,
        description="MIME type of an image payload (defaults to image/png)",
    )

    @property
    def payload_size(self) -> int:
        """Size of the payload in bytes."""
        if isinstance(self.payload, bytes):
            return len(self.payload)
        return len(self.payload.encode("utf-8"))


# ==============================================================================
# Stream Models
# ==============================================================================


class StreamChunk(BaseModel):
    """One incremental fragment of the model's response."""

    model_config = ConfigDict(frozen=True)

    sequence_number: int = Field(..., ge=1)
    text: str
    cumulative_length: int = Field(..., ge=0)


# ==============================================================================
# Result Models
# ==============================================================================


class QuestionResult(BaseModel):
    """
    Grading of a single worksheet question.

    ``score`` is passed through from the model and is not checked
    against ``max_score``.
    """

    model_config = _RESULT_CONFIG

    number: int = Field(..., ge=1)
    question: str = ""
    student_answer: str = ""
    correct_answer: str = ""
    score: float = Field(default=0.0, ge=0)
    max_score: float = Field(default=1.0, ge=1)
    is_correct: bool = False
    partial_credit: bool = False
    feedback: str = ""
    show_work: str = ""
    has_corrections: bool = False


class GradingResult(BaseModel):
    """
    Complete (or, mid-stream, partial) grading of a worksheet.

    ``source``, ``processing_method`` and ``failure_reason`` tell a caller
    whether the remote service produced it and, for fallbacks, why not.
    """

    model_config = _RESULT_CONFIG

    total_score: int = Field(..., ge=0, le=100)
    questions: tuple[QuestionResult, ...] = ()
    strengths: tuple[str, ...] = ()
    weaknesses: tuple[str, ...] = ()
    common_errors: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()
    presentation_notes: str = ""
    visual_elements: tuple[str, ...] = ()
    graded_at: datetime = Field(default_factory=_utcnow)
    source: ResultSource = ResultSource.REMOTE
    processing_method: str = "streaming"
    is_partial: bool = False
    failure_reason: ErrorKind | None = None

    @property
    def earned_points(self) -> float:
        """Sum of question scores."""
        return sum(q.score for q in self.questions)

    @property
    def possible_points(self) -> float:
        """Sum of question maximum scores."""
        return sum(q.max_score for q in self.questions)

    @property
    def is_fallback(self) -> bool:
        return self.source == ResultSource.FALLBACK


class RawResponse(BaseModel):
    """Free-form answer to a custom prompt override."""

    model_config = _RESULT_CONFIG

    custom_prompt_response: str
    source_prompt: str
    source: ResultSource = ResultSource.REMOTE
    graded_at: datetime = Field(default_factory=_utcnow)
    failure_reason: ErrorKind | None = None

    @property
    def is_fallback(self) -> bool:
        return self.source == ResultSource.FALLBACK


# ==============================================================================
# Feedback Models
# ==============================================================================


class FeedbackTone(str, Enum):
    """Tone of personalized student feedback."""

    ENCOURAGING = "encouraging"
    STRICT = "strict"
    FUNNY = "funny"


class FeedbackReport(BaseModel):
    """Personalized feedback written for the student."""

    model_config = _RESULT_CONFIG

    summary: str
    praise: str
    improvements: str
    next_steps: str
    encouragement: str
    generated_at: datetime = Field(default_factory=_utcnow)
    source: ResultSource = ResultSource.REMOTE
