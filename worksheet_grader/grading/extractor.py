"""
Result extractor for LLM grading output.

Locates the JSON object inside loosely formatted model output, parses it,
and normalizes every field into a GradingResult. Also assembles partial
results from a response that is still streaming.
"""

import json
import logging
import math
import re
from typing import Any, Iterator

from worksheet_grader.errors import ParseFailure
from worksheet_grader.models import (
    FeedbackReport,
    GradingContext,
    GradingResult,
    QuestionResult,
    ResultSource,
)

logger = logging.getLogger(__name__)

_LEADING_FENCE = re.compile(r"^```[A-Za-z0-9_-]*[ \t]*\n?")
_TRAILING_FENCE = re.compile(r"\n?[ \t]*```$")
_GREEDY_OBJECT = re.compile(r"\{[\s\S]*\}")

# Speculative extraction signatures
_QUESTION_START = re.compile(r'\{\s*"number"\s*:')
_TOTAL_SCORE = re.compile(r'"totalScore"\s*:\s*(-?\d+(?:\.\d+)?)')
_STRING_ARRAY = re.compile(
    r'"(strengths|weaknesses|commonErrors|recommendations)"\s*:\s*(\[[^\[\]]*\])'
)

_ARRAY_FIELDS = {
    "strengths": "strengths",
    "weaknesses": "weaknesses",
    "commonErrors": "common_errors",
    "recommendations": "recommendations",
    "visualElements": "visual_elements",
}

_FEEDBACK_DEFAULTS = {
    "summary": "Good effort on this assignment!",
    "praise": "You showed good understanding of the concepts.",
    "improvements": "Keep practicing to improve your skills.",
    "nextSteps": "Continue working on similar problems.",
    "encouragement": "Keep up the great work!",
}


class ResultExtractor:
    """
    Parses and validates LLM grading responses.

    Candidate objects are tried in layers:
    1. The whole text, when it is a single braced object
    2. Every brace-balanced object, longest first
    3. The first greedy ``{...}`` span
    """

    def parse(
        self,
        text: str,
        context: GradingContext | None = None,
        processing_method: str = "streaming",
    ) -> GradingResult:
        """
        Parse a complete LLM response into a GradingResult.

        Args:
            text: Raw LLM response.
            context: Grading context of the submission, used for logging.
            processing_method: Recorded on the result.

        Returns:
            Normalized GradingResult tagged as remote.

        Raises:
            ParseFailure: If no JSON object is found, or it holds neither a
                score nor any question.
        """
        data = self._extract_object(text)

        questions = data.get("questions")
        has_questions = isinstance(questions, list) and len(questions) > 0
        if "totalScore" not in data and not has_questions:
            raise ParseFailure(
                "Response object has neither totalScore nor questions",
                raw_response=text,
            )

        result = self._build_result(data, processing_method=processing_method)
        logger.debug(
            "Parsed result for %s: %d%% over %d questions",
            (context.student_name if context else "") or "unknown student",
            result.total_score,
            len(result.questions),
        )
        return result

    def parse_partial(self, text: str) -> GradingResult | None:
        """
        Assemble a partial result from a response still being streamed.

        Picks up every question object that has already closed, plus the
        total score and string arrays if they have appeared.

        Args:
            text: Accumulated response so far.

        Returns:
            A GradingResult with ``is_partial`` set, or None when nothing
            usable has arrived yet.
        """
        data: dict[str, Any] = {}

        questions = [q for q in self._closed_questions(text) if _positive_int(q.get("number"))]
        if questions:
            data["questions"] = questions

        score_match = _TOTAL_SCORE.search(text)
        if score_match:
            data["totalScore"] = float(score_match.group(1))

        for match in _STRING_ARRAY.finditer(text):
            try:
                values = json.loads(match.group(2))
            except json.JSONDecodeError:
                continue
            data[match.group(1)] = values

        if not data:
            return None

        return self._build_result(data, processing_method="streaming", is_partial=True)

    def parse_feedback(self, text: str) -> FeedbackReport:
        """
        Parse a feedback response into a FeedbackReport.

        Missing fields are filled with neutral default phrases.

        Raises:
            ParseFailure: If no JSON object can be found.
        """
        data = self._extract_object(text)
        values = {key: _text(data.get(key)) or default for key, default in _FEEDBACK_DEFAULTS.items()}
        return FeedbackReport(
            summary=values["summary"],
            praise=values["praise"],
            improvements=values["improvements"],
            next_steps=values["nextSteps"],
            encouragement=values["encouragement"],
            source=ResultSource.REMOTE,
        )

    # ------------------------------------------------------------------
    # Candidate location
    # ------------------------------------------------------------------

    def _extract_object(self, text: str) -> dict[str, Any]:
        """Find and decode the first candidate that is a JSON object."""
        cleaned = _strip_fence(text)

        for candidate in self._candidates(cleaned):
            try:
                data = json.loads(candidate)
            except json.JSONDecodeError:
                continue
            if isinstance(data, dict):
                return data

        raise ParseFailure("No JSON object found in response", raw_response=text)

    def _candidates(self, text: str) -> Iterator[str]:
        stripped = text.strip()
        if stripped.startswith("{") and stripped.endswith("}"):
            yield stripped

        balanced = sorted(_balanced_objects(stripped), key=len, reverse=True)
        yield from balanced

        greedy = _GREEDY_OBJECT.search(stripped)
        if greedy:
            yield greedy.group(0)

    def _closed_questions(self, text: str) -> Iterator[dict[str, Any]]:
        for match in _QUESTION_START.finditer(text):
            end = _matching_brace(text, match.start())
            if end is None:
                continue
            fragment = text[match.start() : end + 1]
            if '"feedback"' not in fragment:
                continue
            try:
                item = json.loads(fragment)
            except json.JSONDecodeError:
                continue
            if isinstance(item, dict):
                yield item

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    def _build_result(
        self,
        data: dict[str, Any],
        processing_method: str,
        is_partial: bool = False,
    ) -> GradingResult:
        raw_questions = data.get("questions")
        if not isinstance(raw_questions, list):
            raw_questions = []

        question_items = [item for item in raw_questions if isinstance(item, dict)]
        questions = tuple(
            self._build_question(item, index) for index, item in enumerate(question_items)
        )

        arrays = {
            attr: _string_tuple(data.get(key)) for key, attr in _ARRAY_FIELDS.items()
        }

        return GradingResult(
            total_score=_clamp_score(data.get("totalScore")),
            questions=questions,
            presentation_notes=_text(data.get("presentationNotes")),
            source=ResultSource.REMOTE,
            processing_method=processing_method,
            is_partial=is_partial,
            **arrays,
        )

    def _build_question(self, item: dict[str, Any], index: int) -> QuestionResult:
        number = _positive_int(item.get("number")) or index + 1
        return QuestionResult(
            number=number,
            question=_text(item.get("question")),
            student_answer=_text(item.get("studentAnswer")),
            correct_answer=_text(item.get("correctAnswer")),
            score=max(0.0, _number(item.get("score"), 0.0)),
            max_score=max(1.0, _number(item.get("maxScore"), 1.0)),
            is_correct=bool(item.get("isCorrect")),
            partial_credit=bool(item.get("partialCredit")),
            feedback=_text(item.get("feedback")),
            show_work=_text(item.get("showWork")),
            has_corrections=bool(item.get("hasCorrections")),
        )


# ==============================================================================
# Helpers
# ==============================================================================


def _strip_fence(text: str) -> str:
    """Remove one leading and one trailing code-fence marker."""
    stripped = text.strip()
    stripped = _LEADING_FENCE.sub("", stripped, count=1)
    stripped = _TRAILING_FENCE.sub("", stripped, count=1)
    return stripped


def _matching_brace(text: str, start: int) -> int | None:
    """
    Find the index of the brace closing the object opened at ``start``.

    Braces inside JSON strings are ignored. Returns None if the object
    has not closed yet.
    """
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        char = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return i
    return None


def _balanced_objects(text: str) -> list[str]:
    """Collect every top-level brace-balanced span in ``text``."""
    objects: list[str] = []
    position = text.find("{")
    while position != -1:
        end = _matching_brace(text, position)
        if end is None:
            position = text.find("{", position + 1)
            continue
        objects.append(text[position : end + 1])
        position = text.find("{", end + 1)
    return objects


def _number(value: Any, default: float) -> float:
    if isinstance(value, (bool, int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return default
    else:
        return default
    return number if math.isfinite(number) else default


def _positive_int(value: Any) -> int | None:
    number = _number(value, 0.0)
    if number >= 1 and number == int(number):
        return int(number)
    return None


def _clamp_score(value: Any) -> int:
    return max(0, min(100, round(_number(value, 0.0))))


def _text(value: Any) -> str:
    if not value:
        return ""
    return str(value)


def _string_tuple(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(str(item) for item in value)
