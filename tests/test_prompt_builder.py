"""
Unit tests for the prompt builder.
"""

import pytest

from worksheet_grader.grading import PromptBuilder
from worksheet_grader.models import FeedbackTone, GradingContext, GradingResult


class TestPromptBuilder:
    """Tests for PromptBuilder."""

    def test_get_system_prompt(self) -> None:
        """Test system prompt contains key instructions."""
        prompt = PromptBuilder.get_system_prompt()

        assert "teacher" in prompt
        assert "JSON" in prompt

    def test_grading_prompt_context(
        self, sample_context: GradingContext, sample_worksheet_text: str
    ) -> None:
        """Test the prompt carries the context and worksheet text."""
        prompt = PromptBuilder.build_grading_prompt(sample_context, sample_worksheet_text)

        assert "Alex" in prompt
        assert "Fractions Practice" in prompt
        assert "Grade 4" in prompt
        assert sample_worksheet_text in prompt

    def test_grading_prompt_json_contract(self, sample_context: GradingContext) -> None:
        """Test the prompt names every field the extractor reads."""
        prompt = PromptBuilder.build_grading_prompt(sample_context, "1. 2+2 = 4")

        for key in (
            "totalScore",
            "studentAnswer",
            "correctAnswer",
            "maxScore",
            "isCorrect",
            "partialCredit",
            "showWork",
            "hasCorrections",
            "commonErrors",
            "recommendations",
            "presentationNotes",
            "visualElements",
        ):
            assert f'"{key}"' in prompt

    def test_image_prompt(self) -> None:
        """Test the prompt points at the attached image when there is no text."""
        prompt = PromptBuilder.build_grading_prompt(GradingContext())

        assert "attached image" in prompt
        assert "Unknown" in prompt
        assert "Untitled" in prompt

    def test_rubric_included(self) -> None:
        """Test a rubric is included when given."""
        prompt = PromptBuilder.build_grading_prompt(
            GradingContext(rubric="2 points per correct answer"), "text"
        )

        assert "Grading Rubric: 2 points per correct answer" in prompt

    def test_custom_instructions_appended(self) -> None:
        """Test custom instructions close the prompt."""
        prompt = PromptBuilder.build_grading_prompt(
            GradingContext(custom_instructions="Ignore spelling."), "text"
        )

        assert prompt.endswith("Additional Instructions:\nIgnore spelling.")

    @pytest.mark.parametrize(
        ("subject", "marker"),
        [
            ("Mathematics", "Math Grading"),
            ("English", "Language Arts"),
            ("Language Arts", "Language Arts"),
            ("Earth Science", "Science Grading"),
        ],
    )
    def test_subject_instructions(self, subject: str, marker: str) -> None:
        """Test subject keywords select extra instructions."""
        prompt = PromptBuilder.build_grading_prompt(GradingContext(subject=subject), "text")

        assert marker in prompt

    def test_no_subject_instructions(self) -> None:
        """Test unknown subjects get no extra instructions."""
        assert PromptBuilder.subject_instructions("History") is None
        assert PromptBuilder.subject_instructions("") is None

    def test_feedback_prompt(self, sample_grading_result: GradingResult) -> None:
        """Test the feedback prompt carries the results and tone."""
        context = GradingContext(student_name="Alex", subject="Math", grade_level="Grade 4")

        prompt = PromptBuilder.build_feedback_prompt(
            sample_grading_result, context, FeedbackTone.STRICT
        )

        assert "Alex" in prompt
        assert "Total Score: 80%" in prompt
        assert "Simplifying fractions" in prompt
        assert "Tone: strict" in prompt
        assert '"nextSteps"' in prompt
        assert "Grade 4" in prompt

    def test_feedback_prompt_empty_lists(self) -> None:
        """Test empty result lists are described."""
        prompt = PromptBuilder.build_feedback_prompt(GradingResult(total_score=0), GradingContext())

        assert "None identified" in prompt
