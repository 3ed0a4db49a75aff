"""
Offline fallback results.

Produces well-formed grading results, feedback and raw responses without
calling any remote service. Used whenever the pipeline cannot obtain a
usable answer from the LLM.
"""

import random
from decimal import ROUND_HALF_UP, Decimal

from worksheet_grader.errors import ErrorKind
from worksheet_grader.models import (
    FeedbackReport,
    FeedbackTone,
    GradingContext,
    GradingResult,
    QuestionResult,
    RawResponse,
    ResultSource,
)

FALLBACK_METHOD = "fallback"

_STRENGTHS = (
    "Shows good understanding of basic concepts",
    "Work is organized and neat",
    "Follows instructions well",
)

_WEAKNESSES = (
    "Some computational errors",
    "Could show more work",
)

_COMMON_ERRORS = (
    "Calculation mistakes",
    "Misreading questions",
)

_RAW_RESPONSE_TEXT = (
    "The grading service is currently unavailable, so this prompt could not "
    "be answered. Please try again later."
)


def percentage(earned: float, possible: float) -> int:
    """Earned over possible points as a whole percentage, rounding halves up."""
    if possible <= 0:
        return 0
    value = Decimal(str(earned)) * 100 / Decimal(str(possible))
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


class FallbackGenerator:
    """
    Synthesizes plausible results locally.

    Question scores are random, but the total always equals the exact
    percentage of earned over possible points.
    """

    MIN_QUESTIONS = 3
    MAX_QUESTIONS = 7
    MIN_POINTS = 3
    MAX_POINTS = 7

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng or random.Random()

    def generate(
        self,
        context: GradingContext | None = None,
        seed_phrase: str | None = None,
        reason: ErrorKind | None = None,
    ) -> GradingResult:
        """
        Generate a fallback grading result.

        Args:
            context: Grading context, used to tailor recommendations.
            seed_phrase: When given, seeds the generator so the same phrase
                always yields the same result.
            reason: Why the pipeline fell back, recorded on the result.

        Returns:
            GradingResult tagged with fallback provenance.
        """
        rng = random.Random(seed_phrase) if seed_phrase else self._rng
        question_count = rng.randint(self.MIN_QUESTIONS, self.MAX_QUESTIONS)

        questions = tuple(
            self._make_question(rng, number) for number in range(1, question_count + 1)
        )

        earned = sum(q.score for q in questions)
        possible = sum(q.max_score for q in questions)

        return GradingResult(
            total_score=percentage(earned, possible),
            questions=questions,
            strengths=_STRENGTHS,
            weaknesses=_WEAKNESSES,
            common_errors=_COMMON_ERRORS,
            recommendations=self._recommendations(context),
            source=ResultSource.FALLBACK,
            processing_method=FALLBACK_METHOD,
            failure_reason=reason,
        )

    def generate_feedback(
        self,
        result: GradingResult,
        context: GradingContext | None = None,
        tone: FeedbackTone = FeedbackTone.ENCOURAGING,
    ) -> FeedbackReport:
        """Generate templated feedback in the requested tone."""
        name = (context.student_name if context else "") or "Student"
        subject = (context.subject if context else "") or "this subject"
        score = result.total_score

        if tone == FeedbackTone.STRICT:
            texts = (
                f"{name}, you earned {score}% on this assignment. There is room for improvement in your work.",
                "Your correct answers show you understand the basic concepts when you apply yourself.",
                "You need to be more careful with your calculations and show all your work. "
                "Several errors were preventable.",
                "Review the problems you missed and practice similar examples.",
                "With more focused effort and attention to detail, you can achieve better results.",
            )
        elif tone == FeedbackTone.FUNNY:
            texts = (
                f"Hey {name}! You scored {score}% - not bad at all! "
                f"Your brain was definitely working on this {subject} adventure.",
                "I loved seeing your thinking process! Some of your solutions were spot-on, "
                "like a detective solving a mystery.",
                "A few calculation gremlins snuck into your work, but we can catch them with more practice!",
                "Let's do some gremlin hunting with more practice problems. Make it a game to catch every mistake!",
                f"You're becoming a real {subject} superhero, {name}! Keep flying high with your learning!",
            )
        else:
            texts = (
                f"Great job, {name}! You scored {score}% on this {subject} assignment "
                "and showed good understanding of the concepts.",
                "You did especially well on the problems where you showed your work clearly.",
                "With a little more practice on calculations, you can improve even more.",
                "Try doing 2-3 similar problems each day to build your confidence.",
                f"You're making wonderful progress, {name}. Keep up the excellent work!",
            )

        summary, praise, improvements, next_steps, encouragement = texts
        return FeedbackReport(
            summary=summary,
            praise=praise,
            improvements=improvements,
            next_steps=next_steps,
            encouragement=encouragement,
            source=ResultSource.FALLBACK,
        )

    def generate_raw(self, prompt: str, reason: ErrorKind | None = None) -> RawResponse:
        """Generate the fallback answer for a custom prompt override."""
        return RawResponse(
            custom_prompt_response=_RAW_RESPONSE_TEXT,
            source_prompt=prompt,
            source=ResultSource.FALLBACK,
            failure_reason=reason,
        )

    def _make_question(self, rng: random.Random, number: int) -> QuestionResult:
        max_score = rng.randint(self.MIN_POINTS, self.MAX_POINTS)
        score = rng.randint(0, max_score)
        is_correct = score == max_score

        if is_correct:
            feedback = "Excellent work!"
        elif score > 0:
            feedback = "Good approach, but check your final answer."
        else:
            feedback = "This needs more work. Review the concept and try again."

        return QuestionResult(
            number=number,
            question=f"Question {number}",
            student_answer=f"Student answer {number}",
            correct_answer=f"Correct answer {number}",
            score=float(score),
            max_score=float(max_score),
            is_correct=is_correct,
            partial_credit=0 < score < max_score,
            feedback=feedback,
        )

    @staticmethod
    def _recommendations(context: GradingContext | None) -> tuple[str, ...]:
        subject = context.subject if context and context.subject else ""
        if subject:
            practice = f"Practice more {subject} problems of this type"
        else:
            practice = "Practice more problems of this type"
        return (practice, "Double-check calculations", "Show all work steps")
