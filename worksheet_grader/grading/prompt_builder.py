"""
Prompt builder for worksheet grading.

Constructs the prompts sent to the LLM:
- The grading prompt with its JSON output contract
- Subject-specific grading instructions
- The personalized feedback prompt
"""

from worksheet_grader.models import FeedbackTone, GradingContext, GradingResult

_SUBJECT_INSTRUCTIONS: tuple[tuple[tuple[str, ...], str], ...] = (
    (
        ("math",),
        """Special Math Grading Instructions:
- Evaluate work shown, not just final answers
- Award partial credit for correct methodology even if final answer is wrong
- Check for computational errors vs conceptual errors
- Look for proper use of mathematical notation
- Consider alternative solution methods as valid""",
    ),
    (
        ("english", "language"),
        """Special Language Arts Grading Instructions:
- Evaluate grammar, spelling, and sentence structure
- Consider age-appropriate expectations for writing quality
- Look for evidence of reading comprehension
- Assess vocabulary usage and variety
- Check for proper punctuation and capitalization""",
    ),
    (
        ("science",),
        """Special Science Grading Instructions:
- Evaluate scientific reasoning and methodology
- Check for proper use of scientific vocabulary
- Look for evidence of understanding scientific concepts
- Consider accuracy of observations and conclusions
- Assess ability to apply scientific principles""",
    ),
)

_TONE_INSTRUCTIONS = {
    FeedbackTone.ENCOURAGING: (
        "Be very positive and encouraging. Focus on what the student did well "
        "and frame areas for improvement as opportunities to grow."
    ),
    FeedbackTone.STRICT: (
        "Be direct and specific about errors. Maintain high standards while being constructive."
    ),
    FeedbackTone.FUNNY: (
        "Use gentle humor and engaging language appropriate for the student's age. "
        "Make learning fun while being helpful."
    ),
}


class PromptBuilder:
    """
    Builds grading and feedback prompts.

    The grading prompt pins the exact JSON shape the result extractor
    reads; field names here and in the extractor must stay in sync.
    """

    SYSTEM_PROMPT = """You are an experienced teacher grading student worksheets.

OUTPUT RULES:
- Grade every question you can find on the worksheet, in the order they appear.
- Your output MUST be valid JSON matching the exact format specified.
- Do not wrap the JSON in code fences and do not add any text before or after it."""

    @staticmethod
    def build_grading_prompt(context: GradingContext, worksheet_text: str | None = None) -> str:
        """
        Build the user prompt for grading.

        Args:
            context: Grading context of the submission.
            worksheet_text: Extracted worksheet text. None when the worksheet
                is sent as an image alongside the prompt.

        Returns:
            The formatted user prompt.
        """
        grade_level = context.grade_level or "unspecified grade"
        content = (
            worksheet_text
            if worksheet_text is not None
            else "(The worksheet is provided as the attached image.)"
        )
        rubric = f"\nGrading Rubric: {context.rubric}\n" if context.rubric else ""

        prompt = f"""You are an experienced {context.subject} teacher grading a {grade_level} student's worksheet.
Please evaluate the student's work and provide detailed grading information.

Student Name: {context.student_name or "Unknown"}
Assignment: {context.assignment_name or "Untitled"}
Subject: {context.subject}
Grade Level: {grade_level}

Worksheet Content:
{content}
{rubric}
Please provide your response in the following JSON format:
{{
    "totalScore": <percentage score 0-100>,
    "questions": [
        {{
            "number": <question number>,
            "question": "<question text>",
            "studentAnswer": "<student's answer>",
            "correctAnswer": "<correct answer>",
            "score": <points earned>,
            "maxScore": <maximum points>,
            "isCorrect": <true/false>,
            "partialCredit": <true/false>,
            "showWork": "<work the student showed, if any>",
            "hasCorrections": <true/false>,
            "feedback": "<specific feedback for this question>"
        }}
    ],
    "strengths": ["<strength 1>", "<strength 2>"],
    "weaknesses": ["<weakness 1>", "<weakness 2>"],
    "commonErrors": ["<error 1>", "<error 2>"],
    "recommendations": ["<recommendation 1>", "<recommendation 2>"],
    "presentationNotes": "<notes on neatness and layout>",
    "visualElements": ["<diagram, graph or drawing noticed>"]
}}"""

        sections = [prompt]
        subject_instructions = PromptBuilder.subject_instructions(context.subject)
        if subject_instructions:
            sections.append(subject_instructions)
        if context.custom_instructions:
            sections.append(f"Additional Instructions:\n{context.custom_instructions}")

        return "\n\n".join(sections)

    @staticmethod
    def build_feedback_prompt(
        result: GradingResult,
        context: GradingContext,
        tone: FeedbackTone = FeedbackTone.ENCOURAGING,
    ) -> str:
        """Build the prompt asking for personalized student feedback."""

        def joined(values: tuple[str, ...]) -> str:
            return ", ".join(values) or "None identified"

        return f"""Generate personalized feedback for {context.student_name or "this student"} based on their {context.subject} worksheet performance.

Grading Results:
Total Score: {result.total_score}%
Strengths: {joined(result.strengths)}
Areas for Improvement: {joined(result.weaknesses)}
Common Errors: {joined(result.common_errors)}

Tone: {tone.value} - {_TONE_INSTRUCTIONS[tone]}

Provide feedback in the following JSON format:
{{
    "summary": "<2-3 sentence overall summary>",
    "praise": "<specific positive feedback>",
    "improvements": "<constructive suggestions for improvement>",
    "nextSteps": "<specific recommendations for continued learning>",
    "encouragement": "<motivational closing message>"
}}

Keep the language appropriate for a {context.grade_level or "elementary"} student."""

    @staticmethod
    def subject_instructions(subject: str) -> str | None:
        """Return extra grading instructions for a subject, if any."""
        lowered = (subject or "").lower()
        for keywords, instructions in _SUBJECT_INSTRUCTIONS:
            if any(keyword in lowered for keyword in keywords):
                return instructions
        return None

    @staticmethod
    def get_system_prompt() -> str:
        """Get the system prompt for grading."""
        return PromptBuilder.SYSTEM_PROMPT
