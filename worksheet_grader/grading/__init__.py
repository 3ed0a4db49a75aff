"""
Grading Module.

Pipeline orchestration, remote transport, stream consumption, prompts,
result extraction and offline fallback.
"""

from worksheet_grader.grading.accumulator import StreamAccumulator
from worksheet_grader.grading.engine import GradingPipeline, PipelineState
from worksheet_grader.grading.extractor import ResultExtractor
from worksheet_grader.grading.fallback import FallbackGenerator
from worksheet_grader.grading.llm_client import LLMClient
from worksheet_grader.grading.prompt_builder import PromptBuilder

__all__ = [
    "FallbackGenerator",
    "GradingPipeline",
    "LLMClient",
    "PipelineState",
    "PromptBuilder",
    "ResultExtractor",
    "StreamAccumulator",
]
