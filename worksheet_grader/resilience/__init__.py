"""
Resilience Module.

Outbound call spacing and retry with exponential backoff.
"""

from worksheet_grader.resilience.rate_gate import RateGate, shared_rate_gate
from worksheet_grader.resilience.retry import RetryExecutor, RetryPolicy

__all__ = [
    "RateGate",
    "RetryExecutor",
    "RetryPolicy",
    "shared_rate_gate",
]
