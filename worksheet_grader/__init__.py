"""
Worksheet Grader - a resilient streaming LLM grading pipeline.

This package grades student worksheets (scanned images or extracted text)
with a remote LLM. Outbound calls are rate limited and retried, the token
stream is reported as live progress, and any unrecoverable failure degrades
to an offline fallback result instead of an error.
"""

__version__ = "1.0.0"
__author__ = "Worksheet Grader Team"
