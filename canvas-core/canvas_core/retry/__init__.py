"""
Retry Logic with Exponential Backoff
=====================================
Bounded retries for transient Canvas API failures.
"""

from canvas_core.exceptions import RetryExhausted
from .backoff import RetryPolicy, RETRYABLE_STATUS_CODES

__all__ = [
    # Exceptions
    "RetryExhausted",
    # Backoff
    "RetryPolicy",
    "RETRYABLE_STATUS_CODES",
]
