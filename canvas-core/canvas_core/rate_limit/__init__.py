"""
Rate Limiting Module for Canvas Core
====================================
Adaptive, quota-driven pacing of outgoing API requests.
"""

from .models import QuotaSnapshot, QuotaTier, REMAINING_HEADER, TOTAL_HEADER
from .adaptive import AdaptiveRateLimiter

__all__ = [
    # Models
    "QuotaSnapshot",
    "QuotaTier",
    "REMAINING_HEADER",
    "TOTAL_HEADER",
    # Limiters
    "AdaptiveRateLimiter",
]
