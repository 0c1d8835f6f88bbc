"""
Rate Limit Models
=================
Quota snapshots and pacing tiers.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

REMAINING_HEADER = "X-Rate-Limit-Remaining"
TOTAL_HEADER = "X-Rate-Limit-Total"


class QuotaTier(str, Enum):
    """Pacing level chosen from the latest quota snapshot."""
    CRITICAL = "critical"  # <= 20% remaining
    WARNING = "warning"    # <= 50% remaining
    NORMAL = "normal"


@dataclass(frozen=True)
class QuotaSnapshot:
    """Remaining/total request budget reported on a single response."""
    remaining: float
    total: float

    @property
    def fraction(self) -> Optional[float]:
        if self.total <= 0:
            return None
        return self.remaining / self.total

    @classmethod
    def from_headers(
        cls,
        headers: Mapping[str, str],
        default_total: float,
    ) -> Optional["QuotaSnapshot"]:
        """
        Read the quota pair from response headers.

        Returns None when the remaining header is missing or not numeric.
        The total header is optional; `default_total` fills in for it.
        """
        raw_remaining = headers.get(REMAINING_HEADER)
        if raw_remaining is None:
            return None
        try:
            remaining = float(raw_remaining)
        except ValueError:
            return None

        total = default_total
        raw_total = headers.get(TOTAL_HEADER)
        if raw_total:
            try:
                parsed = float(raw_total)
            except ValueError:
                parsed = 0.0
            if parsed > 0:
                total = parsed

        return cls(remaining=remaining, total=total)
