"""
Adaptive Rate Limiter
=====================
Token bucket (burst 1) whose rate follows the quota Canvas reports back.
"""

import asyncio
import threading
import time
from typing import Dict, FrozenSet, Optional, Set

import structlog

from canvas_core.config import (
    DEFAULT_REQUESTS_PER_SECOND,
    QUOTA_CRITICAL_THRESHOLD,
    QUOTA_WARNING_THRESHOLD,
    SLOW_REQUESTS_PER_SECOND,
    VERY_SLOW_REQUESTS_PER_SECOND,
)

from .models import QuotaSnapshot, QuotaTier

logger = structlog.get_logger(__name__)

# Ordering used to tell a downgrade from an upgrade
_TIER_RANK = {
    QuotaTier.CRITICAL: 0,
    QuotaTier.WARNING: 1,
    QuotaTier.NORMAL: 2,
}


class AdaptiveRateLimiter:
    """
    Async request gate that slows down as the API quota drains.

    Tiers (fraction = remaining / total):
    - fraction <= 0.20: critical, 1 request/second
    - fraction <= 0.50: warning, 2 requests/second
    - otherwise: normal, the configured default rate

    Example:
        limiter = AdaptiveRateLimiter()

        await limiter.wait()
        response = await http.get(...)
        limiter.adjust(remaining, total)
    """

    def __init__(self, requests_per_second: float = DEFAULT_REQUESTS_PER_SECOND):
        self._rates: Dict[QuotaTier, float] = {
            QuotaTier.CRITICAL: VERY_SLOW_REQUESTS_PER_SECOND,
            QuotaTier.WARNING: SLOW_REQUESTS_PER_SECOND,
            QuotaTier.NORMAL: requests_per_second,
        }
        self._tier = QuotaTier.NORMAL
        self._warnings_shown: Set[QuotaTier] = set()
        self._state_lock = threading.Lock()
        self._wait_lock: Optional[asyncio.Lock] = None
        self._next_slot = 0.0

    @property
    def tier(self) -> QuotaTier:
        with self._state_lock:
            return self._tier

    @property
    def current_rate(self) -> float:
        """Requests per second allowed by the active tier."""
        with self._state_lock:
            return self._rates[self._tier]

    @property
    def warnings_shown(self) -> FrozenSet[QuotaTier]:
        with self._state_lock:
            return frozenset(self._warnings_shown)

    @staticmethod
    def tier_for(fraction: float) -> QuotaTier:
        if fraction <= QUOTA_CRITICAL_THRESHOLD:
            return QuotaTier.CRITICAL
        if fraction <= QUOTA_WARNING_THRESHOLD:
            return QuotaTier.WARNING
        return QuotaTier.NORMAL

    def adjust(self, remaining: float, total: float) -> None:
        """Re-evaluate the tier from the latest remaining/total pair."""
        if total <= 0:
            # Unknown quota, keep the last known tier
            return

        fraction = remaining / total
        new_tier = self.tier_for(fraction)

        with self._state_lock:
            old_tier = self._tier
            if new_tier == old_tier:
                return

            self._tier = new_tier
            rate = self._rates[new_tier]

            if new_tier == QuotaTier.NORMAL:
                self._warnings_shown.clear()

            if _TIER_RANK[new_tier] < _TIER_RANK[old_tier]:
                if new_tier not in self._warnings_shown:
                    self._warnings_shown.add(new_tier)
                    logger.warning(
                        "quota_tier_lowered",
                        tier=new_tier.value,
                        previous=old_tier.value,
                        remaining_pct=round(fraction * 100, 1),
                        rate=rate,
                    )
                else:
                    logger.info(
                        "quota_tier_lowered",
                        tier=new_tier.value,
                        previous=old_tier.value,
                        rate=rate,
                    )
            else:
                logger.info(
                    "quota_tier_raised",
                    tier=new_tier.value,
                    previous=old_tier.value,
                    remaining_pct=round(fraction * 100, 1),
                    rate=rate,
                )

    def observe(self, snapshot: Optional[QuotaSnapshot]) -> None:
        if snapshot is not None:
            self.adjust(snapshot.remaining, snapshot.total)

    async def wait(self) -> None:
        """
        Suspend until a request slot is available at the current rate.

        Waiters are served one at a time; cancelling a waiting task gives up
        its place without consuming a slot.
        """
        if self._wait_lock is None:
            self._wait_lock = asyncio.Lock()

        async with self._wait_lock:
            delay = self._next_slot - time.monotonic()
            if delay > 0:
                await asyncio.sleep(delay)

            now = time.monotonic()
            self._next_slot = max(now, self._next_slot) + 1.0 / self.current_rate
