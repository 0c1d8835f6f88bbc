"""
Cache Models
============
Entries and statistics for the response cache.
"""

import time
from dataclasses import dataclass
from typing import Optional


class CacheMiss(KeyError):
    """Raised by JSON lookups when the key is absent or expired."""
    pass


@dataclass(frozen=True)
class CacheEntry:
    """A cached payload with its absolute expiry (monotonic clock)."""
    key: str
    value: bytes
    expires_at: float

    def is_expired(self, now: Optional[float] = None) -> bool:
        if now is None:
            now = time.monotonic()
        return now >= self.expires_at


@dataclass(frozen=True)
class CacheStats:
    """Point-in-time cache statistics."""
    total: int = 0    # Entries held, expired or not
    expired: int = 0  # Expired but not yet swept
    active: int = 0   # Still servable

    @property
    def entry_count(self) -> int:
        return self.total
