"""
In-Memory Response Cache
========================
Thread-safe TTL cache for GET response bodies.
"""

import asyncio
import json
import threading
import time
from typing import Any, Dict, Optional

import structlog

from canvas_core.config import DEFAULT_CACHE_TTL

from .models import CacheEntry, CacheMiss, CacheStats

logger = structlog.get_logger(__name__)


class ResponseCache:
    """
    Time-boxed key -> bytes store.

    Expiry is lazy: a read past an entry's expiry is a miss. A background
    sweeper can be started to drop expired entries from memory.

    Example:
        cache = ResponseCache(ttl=300)
        cache.set("key", b'{"id": 1}')
        cache.get("key")  # b'{"id": 1}'
    """

    def __init__(self, ttl: float = DEFAULT_CACHE_TTL):
        self.ttl = ttl
        self._items: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._sweeper: Optional[asyncio.Task] = None

    def get(self, key: str) -> Optional[bytes]:
        """Return the cached value, or None if missing or expired."""
        with self._lock:
            entry = self._items.get(key)
        if entry is None or entry.is_expired():
            return None
        return entry.value

    def get_json(self, key: str) -> Any:
        data = self.get(key)
        if data is None:
            raise CacheMiss(key)
        return json.loads(data)

    def set(self, key: str, value: bytes, ttl: Optional[float] = None) -> None:
        """Store `value` until `ttl` seconds from now (default TTL if omitted)."""
        if ttl is None:
            ttl = self.ttl
        entry = CacheEntry(key=key, value=value, expires_at=time.monotonic() + ttl)
        with self._lock:
            self._items[key] = entry

    def set_json(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        self.set(key, json.dumps(value).encode("utf-8"), ttl=ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def clear(self) -> None:
        """Drop every entry."""
        with self._lock:
            self._items = {}

    def size(self) -> int:
        """Number of entries held, including expired ones."""
        with self._lock:
            return len(self._items)

    def stats(self) -> CacheStats:
        now = time.monotonic()
        with self._lock:
            total = len(self._items)
            expired = sum(1 for entry in self._items.values() if entry.is_expired(now))
        return CacheStats(total=total, expired=expired, active=total - expired)

    def remove_expired(self) -> int:
        """Delete expired entries. Returns how many were removed."""
        now = time.monotonic()
        with self._lock:
            expired = [key for key, entry in self._items.items() if entry.is_expired(now)]
            for key in expired:
                del self._items[key]
        return len(expired)

    def start_sweeper(self, interval: float = 60.0) -> asyncio.Task:
        """Start a background task that calls remove_expired every `interval` seconds."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep(interval))
            logger.debug("cache_sweeper_started", interval=interval)
        return self._sweeper

    async def _sweep(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            removed = self.remove_expired()
            if removed:
                logger.debug("cache_entries_expired", removed=removed)

    async def close(self) -> None:
        """Stop the sweeper, if running."""
        sweeper, self._sweeper = self._sweeper, None
        if sweeper is not None and not sweeper.done():
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass
