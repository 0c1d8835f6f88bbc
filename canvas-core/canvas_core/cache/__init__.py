"""
Response Cache
==============
Short-lived caching of successful GET responses.
"""

from .models import CacheEntry, CacheMiss, CacheStats
from .keys import build_cache_key, normalize_path
from .memory import ResponseCache

__all__ = [
    "CacheEntry",
    "CacheMiss",
    "CacheStats",
    "build_cache_key",
    "normalize_path",
    "ResponseCache",
]
