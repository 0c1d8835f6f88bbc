"""
Cache Keys
==========
Deterministic keys for GET responses.
"""

import hashlib
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit


def normalize_path(path: str) -> str:
    """
    Canonical form of a request path: leading slash, sorted query.

    Blank query values are kept so `?include[]=` and no parameter differ.
    """
    parts = urlsplit(path)
    normalized = parts.path or "/"
    if not normalized.startswith("/"):
        normalized = "/" + normalized

    if parts.query:
        query = sorted(parse_qsl(parts.query, keep_blank_values=True))
        normalized += "?" + urlencode(query)

    return normalized


def build_cache_key(
    base_url: str,
    path: str,
    as_user_id: Optional[int] = None,
) -> str:
    """
    Build the cache key for a GET.

    The acting-as user is part of the key so two principals never share a
    cached payload.
    """
    key = base_url.rstrip("/") + normalize_path(path)
    if as_user_id:
        key += f":as_user:{as_user_id}"
    # Hashed so arbitrary URLs make safe keys
    return hashlib.md5(key.encode("utf-8")).hexdigest()
