"""
Dry-Run Support
===============
Renders requests as equivalent curl commands instead of sending them.
"""

from typing import Mapping, Optional

REDACTED_AUTHORIZATION = "Bearer [REDACTED]"


def _quote(value: str) -> str:
    # Close the quote, emit an escaped quote, reopen
    return value.replace("'", "'\\''")


def generate_curl(
    method: str,
    url: str,
    headers: Optional[Mapping[str, str]] = None,
    body: Optional[str] = None,
    show_token: bool = False,
) -> str:
    """
    Build a shell-safe curl command for a request.

    The Authorization header is redacted unless `show_token` is set.
    """
    parts = [f"curl -X {method.upper()} '{_quote(url)}'"]

    for key, value in (headers or {}).items():
        if key.lower() == "authorization" and not show_token:
            value = REDACTED_AUTHORIZATION
        parts.append(f"-H '{key}: {_quote(value)}'")

    if body:
        parts.append(f"-d '{_quote(body)}'")

    return " \\\n  ".join(parts)
