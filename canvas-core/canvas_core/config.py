"""
Client Configuration
====================
Defaults and environment-driven configuration for the Canvas API client.
"""

import os
from dataclasses import dataclass
from typing import Optional

from canvas_core.exceptions import ConfigurationError

# Pacing tiers (requests per second)
DEFAULT_REQUESTS_PER_SECOND = 5.0
SLOW_REQUESTS_PER_SECOND = 2.0
VERY_SLOW_REQUESTS_PER_SECOND = 1.0

# Fractions of remaining quota that trigger a slower tier
QUOTA_WARNING_THRESHOLD = 0.5
QUOTA_CRITICAL_THRESHOLD = 0.2

# Canvas does not report its bucket size, so this is assumed unless overridden
DEFAULT_QUOTA_TOTAL = 700.0

DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_BACKOFF = 1.0
DEFAULT_MAX_BACKOFF = 8.0

DEFAULT_TIMEOUT = 30.0
DEFAULT_CACHE_TTL = 300.0
DEFAULT_CACHE_SWEEP_INTERVAL = 60.0
DEFAULT_USER_AGENT = "canvas-cli"


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str) -> Optional[int]:
    value = os.environ.get(name)
    return int(value) if value else None


@dataclass
class ClientConfig:
    """Configuration for a CanvasClient instance."""
    base_url: str = os.environ.get("CANVAS_BASE_URL", "")
    token: str = os.environ.get("CANVAS_TOKEN", "")
    requests_per_second: float = float(
        os.environ.get("CANVAS_REQUESTS_PER_SECOND", DEFAULT_REQUESTS_PER_SECOND)
    )
    timeout: float = float(os.environ.get("CANVAS_TIMEOUT", DEFAULT_TIMEOUT))
    as_user_id: Optional[int] = _env_int("CANVAS_AS_USER_ID")  # Admin masquerading
    cache_enabled: bool = _env_bool("CANVAS_CACHE_ENABLED", True)
    cache_ttl: float = float(os.environ.get("CANVAS_CACHE_TTL", DEFAULT_CACHE_TTL))
    cache_sweep_interval: float = float(
        os.environ.get("CANVAS_CACHE_SWEEP_INTERVAL", DEFAULT_CACHE_SWEEP_INTERVAL)
    )
    user_agent: str = os.environ.get("CANVAS_USER_AGENT", DEFAULT_USER_AGENT)
    quota_total: float = float(os.environ.get("CANVAS_QUOTA_TOTAL", DEFAULT_QUOTA_TOTAL))
    max_results: int = int(os.environ.get("CANVAS_MAX_RESULTS", "0"))  # 0 = unlimited
    dry_run: bool = False
    show_token: bool = False
    max_retries: int = DEFAULT_MAX_RETRIES
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF
    max_backoff: float = DEFAULT_MAX_BACKOFF

    def validate(self, has_token_source: bool = False) -> None:
        """Raise ConfigurationError if the config cannot build a working client."""
        if not self.base_url:
            raise ConfigurationError("base URL is required")
        if not self.token and not has_token_source:
            raise ConfigurationError("token or token source is required")
        if self.requests_per_second <= 0:
            raise ConfigurationError(
                "requests_per_second must be positive",
                details=self.requests_per_second,
            )
        if self.quota_total <= 0:
            raise ConfigurationError(
                "quota_total must be positive",
                details=self.quota_total,
            )
        if self.cache_sweep_interval <= 0:
            raise ConfigurationError(
                "cache_sweep_interval must be positive",
                details=self.cache_sweep_interval,
            )
        if self.max_retries < 0:
            raise ConfigurationError("max_retries cannot be negative", details=self.max_retries)
