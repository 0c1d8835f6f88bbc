"""
Canvas Core Library
===================
Request-execution pipeline for the Canvas LMS REST API client.
"""

__version__ = "0.5.0"

# Errors
from canvas_core.exceptions import (
    CanvasError,
    ConfigurationError,
    DecodeError,
    ErrorDetail,
    APIError,
    AuthenticationError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
    RateLimitError,
    ServerError,
    RetryExhausted,
    is_rate_limit_error,
    is_auth_error,
    is_forbidden_error,
    is_not_found_error,
    is_server_error,
)

# Configuration
from canvas_core.config import (
    ClientConfig,
    DEFAULT_QUOTA_TOTAL,
    DEFAULT_REQUESTS_PER_SECOND,
    DEFAULT_USER_AGENT,
)

# Rate Limiting
from canvas_core.rate_limit import (
    AdaptiveRateLimiter,
    QuotaSnapshot,
    QuotaTier,
)

# Retry
from canvas_core.retry import (
    RetryPolicy,
    RETRYABLE_STATUS_CODES,
)

# Cache
from canvas_core.cache import (
    ResponseCache,
    CacheEntry,
    CacheMiss,
    CacheStats,
    build_cache_key,
)

# Capabilities
from canvas_core.capabilities import (
    CapabilityDescriptor,
    CapabilityProbe,
    CanvasVersion,
    parse_version,
)

# HTTP Client
from canvas_core.http import (
    CanvasClient,
    PaginationLinks,
    generate_curl,
    parse_link_header,
)

__all__ = [
    "__version__",
    # Errors
    "CanvasError",
    "ConfigurationError",
    "DecodeError",
    "ErrorDetail",
    "APIError",
    "AuthenticationError",
    "ForbiddenError",
    "NotFoundError",
    "ValidationError",
    "RateLimitError",
    "ServerError",
    "RetryExhausted",
    "is_rate_limit_error",
    "is_auth_error",
    "is_forbidden_error",
    "is_not_found_error",
    "is_server_error",
    # Configuration
    "ClientConfig",
    "DEFAULT_QUOTA_TOTAL",
    "DEFAULT_REQUESTS_PER_SECOND",
    "DEFAULT_USER_AGENT",
    # Rate Limiting
    "AdaptiveRateLimiter",
    "QuotaSnapshot",
    "QuotaTier",
    # Retry
    "RetryPolicy",
    "RETRYABLE_STATUS_CODES",
    # Cache
    "ResponseCache",
    "CacheEntry",
    "CacheMiss",
    "CacheStats",
    "build_cache_key",
    # Capabilities
    "CapabilityDescriptor",
    "CapabilityProbe",
    "CanvasVersion",
    "parse_version",
    # HTTP Client
    "CanvasClient",
    "PaginationLinks",
    "generate_curl",
    "parse_link_header",
]
