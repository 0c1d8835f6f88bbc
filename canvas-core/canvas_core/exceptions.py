"""
Canvas Client Exceptions
========================
Exception hierarchy for the request pipeline, plus predicates that see
through retry wrapping.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Type

import httpx


class CanvasError(Exception):
    """Base exception for all Canvas client errors."""
    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Any = None,
    ):
        self.message = message
        self.path = path
        self.status_code = status_code
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.path:
            parts.append(f"(path: {self.path})")
        if self.status_code is not None:
            parts.append(f"(status: {self.status_code})")
        return " ".join(parts)


class ConfigurationError(CanvasError):
    """Raised when a client is built from an unusable configuration."""
    pass


class DecodeError(CanvasError):
    """Raised when a response body is not the JSON shape the caller asked for."""
    pass


@dataclass
class ErrorDetail:
    """A single entry of the Canvas `errors` array."""
    message: str
    error_code: Optional[str] = None


class APIError(CanvasError):
    """Raised when Canvas answers with a 4xx/5xx status."""

    suggestion: Optional[str] = None
    docs_url: Optional[str] = None

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Any = None,
        errors: Optional[List[ErrorDetail]] = None,
        error_report_id: Optional[int] = None,
    ):
        super().__init__(message, path=path, status_code=status_code, details=details)
        self.errors = errors or []
        self.error_report_id = error_report_id

    def __str__(self) -> str:
        msg = super().__str__()
        if self.suggestion:
            msg += f"\n\nSuggestion: {self.suggestion}"
        if self.docs_url:
            msg += f"\nDocs: {self.docs_url}"
        return msg

    @classmethod
    def from_response(cls, response: httpx.Response, path: Optional[str] = None) -> "APIError":
        """Build the status-specific error for a failed response."""
        status = response.status_code
        text = response.text
        errors: List[ErrorDetail] = []
        report_id = None

        try:
            payload = json.loads(text) if text else None
        except ValueError:
            payload = None

        if isinstance(payload, dict):
            raw_errors = payload.get("errors")
            if isinstance(raw_errors, list):
                for item in raw_errors:
                    if isinstance(item, dict):
                        errors.append(ErrorDetail(
                            message=str(item.get("message", "")),
                            error_code=item.get("error_code"),
                        ))
                    else:
                        errors.append(ErrorDetail(message=str(item)))
            elif isinstance(raw_errors, dict):
                # Validation failures come back keyed by field name
                for field_name, problems in raw_errors.items():
                    errors.append(ErrorDetail(message=f"{field_name}: {problems}"))
            elif "message" in payload:
                errors.append(ErrorDetail(message=str(payload["message"])))
            report_id = payload.get("error_report_id")
        elif text:
            errors.append(ErrorDetail(message=text))

        message = errors[0].message if errors else f"HTTP {status} Error"
        error_cls = _error_class_for_status(status)
        return error_cls(
            message,
            path=path,
            status_code=status,
            details=text or None,
            errors=errors,
            error_report_id=report_id,
        )


class AuthenticationError(APIError):
    """Raised on 401 responses."""
    suggestion = (
        "Your authentication token may be expired or invalid. "
        "Try running 'canvas auth login' again."
    )
    docs_url = "https://canvas.instructure.com/doc/api/file.oauth.html"


class ForbiddenError(APIError):
    """Raised on 403 responses."""
    suggestion = (
        "You don't have permission to access this resource. "
        "Check your Canvas role and permissions."
    )


class NotFoundError(APIError):
    """Raised on 404 responses."""
    suggestion = "The requested resource was not found. Verify the ID and try again."


class ValidationError(APIError):
    """Raised on 422 responses."""
    suggestion = "The request was invalid. Check the required fields and data format."


class RateLimitError(APIError):
    """Raised on 429 responses."""
    suggestion = (
        "Rate limit exceeded. Requests are slowed down automatically. "
        "Please wait a moment."
    )
    docs_url = "https://canvas.instructure.com/doc/api/file.throttling.html"


class ServerError(APIError):
    """Raised on 5xx responses."""
    suggestion = "Canvas is experiencing issues. Please try again in a few moments."


_STATUS_ERRORS: Dict[int, Type[APIError]] = {
    401: AuthenticationError,
    403: ForbiddenError,
    404: NotFoundError,
    422: ValidationError,
    429: RateLimitError,
}


def _error_class_for_status(status: int) -> Type[APIError]:
    if status in _STATUS_ERRORS:
        return _STATUS_ERRORS[status]
    if 500 <= status < 600:
        return ServerError
    return APIError


class RetryExhausted(CanvasError):
    """Raised when all retry attempts have been exhausted."""

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        last_exception: Optional[BaseException] = None,
    ):
        status = getattr(last_exception, "status_code", None)
        path = getattr(last_exception, "path", None)
        super().__init__(message, path=path, status_code=status)
        self.attempts = attempts
        self.last_exception = last_exception


# =============================================================================
# Predicates
# =============================================================================

def _unwrap_api_error(exc: BaseException) -> Optional[APIError]:
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, APIError):
            return current
        if isinstance(current, RetryExhausted) and current.last_exception is not None:
            current = current.last_exception
        else:
            current = current.__cause__
    return None


def is_rate_limit_error(exc: BaseException) -> bool:
    err = _unwrap_api_error(exc)
    return err is not None and err.status_code == 429


def is_auth_error(exc: BaseException) -> bool:
    err = _unwrap_api_error(exc)
    return err is not None and err.status_code == 401


def is_forbidden_error(exc: BaseException) -> bool:
    err = _unwrap_api_error(exc)
    return err is not None and err.status_code == 403


def is_not_found_error(exc: BaseException) -> bool:
    err = _unwrap_api_error(exc)
    return err is not None and err.status_code == 404


def is_server_error(exc: BaseException) -> bool:
    err = _unwrap_api_error(exc)
    return err is not None and err.status_code is not None and 500 <= err.status_code < 600
