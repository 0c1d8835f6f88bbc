"""
Retry Backoff
=============
Exponential backoff retry policy for Canvas API exchanges.
"""

import asyncio
from typing import Awaitable, Callable, FrozenSet, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    retry_if_result,
    stop_after_attempt,
)

from canvas_core.config import (
    DEFAULT_INITIAL_BACKOFF,
    DEFAULT_MAX_BACKOFF,
    DEFAULT_MAX_RETRIES,
)
from canvas_core.exceptions import APIError, RetryExhausted

logger = structlog.get_logger(__name__)

RETRYABLE_STATUS_CODES: FrozenSet[int] = frozenset({429, 500, 502, 503, 504})

# Caller intent, never a transient failure
_CANCELLATION_ERRORS = (asyncio.CancelledError, asyncio.TimeoutError, TimeoutError)


class RetryPolicy:
    """
    Decides whether an exchange is retried and how long to wait first.

    Backoff is `initial_backoff * 2**attempt`, capped at `max_backoff`.
    With the defaults the waits are 1s, 2s and 4s, for at most
    `max_retries + 1` attempts in total.
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
        max_backoff: float = DEFAULT_MAX_BACKOFF,
    ):
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff

    def should_retry(
        self,
        response: Optional[httpx.Response] = None,
        error: Optional[BaseException] = None,
    ) -> bool:
        """
        Return True if the outcome of an attempt is worth another try.

        Network errors and 429/500/502/503/504 are retried. Cancellation
        and deadlines are not, and neither is anything else.
        """
        if error is not None:
            if isinstance(error, _CANCELLATION_ERRORS):
                return False
            if isinstance(error, APIError):
                return error.status_code in RETRYABLE_STATUS_CODES
            return isinstance(error, httpx.TransportError)

        if response is not None:
            return response.status_code in RETRYABLE_STATUS_CODES

        return False

    def backoff_for(self, attempt: int) -> float:
        """Seconds to wait after the zero-based `attempt` failed."""
        return min(self.initial_backoff * (2 ** attempt), self.max_backoff)

    async def run_with_retry(
        self,
        operation: Callable[[], Awaitable[httpx.Response]],
    ) -> httpx.Response:
        """
        Execute `operation` until it succeeds, fails terminally, or the
        retry budget runs out.

        Raises:
            RetryExhausted: If the final attempt raised a retryable error
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._wait,
            retry=(
                retry_if_exception(lambda exc: self.should_retry(error=exc))
                | retry_if_result(lambda resp: self.should_retry(response=resp))
            ),
            before_sleep=self._log_retry,
            retry_error_callback=self._on_exhausted,
        )
        return await retrying(operation)

    def _wait(self, retry_state: RetryCallState) -> float:
        return self.backoff_for(retry_state.attempt_number - 1)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None and outcome.failed else None
        status = getattr(error, "status_code", None)
        if outcome is not None and error is None:
            status = outcome.result().status_code

        logger.warning(
            "request_retry_scheduled",
            attempt=retry_state.attempt_number,
            max_retries=self.max_retries,
            backoff=retry_state.next_action.sleep if retry_state.next_action else None,
            status=status,
            error=str(error) if error else None,
        )

    def _on_exhausted(self, retry_state: RetryCallState) -> httpx.Response:
        outcome = retry_state.outcome
        if outcome is not None and outcome.failed:
            error = outcome.exception()
            logger.error(
                "request_retry_exhausted",
                attempts=retry_state.attempt_number,
                error=str(error),
            )
            raise RetryExhausted(
                f"request failed after {self.max_retries} retries: {error}",
                attempts=retry_state.attempt_number,
                last_exception=error,
            ) from error

        # The last attempt produced a response; hand it back untouched
        return outcome.result()
