"""Retry decorators for the network edge of the pipeline.

The reconciliation core never blocks on I/O; only the archive client uses these.
"""

from __future__ import annotations

import httpx
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from herovault.core.logging import get_logger

logger = get_logger(__name__)


def _log_retry(retry_state: RetryCallState) -> None:
    """Log retry attempts with context."""
    logger.warning(
        "retry_attempt",
        attempt=retry_state.attempt_number,
        wait=getattr(retry_state.next_action, "sleep", None),
        error=str(retry_state.outcome.exception()) if retry_state.outcome else None,
    )


def is_transient_http_error(exc: BaseException) -> bool:
    """Transport failures and 5xx/429 responses are worth retrying; 4xx are not."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


def retry_http_fetch(max_attempts: int = 3, initial_wait: float = 1.2, jitter: float = 1.0):
    """Retry decorator for archive page fetches with exponential backoff + jitter."""
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential_jitter(initial=initial_wait, max=20, jitter=jitter),
        retry=retry_if_exception(is_transient_http_error),
        before_sleep=_log_retry,
        reraise=True,
    )
