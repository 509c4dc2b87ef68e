"""
Retry strategy for collaborator calls, using Tenacity.

Only transport-level failures are retried. Business-rule errors raised by
the engines are never retried.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from trustalloc.core.exceptions import MetricsUnavailableError
from trustalloc.core.logging import get_logger

logger = get_logger("resilience.retry")


def is_transient_error(exception: BaseException) -> bool:
    """Check if exception is a transient network/infrastructure error."""
    if isinstance(exception, httpx.TransportError):
        return True
    if isinstance(exception, MetricsUnavailableError):
        return exception.is_server_error() or exception.status_code == 429
    return False


def _log_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        f"Retrying collaborator call... (Attempt {retry_state.attempt_number}): "
        f"{retry_state.outcome.exception() if retry_state.outcome else 'unknown error'}"
    )


async def execute_with_retry(
    func: Callable[..., Awaitable[Any]],
    *args: Any,
    attempts: int = 3,
    max_wait: float = 4.0,
    **kwargs: Any,
) -> Any:
    """Execute an async function, retrying transient failures with exponential backoff."""
    async for attempt in AsyncRetrying(
        retry=retry_if_exception(is_transient_error),
        wait=wait_exponential(multiplier=0.25, min=0.25, max=max_wait),
        stop=stop_after_attempt(attempts),
        before_sleep=_log_retry,
        reraise=True,
    ):
        with attempt:
            return await func(*args, **kwargs)
