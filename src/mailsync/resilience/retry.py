"""Resilient provider call decorator with tenacity retry.

Transient transport failures (``NetworkFailure``) are retried 3 times with
exponential backoff and jitter.  Authentication and quota errors are never
retried here: the first needs the user, the second needs a longer pause than
a retry loop should hold a worker thread for.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from mailsync.domain.errors import NetworkFailure

logger = structlog.get_logger()

F = TypeVar("F", bound=Callable[..., Any])

MAX_ATTEMPTS = 3


def log_final_failure(retry_state: RetryCallState) -> Any:
    """Log exhaustion and re-raise the last exception.

    Args:
        retry_state: Tenacity retry state with attempt info and exception.
    """
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    api_name = getattr(retry_state.fn, "_api_name", "unknown") if retry_state.fn else "unknown"

    logger.error(
        "provider_call_failed",
        api_name=api_name,
        attempts=retry_state.attempt_number,
        exception=str(exception),
    )
    if exception is not None:
        raise exception
    return None


def _before_sleep_log(retry_state: RetryCallState) -> None:
    """Log a warning before each retry attempt.

    Args:
        retry_state: Tenacity retry state with attempt info.
    """
    api_name = getattr(retry_state.fn, "_api_name", "unknown") if retry_state.fn else "unknown"
    logger.warning(
        "provider_call_retrying",
        api_name=api_name,
        attempt=retry_state.attempt_number,
        wait=retry_state.next_action.sleep if retry_state.next_action else 0,
    )


def resilient_api_call(api_name: str, max_wait: float = 30) -> Callable[[F], F]:
    """Create a retry decorator for a blocking provider call.

    Returns a tenacity retry decorator configured with:
    - retries only on ``NetworkFailure``
    - 3 attempts maximum
    - exponential backoff with jitter (1s initial, *max_wait* cap)
    - a warning log before each retry
    - the original exception re-raised after exhaustion

    Args:
        api_name: Human-readable name for the call (used in logs).
        max_wait: Upper bound in seconds for a single backoff sleep.

    Returns:
        A decorator that wraps the function with retry logic.
    """

    def decorator(func: F) -> F:
        # Store api_name on function for the log callbacks
        func._api_name = api_name  # type: ignore[attr-defined]

        wrapped = retry(
            retry=retry_if_exception_type(NetworkFailure),
            stop=stop_after_attempt(MAX_ATTEMPTS),
            wait=wait_exponential_jitter(initial=1, max=max_wait, jitter=1),
            before_sleep=_before_sleep_log,
            retry_error_callback=log_final_failure,
            reraise=True,
        )(func)

        return wrapped

    return decorator
