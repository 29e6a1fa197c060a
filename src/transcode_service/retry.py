"""Bounded exponential-backoff retry helpers."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, TypeVar

import requests
from google.api_core import exceptions as gax_exceptions
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    gax_exceptions.ServiceUnavailable,
    gax_exceptions.TooManyRequests,
    gax_exceptions.InternalServerError,
    gax_exceptions.BadGateway,
    gax_exceptions.GatewayTimeout,
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    ConnectionError,
    TimeoutError,
)


def is_transient_error(exc: BaseException) -> bool:
    """True for network-level failures worth retrying."""
    return isinstance(exc, TRANSIENT_ERRORS)


def _wait(base_delay: float, max_delay: float, jitter: float):
    wait = wait_exponential(multiplier=base_delay, min=0, max=max_delay)
    if jitter > 0:
        wait = wait + wait_random(0, jitter)
    return wait


def _log_retry(label: str):
    def before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        sleep = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            "%s failed on attempt %d (%s); retrying in %.2fs",
            label,
            retry_state.attempt_number,
            exc,
            sleep,
        )

    return before_sleep


def retry_call(
    operation: Callable[[], T],
    *,
    max_attempts: int,
    base_delay: float,
    is_retryable: Callable[[BaseException], bool] = is_transient_error,
    max_delay: float = 30.0,
    jitter: float = 0.0,
    label: str = "operation",
) -> T:
    """
    Call a blocking operation, retrying failures accepted by is_retryable.

    The delay before attempt n is base_delay * 2**(n-1), capped at max_delay.
    The last exception is re-raised once attempts are exhausted.
    """
    retrying = Retrying(
        retry=retry_if_exception(is_retryable),
        stop=stop_after_attempt(max_attempts),
        wait=_wait(base_delay, max_delay, jitter),
        before_sleep=_log_retry(label),
        reraise=True,
    )
    return retrying(operation)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    base_delay: float,
    is_retryable: Callable[[BaseException], bool] = is_transient_error,
    max_delay: float = 30.0,
    jitter: float = 0.0,
    label: str = "operation",
) -> T:
    """Async counterpart of retry_call."""
    result: Any = None
    async for attempt in AsyncRetrying(
        retry=retry_if_exception(is_retryable),
        stop=stop_after_attempt(max_attempts),
        wait=_wait(base_delay, max_delay, jitter),
        before_sleep=_log_retry(label),
        reraise=True,
    ):
        with attempt:
            result = await operation()
    return result
