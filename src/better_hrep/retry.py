"""Bounded exponential-backoff retry for one unit of indexing work.

A unit is an async callable (fetch + write for one person or committee).
:func:`with_retry` never raises for the retryable exception types; it returns a
:class:`RetryResult` so the chunk driver can collect failures and keep going::

    result = await with_retry(lambda: index_one(pid), max_retries=3, base_delay=5)
    if not result.success:
        failures.append(UnitFailure(pid, str(result.error)))

Delays between attempts are ``base_delay * 2**n``: 5s, 10s, 20s, ...
Exceptions outside ``retry_on``, and structural ones listed in ``propagate``,
escape immediately and abort the surrounding job.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .api_client import PaginationError, UpstreamError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_ON: tuple[type[BaseException], ...] = (UpstreamError,)
DEFAULT_PROPAGATE: tuple[type[BaseException], ...] = (PaginationError,)


@dataclass
class RetryResult(Generic[T]):
    success: bool
    value: T | None = None
    error: BaseException | None = None
    attempts: int = 0


def backoff_delays(max_retries: int, base_delay: float) -> list[float]:
    """Delays slept before each retry, e.g. ``[5, 10, 20]`` for 3 retries."""
    return [base_delay * (2**n) for n in range(max_retries)]


def _log_retry(name: str) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        LOGGER.warning(
            "%s attempt %d failed (%s); retrying in %.1fs",
            name,
            state.attempt_number,
            state.outcome.exception() if state.outcome else "?",
            state.next_action.sleep if state.next_action else 0.0,
        )

    return before_sleep


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    base_delay: float = 5.0,
    label: str = "",
    retry_on: tuple[type[BaseException], ...] = DEFAULT_RETRY_ON,
    propagate: tuple[type[BaseException], ...] = DEFAULT_PROPAGATE,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> RetryResult[T]:
    """Run *operation* up to ``1 + max_retries`` times."""
    name = label or "unit"
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=base_delay, min=0, exp_base=2),
        retry=retry_if_exception_type(retry_on) & retry_if_not_exception_type(propagate),
        before_sleep=_log_retry(name),
        sleep=sleep,
        reraise=True,
    )
    attempts = 0
    try:
        async for attempt in retrying:
            with attempt:
                attempts = attempt.retry_state.attempt_number
                value = await operation()
    except retry_on as e:
        if isinstance(e, propagate):
            raise
        LOGGER.error("%s failed after %d attempt(s): %s", name, attempts, e)
        return RetryResult(success=False, error=e, attempts=attempts)
    return RetryResult(success=True, value=value, attempts=attempts)
