"""
Retry helpers for transient I/O.

Rate-limited reads back off exponentially (base, 2x base, 4x base...) up to a
fixed attempt ceiling, then the last error is re-raised to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ...domain.exceptions import RateLimitedError
from ...utils.logging_setup import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff settings shared by the orchestrator and the HTTP edge."""
    max_attempts: int = 3
    base_delay_sec: float = 1.0
    max_delay_sec: float = 30.0


def _log_before_sleep(operation: str, policy: RetryPolicy) -> Callable[[RetryCallState], None]:
    def log(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"{operation} failed ({error}), retrying in {delay:.1f}s "
            f"({retry_state.attempt_number}/{policy.max_attempts})"
        )
    return log


def _retrying(
    operation: str,
    policy: RetryPolicy,
    retry_on: Tuple[Type[BaseException], ...],
) -> AsyncRetrying:
    return AsyncRetrying(
        stop=stop_after_attempt(max(1, policy.max_attempts)),
        wait=wait_exponential(
            multiplier=policy.base_delay_sec,
            min=policy.base_delay_sec,
            max=policy.max_delay_sec,
        ),
        retry=retry_if_exception_type(retry_on),
        reraise=True,
        before_sleep=_log_before_sleep(operation, policy),
    )


async def call_with_retry(
    operation: str,
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retry_on: Tuple[Type[BaseException], ...] = (RateLimitedError,),
) -> T:
    """
    Await ``func()``, retrying on ``retry_on`` with exponential backoff.

    Raises:
        The last exception once attempts are exhausted, or any exception not
        listed in ``retry_on`` immediately.
    """
    async for attempt in _retrying(operation, policy, retry_on):
        with attempt:
            return await func()
    raise AssertionError("unreachable")  # pragma: no cover
