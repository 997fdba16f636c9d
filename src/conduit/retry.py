"""Retry scheduling with an explicit error classifier.

Design goals:
- Classification reads structured ``APIError`` fields, never SDK types
- Retries live here only; SDK clients are built with transport retries off
- Backoff sleeps are interruptible through the query's cancel signal
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import time
from typing import TYPE_CHECKING, TypeVar

from conduit.errors import APIError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from conduit.cancel import CancelSignal

T = TypeVar("T")

_OVERLOADED_ERROR_TYPE = "overloaded_error"
_OVERLOADED_MARKER = '"type":"overloaded_error"'

DEFAULT_MAX_RETRIES = 10
BENCHMARK_MAX_RETRIES = 100


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy with capped exponential backoff."""

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay_s: float = 0.5
    max_delay_s: float = 32.0

    def __post_init__(self) -> None:
        """Validate invariants to keep retry behavior predictable."""
        if self.max_retries < 0:
            raise ValueError("RetryPolicy.max_retries must be >= 0")
        if self.base_delay_s < 0:
            raise ValueError("RetryPolicy.base_delay_s must be >= 0")
        if self.max_delay_s < 0:
            raise ValueError("RetryPolicy.max_delay_s must be >= 0")

    @classmethod
    def for_mode(cls, benchmark_mode: bool) -> RetryPolicy:
        """Benchmark runs must ride out provider overload without failing."""
        if benchmark_mode:
            return cls(max_retries=BENCHMARK_MAX_RETRIES)
        return cls()


@dataclass(frozen=True)
class RetryAttempt:
    """One failed attempt about to be retried."""

    attempt: int
    max_retries: int
    delay_s: float
    elapsed_s: float
    error: APIError


def is_overloaded(error: APIError) -> bool:
    if error.error_type == _OVERLOADED_ERROR_TYPE:
        return True
    return _OVERLOADED_MARKER in str(error)


def should_retry(error: APIError, *, benchmark_mode: bool = False) -> bool:
    """Return True when a failed call should be attempted again.

    Rule order matters: overloaded errors are decided before the generic
    429/5xx rules so they are not retried outside benchmark mode.
    """
    if is_overloaded(error):
        return benchmark_mode

    hint = error.should_retry_header
    if hint is not None:
        return hint

    if error.connection_error:
        return True

    status = error.status_code
    if not status:
        return False
    if status in (408, 409):
        return True
    if status == 429:
        return True
    return status >= 500


def compute_retry_delay(
    attempt: int,
    retry_after_s: int | None = None,
    policy: RetryPolicy | None = None,
) -> float:
    """Seconds to wait before retrying after failed *attempt* (1-based)."""
    if retry_after_s is not None:
        return float(retry_after_s)
    policy = policy or RetryPolicy()
    delay = policy.base_delay_s * (2 ** max(0, attempt - 1))
    return min(delay, policy.max_delay_s)


async def retry_async(
    operation: Callable[[int], Awaitable[T]],
    *,
    policy: RetryPolicy,
    benchmark_mode: bool = False,
    cancel: CancelSignal | None = None,
    on_retry: Callable[[RetryAttempt], None] | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> T:
    """Run ``operation(attempt)`` until it succeeds or retrying is not allowed.

    The operation is invoked at most ``policy.max_retries + 1`` times. The last
    error is re-raised unmodified; non-``APIError`` exceptions (including
    ``QueryAborted`` and cancellation) propagate on first occurrence.
    """
    start = time.monotonic()
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation(attempt)
        except APIError as exc:
            if attempt > policy.max_retries or not should_retry(
                exc, benchmark_mode=benchmark_mode
            ):
                raise

            delay = compute_retry_delay(attempt, exc.retry_after_s, policy)
            if on_retry is not None:
                on_retry(
                    RetryAttempt(
                        attempt=attempt,
                        max_retries=policy.max_retries,
                        delay_s=delay,
                        elapsed_s=time.monotonic() - start,
                        error=exc,
                    )
                )

        if sleep is not None:
            await sleep(delay)
        elif cancel is not None:
            await cancel.sleep(delay)
        elif delay > 0:
            await asyncio.sleep(delay)
        if cancel is not None:
            cancel.raise_if_cancelled()
