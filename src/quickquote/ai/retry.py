"""Exponential backoff for the AI clients."""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from quickquote.ai.errors import PipelineError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay_ms(attempt: int, initial_delay_ms: int, max_delay_ms: Optional[int] = None) -> int:
    """initial * 2**attempt, capped at max_delay_ms when given."""
    delay = initial_delay_ms * (2 ** attempt)
    if max_delay_ms is not None:
        delay = min(delay, max_delay_ms)
    return delay


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    initial_delay_ms: int,
    max_delay_ms: int,
    label: str = "request",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await fn() up to ``attempts`` times.

    Non-retryable PipelineErrors propagate immediately; the last retryable
    error is re-raised once attempts are exhausted.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    last_error: Optional[PipelineError] = None
    for attempt in range(attempts):
        try:
            return await fn()
        except PipelineError as exc:
            if not exc.retryable:
                raise
            last_error = exc
            if attempt < attempts - 1:
                delay = backoff_delay_ms(attempt, initial_delay_ms, max_delay_ms)
                logger.info(
                    "%s failed (%s); retry %d/%d after %dms",
                    label, exc.message, attempt + 1, attempts, delay,
                )
                await sleep(delay / 1000)
    raise last_error


def retry_budget_seconds(
    attempts: int,
    request_timeout_seconds: float,
    initial_delay_ms: int,
    max_delay_ms: Optional[int] = None,
    extra_requests: int = 0,
) -> float:
    """
    Worst-case wall time of retry_with_backoff when every attempt times out,
    plus ``extra_requests`` follow-up calls (the extraction fallback).
    """
    sleeps_ms = sum(backoff_delay_ms(n, initial_delay_ms, max_delay_ms) for n in range(attempts - 1))
    return (attempts + extra_requests) * request_timeout_seconds + sleeps_ms / 1000
