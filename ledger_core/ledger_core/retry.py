"""Retry and polling helpers.

:func:`async_retry_with_backoff` retries a failing call with exponential
backoff.  :func:`poll_until` is its fixed-interval sibling for "wait until
the remote side has produced something" loops: it never raises on an
exhausted budget and instead returns a :class:`PollResult` the caller must
inspect.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryConfig(BaseModel):
    """Tuneable parameters for retry behaviour."""

    max_retries: int = Field(
        default=2,
        ge=0,
        description="Maximum number of retry attempts before re-raising.",
    )
    base_delay: float = Field(
        default=0.5,
        gt=0.0,
        description="Base delay in seconds for exponential backoff.",
    )
    max_delay: float = Field(
        default=8.0,
        gt=0.0,
        description="Upper bound on delay in seconds.",
    )
    jitter: bool = Field(
        default=True,
        description="When enabled, randomise the delay within [0.5x, 1.5x].",
    )


def _compute_delay(attempt: int, config: RetryConfig) -> float:
    """Return the backoff delay for *attempt* given *config*."""
    delay: float = min(config.base_delay * (2**attempt), config.max_delay)
    if config.jitter:
        delay *= random.uniform(0.5, 1.5)  # noqa: S311
    return delay


async def async_retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await *fn* with retry and exponential backoff.

    Parameters
    ----------
    fn:
        A zero-argument coroutine function.  It is invoked from scratch on
        every attempt and must be safe to repeat.
    config:
        Retry parameters.
    retryable_exceptions:
        Exception types that trigger a retry.  Anything else propagates
        immediately.
    sleep:
        Awaitable used between attempts; tests inject a no-op.

    Returns
    -------
    T
        The return value of *fn* on success.
    """
    last_exception: Exception | None = None

    for attempt in range(config.max_retries + 1):
        try:
            return await fn()
        except retryable_exceptions as exc:
            last_exception = exc
            if attempt >= config.max_retries:
                break
            delay = _compute_delay(attempt, config)
            logger.warning(
                "Retry %d/%d after %.1fs: %s",
                attempt + 1,
                config.max_retries,
                delay,
                exc,
            )
            await sleep(delay)

    assert last_exception is not None  # noqa: S101
    raise last_exception


# ---------------------------------------------------------------------------
# Fixed-interval polling
# ---------------------------------------------------------------------------


class PollConfig(BaseModel):
    """Fixed-delay polling with a hard attempt ceiling."""

    interval: float = Field(default=1.0, ge=0.0, description="Seconds between attempts.")
    max_attempts: int = Field(default=30, ge=1, description="Attempts before giving up.")


@dataclass(frozen=True)
class PollResult(Generic[T]):
    """Outcome of :func:`poll_until`.

    ``value`` is ``None`` exactly when ``ok`` is false.
    """

    value: T | None
    attempts: int

    @property
    def ok(self) -> bool:
        return self.value is not None


async def poll_until(
    fn: Callable[[], Awaitable[T | None]],
    config: PollConfig,
    *,
    transient_exceptions: tuple[type[Exception], ...] = (),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> PollResult[T]:
    """Call *fn* until it returns something other than ``None``.

    Exceptions listed in *transient_exceptions* count as "not ready yet";
    anything else propagates.  No sleep happens after the final attempt.
    """
    for attempt in range(1, config.max_attempts + 1):
        try:
            value = await fn()
        except transient_exceptions as exc:
            logger.warning("Poll attempt %d/%d failed transiently: %s", attempt, config.max_attempts, exc)
            value = None
        if value is not None:
            return PollResult(value=value, attempts=attempt)
        if attempt < config.max_attempts:
            await sleep(config.interval)
    return PollResult(value=None, attempts=config.max_attempts)
