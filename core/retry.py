"""Retry and timeout envelope for model calls and tool invocations.

Model calls get bounded retries with jittered exponential backoff, but
only for transient failures (network errors, timeouts, rate limits and
provider 5xx responses). Anything else propagates on the first attempt.
Tool invocations only get a hard wall-clock timeout; they are never
retried here.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, TypeVar

import httpx

if TYPE_CHECKING:
    from core.task import CancelToken

logger = logging.getLogger(__name__)

T = TypeVar("T")

# HTTP status codes that indicate a transient provider-side condition
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

_RETRYABLE_PHRASES = (
    "rate limit",
    "ratelimit",
    "too many requests",
    "timed out",
    "timeout",
    "econnreset",
    "etimedout",
    "econnaborted",
    "connection reset",
    "service unavailable",
    "overloaded",
)


class OperationTimeoutError(TimeoutError):
    """An operation lost its race against the timer."""


class TaskCancelledError(Exception):
    """The task's cancel token was signalled while an operation was pending."""


@dataclass(frozen=True)
class RetryConfig:
    """Backoff policy for a retried operation. Delays are in seconds."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter_factor: float = 0.1

    def with_attempts(self, max_attempts: int) -> RetryConfig:
        return replace(self, max_attempts=max_attempts)


DEFAULT_RETRY = RetryConfig()

# Tuned for agent model calls: more attempts, longer backoff
AGENT_RETRY = RetryConfig(
    max_attempts=5,
    base_delay=2.0,
    max_delay=60.0,
    backoff_multiplier=2.0,
    jitter_factor=0.2,
)


def is_retryable(exc: BaseException) -> bool:
    """Classify an exception as transient (retry) or terminal (propagate)."""
    if isinstance(exc, (asyncio.CancelledError, TaskCancelledError)):
        return False
    if isinstance(exc, (TimeoutError, ConnectionError, httpx.TransportError)):
        return True

    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    if isinstance(status, int):
        return status in RETRYABLE_STATUS_CODES

    message = str(exc).lower()
    if "429" in message:
        return True
    return any(phrase in message for phrase in _RETRYABLE_PHRASES)


def compute_delay(attempt: int, config: RetryConfig) -> float:
    """Backoff delay after the given (1-based) failed attempt."""
    delay = config.base_delay * (config.backoff_multiplier ** (attempt - 1))
    capped = min(delay, config.max_delay)
    jitter = capped * config.jitter_factor * (random.random() - 0.5)
    return max(0.0, capped + jitter)


async def _backoff(
    delay: float, cancel_token: CancelToken | None, operation_name: str
) -> None:
    """Sleep for *delay*, waking early with TaskCancelledError on cancel."""
    if cancel_token is None:
        await asyncio.sleep(delay)
        return
    try:
        await asyncio.wait_for(cancel_token.wait(), timeout=delay)
    except TimeoutError:
        return
    raise TaskCancelledError(f"{operation_name} cancelled during backoff")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig = DEFAULT_RETRY,
    *,
    operation_name: str = "operation",
    on_retry: Callable[[int, BaseException], Any] | None = None,
    cancel_token: CancelToken | None = None,
) -> T:
    """Run *operation* until it succeeds, fails terminally, or attempts run out.

    ``operation`` is a zero-argument factory so each attempt gets a fresh
    coroutine. The last error is re-raised when retries are exhausted.
    """
    last_error: BaseException | None = None

    for attempt in range(1, config.max_attempts + 1):
        if cancel_token is not None and cancel_token.cancelled:
            raise TaskCancelledError(f"{operation_name} cancelled")
        try:
            return await operation()
        except Exception as e:
            last_error = e
            if not is_retryable(e):
                raise
            if attempt >= config.max_attempts:
                logger.error(
                    "%s failed after %d attempts: %s",
                    operation_name,
                    config.max_attempts,
                    e,
                )
                raise

            delay = compute_delay(attempt, config)
            logger.warning(
                "%s attempt %d/%d failed: %s. Retrying in %.1fs...",
                operation_name,
                attempt,
                config.max_attempts,
                e,
                delay,
            )
            if on_retry is not None:
                try:
                    on_retry(attempt, e)
                except Exception:
                    logger.debug("on_retry callback failed", exc_info=True)
            await _backoff(delay, cancel_token, operation_name)

    # max_attempts < 1 never enters the loop
    raise last_error or RuntimeError(f"{operation_name}: no attempts configured")


async def with_timeout(
    awaitable: Awaitable[T],
    seconds: float,
    operation_name: str = "Operation",
) -> T:
    """Race *awaitable* against a timer; ``seconds <= 0`` disables the timer."""
    if not seconds or seconds <= 0:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except TimeoutError as e:
        if isinstance(e, OperationTimeoutError):
            raise
        raise OperationTimeoutError(
            f"{operation_name} timed out after {seconds:g}s"
        ) from e
