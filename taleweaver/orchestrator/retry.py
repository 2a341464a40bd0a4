"""Backoff-and-jitter retry for single flaky provider calls.

Only transient network failures (connection reset, timeout, DNS failure)
are retried. Everything else, including HTTP error statuses and
configuration errors, propagates after the first attempt.

The policy wraps one sub-operation at a time so a flaky call never causes
already-completed pipeline work to be redone.
"""

import asyncio
import logging
import socket
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from taleweaver.errors import TransientNetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Error-code fragments seen in messages of wrapped socket errors
_TRANSIENT_SIGNATURES = (
    "econnreset",
    "etimedout",
    "enotfound",
    "eai_again",
    "connection reset",
    "timed out",
    "name or service not known",
    "temporary failure in name resolution",
)


def is_transient_network_error(exc: BaseException) -> bool:
    """Return True only for connection reset, timeout and DNS failures."""
    if isinstance(exc, TransientNetworkError):
        return True
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(exc, (ConnectionResetError, TimeoutError, socket.gaierror)):
        return True
    msg = str(exc).lower()
    return any(sig in msg for sig in _TRANSIENT_SIGNATURES)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    retries: int = 3,
    base_delay: float = 0.6,
    max_delay: float = 4.5,
    jitter: float = 0.22,
    on_attempt: Optional[Callable[[int, BaseException], None]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` with exponential backoff on transient errors.

    The wait before attempt n+1 is ``min(max_delay, base_delay * 2**(n-1))``
    plus a uniform jitter in ``[0, jitter]``.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        retries: Total number of attempts
        base_delay: First backoff in seconds
        max_delay: Cap on the exponential part of the backoff
        jitter: Upper bound of the random extra delay
        on_attempt: Observer called with (attempt number, error) after every
                    failed attempt; it cannot change the outcome
        sleep: Awaitable sleep used between attempts

    Returns:
        The first successful result

    Raises:
        The last error, once it is non-transient or attempts are exhausted
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, retries)),
        wait=wait_exponential(multiplier=base_delay, min=0, max=max_delay) + wait_random(0, jitter),
        retry=retry_if_exception(is_transient_network_error),
        sleep=sleep,
        reraise=True,
    )

    async for attempt in retrying:
        with attempt:
            try:
                return await operation()
            except Exception as exc:
                attempt_number = attempt.retry_state.attempt_number
                logger.warning(f"Attempt {attempt_number}/{retries} failed: {type(exc).__name__}: {exc}")
                if on_attempt is not None:
                    try:
                        on_attempt(attempt_number, exc)
                    except Exception:
                        logger.exception("Retry observer raised; ignoring")
                raise

    raise AssertionError("unreachable: tenacity either returns or reraises")
