"""
Bounded retry for remote-store calls.

Only transient connection failures are retried; everything else propagates on
the first attempt. When the attempts run out the last error is wrapped in a
StorageUnavailableError.
"""

import asyncio
import errno
import logging
import socket
import time
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional, TypeVar

import aiohttp
from redis import exceptions as redis_exceptions

from moontv_storage.exceptions import StorageUnavailableError

log = logging.getLogger(__name__)

T = TypeVar("T")

# Monotonic deadline for the operation in progress, set by deadline_scope().
_current_deadline: ContextVar[Optional[float]] = ContextVar(
    "moontv_storage_deadline", default=None
)

TRANSIENT_ERRNOS = frozenset(
    {
        errno.ECONNREFUSED,
        errno.ECONNRESET,
        errno.ECONNABORTED,
        errno.EPIPE,
        errno.ETIMEDOUT,
        errno.EHOSTUNREACH,
        errno.ENETUNREACH,
    }
)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry settings for one backend."""

    attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Linear backoff: ``base_delay * attempt``, capped at ``max_delay``."""
        return min(self.base_delay * attempt, self.max_delay)


def is_transient_error(exc: BaseException) -> bool:
    """Returns True for connection-class failures that are worth retrying."""
    if isinstance(exc, redis_exceptions.AuthenticationError):
        return False
    if getattr(exc, "transient", False):
        return True
    if isinstance(
        exc,
        (
            ConnectionError,
            socket.gaierror,
            asyncio.TimeoutError,
            aiohttp.ClientConnectionError,
            redis_exceptions.ConnectionError,
            redis_exceptions.TimeoutError,
        ),
    ):
        return True
    return isinstance(exc, OSError) and exc.errno in TRANSIENT_ERRNOS


@contextmanager
def deadline_scope(seconds: float) -> Iterator[float]:
    """
    Bounds the retry backoff of every storage call made inside the block.

    Example:
        with deadline_scope(5):
            await db.get_all_play_records(username)
    """
    deadline = time.monotonic() + seconds
    outer = _current_deadline.get()
    if outer is not None:
        deadline = min(deadline, outer)
    token = _current_deadline.set(deadline)
    try:
        yield deadline
    finally:
        _current_deadline.reset(token)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    deadline: float | None = None,
    description: str = "storage operation",
) -> T:
    """
    Runs ``operation`` with retries on transient failures.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        policy: Attempt count and backoff. Defaults to 3 attempts, 1s linear.
        deadline: Optional ``time.monotonic()`` value. No retry is started if its
            backoff sleep would end after this point. Defaults to the deadline
            of the enclosing deadline_scope(), if any.
        description: Used in log messages and the final error.

    Raises:
        StorageUnavailableError: After the last transient failure, or when the
            deadline leaves no room for another attempt.
    """
    policy = policy or RetryPolicy()
    if deadline is None:
        deadline = _current_deadline.get()
    last_exception: BaseException | None = None

    for attempt in range(1, policy.attempts + 1):
        try:
            return await operation()
        except Exception as e:
            if not is_transient_error(e):
                raise
            last_exception = e
            if attempt >= policy.attempts:
                break

            delay = policy.delay_for(attempt)
            if deadline is not None and time.monotonic() + delay > deadline:
                log.debug(f"{description}: deadline reached after attempt {attempt}.")
                break

            log.warning(
                f"[yellow]{description} failed, retrying... "
                f"({attempt}/{policy.attempts}): {e}[/yellow]"
            )
            await asyncio.sleep(delay)

    raise StorageUnavailableError(
        f"{description} failed after {attempt} attempt(s): {last_exception}"
    ) from last_exception
