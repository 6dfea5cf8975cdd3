"""
winnode/utils/async_retry.py

Provides a decorator to retry an async function multiple times upon failure,
driven either by plain `retries`/`delay` arguments or by a RetryPolicy.

Only exceptions matching `retry_on` are retried; anything else propagates on
the first failure. A loop can be aborted early by setting the `cancel`
event, or bounded in wall-clock time by the policy's deadline.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Coroutine, Optional, Tuple, Type
from typing_extensions import ParamSpec, TypeVar

from winnode.models.retry import RetryPolicy

P = ParamSpec("P")
R = TypeVar("R")

logger = logging.getLogger(__name__)


class RetryCancelled(Exception):
    """Raised when a retry loop is aborted through its cancellation event."""


class RetryDeadlineExceeded(Exception):
    """Raised when a retry loop runs past its policy deadline."""


async def _wait(delay: float, cancel: Optional[asyncio.Event]) -> bool:
    """Sleep for `delay` seconds. Returns True if `cancel` was set meanwhile."""
    if cancel is None:
        await asyncio.sleep(delay)
        return False
    try:
        await asyncio.wait_for(cancel.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return False
    return True


def async_retry(
    retries: int = 3,
    delay: float = 1.0,
    noisy: bool = False,
    *,
    policy: Optional[RetryPolicy] = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    cancel: Optional[asyncio.Event] = None,
) -> Callable[
    [Callable[P, Coroutine[Any, Any, R]]], Callable[P, Coroutine[Any, Any, R]]
]:
    """Decorates an async function to retry upon failure.

    Args:
        retries (int, optional):
            Maximum number of total attempts. Ignored when `policy` is given.
        delay (float, optional):
            Delay in seconds between attempts. Ignored when `policy` is given.
        noisy (bool, optional):
            If True, logs a warning on each failure and an error if all attempts fail.
        policy (RetryPolicy, optional):
            Attempts, interval and optional deadline in one object.
        retry_on (Tuple[Type[BaseException], ...], optional):
            Exception types that trigger another attempt. Others propagate at once.
        cancel (asyncio.Event, optional):
            When set, the loop stops before the next attempt with RetryCancelled.

    Returns:
        A decorator that, when applied to an async function, returns a wrapped
        version that retries on the selected exceptions.
    """
    attempts = policy.attempts if policy else retries
    interval = policy.interval_seconds if policy else delay
    deadline = policy.deadline_seconds if policy else None

    def decorator(
        func: Callable[P, Coroutine[Any, Any, R]]
    ) -> Callable[P, Coroutine[Any, Any, R]]:
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            started = time.monotonic()
            attempt_number = 1
            while True:
                if cancel is not None and cancel.is_set():
                    raise RetryCancelled(
                        f"{func.__qualname__} cancelled before attempt {attempt_number}"
                    )
                try:
                    return await func(*args, **kwargs)
                except retry_on as exc:
                    if noisy:
                        logger.warning(
                            "Attempt %d/%d for function %r failed. Error: %s",
                            attempt_number,
                            attempts,
                            func.__qualname__,
                            exc,
                        )
                    if attempt_number >= attempts:
                        if noisy:
                            logger.error(
                                "All %d attempts failed for function %r",
                                attempts,
                                func.__qualname__,
                            )
                        raise
                    if deadline is not None and (
                        time.monotonic() - started + interval > deadline
                    ):
                        raise RetryDeadlineExceeded(
                            f"{func.__qualname__} exceeded its {deadline}s deadline "
                            f"after {attempt_number} attempts"
                        ) from exc
                    if await _wait(interval, cancel):
                        raise RetryCancelled(
                            f"{func.__qualname__} cancelled after {attempt_number} attempts"
                        ) from exc
                    attempt_number += 1

        return wrapper

    return decorator
