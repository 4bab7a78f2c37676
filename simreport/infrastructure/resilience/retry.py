"""Bounded retries for transient backend failures.

The stream reader wraps message decoding with :func:`retry` so that a
recoverable :class:`BackendFailureError` (a message that may decode on a
second attempt, e.g. after a partially delivered payload) is retried a few
times before the error reaches the consumer. Errors flagged as not
recoverable are raised on the first failure.
"""

from __future__ import annotations

import functools
import logging
import time
from dataclasses import dataclass
from typing import Callable, ParamSpec, TypeVar

from simreport.shared.exceptions import BackendFailureError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


@dataclass(frozen=True)
class Backoff:
    """Sleep schedule between attempts.

    The n-th retry (0-based) waits ``min(initial * factor**n, ceiling)``
    seconds.
    """

    initial: float = 0.01
    factor: float = 2.0
    ceiling: float = 1.0

    def delay(self, retry_index: int) -> float:
        return min(self.initial * self.factor**retry_index, self.ceiling)


def _is_final(error: Exception) -> bool:
    return isinstance(error, BackendFailureError) and not error.recoverable


def retry(
    max_attempts: int = 2,
    *,
    backoff: Backoff | None = None,
    on: tuple[type[Exception], ...] = (BackendFailureError,),
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Call the wrapped function up to ``max_attempts`` times.

    Parameters
    ----------
    max_attempts : int
        Total number of calls, the first one included (at least one call is
        always made)
    backoff : Backoff | None
        Delay schedule; defaults to ``Backoff()``
    on : tuple[type[Exception], ...]
        Exception types worth another attempt; anything else propagates

    Example
    -------
    >>> decode = retry(max_attempts=3)(backend.decode)
    """
    schedule = backoff or Backoff()
    attempts = max(1, max_attempts)

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        name = getattr(func, "__qualname__", repr(func))

        @functools.wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            for index in range(attempts):
                try:
                    return func(*args, **kwargs)
                except on as e:
                    if _is_final(e):
                        raise
                    if index == attempts - 1:
                        logger.warning("[retry] %s gave up after %d attempt(s): %s", name, attempts, e)
                        raise
                    pause = schedule.delay(index)
                    logger.debug("[retry] %s: %s; next attempt in %.3fs", name, e, pause)
                    time.sleep(pause)
            raise AssertionError("unreachable")

        return wrapper

    return decorator


__all__ = ["Backoff", "retry"]
