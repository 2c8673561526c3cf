"""Bounded retry with exponential backoff.

Used at call sites that own a retry budget (gateway calls, versioned
writes). Delay before attempt ``n`` (1-based, n >= 2) is
``base_delay * 2 ** (n - 2)``.
"""

import time
from collections.abc import Callable
from typing import TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def backoff_delay(base_delay: float, retry_count: int) -> float:
    """Delay after the ``retry_count``-th failure (1-based)."""
    return base_delay * 2 ** (retry_count - 1)


def call_with_retry(
    fn: Callable[[], T],
    *,
    retry_on: tuple[type[BaseException], ...],
    give_up_on: tuple[type[BaseException], ...] = (),
    max_attempts: int = 3,
    base_delay: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
    operation: str = "",
) -> T:
    """Call ``fn`` until it succeeds or the attempt budget is spent.

    Exceptions in ``give_up_on`` are re-raised immediately even when they
    are subclasses of something in ``retry_on``.
    """
    attempt = 1
    while True:
        try:
            return fn()
        except give_up_on:
            raise
        except retry_on as exc:
            if attempt >= max_attempts:
                logger.warning(
                    "Retry budget exhausted",
                    operation=operation,
                    attempts=attempt,
                    error=str(exc),
                )
                raise
            delay = backoff_delay(base_delay, attempt)
            logger.info(
                "Retrying after transient failure",
                operation=operation,
                attempt=attempt,
                delay=delay,
                error=str(exc),
            )
            sleep(delay)
            attempt += 1
