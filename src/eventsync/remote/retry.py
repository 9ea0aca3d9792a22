"""Exponential backoff for calls to the remote store.

The HTTP remote uses it to ride out rate limiting: with the defaults a
call is attempted three times, 1 s then 2 s apart. Delays double up to
``DEFAULT_MAX_BACKOFF``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 2
DEFAULT_INITIAL_BACKOFF = 1.0  # seconds
DEFAULT_MAX_BACKOFF = 10.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0


def retry_with_backoff(
    func: Callable[[], T],
    max_retries: int = DEFAULT_MAX_RETRIES,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``func`` until it succeeds or the retries run out.

    Args:
        func: Zero-argument call to attempt.
        max_retries: Attempts after the first one.
        initial_backoff: Delay before the first retry, in seconds.
        max_backoff: Upper bound of any delay, in seconds.
        backoff_multiplier: Growth factor of the delay between retries.
        retryable_exceptions: Errors that trigger a retry; any other error
            propagates at once.
        sleep: Waits between attempts; tests pass a recorder.

    Returns:
        What ``func`` returned.

    Raises:
        The error of the last attempt.
    """
    delay = initial_backoff
    attempt = 1
    while True:
        try:
            return func()
        except retryable_exceptions as e:
            if attempt > max_retries:
                logger.error(f"Giving up after {attempt} attempts: {e}")
                raise
            logger.warning(
                f"Attempt {attempt}/{max_retries + 1} failed ({e}), retrying in {delay:.1f}s"
            )
        sleep(delay)
        delay = min(delay * backoff_multiplier, max_backoff)
        attempt += 1
