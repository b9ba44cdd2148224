import time
from collections.abc import Callable
from typing import TypeVar

from rowledger.errors import DestinationError, TransientDestinationError


T = TypeVar("T")


def write_with_retries(
    fn: Callable[[], T],
    *,
    max_retries: int,
    backoff_seconds: float,
    on_attempt_failure: Callable[[int, DestinationError], None] | None = None,
) -> T:
    """Call a destination write, repeating it while it fails transiently.

    Only :class:`TransientDestinationError` is attempted again; any other
    destination error propagates straight away. The last transient error is
    re-raised once ``max_retries`` extra attempts are used up.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except TransientDestinationError as exc:
            if on_attempt_failure:
                on_attempt_failure(attempt, exc)
            if attempt > max_retries:
                raise
            time.sleep(backoff_seconds * attempt)
