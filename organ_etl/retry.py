from collections.abc import Callable
import time
from typing import TypeVar


T = TypeVar("T")


def run_with_retries(
    fn: Callable[[], T],
    *,
    max_retries: int,
    backoff_seconds: float,
    is_failure: Callable[[T], bool],
    on_attempt_failure: Callable[[int, T], None] | None = None,
) -> T:
    """Call ``fn`` until ``is_failure`` is false or ``max_retries`` re-invocations are spent."""
    attempt = 1
    while True:
        result = fn()
        if not is_failure(result):
            return result
        if on_attempt_failure:
            on_attempt_failure(attempt, result)
        if attempt > max_retries:
            return result
        time.sleep(backoff_seconds * attempt)
        attempt += 1
