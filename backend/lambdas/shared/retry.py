"""Bounded retry with linear backoff for outbound calls."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple, TypeVar


LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class RetriesExhausted(RuntimeError):
    """Raised when every permitted attempt failed with a transient error."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"Gave up after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error

    @property
    def retries_attempted(self) -> int:
        return self.attempts - 1


@dataclass
class RetryPolicy:
    """
    Retry ``operation`` while ``is_transient`` classifies the failure as retry-eligible.

    The delay before retry ``n`` is ``n * base_delay``. When ``deadline_seconds``
    is set no new attempt starts once the deadline (measured from the first
    attempt) would be passed by the backoff sleep.
    """

    max_retries: int
    base_delay: float
    is_transient: Callable[[BaseException], bool]
    deadline_seconds: Optional[float] = None
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    def delay_for(self, retry_number: int) -> float:
        return retry_number * self.base_delay

    def run(self, operation: Callable[[int], T]) -> Tuple[T, int]:
        """Return ``(result, attempts)``; re-raise definitive errors untouched."""
        started = self.clock()
        attempt = 0
        while True:
            attempt += 1
            try:
                return operation(attempt), attempt
            except Exception as exc:  # pylint: disable=broad-except
                if not self.is_transient(exc):
                    raise
                if attempt > self.max_retries:
                    raise RetriesExhausted(attempt, exc) from exc
                delay = self.delay_for(attempt)
                if self.deadline_seconds is not None and self.clock() - started + delay >= self.deadline_seconds:
                    LOGGER.warning("Retry deadline reached after attempt %s; not retrying", attempt)
                    raise RetriesExhausted(attempt, exc) from exc
                LOGGER.warning(
                    "Transient failure (attempt %s/%s): %s. Sleeping %.1fs before retry.",
                    attempt,
                    self.max_retries + 1,
                    exc,
                    delay,
                )
                self.sleep(delay)
