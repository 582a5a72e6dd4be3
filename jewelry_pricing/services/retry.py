"""Reusable retry policy for upstream calls."""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


def linear_backoff(base_seconds: float) -> Callable[[int], float]:
    """Delay of attempt * base_seconds after the given (1-based) attempt."""
    def delay(attempt: int) -> float:
        return attempt * base_seconds
    return delay


@dataclass
class RetryPolicy:
    """Call a function up to max_attempts times, sleeping between attempts.

    Usage:
        policy = RetryPolicy(max_attempts=3, delay=linear_backoff(1.0))
        quotes = policy.call(provider.fetch_rates, ['AU'])

    Exceptions matching give_up_on are re-raised immediately. Anything
    else is retried; the last exception is re-raised once the budget
    is spent.
    """
    max_attempts: int = 3
    delay: Callable[[int], float] = field(default_factory=lambda: linear_backoff(1.0))
    give_up_on: tuple = ()
    sleep: Callable[[float], None] = time.sleep

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError('max_attempts must be at least 1')

    def call(self, fn: Callable[..., T], *args, **kwargs) -> T:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn(*args, **kwargs)
            except self.give_up_on:
                raise
            except Exception as e:
                if attempt == self.max_attempts:
                    raise
                wait = self.delay(attempt)
                logger.info(f"Attempt {attempt}/{self.max_attempts} failed: {e}; retrying in {wait}s")
                self.sleep(wait)
