"""Tests for the retry policy."""
import pytest

from jewelry_pricing.services.providers import NetworkError, UnconfiguredError
from jewelry_pricing.services.retry import RetryPolicy, linear_backoff


class Flaky:
    """Fails a set number of times, then returns 'ok'."""

    def __init__(self, failures, error=NetworkError('down')):
        self.failures = failures
        self.error = error
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return 'ok'


def test_linear_backoff():
    delay = linear_backoff(1.0)
    assert [delay(n) for n in (1, 2, 3)] == [1.0, 2.0, 3.0]


def test_returns_first_success_without_sleeping():
    sleeps = []
    policy = RetryPolicy(sleep=sleeps.append)
    fn = Flaky(failures=0)

    assert policy.call(fn) == 'ok'
    assert fn.calls == 1
    assert sleeps == []


def test_retries_with_linear_backoff():
    sleeps = []
    policy = RetryPolicy(max_attempts=3, delay=linear_backoff(1.0), sleep=sleeps.append)
    fn = Flaky(failures=2)

    assert policy.call(fn) == 'ok'
    assert fn.calls == 3
    assert sleeps == [1.0, 2.0]


def test_reraises_last_error_when_budget_spent():
    sleeps = []
    policy = RetryPolicy(max_attempts=3, sleep=sleeps.append)
    fn = Flaky(failures=5)

    with pytest.raises(NetworkError):
        policy.call(fn)
    assert fn.calls == 3
    # No sleep after the final attempt
    assert len(sleeps) == 2


def test_give_up_on_is_not_retried():
    sleeps = []
    policy = RetryPolicy(give_up_on=(UnconfiguredError,), sleep=sleeps.append)
    fn = Flaky(failures=5, error=UnconfiguredError('no key'))

    with pytest.raises(UnconfiguredError):
        policy.call(fn)
    assert fn.calls == 1
    assert sleeps == []


def test_passes_arguments_through():
    policy = RetryPolicy(sleep=lambda s: None)
    assert policy.call(lambda a, b=0: a + b, 2, b=3) == 5


def test_max_attempts_must_be_positive():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
