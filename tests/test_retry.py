from __future__ import annotations

import pytest

from vital.models.errors import SessionAbsentError, StoreUnavailableError
from vital.utils.retry import BoundedRetry, RetryExhaustedError


def _failing():
    raise StoreUnavailableError("store down")


def test_budget_counts_each_attempt():
    retry = BoundedRetry(max_attempts=3, retry_on=(StoreUnavailableError,))

    for expected in (1, 2, 3):
        with pytest.raises(StoreUnavailableError):
            retry.attempt(_failing)
        assert retry.attempts == expected

    assert retry.exhausted
    assert retry.remaining == 0
    with pytest.raises(RetryExhaustedError):
        retry.attempt(lambda: "never called")


def test_success_returns_value():
    retry = BoundedRetry(max_attempts=3)
    assert retry.attempt(lambda: 42) == 42
    assert retry.attempts == 1


def test_non_retryable_error_spends_the_budget():
    retry = BoundedRetry(max_attempts=3, retry_on=(StoreUnavailableError,))

    with pytest.raises(SessionAbsentError):
        retry.attempt(lambda: (_ for _ in ()).throw(SessionAbsentError("gone")))

    assert retry.exhausted


def test_reset_restores_budget():
    retry = BoundedRetry(max_attempts=1)
    with pytest.raises(StoreUnavailableError):
        retry.attempt(_failing)

    retry.reset()

    assert not retry.exhausted
    assert retry.remaining == 1


def test_invalid_budget():
    with pytest.raises(ValueError):
        BoundedRetry(max_attempts=0)
