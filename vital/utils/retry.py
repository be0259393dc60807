"""
Bounded Retry.

One explicit attempt budget wrapped around a fallible call.  The budget
lives with the caller that owns the retry policy (the access gate), so
the number of attempts does not depend on how many triggers happen to
fire.  Attempts are driven one at a time by the caller's own cycle; the
combinator never sleeps or loops.
"""

from __future__ import annotations

from typing import Callable, TypeVar

T = TypeVar("T")


class RetryExhaustedError(RuntimeError):
    """Raised by :meth:`BoundedRetry.attempt` once the budget is spent."""


class BoundedRetry:
    """Attempt budget for a call that may raise one of *retry_on*.

    Usage::

        retry = BoundedRetry(max_attempts=3, retry_on=(StoreUnavailableError,))
        try:
            profile = retry.attempt(lambda: reconciler.reconcile(session))
        except StoreUnavailableError:
            if retry.exhausted:
                ...
    """

    def __init__(
        self,
        max_attempts: int,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._max_attempts: int = max_attempts
        self._retry_on: tuple[type[BaseException], ...] = retry_on
        self._attempts: int = 0

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def remaining(self) -> int:
        return self._max_attempts - self._attempts

    @property
    def exhausted(self) -> bool:
        return self._attempts >= self._max_attempts

    def attempt(self, func: Callable[[], T]) -> T:
        """Spend one attempt on *func* and return its result.

        Errors listed in *retry_on* propagate with the attempt counted so
        the caller can try again while :attr:`exhausted` is false.  Any
        other error spends the whole budget: it is not transient.

        Raises
        ------
        RetryExhaustedError
            If called after the budget is spent.
        """
        if self.exhausted:
            raise RetryExhaustedError(
                f"Retry budget of {self._max_attempts} attempt(s) exhausted"
            )
        self._attempts += 1
        try:
            return func()
        except self._retry_on:
            raise
        except Exception:
            self._attempts = self._max_attempts
            raise

    def reset(self) -> None:
        self._attempts = 0
