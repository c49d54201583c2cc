"""Retry policies as small value objects backed by tenacity.

Each bootstrap operation owns a RetryPolicy describing its attempt budget
and backoff. Policies are plain data, so they can be compared, loaded from
config and unit-tested without running anything.

Example:
    from fleetjoin.retry import RetryPolicy, RetryState

    policy = RetryPolicy(max_attempts=10, delay=1.0, backoff="exponential")
    state = RetryState("discover-master")
    master = policy.call(lookup, on=MasterNotFoundError, state=state)
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

from loguru import logger
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_never,
    wait_exponential,
    wait_fixed,
)

log = logger.bind(component="retry")

type Backoff = Literal["fixed", "exponential"]
type Sleep = Callable[[float], None]
type Clock = Callable[[], float]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded (or unbounded) retry configuration for one operation.

    Args:
        max_attempts: Total attempts including the first. None retries forever.
        delay: Fixed delay, or the first delay for exponential backoff.
        backoff: "fixed" or "exponential" (doubling per attempt).
        max_delay: Cap applied to exponential delays.
    """

    max_attempts: int | None = 5
    delay: float = 1.0
    backoff: Backoff = "fixed"
    max_delay: float = 60.0

    def __post_init__(self) -> None:
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.delay < 0:
            raise ValueError(f"delay must be >= 0, got {self.delay}")
        if self.backoff not in ("fixed", "exponential"):
            raise ValueError(f"Unknown backoff '{self.backoff}'. Valid: fixed, exponential")

    @classmethod
    def fixed(cls, max_attempts: int | None, delay: float) -> RetryPolicy:
        return cls(max_attempts=max_attempts, delay=delay, backoff="fixed")

    @classmethod
    def exponential(cls, max_attempts: int | None, delay: float, max_delay: float) -> RetryPolicy:
        return cls(max_attempts=max_attempts, delay=delay, backoff="exponential", max_delay=max_delay)

    def delay_for(self, attempt: int) -> float:
        """Delay slept after the given (1-based) failed attempt."""
        match self.backoff:
            case "fixed":
                return self.delay
            case _:
                return min(self.delay * (2 ** (attempt - 1)), self.max_delay)

    def retrying(
        self,
        on: type[Exception] | tuple[type[Exception], ...],
        *,
        sleep: Sleep = time.sleep,
        before_sleep: Callable[[RetryCallState], None] | None = None,
    ) -> Retrying:
        stop = stop_never if self.max_attempts is None else stop_after_attempt(self.max_attempts)
        wait = (
            wait_fixed(self.delay)
            if self.backoff == "fixed"
            else wait_exponential(multiplier=self.delay, max=self.max_delay)
        )
        return Retrying(
            stop=stop,
            wait=wait,
            retry=retry_if_exception_type(on),
            sleep=sleep,
            before_sleep=before_sleep,
            reraise=True,
        )

    def call[T](
        self,
        fn: Callable[[], T],
        *,
        on: type[Exception] | tuple[type[Exception], ...],
        state: RetryState,
        sleep: Sleep = time.sleep,
        clock: Clock = time.monotonic,
    ) -> T:
        """Run fn under this policy, recording attempts into state.

        Exceptions matching ``on`` are retried until the budget runs out,
        at which point the last one is re-raised. Anything else propagates
        immediately.
        """
        start = clock()

        def attempt() -> T:
            state.attempts += 1
            try:
                return fn()
            except Exception as e:
                state.last_error = f"{type(e).__name__}: {e}"
                raise

        try:
            return self.retrying(on, sleep=sleep, before_sleep=self._log_retry(state))(attempt)
        finally:
            state.elapsed += clock() - start

    def _log_retry(self, state: RetryState) -> Callable[[RetryCallState], None]:
        limit = "∞" if self.max_attempts is None else str(self.max_attempts)

        def before_sleep(retry_state: RetryCallState) -> None:
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            log.warning(
                "{op}: retry {n}/{limit} after {err}. Waiting {delay:.1f}s...",
                op=state.operation,
                n=retry_state.attempt_number,
                limit=limit,
                err=f"{type(exc).__name__}: {exc}" if exc else "failure",
                delay=delay,
            )

        return before_sleep


@dataclass(slots=True)
class RetryState:
    """Attempt counter and elapsed time for one operation in one bootstrap attempt."""

    operation: str
    attempts: int = 0
    elapsed: float = 0.0
    last_error: str | None = None

    def as_dict(self) -> dict[str, object]:
        return {
            "operation": self.operation,
            "attempts": self.attempts,
            "elapsed": round(self.elapsed, 3),
            "last_error": self.last_error,
        }
