from __future__ import annotations

import pytest

from fleetjoin.retry import RetryPolicy, RetryState


class _Flaky(Exception):
    pass


def _failing(times: int, exc: type[Exception] = _Flaky):
    calls = {"n": 0}

    def fn() -> str:
        calls["n"] += 1
        if calls["n"] <= times:
            raise exc(f"failure {calls['n']}")
        return "ok"

    return fn


class TestDelayFor:
    def test_fixed(self) -> None:
        policy = RetryPolicy.fixed(5, 10.0)
        assert [policy.delay_for(n) for n in range(1, 5)] == [10.0] * 4

    def test_exponential_doubles(self) -> None:
        policy = RetryPolicy.exponential(10, 1.0, 60.0)
        assert [policy.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 16.0]

    def test_exponential_capped(self) -> None:
        policy = RetryPolicy.exponential(10, 1.0, 60.0)
        assert policy.delay_for(7) == 60.0
        assert policy.delay_for(30) == 60.0


class TestValidation:
    def test_zero_attempts_rejected(self) -> None:
        with pytest.raises(ValueError, match="max_attempts"):
            RetryPolicy(max_attempts=0)

    def test_negative_delay_rejected(self) -> None:
        with pytest.raises(ValueError, match="delay"):
            RetryPolicy(delay=-1.0)

    def test_unknown_backoff_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown backoff"):
            RetryPolicy(backoff="linear")  # type: ignore[arg-type]

    def test_unbounded_allowed(self) -> None:
        assert RetryPolicy.fixed(None, 5.0).max_attempts is None


class TestCall:
    def test_success_first_try(self) -> None:
        state = RetryState("op")
        sleeps: list[float] = []

        result = RetryPolicy.fixed(3, 1.0).call(_failing(0), on=_Flaky, state=state, sleep=sleeps.append)

        assert result == "ok"
        assert state.attempts == 1
        assert state.last_error is None
        assert sleeps == []

    def test_retries_matching_exception(self) -> None:
        state = RetryState("op")
        sleeps: list[float] = []

        result = RetryPolicy.exponential(5, 1.0, 60.0).call(
            _failing(2), on=_Flaky, state=state, sleep=sleeps.append,
        )

        assert result == "ok"
        assert state.attempts == 3
        assert state.last_error == "_Flaky: failure 2"
        assert sleeps == [1.0, 2.0]

    def test_reraises_last_error_when_exhausted(self) -> None:
        state = RetryState("op")

        with pytest.raises(_Flaky, match="failure 3"):
            RetryPolicy.fixed(3, 0.0).call(_failing(10), on=_Flaky, state=state, sleep=lambda _: None)

        assert state.attempts == 3

    def test_other_exceptions_propagate_immediately(self) -> None:
        state = RetryState("op")

        with pytest.raises(KeyError):
            RetryPolicy.fixed(5, 0.0).call(_failing(1, KeyError), on=_Flaky, state=state, sleep=lambda _: None)

        assert state.attempts == 1

    def test_unbounded_policy_keeps_going(self) -> None:
        state = RetryState("op")

        result = RetryPolicy.fixed(None, 0.0).call(_failing(25), on=_Flaky, state=state, sleep=lambda _: None)

        assert result == "ok"
        assert state.attempts == 26

    def test_elapsed_uses_injected_clock(self) -> None:
        state = RetryState("op")
        ticks = iter([100.0, 112.5])

        RetryPolicy.fixed(3, 0.0).call(
            _failing(1), on=_Flaky, state=state, sleep=lambda _: None, clock=lambda: next(ticks),
        )

        assert state.elapsed == 12.5
        assert state.as_dict() == {
            "operation": "op",
            "attempts": 2,
            "elapsed": 12.5,
            "last_error": "_Flaky: failure 1",
        }
