"""
Unit tests for error classification and the retry policy.

Verifies:
- Only 5xx FleetApiErrors are transient
- Attempt budgets are honoured exactly, with a fixed pause between attempts
- Permanent errors are never retried
- Cancellation aborts the loop and is distinct from other failures
"""

import pytest

from builder_orchestrator.errors import (
    BuildCancelled,
    EnsureBuilderError,
    FleetApiError,
    RetriesExhaustedError,
    is_transient,
)
from builder_orchestrator.retry import READ_POLICY, VOLUME_CREATE_POLICY, CancelToken, RetryPolicy


class FlakyCall:
    """Fails `failures` times with `status_code`, then returns 'ok'."""

    def __init__(self, failures: int, status_code: int = 503):
        self.failures = failures
        self.status_code = status_code
        self.calls = 0

    def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.calls <= self.failures:
            raise FleetApiError(f"boom {self.calls}", status_code=self.status_code)
        return "ok"


class TestErrorClassifier:

    @pytest.mark.parametrize("status", [500, 502, 503, 504, 599])
    def test_server_errors_are_transient(self, status):
        assert is_transient(FleetApiError("x", status_code=status))

    @pytest.mark.parametrize("status", [400, 401, 404, 409, 422, 499, 600])
    def test_other_statuses_are_permanent(self, status):
        assert not is_transient(FleetApiError("x", status_code=status))

    def test_errors_without_status_are_permanent(self):
        assert not is_transient(FleetApiError("connection reset"))
        assert not is_transient(ValueError("bad json"))
        assert not is_transient(BuildCancelled("stop"))

    def test_exhausted_retries_are_not_retried_again(self):
        last = FleetApiError("down", status_code=503)
        assert not is_transient(RetriesExhaustedError("list volumes", 3, last))

    def test_status_shows_in_message(self):
        assert str(FleetApiError("not found", status_code=404)) == "not found (status 404)"

    def test_unknown_phase_rejected(self):
        with pytest.raises(ValueError):
            EnsureBuilderError("repair", RuntimeError("x"))


class TestRetryBudget:

    def test_named_policies(self):
        assert READ_POLICY.attempts == 3
        assert VOLUME_CREATE_POLICY.attempts == 5
        assert READ_POLICY.interval_sec == VOLUME_CREATE_POLICY.interval_sec == 1.0

    @pytest.mark.parametrize("attempts", [3, 5])
    def test_succeeds_just_under_budget(self, attempts):
        call = FlakyCall(failures=attempts - 1)
        assert RetryPolicy.immediate(attempts).call(call) == "ok"
        assert call.calls == attempts

    @pytest.mark.parametrize("attempts", [3, 5])
    def test_fails_at_budget_with_last_error(self, attempts):
        call = FlakyCall(failures=attempts)

        with pytest.raises(RetriesExhaustedError) as exc_info:
            RetryPolicy.immediate(attempts).call(call, description="list volumes")

        assert call.calls == attempts
        err = exc_info.value
        assert err.attempts == attempts
        assert err.status_code == 503
        assert str(err.last_error) == f"boom {attempts} (status 503)"
        assert err.__cause__ is err.last_error

    def test_fixed_interval_between_attempts(self):
        sleeps = []
        policy = RetryPolicy(attempts=3, interval_sec=1.0, sleep=sleeps.append)

        with pytest.raises(RetriesExhaustedError):
            policy.call(FlakyCall(failures=10))

        assert sleeps == [1.0, 1.0]

    def test_passes_arguments_through(self):
        seen = []

        def fn(a, b=None):
            seen.append((a, b))
            return a

        assert RetryPolicy.immediate(1).call(fn, "x", b="y", description="op") == "x"
        assert seen == [("x", "y")]

    def test_rejects_empty_budget(self):
        with pytest.raises(ValueError):
            RetryPolicy(attempts=0)
        with pytest.raises(ValueError):
            RetryPolicy(attempts=1, interval_sec=-1)


class TestPermanentErrors:

    def test_404_not_retried(self):
        call = FlakyCall(failures=1, status_code=404)

        with pytest.raises(FleetApiError) as exc_info:
            RetryPolicy.immediate(5).call(call)

        assert call.calls == 1
        assert exc_info.value.status_code == 404
        assert not isinstance(exc_info.value, RetriesExhaustedError)

    def test_non_fleet_error_propagates_unchanged(self):
        def fn():
            raise KeyError("id")

        with pytest.raises(KeyError):
            RetryPolicy.immediate(3).call(fn)


class TestCancellation:

    def test_cancelled_before_first_attempt(self):
        token = CancelToken()
        token.cancel()
        call = FlakyCall(failures=0)

        with pytest.raises(BuildCancelled):
            RetryPolicy.immediate(3).call(call, cancel=token)

        assert call.calls == 0

    def test_cancel_during_pause_stops_retrying(self):
        token = CancelToken()
        call = FlakyCall(failures=10)
        policy = RetryPolicy(attempts=5, interval_sec=1.0, sleep=lambda _s: token.cancel())

        with pytest.raises(BuildCancelled):
            policy.call(call, cancel=token)

        assert call.calls == 1

    def test_pause_wakes_up_on_cancel(self):
        token = CancelToken()

        def fn():
            token.cancel()
            raise FleetApiError("down", status_code=502)

        # A 60s interval would hang the test if the pause ignored the token
        with pytest.raises(BuildCancelled):
            RetryPolicy(attempts=3, interval_sec=60.0).call(fn, cancel=token)
