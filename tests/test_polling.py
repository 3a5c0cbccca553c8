"""Tests for bounded backoff polling."""

import threading

import pytest

from nestdeploy.utils.errors import AttemptCancelledError, DeploymentError, ProposalTimeoutError
from nestdeploy.utils.polling import BackoffStrategy, poll_until


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def no_wait() -> BackoffStrategy:
    return BackoffStrategy(initial_delay=0, max_delay=0, jitter=False, max_attempts=5)


class TestBackoffStrategy:
    """Test cases for BackoffStrategy."""

    def test_exponential_delays(self):
        """Test delays grow by the multiplier."""
        strategy = BackoffStrategy(initial_delay=1.0, max_delay=100.0, multiplier=2.0, jitter=False)

        assert [strategy.get_delay(i) for i in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_delay_capped(self):
        """Test delays never exceed max_delay."""
        strategy = BackoffStrategy(initial_delay=1.0, max_delay=5.0, jitter=False)

        assert strategy.get_delay(10) == 5.0

    def test_jitter_stays_under_cap(self):
        """Test jitter only ever shortens the delay."""
        strategy = BackoffStrategy(initial_delay=10.0, max_delay=10.0, jitter=True)

        for attempt in range(20):
            assert 9.0 <= strategy.get_delay(attempt) <= 10.0

    def test_invalid_max_attempts(self):
        """Test at least one check is required."""
        with pytest.raises(ValueError):
            BackoffStrategy(max_attempts=0)


class TestPollUntil:
    """Test cases for poll_until."""

    def test_returns_first_terminal_value(self):
        """Test polling stops at the first accepted value."""
        values = iter(["pending", "pending", "done", "never"])

        result = poll_until(lambda: next(values), lambda v: v == "done", no_wait(), "thing")

        assert result == "done"

    def test_attempt_ceiling(self):
        """Test polling gives up after max_attempts checks."""
        calls = []

        def fetch():
            calls.append(1)
            return "pending"

        with pytest.raises(ProposalTimeoutError) as exc_info:
            poll_until(fetch, lambda v: False, no_wait(), "change set")

        assert len(calls) == 5
        assert isinstance(exc_info.value, DeploymentError)
        assert "change set" in str(exc_info.value)

    def test_wall_clock_timeout(self):
        """Test polling stops once the timeout budget is spent."""
        clock = FakeClock()
        strategy = BackoffStrategy(initial_delay=0, max_delay=0, jitter=False,
                                   max_attempts=1000, timeout=10.0)
        calls = []

        def fetch():
            calls.append(1)
            clock.now += 4.0
            return "pending"

        with pytest.raises(ProposalTimeoutError):
            poll_until(fetch, lambda v: False, strategy, "stack", clock=clock)

        assert len(calls) == 3

    def test_cancelled_before_first_check(self):
        """Test a set event prevents any fetch."""
        event = threading.Event()
        event.set()
        calls = []

        with pytest.raises(AttemptCancelledError):
            poll_until(lambda: calls.append(1), lambda v: False, no_wait(), "stack", cancel_event=event)

        assert calls == []

    def test_cancel_interrupts_wait(self):
        """Test setting the event wakes a pending wait."""
        event = threading.Event()
        strategy = BackoffStrategy(initial_delay=60.0, max_delay=60.0, jitter=False)

        def fetch():
            threading.Timer(0.05, event.set).start()
            return "pending"

        with pytest.raises(AttemptCancelledError):
            poll_until(fetch, lambda v: False, strategy, "stack", cancel_event=event)
