"""Unit tests for the three-state circuit breaker."""

import threading
from unittest.mock import Mock

import pytest

from scenecast.gateway.circuit_breaker import CircuitBreaker, CircuitState
from scenecast.gateway.errors import CircuitOpenError, ClassifiedError
from scenecast.gateway.state_store import InMemoryStateStore
from scenecast.schemas.generation import ErrorKind


class FakeClock:
    def __init__(self, start=500.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def _failing():
    raise ClassifiedError(ErrorKind.SERVICE_ERROR, "provider down")


def _trip(breaker, times):
    for _ in range(times):
        with pytest.raises(ClassifiedError):
            breaker.execute(_failing)


class TestCircuitBreakerTransitions:
    """Test CLOSED -> OPEN -> HALF_OPEN -> CLOSED/OPEN transitions."""

    def test_initial_state(self):
        breaker = CircuitBreaker("openai:text")
        assert breaker.state == CircuitState.CLOSED
        assert breaker.consecutive_failures == 0

    def test_threshold_two_scenario(self):
        """Two failures open the breaker, a third call is rejected without
        invoking the operation, and a probe after recovery closes it again."""
        clock = FakeClock()
        breaker = CircuitBreaker("openai:text", failure_threshold=2, recovery_timeout=30.0, clock=clock)

        _trip(breaker, 2)
        assert breaker.state == CircuitState.OPEN

        operation = Mock(return_value="ok")
        with pytest.raises(CircuitOpenError):
            breaker.execute(operation)
        operation.assert_not_called()

        clock.advance(30.1)
        assert breaker.execute(operation) == "ok"
        operation.assert_called_once()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.consecutive_failures == 0

    def test_stays_open_until_recovery_timeout_elapses(self):
        clock = FakeClock()
        breaker = CircuitBreaker("c", failure_threshold=1, recovery_timeout=60.0, clock=clock)
        _trip(breaker, 1)

        clock.advance(60.0)
        with pytest.raises(CircuitOpenError) as exc_info:
            breaker.execute(lambda: "ok")
        assert exc_info.value.retry_after == pytest.approx(0.0)
        assert breaker.state == CircuitState.OPEN

    def test_failed_probe_reopens_with_fresh_cooldown(self):
        clock = FakeClock()
        breaker = CircuitBreaker("c", failure_threshold=1, recovery_timeout=10.0, clock=clock)
        _trip(breaker, 1)

        clock.advance(11)
        _trip(breaker, 1)
        assert breaker.state == CircuitState.OPEN
        assert breaker.snapshot().last_failure_at == clock.now

        clock.advance(5)
        with pytest.raises(CircuitOpenError):
            breaker.execute(lambda: "ok")

        clock.advance(6)
        assert breaker.execute(lambda: "ok") == "ok"
        assert breaker.state == CircuitState.CLOSED

    def test_success_resets_failure_count(self):
        breaker = CircuitBreaker("c", failure_threshold=3)
        _trip(breaker, 2)
        breaker.execute(lambda: None)
        assert breaker.consecutive_failures == 0
        _trip(breaker, 2)
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_admits_single_probe(self):
        clock = FakeClock()
        breaker = CircuitBreaker("c", failure_threshold=1, recovery_timeout=1.0, clock=clock)
        _trip(breaker, 1)
        clock.advance(2)

        probe_started = threading.Event()
        release_probe = threading.Event()
        second_call = Mock(return_value="second")

        def slow_probe():
            probe_started.set()
            release_probe.wait(timeout=5)
            return "probe"

        results = []
        thread = threading.Thread(target=lambda: results.append(breaker.execute(slow_probe)))
        thread.start()
        assert probe_started.wait(timeout=5)

        assert breaker.state == CircuitState.HALF_OPEN
        with pytest.raises(CircuitOpenError):
            breaker.execute(second_call)
        second_call.assert_not_called()

        release_probe.set()
        thread.join(timeout=5)
        assert results == ["probe"]
        assert breaker.state == CircuitState.CLOSED

    def test_interrupted_half_open_call_frees_the_slot(self):
        clock = FakeClock()
        breaker = CircuitBreaker("c", failure_threshold=1, recovery_timeout=1.0, clock=clock)
        _trip(breaker, 1)
        clock.advance(2)

        def interrupted():
            raise KeyboardInterrupt

        with pytest.raises(KeyboardInterrupt):
            breaker.execute(interrupted)
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.consecutive_failures == 1

        assert breaker.execute(lambda: "ok") == "ok"
        assert breaker.state == CircuitState.CLOSED

    def test_reset(self):
        breaker = CircuitBreaker("c", failure_threshold=1)
        _trip(breaker, 1)
        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.execute(lambda: 1) == 1


class TestCircuitBreakerObservability:
    """Test transition callbacks and persisted state."""

    def test_transition_callback(self):
        clock = FakeClock()
        transitions = []
        breaker = CircuitBreaker(
            "openai:image",
            failure_threshold=1,
            recovery_timeout=1.0,
            clock=clock,
            on_transition=lambda channel, old, new: transitions.append((channel, old, new))
        )

        _trip(breaker, 1)
        clock.advance(2)
        breaker.execute(lambda: "ok")

        assert transitions == [
            ("openai:image", CircuitState.CLOSED, CircuitState.OPEN),
            ("openai:image", CircuitState.OPEN, CircuitState.HALF_OPEN),
            ("openai:image", CircuitState.HALF_OPEN, CircuitState.CLOSED),
        ]

    def test_state_is_persisted_in_store(self):
        store = InMemoryStateStore()
        breaker = CircuitBreaker("shared", failure_threshold=1, store=store)
        _trip(breaker, 1)

        record = store.get_breaker("shared")
        assert record.state == "OPEN"
        assert record.consecutive_failures == 1

        other = CircuitBreaker("shared", failure_threshold=1, store=store)
        assert other.state == CircuitState.OPEN

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            CircuitBreaker("c", failure_threshold=0)
