"""Unit tests for retry policy implementation.

Tests cover:
- Backoff delay calculation for different strategies
- Jitter bounds
- Error classification (retryable vs non-retryable)
- Retry execution logic, including provider retry_after hints
"""

import random
from unittest.mock import Mock

import pytest
from hypothesis import given, strategies as st

from scenecast.gateway.errors import ClassifiedError, CircuitOpenError
from scenecast.gateway.retry_policy import (
    BackoffStrategy,
    RetryContext,
    RetryPolicy,
    calculate_backoff_delay,
    execute_with_retry,
    is_retryable_error,
)
from scenecast.schemas.generation import ErrorKind


class TestBackoffDelayCalculation:
    """Test backoff delay calculation for different strategies."""

    def test_exponential_backoff(self):
        """Test exponential backoff: delay = base * 2^(attempt - 1)."""
        assert calculate_backoff_delay(1, BackoffStrategy.EXPONENTIAL, 1.0, 60.0) == 1.0
        assert calculate_backoff_delay(2, BackoffStrategy.EXPONENTIAL, 1.0, 60.0) == 2.0
        assert calculate_backoff_delay(3, BackoffStrategy.EXPONENTIAL, 1.0, 60.0) == 4.0
        assert calculate_backoff_delay(4, BackoffStrategy.EXPONENTIAL, 1.0, 60.0) == 8.0

    def test_exponential_backoff_capped_at_max(self):
        """Test exponential backoff is capped at max_delay."""
        assert calculate_backoff_delay(10, BackoffStrategy.EXPONENTIAL, 1.0, 60.0) == 60.0
        assert calculate_backoff_delay(7, BackoffStrategy.EXPONENTIAL, 1.0, 60.0) == 60.0

    def test_exponential_backoff_huge_attempt_does_not_overflow(self):
        assert calculate_backoff_delay(5000, BackoffStrategy.EXPONENTIAL, 1.0, 30.0) == 30.0

    def test_linear_backoff(self):
        """Test linear backoff: delay = base * attempt."""
        assert calculate_backoff_delay(1, BackoffStrategy.LINEAR, 1.5, 60.0) == 1.5
        assert calculate_backoff_delay(2, BackoffStrategy.LINEAR, 1.5, 60.0) == 3.0
        assert calculate_backoff_delay(10, BackoffStrategy.LINEAR, 1.5, 60.0) == 15.0

    def test_linear_backoff_capped_at_max(self):
        assert calculate_backoff_delay(100, BackoffStrategy.LINEAR, 1.0, 60.0) == 60.0

    def test_fixed_backoff(self):
        """Test fixed backoff: delay = base (always)."""
        for attempt in (1, 2, 10, 100):
            assert calculate_backoff_delay(attempt, BackoffStrategy.FIXED, 2.0, 60.0) == 2.0

    def test_attempt_must_be_positive(self):
        with pytest.raises(ValueError):
            calculate_backoff_delay(0, BackoffStrategy.EXPONENTIAL, 1.0, 60.0)

    @given(
        attempt=st.integers(min_value=1, max_value=12),
        base=st.floats(min_value=0.01, max_value=5.0),
        max_delay=st.floats(min_value=0.01, max_value=120.0)
    )
    def test_exponential_matches_formula(self, attempt, base, max_delay):
        """Without jitter the delay is exactly min(base * 2^(k-1), max_delay)."""
        delay = calculate_backoff_delay(attempt, BackoffStrategy.EXPONENTIAL, base, max_delay)
        assert delay == pytest.approx(min(base * 2 ** (attempt - 1), max_delay))


class TestJitter:
    """Test jitter stays within +/-10% of the unjittered delay."""

    @given(attempt=st.integers(min_value=1, max_value=8), seed=st.integers(min_value=0, max_value=10_000))
    def test_jitter_within_ten_percent(self, attempt, seed):
        base = calculate_backoff_delay(attempt, BackoffStrategy.EXPONENTIAL, 1.0, 30.0)
        jittered = calculate_backoff_delay(
            attempt, BackoffStrategy.EXPONENTIAL, 1.0, 30.0,
            jitter=True, rng=random.Random(seed)
        )
        assert base * 0.9 - 1e-9 <= jittered <= base * 1.1 + 1e-9

    def test_repeated_jitter_produces_different_delays(self):
        rng = random.Random(42)
        delays = {
            calculate_backoff_delay(3, BackoffStrategy.EXPONENTIAL, 1.0, 30.0, jitter=True, rng=rng)
            for _ in range(20)
        }
        assert len(delays) > 1
        assert all(3.6 <= delay <= 4.4 for delay in delays)


class TestRetryableErrorClassification:
    """Test is_retryable_error function."""

    @pytest.mark.parametrize("kind", [
        ErrorKind.RATE_LIMITED,
        ErrorKind.QUOTA_EXCEEDED,
        ErrorKind.TIMEOUT,
        ErrorKind.REGION_UNAVAILABLE,
        ErrorKind.SERVICE_ERROR,
    ])
    def test_retryable_kinds(self, kind):
        assert is_retryable_error(ClassifiedError(kind, "transient"), RetryPolicy())

    @pytest.mark.parametrize("kind", [
        ErrorKind.INVALID_CREDENTIAL,
        ErrorKind.CONTENT_POLICY_VIOLATION,
    ])
    def test_non_retryable_kinds(self, kind):
        assert not is_retryable_error(ClassifiedError(kind, "permanent"), RetryPolicy())

    def test_error_without_kind_is_not_retried(self):
        assert not is_retryable_error(ValueError("boom"), RetryPolicy())

    def test_kind_outside_policy_is_not_retried(self):
        policy = RetryPolicy(retryable_kinds={ErrorKind.TIMEOUT})
        assert not is_retryable_error(ClassifiedError(ErrorKind.RATE_LIMITED, "slow down"), policy)
        assert is_retryable_error(ClassifiedError(ErrorKind.TIMEOUT, "slow"), policy)

    def test_explicitly_non_retryable_error(self):
        error = ClassifiedError(ErrorKind.SERVICE_ERROR, "unsupported", retryable=False)
        assert not is_retryable_error(error, RetryPolicy())

    def test_circuit_open_error_is_not_retried(self):
        assert not is_retryable_error(CircuitOpenError("openai:text"), RetryPolicy())


class TestExecuteWithRetry:
    """Test execute_with_retry function."""

    def _policy(self, **kwargs):
        defaults = dict(max_attempts=3, base_delay_seconds=1.0, max_delay_seconds=30.0, jitter=False)
        defaults.update(kwargs)
        return RetryPolicy(**defaults)

    def test_success_on_first_attempt(self):
        func = Mock(return_value="ok")
        sleep = Mock()

        assert execute_with_retry(func, self._policy(), "test", sleep=sleep) == "ok"
        assert func.call_count == 1
        sleep.assert_not_called()

    def test_success_after_retries(self):
        func = Mock(side_effect=[
            ClassifiedError(ErrorKind.TIMEOUT, "timeout"),
            ClassifiedError(ErrorKind.SERVICE_ERROR, "500"),
            "ok",
        ])
        sleep = Mock()
        context = RetryContext(operation_name="test")

        result = execute_with_retry(func, self._policy(), "test", sleep=sleep, context=context)

        assert result == "ok"
        assert func.call_count == 3
        assert [call.args[0] for call in sleep.call_args_list] == [1.0, 2.0]
        assert context.attempts == 3
        assert context.retry_count == 2
        assert context.total_delay == 3.0

    def test_non_retryable_error_propagates_immediately(self):
        error = ClassifiedError(ErrorKind.INVALID_CREDENTIAL, "bad key")
        func = Mock(side_effect=error)
        sleep = Mock()

        with pytest.raises(ClassifiedError) as exc_info:
            execute_with_retry(func, self._policy(), "test", sleep=sleep)

        assert exc_info.value is error
        assert func.call_count == 1
        sleep.assert_not_called()

    def test_unclassified_exception_propagates_immediately(self):
        func = Mock(side_effect=KeyError("missing"))

        with pytest.raises(KeyError):
            execute_with_retry(func, self._policy(), "test", sleep=Mock())
        assert func.call_count == 1

    def test_exhausted_attempts_raise_last_error(self):
        errors = [ClassifiedError(ErrorKind.TIMEOUT, f"timeout {i}") for i in range(3)]
        func = Mock(side_effect=errors)
        sleep = Mock()

        with pytest.raises(ClassifiedError) as exc_info:
            execute_with_retry(func, self._policy(), "test", sleep=sleep)

        assert exc_info.value is errors[-1]
        assert func.call_count == 3
        assert sleep.call_count == 2

    def test_provider_retry_after_wins_when_longer(self):
        func = Mock(side_effect=[
            ClassifiedError(ErrorKind.RATE_LIMITED, "slow down", retry_after=7.5),
            "ok",
        ])
        sleep = Mock()

        execute_with_retry(func, self._policy(), "test", sleep=sleep)

        sleep.assert_called_once_with(7.5)

    def test_provider_retry_after_ignored_when_shorter(self):
        func = Mock(side_effect=[
            ClassifiedError(ErrorKind.RATE_LIMITED, "slow down", retry_after=0.2),
            "ok",
        ])
        sleep = Mock()

        execute_with_retry(func, self._policy(base_delay_seconds=2.0), "test", sleep=sleep)

        sleep.assert_called_once_with(2.0)

    def test_single_attempt_policy_never_sleeps(self):
        func = Mock(side_effect=ClassifiedError(ErrorKind.TIMEOUT, "timeout"))
        sleep = Mock()

        with pytest.raises(ClassifiedError):
            execute_with_retry(func, self._policy(max_attempts=1), "test", sleep=sleep)
        sleep.assert_not_called()


class TestRetryPolicyDefaults:
    """Test default retry policy configuration."""

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.base_delay_seconds == 1.0
        assert policy.max_delay_seconds == 30.0
        assert policy.backoff_strategy == BackoffStrategy.EXPONENTIAL
        assert policy.jitter is True
        assert ErrorKind.RATE_LIMITED in policy.retryable_kinds
        assert ErrorKind.INVALID_CREDENTIAL not in policy.retryable_kinds

    def test_invalid_max_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
