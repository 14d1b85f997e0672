"""Retry policy implementation for outbound provider calls.

This module provides retry logic with backoff for handling transient provider
failures. It distinguishes between retryable errors (timeouts, rate limits,
service errors) and non-retryable errors (bad credentials, content policy
violations).

The retry system supports:
- Exponential, linear, and fixed backoff strategies
- Optional +/-10% jitter to spread out synchronized retries
- Honoring a provider-supplied retry_after when it exceeds the backoff
- Error kind-based retry decisions
- Structured logging of retry attempts
"""

import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, FrozenSet, Optional, TypeVar

from scenecast.gateway.errors import RETRYABLE_KINDS
from scenecast.schemas.generation import ErrorKind


logger = logging.getLogger(__name__)


# Type variable for generic retry function
T = TypeVar('T')


# Fraction of the computed delay used as the jitter half-width
JITTER_RATIO = 0.1


class BackoffStrategy(Enum):
    """Retry backoff strategies"""
    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIXED = "fixed"


@dataclass
class RetryPolicy:
    """Retry policy configuration for provider calls

    Attributes:
        max_attempts: Maximum number of attempts (including the initial attempt)
        backoff_strategy: Strategy for calculating retry delays
        base_delay_seconds: Base delay for backoff calculation
        max_delay_seconds: Maximum delay between retries
        jitter: Whether to add uniform noise of +/-10% to each delay
        retryable_kinds: Error kinds that should trigger a retry
    """
    max_attempts: int = 3
    backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    jitter: bool = True
    retryable_kinds: FrozenSet[ErrorKind] = field(default_factory=lambda: RETRYABLE_KINDS)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        self.retryable_kinds = frozenset(ErrorKind(kind) for kind in self.retryable_kinds)


@dataclass
class RetryContext:
    """Progress of a retry loop, updated in place by ``execute_with_retry``.

    Attributes:
        operation_name: Name of the operation being retried
        attempts: Number of attempts made so far
        total_delay: Total delay accumulated across retries
        last_error: Last error encountered
    """
    operation_name: str
    attempts: int = 0
    total_delay: float = 0.0
    last_error: Optional[Exception] = None

    @property
    def retry_count(self) -> int:
        return max(0, self.attempts - 1)


def calculate_backoff_delay(
    attempt: int,
    strategy: BackoffStrategy,
    base_delay: float,
    max_delay: float,
    jitter: bool = False,
    rng: Optional[random.Random] = None
) -> float:
    """Calculate backoff delay after a failed attempt.

    Args:
        attempt: Number of the attempt that just failed (1-indexed)
        strategy: Backoff strategy to use
        base_delay: Base delay in seconds
        max_delay: Maximum delay in seconds
        jitter: Add uniform noise within +/-10% of the capped delay
        rng: Random source for jitter (module-level random if None)

    Returns:
        Delay in seconds, never negative

    Examples:
        >>> calculate_backoff_delay(1, BackoffStrategy.EXPONENTIAL, 1.0, 60.0)
        1.0
        >>> calculate_backoff_delay(2, BackoffStrategy.EXPONENTIAL, 1.0, 60.0)
        2.0
        >>> calculate_backoff_delay(3, BackoffStrategy.EXPONENTIAL, 1.0, 60.0)
        4.0
        >>> calculate_backoff_delay(10, BackoffStrategy.EXPONENTIAL, 1.0, 60.0)
        60.0
    """
    if attempt < 1:
        raise ValueError(f"attempt must be at least 1, got {attempt}")

    if strategy == BackoffStrategy.EXPONENTIAL:
        # Exponential: base_delay * 2^(attempt - 1), exponent capped to avoid overflow
        delay = base_delay * (2 ** min(attempt - 1, 64))
    elif strategy == BackoffStrategy.LINEAR:
        delay = base_delay * attempt
    else:  # FIXED
        delay = base_delay

    delay = min(delay, max_delay)

    if jitter and delay > 0:
        source = rng or random
        spread = delay * JITTER_RATIO
        delay += source.uniform(-spread, spread)

    return max(0.0, delay)


def is_retryable_error(error: Exception, retry_policy: RetryPolicy) -> bool:
    """Determine if an error is retryable based on retry policy.

    Logic:
        1. Errors without a ``kind`` attribute are never retried
        2. The error itself must be flagged retryable
        3. The kind must be listed in the policy's retryable_kinds
    """
    kind = getattr(error, 'kind', None)

    if kind is None:
        return False

    if not getattr(error, 'retryable', False):
        return False

    return kind in retry_policy.retryable_kinds


def execute_with_retry(
    func: Callable[[], T],
    retry_policy: RetryPolicy,
    context_name: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
    context: Optional[RetryContext] = None,
    rng: Optional[random.Random] = None
) -> T:
    """Execute a function with retry logic.

    Args:
        func: Function to execute (should take no arguments)
        retry_policy: Retry policy to apply
        context_name: Name for logging context
        sleep: Sleep function used between attempts
        context: Optional RetryContext updated with attempt progress
        rng: Random source for jitter

    Returns:
        Result of successful function execution

    Raises:
        Exception: The last error, as soon as it is non-retryable or the
            attempt budget is exhausted
    """
    context = context or RetryContext(operation_name=context_name)

    for attempt in range(1, retry_policy.max_attempts + 1):
        context.attempts = attempt
        try:
            result = func()

            if attempt > 1:
                logger.info(
                    f"{context_name} succeeded on attempt {attempt} "
                    f"after {context.total_delay:.2f}s total delay"
                )

            return result

        except Exception as e:
            context.last_error = e
            error_code = getattr(e, 'error_code', type(e).__name__)

            if not is_retryable_error(e, retry_policy):
                logger.error(f"{context_name} failed with non-retryable error: {error_code}")
                raise

            if attempt == retry_policy.max_attempts:
                logger.error(
                    f"{context_name} failed after {retry_policy.max_attempts} attempts: {error_code}"
                )
                raise

            delay = calculate_backoff_delay(
                attempt,
                retry_policy.backoff_strategy,
                retry_policy.base_delay_seconds,
                retry_policy.max_delay_seconds,
                jitter=retry_policy.jitter,
                rng=rng
            )

            # Provider-requested wait wins when it is longer than our backoff
            retry_after = getattr(e, 'retry_after', None)
            if retry_after is not None and retry_after > delay:
                delay = retry_after

            context.total_delay += delay

            logger.warning(
                f"{context_name} failed with {error_code}, "
                f"retrying in {delay:.2f}s (attempt {attempt + 1}/{retry_policy.max_attempts})"
            )

            sleep(delay)

    # Unreachable: the loop either returns or raises
    raise context.last_error
