"""Resilient invocation layer for generation providers."""

from scenecast.gateway.circuit_breaker import BreakerSnapshot, CircuitBreaker, CircuitState
from scenecast.gateway.concurrency import ConcurrencyController, ConcurrencyStatus
from scenecast.gateway.config import GatewaySettings, build_provider
from scenecast.gateway.errors import (
    NON_RETRYABLE_KINDS,
    RETRYABLE_KINDS,
    CircuitOpenError,
    ClassifiedError,
    classify_exception,
)
from scenecast.gateway.gateway import GatewayHealth, GenerationGateway
from scenecast.gateway.logger import StructuredJSONLogger
from scenecast.gateway.monitoring import (
    GenerationMetrics,
    MetricsRegistry,
    RequestMetric,
    monitored_call,
)
from scenecast.gateway.providers import AnthropicProvider, OpenAIProvider, ProviderAdapter
from scenecast.gateway.rate_limiter import (
    RateLimitDecision,
    RateLimitStatus,
    SlidingWindowRateLimiter,
    rate_limit_key,
)
from scenecast.gateway.retry_policy import (
    BackoffStrategy,
    RetryContext,
    RetryPolicy,
    calculate_backoff_delay,
    execute_with_retry,
    is_retryable_error,
)
from scenecast.gateway.state_store import BreakerRecord, InMemoryStateStore, StateStore

__all__ = [
    # Gateway
    "GenerationGateway",
    "GatewayHealth",
    "GatewaySettings",
    "build_provider",
    # Providers
    "ProviderAdapter",
    "OpenAIProvider",
    "AnthropicProvider",
    # Errors
    "ClassifiedError",
    "CircuitOpenError",
    "classify_exception",
    "RETRYABLE_KINDS",
    "NON_RETRYABLE_KINDS",
    # Guards
    "RetryPolicy",
    "RetryContext",
    "BackoffStrategy",
    "calculate_backoff_delay",
    "is_retryable_error",
    "execute_with_retry",
    "SlidingWindowRateLimiter",
    "RateLimitDecision",
    "RateLimitStatus",
    "rate_limit_key",
    "CircuitBreaker",
    "CircuitState",
    "BreakerSnapshot",
    "ConcurrencyController",
    "ConcurrencyStatus",
    "StateStore",
    "InMemoryStateStore",
    "BreakerRecord",
    # Observability
    "MetricsRegistry",
    "RequestMetric",
    "GenerationMetrics",
    "monitored_call",
    "StructuredJSONLogger",
]
