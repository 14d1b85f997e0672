"""Generation gateway: resilient invocation of provider operations.

Every call is composed as::

    rate limit check
      -> concurrency controller
        -> circuit breaker (per provider and operation)
          -> retry policy
            -> provider adapter

and the whole chain is wrapped by ``monitored_call``. Failures never
propagate to callers: they receive a ``CallOutcome`` whose ``success`` flag
is False and whose ``value`` is a deterministic fallback.
"""

import logging
import threading
import time
from typing import Callable, Dict, List, Optional, TypeVar

from pydantic import BaseModel, Field

from scenecast.gateway.circuit_breaker import CircuitBreaker, CircuitState
from scenecast.gateway.concurrency import ConcurrencyController
from scenecast.gateway.config import GatewaySettings, build_provider
from scenecast.gateway.errors import ClassifiedError, classify_exception
from scenecast.gateway.fallbacks import fallback_image, fallback_speech, fallback_text
from scenecast.gateway.logger import StructuredJSONLogger
from scenecast.gateway.monitoring import CallerHealth, MetricsRegistry, monitored_call
from scenecast.gateway.providers import ProviderAdapter
from scenecast.gateway.rate_limiter import SlidingWindowRateLimiter, rate_limit_key, summarize_limits
from scenecast.gateway.retry_policy import RetryContext, execute_with_retry
from scenecast.gateway.state_store import InMemoryStateStore, StateStore
from scenecast.schemas.generation import (
    CallOutcome,
    ErrorKind,
    GeneratedImage,
    GeneratedSpeech,
    ImageGenerationOptions,
    SpeechOptions,
    TextGenerationOptions,
)


logger = logging.getLogger(__name__)


T = TypeVar('T')


OPERATIONS = ("text", "image", "speech")


class RateLimitReport(BaseModel):
    limit: int
    remaining: int
    reset_in_seconds: float


class BreakerReport(BaseModel):
    channel: str
    state: CircuitState
    consecutive_failures: int


class GatewayHealth(BaseModel):
    """Snapshot of provider reachability and gateway guard state."""

    provider: str
    available: bool
    rate_limits: Dict[str, RateLimitReport] = Field(default_factory=dict)
    breakers: List[BreakerReport] = Field(default_factory=list)
    active_calls: int = 0
    queued_calls: int = 0
    max_concurrency: int = 1
    caller_health: Optional[CallerHealth] = None


class GenerationGateway:
    """Routes text, image and speech requests to a provider adapter.

    Breakers are created lazily per (provider, operation) channel and shared
    by every caller of this gateway instance. Rate windows are tracked per
    (caller, operation).

    Args:
        provider: Adapter that performs the raw provider calls
        settings: Limits, retry policy and logging configuration
        store: State store for rate windows and breaker records
        metrics: Registry receiving one metric per call
        structured_logger: JSON event logger (built from settings if None)
        clock: Monotonic time source for limiter and breakers
        sleep: Sleep function used between retries
    """

    def __init__(
        self,
        provider: ProviderAdapter,
        settings: Optional[GatewaySettings] = None,
        store: Optional[StateStore] = None,
        metrics: Optional[MetricsRegistry] = None,
        structured_logger: Optional[StructuredJSONLogger] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.provider = provider
        self.settings = settings or GatewaySettings()
        self.store = store or InMemoryStateStore()
        self.metrics = metrics or MetricsRegistry()
        self.structured_logger = structured_logger or StructuredJSONLogger(self.settings.log_directory)
        self.clock = clock
        self.sleep = sleep

        self.rate_limiter = SlidingWindowRateLimiter(self.store, clock)
        self.concurrency = ConcurrencyController(self.settings.max_concurrency)
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._breakers_lock = threading.Lock()

        logger.info(
            f"GenerationGateway ready: provider={provider.name}, "
            f"max_concurrency={self.settings.max_concurrency}, "
            f"rate_limits=[{summarize_limits(self.settings.rate_limits)}]"
        )

    @classmethod
    def from_settings(cls, settings: Optional[GatewaySettings] = None) -> 'GenerationGateway':
        """Build the provider named in settings (env-derived if None) and wrap it."""
        settings = settings or GatewaySettings.from_env()
        return cls(build_provider(settings), settings)

    def channel(self, operation: str) -> str:
        return f"{self.provider.name}:{operation}"

    def breaker_for(self, operation: str) -> CircuitBreaker:
        """Return the breaker for this provider and operation, creating it once."""
        channel = self.channel(operation)
        with self._breakers_lock:
            breaker = self._breakers.get(channel)
            if breaker is None:
                breaker = CircuitBreaker(
                    channel,
                    failure_threshold=self.settings.failure_threshold,
                    recovery_timeout=self.settings.recovery_timeout_seconds,
                    store=self.store,
                    clock=self.clock,
                    on_transition=self._on_breaker_transition
                )
                self._breakers[channel] = breaker
            return breaker

    def generate_text(
        self,
        prompt: str,
        options: Optional[TextGenerationOptions] = None,
        caller_id: Optional[str] = None
    ) -> CallOutcome[str]:
        options = options or TextGenerationOptions()
        return self._call(
            "text",
            lambda: self.provider.generate_text(prompt, options),
            lambda: fallback_text(prompt),
            caller_id
        )

    def generate_image(
        self,
        prompt: str,
        options: Optional[ImageGenerationOptions] = None,
        caller_id: Optional[str] = None
    ) -> CallOutcome[GeneratedImage]:
        options = options or ImageGenerationOptions()
        return self._call(
            "image",
            lambda: self.provider.generate_image(prompt, options),
            lambda: fallback_image(prompt, options.aspect_ratio),
            caller_id
        )

    def generate_speech(
        self,
        text: str,
        options: Optional[SpeechOptions] = None,
        caller_id: Optional[str] = None
    ) -> CallOutcome[GeneratedSpeech]:
        options = options or SpeechOptions()
        return self._call(
            "speech",
            lambda: self.provider.generate_speech(text, options),
            lambda: fallback_speech(text, options),
            caller_id
        )

    def health_check(self, caller_id: Optional[str] = None) -> GatewayHealth:
        """Report provider availability and the state of every guard."""
        try:
            available = self.provider.check_availability()
        except Exception as e:
            logger.warning(f"Availability check for {self.provider.name} raised: {e}")
            available = False

        rate_limits = {}
        for operation in OPERATIONS:
            status = self.rate_limiter.status(
                rate_limit_key(caller_id, operation),
                self.settings.rate_limit_for(operation),
                self.settings.rate_window_seconds
            )
            rate_limits[operation] = RateLimitReport(
                limit=status.limit,
                remaining=status.remaining,
                reset_in_seconds=status.reset_in_seconds
            )

        breakers = [
            BreakerReport(
                channel=snapshot.channel,
                state=snapshot.state,
                consecutive_failures=snapshot.consecutive_failures
            )
            for snapshot in (self.breaker_for(operation).snapshot() for operation in OPERATIONS)
        ]

        concurrency = self.concurrency.status()
        return GatewayHealth(
            provider=self.provider.name,
            available=available,
            rate_limits=rate_limits,
            breakers=breakers,
            active_calls=concurrency.active,
            queued_calls=concurrency.queued,
            max_concurrency=concurrency.max_concurrency,
            caller_health=self.metrics.check_caller_health(caller_id)
        )

    def close(self) -> None:
        self.structured_logger.close()

    def _call(
        self,
        operation: str,
        raw_call: Callable[[], T],
        fallback: Callable[[], T],
        caller_id: Optional[str]
    ) -> CallOutcome:
        channel = self.channel(operation)
        retry_context = RetryContext(operation_name=f"{channel} call")
        breaker = self.breaker_for(operation)
        start = time.perf_counter()

        def guarded() -> T:
            decision = self.rate_limiter.check(
                rate_limit_key(caller_id, operation),
                self.settings.rate_limit_for(operation),
                self.settings.rate_window_seconds
            )
            if not decision.allowed:
                raise ClassifiedError(
                    ErrorKind.RATE_LIMITED,
                    f"Rate limit exceeded for {operation}",
                    retry_after=decision.retry_after,
                    context={"caller_id": caller_id, "operation": operation}
                )

            self.structured_logger.log_call_start(operation, channel, caller_id)
            return self.concurrency.execute(
                lambda: breaker.execute(
                    lambda: execute_with_retry(
                        raw_call,
                        self.settings.retry_policy,
                        context_name=retry_context.operation_name,
                        sleep=self.sleep,
                        context=retry_context
                    )
                )
            )

        try:
            value = monitored_call(self.metrics, operation, guarded, caller_id, retry_context)
        except Exception as e:
            error = classify_exception(e)
            duration_ms = (time.perf_counter() - start) * 1000
            self.structured_logger.log_call_failure(
                operation,
                channel,
                error.error_code,
                error.message,
                retry_context.attempts,
                caller_id=caller_id,
                duration_ms=duration_ms
            )
            self.structured_logger.log_call_fallback(operation, error.error_code, caller_id)
            return CallOutcome(
                operation=operation,
                success=False,
                value=fallback(),
                error=error.to_detail(),
                used_fallback=True,
                attempts=retry_context.attempts,
                latency_ms=duration_ms
            )

        duration_ms = (time.perf_counter() - start) * 1000
        self.structured_logger.log_call_complete(
            operation, channel, duration_ms, retry_context.attempts, caller_id
        )
        return CallOutcome(
            operation=operation,
            success=True,
            value=value,
            attempts=retry_context.attempts,
            latency_ms=duration_ms
        )

    def _on_breaker_transition(self, channel: str, old: CircuitState, new: CircuitState) -> None:
        self.structured_logger.log_breaker_transition(channel, old.value, new.value)
