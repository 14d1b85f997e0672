"""Settings for building a generation gateway."""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from scenecast.gateway.providers import AnthropicProvider, OpenAIProvider, ProviderAdapter
from scenecast.gateway.retry_policy import RetryPolicy


SUPPORTED_PROVIDERS = ("openai", "anthropic")

# Free-tier request budgets per rate window
DEFAULT_RATE_LIMITS = {
    "text": 15,
    "image": 15,
    "speech": 15,
}


@dataclass
class GatewaySettings:
    """Configuration for a GenerationGateway and its provider.

    Attributes:
        provider: Provider adapter to build ("openai" or "anthropic")
        openai_api_key: API key for OpenAI (read by the SDK from env if None)
        anthropic_api_key: API key for Anthropic (read by the SDK from env if None)
        text_model: Model for text completion (provider default if None)
        image_model: Model for image synthesis
        speech_model: Model for speech synthesis
        rate_limits: Requests allowed per window, keyed by operation type
        rate_window_seconds: Length of the sliding rate window
        max_concurrency: Simultaneous in-flight provider calls
        failure_threshold: Consecutive failures that open a breaker
        recovery_timeout_seconds: Cooldown before a breaker probes again
        request_timeout_seconds: Per-call timeout enforced by the SDK client
        retry_policy: Backoff schedule for retryable failures
        log_directory: Directory for gateway.log (console only if None)
    """
    provider: str = "openai"
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    text_model: Optional[str] = None
    image_model: str = "dall-e-3"
    speech_model: str = "tts-1"
    rate_limits: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_RATE_LIMITS))
    rate_window_seconds: float = 60.0
    max_concurrency: int = 3
    failure_threshold: int = 5
    recovery_timeout_seconds: float = 60.0
    request_timeout_seconds: float = 60.0
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    log_directory: Optional[str] = None

    def __post_init__(self):
        if self.provider not in SUPPORTED_PROVIDERS:
            raise ValueError(
                f"Unsupported provider '{self.provider}', expected one of {SUPPORTED_PROVIDERS}"
            )
        for operation, limit in self.rate_limits.items():
            if limit < 1:
                raise ValueError(f"Rate limit for {operation} must be at least 1, got {limit}")

    def rate_limit_for(self, operation: str) -> int:
        return self.rate_limits.get(operation, DEFAULT_RATE_LIMITS.get(operation, 15))

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> 'GatewaySettings':
        """Build settings from SCENECAST_* variables and provider API keys."""
        getenv = environ.get if environ is not None else os.getenv

        def env_int(name: str, default: int) -> int:
            value = getenv(name)
            if value is None or value == "":
                return default
            try:
                return int(value)
            except ValueError:
                raise ValueError(f"{name} must be an integer, got {value!r}") from None

        return cls(
            provider=getenv("SCENECAST_PROVIDER") or "openai",
            openai_api_key=getenv("OPENAI_API_KEY"),
            anthropic_api_key=getenv("ANTHROPIC_API_KEY"),
            text_model=getenv("SCENECAST_TEXT_MODEL") or None,
            image_model=getenv("SCENECAST_IMAGE_MODEL") or "dall-e-3",
            speech_model=getenv("SCENECAST_SPEECH_MODEL") or "tts-1",
            rate_limits={
                "text": env_int("SCENECAST_TEXT_RPM", DEFAULT_RATE_LIMITS["text"]),
                "image": env_int("SCENECAST_IMAGE_RPM", DEFAULT_RATE_LIMITS["image"]),
                "speech": env_int("SCENECAST_SPEECH_RPM", DEFAULT_RATE_LIMITS["speech"]),
            },
            max_concurrency=env_int("SCENECAST_MAX_CONCURRENCY", 3),
            log_directory=getenv("SCENECAST_LOG_DIR") or None
        )


def build_provider(settings: GatewaySettings) -> ProviderAdapter:
    """Construct the provider adapter named in ``settings``."""
    if settings.provider == "anthropic":
        if not settings.anthropic_api_key and not os.getenv("ANTHROPIC_API_KEY"):
            raise ValueError("ANTHROPIC_API_KEY is required for the anthropic provider")
        kwargs = {"text_model": settings.text_model} if settings.text_model else {}
        return AnthropicProvider(
            api_key=settings.anthropic_api_key,
            timeout=settings.request_timeout_seconds,
            **kwargs
        )

    if not settings.openai_api_key and not os.getenv("OPENAI_API_KEY"):
        raise ValueError("OPENAI_API_KEY is required for the openai provider")

    kwargs = {"text_model": settings.text_model} if settings.text_model else {}
    return OpenAIProvider(
        api_key=settings.openai_api_key,
        image_model=settings.image_model,
        speech_model=settings.speech_model,
        timeout=settings.request_timeout_seconds,
        **kwargs
    )
