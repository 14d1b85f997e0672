"""Schemas for calls routed through the generation gateway."""

from enum import Enum
from typing import Generic, Literal, Optional, TypeVar

from pydantic import BaseModel, Field


T = TypeVar('T')


class ErrorKind(str, Enum):
    """Classification of provider failures."""
    INVALID_CREDENTIAL = "INVALID_CREDENTIAL"
    RATE_LIMITED = "RATE_LIMITED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    CONTENT_POLICY_VIOLATION = "CONTENT_POLICY_VIOLATION"
    TIMEOUT = "TIMEOUT"
    REGION_UNAVAILABLE = "REGION_UNAVAILABLE"
    SERVICE_ERROR = "SERVICE_ERROR"


AspectRatio = Literal["9:16", "16:9", "1:1"]
VoiceType = Literal["male", "female", "natural"]


class TextGenerationOptions(BaseModel):
    """Sampling parameters for text completion."""

    temperature: float = Field(0.7, ge=0.0, le=2.0)
    max_output_tokens: int = Field(2048, ge=1)
    top_p: float = Field(0.8, gt=0.0, le=1.0)


class ImageGenerationOptions(BaseModel):
    """Parameters for image synthesis."""

    aspect_ratio: AspectRatio = "9:16"
    number_of_images: int = Field(1, ge=1, le=4)
    quality: Literal["standard", "high"] = "standard"


class SpeechOptions(BaseModel):
    """Parameters for speech synthesis."""

    voice: VoiceType = "natural"
    speed: float = Field(1.0, gt=0.0, le=4.0)
    language: str = "zh-TW"


class GeneratedImage(BaseModel):
    """Image produced for a prompt, addressed by URL or data URI."""

    uri: str
    aspect_ratio: AspectRatio
    prompt: str


class GeneratedSpeech(BaseModel):
    """Synthesized narration audio."""

    audio: bytes
    audio_format: str = "mp3"
    duration_seconds: float = Field(0.0, ge=0.0)
    text: str


class ErrorDetail(BaseModel):
    """Serializable view of a classified provider failure."""

    kind: ErrorKind
    retryable: bool
    retry_after: Optional[float] = Field(
        None,
        ge=0.0,
        description="Seconds the provider asked callers to wait"
    )
    message: str = ""


class CallOutcome(BaseModel, Generic[T]):
    """Result of a gateway call.

    When ``success`` is False, ``value`` holds the deterministic fallback and
    ``error`` explains why the provider result is missing.
    """

    operation: str
    success: bool
    value: Optional[T] = None
    error: Optional[ErrorDetail] = None
    used_fallback: bool = False
    attempts: int = Field(0, ge=0)
    latency_ms: float = Field(0.0, ge=0.0)
