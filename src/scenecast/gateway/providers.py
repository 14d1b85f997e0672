"""Provider adapters for text, image and speech generation.

Each adapter converts SDK failures into ``ClassifiedError`` at the boundary,
using the SDK's exception types, HTTP status and structured error codes.
Nothing downstream inspects error message text.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import anthropic
import openai

from scenecast.gateway.errors import ClassifiedError
from scenecast.gateway.fallbacks import estimate_speech_duration
from scenecast.schemas.generation import (
    ErrorKind,
    GeneratedImage,
    GeneratedSpeech,
    ImageGenerationOptions,
    SpeechOptions,
    TextGenerationOptions,
)


logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT_SECONDS = 60.0

# Structured error codes reported by the SDKs' error bodies
QUOTA_ERROR_CODES = frozenset({"insufficient_quota", "billing_hard_limit_reached"})
CONTENT_POLICY_ERROR_CODES = frozenset({"content_policy_violation", "moderation_blocked"})
REGION_ERROR_CODES = frozenset({"unsupported_country_region_territory"})

OPENAI_IMAGE_SIZES = {
    "9:16": "1024x1792",
    "16:9": "1792x1024",
    "1:1": "1024x1024",
}

OPENAI_VOICES = {
    "male": "onyx",
    "female": "nova",
    "natural": "alloy",
}


def _retry_after_seconds(error: Exception) -> Optional[float]:
    response = getattr(error, 'response', None)
    headers = getattr(response, 'headers', None)
    if not headers:
        return None
    value = headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return None


def _error_code(error: Exception) -> Optional[str]:
    code = getattr(error, 'code', None)
    if code:
        return str(code)
    body = getattr(error, 'body', None)
    if isinstance(body, dict):
        nested = body.get("error") if isinstance(body.get("error"), dict) else body
        code = nested.get("code") or nested.get("type")
        return str(code) if code else None
    return None


def classify_sdk_error(error: Exception, sdk: Any) -> ClassifiedError:
    """Map an ``openai`` or ``anthropic`` exception onto an error kind.

    Both SDKs expose the same exception hierarchy names, so the module is
    passed in and its classes are matched by type.
    """
    if isinstance(error, ClassifiedError):
        return error

    code = _error_code(error)
    context = {"exception_type": type(error).__name__}
    if code:
        context["code"] = code
    status = getattr(error, 'status_code', None)
    if status is not None:
        context["status_code"] = status

    def classified(kind: ErrorKind, retry_after: Optional[float] = None) -> ClassifiedError:
        return ClassifiedError(kind, str(error), retry_after=retry_after, context=context)

    if isinstance(error, sdk.APITimeoutError):
        return classified(ErrorKind.TIMEOUT)
    if isinstance(error, sdk.APIConnectionError):
        return classified(ErrorKind.SERVICE_ERROR)
    if isinstance(error, sdk.AuthenticationError):
        return classified(ErrorKind.INVALID_CREDENTIAL)
    if isinstance(error, sdk.PermissionDeniedError):
        if code in REGION_ERROR_CODES:
            return classified(ErrorKind.REGION_UNAVAILABLE)
        return classified(ErrorKind.INVALID_CREDENTIAL)
    if isinstance(error, sdk.RateLimitError):
        if code in QUOTA_ERROR_CODES:
            return classified(ErrorKind.QUOTA_EXCEEDED, _retry_after_seconds(error))
        return classified(ErrorKind.RATE_LIMITED, _retry_after_seconds(error))
    if isinstance(error, sdk.BadRequestError) and code in CONTENT_POLICY_ERROR_CODES:
        return classified(ErrorKind.CONTENT_POLICY_VIOLATION)
    if isinstance(error, sdk.APIStatusError) and status == 408:
        return classified(ErrorKind.TIMEOUT)

    return classified(ErrorKind.SERVICE_ERROR)


class ProviderAdapter(ABC):
    """Abstract boundary between the gateway and a generation provider.

    Implementations raise ``ClassifiedError`` for every failure.
    """

    name: str = "provider"

    @abstractmethod
    def generate_text(self, prompt: str, options: TextGenerationOptions) -> str:
        pass

    @abstractmethod
    def generate_image(self, prompt: str, options: ImageGenerationOptions) -> GeneratedImage:
        pass

    @abstractmethod
    def generate_speech(self, text: str, options: SpeechOptions) -> GeneratedSpeech:
        pass

    @abstractmethod
    def check_availability(self) -> bool:
        """Return True if the provider answers a lightweight request."""
        pass


class OpenAIProvider(ProviderAdapter):
    """Adapter for the OpenAI chat, image and speech endpoints."""

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        text_model: str = "gpt-4o-mini",
        image_model: str = "dall-e-3",
        speech_model: str = "tts-1",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[Any] = None
    ):
        self.text_model = text_model
        self.image_model = image_model
        self.speech_model = speech_model
        # SDK retries are disabled; the gateway owns the retry schedule
        self.client = client or openai.OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def _invoke(self, func):
        try:
            return func()
        except Exception as e:
            raise classify_sdk_error(e, openai) from e

    def generate_text(self, prompt: str, options: TextGenerationOptions) -> str:
        response = self._invoke(lambda: self.client.chat.completions.create(
            model=self.text_model,
            messages=[{"role": "user", "content": prompt}],
            temperature=options.temperature,
            max_tokens=options.max_output_tokens,
            top_p=options.top_p
        ))
        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise ClassifiedError(ErrorKind.SERVICE_ERROR, "Empty text response from openai")
        return content.strip()

    def generate_image(self, prompt: str, options: ImageGenerationOptions) -> GeneratedImage:
        response = self._invoke(lambda: self.client.images.generate(
            model=self.image_model,
            prompt=prompt,
            size=OPENAI_IMAGE_SIZES[options.aspect_ratio],
            quality="hd" if options.quality == "high" else "standard",
            n=options.number_of_images
        ))
        if not response.data:
            raise ClassifiedError(ErrorKind.SERVICE_ERROR, "No image returned from openai")

        image = response.data[0]
        if getattr(image, 'url', None):
            uri = image.url
        elif getattr(image, 'b64_json', None):
            uri = f"data:image/png;base64,{image.b64_json}"
        else:
            raise ClassifiedError(ErrorKind.SERVICE_ERROR, "Image response has neither url nor data")

        return GeneratedImage(uri=uri, aspect_ratio=options.aspect_ratio, prompt=prompt)

    def generate_speech(self, text: str, options: SpeechOptions) -> GeneratedSpeech:
        response = self._invoke(lambda: self.client.audio.speech.create(
            model=self.speech_model,
            voice=OPENAI_VOICES[options.voice],
            input=text,
            speed=options.speed,
            response_format="mp3"
        ))
        audio = response.content
        if not audio:
            raise ClassifiedError(ErrorKind.SERVICE_ERROR, "Empty audio response from openai")

        return GeneratedSpeech(
            audio=audio,
            audio_format="mp3",
            duration_seconds=estimate_speech_duration(text, options.speed),
            text=text
        )

    def check_availability(self) -> bool:
        try:
            self._invoke(lambda: self.client.models.list())
            return True
        except ClassifiedError as e:
            logger.warning(f"openai availability check failed: {e}")
            return False


class AnthropicProvider(ProviderAdapter):
    """Adapter for Anthropic messages; text generation only."""

    name = "anthropic"

    def __init__(
        self,
        api_key: Optional[str] = None,
        text_model: str = "claude-3-5-sonnet-latest",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[Any] = None
    ):
        self.text_model = text_model
        self.client = client or anthropic.Anthropic(api_key=api_key, timeout=timeout, max_retries=0)

    def _invoke(self, func):
        try:
            return func()
        except Exception as e:
            raise classify_sdk_error(e, anthropic) from e

    def generate_text(self, prompt: str, options: TextGenerationOptions) -> str:
        response = self._invoke(lambda: self.client.messages.create(
            model=self.text_model,
            max_tokens=options.max_output_tokens,
            temperature=options.temperature,
            messages=[{"role": "user", "content": prompt}]
        ))
        text = "".join(
            block.text for block in response.content if getattr(block, 'type', None) == "text"
        )
        if not text.strip():
            raise ClassifiedError(ErrorKind.SERVICE_ERROR, "Empty text response from anthropic")
        return text.strip()

    def generate_image(self, prompt: str, options: ImageGenerationOptions) -> GeneratedImage:
        raise ClassifiedError(
            ErrorKind.SERVICE_ERROR,
            "anthropic does not support image generation",
            retryable=False
        )

    def generate_speech(self, text: str, options: SpeechOptions) -> GeneratedSpeech:
        raise ClassifiedError(
            ErrorKind.SERVICE_ERROR,
            "anthropic does not support speech synthesis",
            retryable=False
        )

    def check_availability(self) -> bool:
        try:
            self._invoke(lambda: self.client.models.list(limit=1))
            return True
        except ClassifiedError as e:
            logger.warning(f"anthropic availability check failed: {e}")
            return False
