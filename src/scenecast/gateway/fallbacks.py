"""Deterministic placeholder results used when a provider call fails.

Fallbacks keep the scene pipeline moving; callers tell them apart from real
results through ``CallOutcome.success``.
"""

import io
import math
import re
import wave
from typing import Optional

from scenecast.schemas.generation import (
    AspectRatio,
    GeneratedImage,
    GeneratedSpeech,
    SpeechOptions,
)


# Narration pace used to estimate speech duration
WORDS_PER_MINUTE = 150

# Characters per "word" for scripts written without spaces (CJK)
CJK_CHARS_PER_WORD = 2

PLACEHOLDER_IMAGE_DIMENSIONS = {
    "9:16": "1080x1920",
    "16:9": "1920x1080",
    "1:1": "1080x1080",
}

PLACEHOLDER_IMAGE_URL = "https://via.placeholder.com/{dims}/7C3AED/FFFFFF?text=Scene+Image"

FALLBACK_TEXT = "Content generation is temporarily unavailable. Please try again later."

_STOP_WORDS = frozenset({
    "the", "and", "for", "are", "but", "not", "you", "all", "can", "had", "her",
    "was", "one", "our", "out", "day", "get", "has", "him", "his", "how", "its",
    "may", "new", "now", "old", "see", "two", "who", "boy", "did", "she", "use",
    "way", "with", "that", "this", "from", "they", "have", "were", "been", "into",
    "when", "what", "your", "them", "then", "than", "there", "their", "which",
})

_CJK_CHAR = re.compile(r"[\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff\u3040-\u30ff\uac00-\ud7af]")
_WORD = re.compile(r"\w+", re.UNICODE)

SILENT_SAMPLE_RATE = 16000


def fallback_text(prompt: str) -> str:
    return FALLBACK_TEXT


def fallback_image(prompt: str, aspect_ratio: AspectRatio = "9:16") -> GeneratedImage:
    dims = PLACEHOLDER_IMAGE_DIMENSIONS.get(aspect_ratio, PLACEHOLDER_IMAGE_DIMENSIONS["9:16"])
    return GeneratedImage(
        uri=PLACEHOLDER_IMAGE_URL.format(dims=dims),
        aspect_ratio=aspect_ratio,
        prompt=prompt
    )


def count_words(text: str) -> int:
    """Count words, treating every two CJK characters as one word."""
    cjk_chars = len(_CJK_CHAR.findall(text))
    latin_words = len(_WORD.findall(_CJK_CHAR.sub(" ", text)))
    return latin_words + math.ceil(cjk_chars / CJK_CHARS_PER_WORD)


def estimate_speech_duration(text: str, speed: float = 1.0) -> float:
    """Estimate narration length in seconds at 150 words per minute."""
    words = count_words(text)
    if words == 0:
        return 0.0
    return round(words / WORDS_PER_MINUTE * 60 / speed, 2)


def silent_wav(duration_seconds: float, sample_rate: int = SILENT_SAMPLE_RATE) -> bytes:
    """Build a mono 16-bit PCM WAV file containing silence."""
    frame_count = int(round(max(0.0, duration_seconds) * sample_rate))
    buffer = io.BytesIO()
    with wave.open(buffer, 'wb') as wav_file:
        wav_file.setnchannels(1)
        wav_file.setsampwidth(2)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(b"\x00\x00" * frame_count)
    return buffer.getvalue()


def fallback_speech(text: str, options: Optional[SpeechOptions] = None) -> GeneratedSpeech:
    options = options or SpeechOptions()
    duration = estimate_speech_duration(text, options.speed)
    return GeneratedSpeech(
        audio=silent_wav(duration),
        audio_format="wav",
        duration_seconds=duration,
        text=text
    )


def fallback_image_prompt(scene_text: str) -> str:
    """Templated image prompt built from the first few keywords of a scene.

    Keywords are words longer than three characters that are not common
    English stop words; CJK runs count as keywords.
    """
    keywords = [
        word for word in _WORD.findall(scene_text.lower())
        if len(word) > 3 and word not in _STOP_WORDS
    ][:5]
    subject = " ".join(keywords) if keywords else "the story moment"
    return f"cinematic scene with {subject}, professional lighting, high quality"
