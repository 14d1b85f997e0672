"""Batch generation of per-scene assets through the generation gateway.

Scenes are fanned out on a thread pool; the gateway's concurrency controller
bounds how many provider calls are actually in flight. Results always come
back one per scene, sorted by scene index, with fallbacks where the provider
failed.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Generic, List, Optional, TypeVar

from pydantic import BaseModel

from scenecast.gateway.fallbacks import fallback_image, fallback_image_prompt, fallback_speech
from scenecast.gateway.gateway import GenerationGateway
from scenecast.schemas.generation import (
    AspectRatio,
    CallOutcome,
    ErrorDetail,
    ErrorKind,
    GeneratedImage,
    GeneratedSpeech,
    ImageGenerationOptions,
    SpeechOptions,
    TextGenerationOptions,
)
from scenecast.schemas.scene import Scene


logger = logging.getLogger(__name__)


T = TypeVar('T')
V = TypeVar('V')


PROMPT_OPTIONS = TextGenerationOptions(temperature=0.7, max_output_tokens=512)


class SceneAssetResult(BaseModel, Generic[T]):
    """Generated asset for one scene; ``value`` is a fallback when success is False."""

    scene_id: str
    scene_index: int
    success: bool
    value: T
    error: Optional[ErrorDetail] = None


class ScenePrompt(BaseModel):
    """Image prompt written for a scene."""

    scene_id: str
    scene_index: int
    prompt: str


def build_image_prompt_request(scene: Scene, aspect_ratio: AspectRatio, style: str) -> str:
    return (
        "Write one image-generation prompt in English for the scene below. "
        "Describe the subject, setting, mood, lighting and camera framing in a single paragraph. "
        f"Style: {style}. Aspect ratio: {aspect_ratio}. Respond with the prompt only.\n\n"
        f"Scene:\n{scene.text}"
    )


class SceneGenerationService:
    """Generates prompts, images and narration for scene lists.

    Args:
        gateway: Gateway all provider calls go through
        max_workers: Thread pool size for fanning out scenes
        caller_id: Caller that provider calls are attributed to
    """

    def __init__(
        self,
        gateway: GenerationGateway,
        max_workers: int = 4,
        caller_id: Optional[str] = None
    ):
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")
        self.gateway = gateway
        self.max_workers = max_workers
        self.caller_id = caller_id

    def generate_scene_prompts(
        self,
        scenes: List[Scene],
        aspect_ratio: AspectRatio = "9:16",
        style: str = "cinematic"
    ) -> List[SceneAssetResult[ScenePrompt]]:
        """Write an image prompt per scene; failed scenes get a templated prompt."""

        def generate(scene: Scene) -> SceneAssetResult[ScenePrompt]:
            outcome = self.gateway.generate_text(
                build_image_prompt_request(scene, aspect_ratio, style),
                PROMPT_OPTIONS,
                caller_id=self.caller_id
            )
            prompt = outcome.value if outcome.success else fallback_image_prompt(scene.text)
            return SceneAssetResult[ScenePrompt](
                scene_id=scene.id,
                scene_index=scene.index,
                success=outcome.success,
                value=ScenePrompt(scene_id=scene.id, scene_index=scene.index, prompt=prompt),
                error=outcome.error
            )

        def fallback(scene: Scene) -> ScenePrompt:
            return ScenePrompt(
                scene_id=scene.id,
                scene_index=scene.index,
                prompt=fallback_image_prompt(scene.text)
            )

        return self._fan_out(
            scenes, generate, fallback,
            key=lambda scene: (scene.id, scene.index),
            label="prompt"
        )

    def generate_scene_images(
        self,
        prompts: List[ScenePrompt],
        options: Optional[ImageGenerationOptions] = None
    ) -> List[SceneAssetResult[GeneratedImage]]:
        """Generate one image per scene prompt."""
        options = options or ImageGenerationOptions()

        def generate(prompt: ScenePrompt) -> SceneAssetResult[GeneratedImage]:
            outcome = self.gateway.generate_image(prompt.prompt, options, caller_id=self.caller_id)
            return self._from_outcome(prompt.scene_id, prompt.scene_index, outcome)

        return self._fan_out(
            prompts, generate,
            lambda prompt: fallback_image(prompt.prompt, options.aspect_ratio),
            key=lambda prompt: (prompt.scene_id, prompt.scene_index),
            label="image"
        )

    def generate_scene_speech(
        self,
        scenes: List[Scene],
        options: Optional[SpeechOptions] = None
    ) -> List[SceneAssetResult[GeneratedSpeech]]:
        """Synthesize narration per scene; failed scenes get silent audio."""
        options = options or SpeechOptions()

        def generate(scene: Scene) -> SceneAssetResult[GeneratedSpeech]:
            outcome = self.gateway.generate_speech(scene.text, options, caller_id=self.caller_id)
            return self._from_outcome(scene.id, scene.index, outcome)

        return self._fan_out(
            scenes, generate,
            lambda scene: fallback_speech(scene.text, options),
            key=lambda scene: (scene.id, scene.index),
            label="speech"
        )

    @staticmethod
    def _from_outcome(scene_id: str, scene_index: int, outcome: CallOutcome) -> SceneAssetResult:
        return SceneAssetResult(
            scene_id=scene_id,
            scene_index=scene_index,
            success=outcome.success,
            value=outcome.value,
            error=outcome.error
        )

    def _fan_out(
        self,
        items: List[V],
        generate: Callable[[V], SceneAssetResult],
        fallback: Callable[[V], object],
        key: Callable[[V], tuple],
        label: str
    ) -> List[SceneAssetResult]:
        if not items:
            return []

        results: List[SceneAssetResult] = []
        successful = 0

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(items))) as executor:
            future_to_item = {executor.submit(generate, item): item for item in items}

            for future in as_completed(future_to_item):
                item = future_to_item[future]
                scene_id, scene_index = key(item)
                try:
                    result = future.result()
                except Exception as e:
                    logger.error(f"Scene {scene_id}: {label} generation raised {type(e).__name__}: {e}")
                    result = SceneAssetResult(
                        scene_id=scene_id,
                        scene_index=scene_index,
                        success=False,
                        value=fallback(item),
                        error=ErrorDetail(
                            kind=ErrorKind.SERVICE_ERROR,
                            retryable=False,
                            message=str(e)
                        )
                    )
                if result.success:
                    successful += 1
                results.append(result)

        logger.info(f"Generated {label} for {successful}/{len(items)} scene(s) without fallback")
        return sorted(results, key=lambda result: result.scene_index)
