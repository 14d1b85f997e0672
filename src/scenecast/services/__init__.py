"""Pipeline services built on top of the generation gateway."""

from scenecast.services.scene_generation import (
    SceneAssetResult,
    SceneGenerationService,
    ScenePrompt,
)

__all__ = [
    "SceneGenerationService",
    "SceneAssetResult",
    "ScenePrompt",
]
