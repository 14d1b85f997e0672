"""Length and structure checks for a scene list.

Problems are reported, never raised: errors make the list unusable,
warnings are advisory.
"""

from typing import List, Optional

from scenecast.schemas.scene import Scene, SegmentationConfig, ValidationResult


class SceneValidator:
    """Checks scenes against a segmentation config's length envelope."""

    def __init__(self, config: Optional[SegmentationConfig] = None):
        self.config = config or SegmentationConfig()

    def validate(self, scenes: List[Scene], config: Optional[SegmentationConfig] = None) -> ValidationResult:
        """Validate scenes.

        Per scene (lengths measured on trimmed text):
        - empty or whitespace-only text -> error
        - longer than ``max_length`` -> error
        - shorter than ``min_length`` -> warning

        Across the list, non-contiguous indices and duplicate ids are errors.
        """
        config = config or self.config
        errors: List[str] = []
        warnings: List[str] = []

        for scene in scenes:
            length = len(scene.text.strip())
            if length == 0:
                errors.append(f"Scene {scene.index} is empty")
            elif length > config.max_length:
                errors.append(f"Scene {scene.index} is too long ({length} > {config.max_length})")
            elif length < config.min_length:
                warnings.append(f"Scene {scene.index} is too short ({length} < {config.min_length})")

        for expected, scene in enumerate(scenes):
            if scene.index != expected:
                errors.append(
                    f"Scene indices are not contiguous: position {expected} has index {scene.index}"
                )
                break

        seen = set()
        for scene in scenes:
            if scene.id in seen:
                errors.append(f"Duplicate scene id: {scene.id}")
            seen.add(scene.id)

        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


def validate_scenes(scenes: List[Scene], config: Optional[SegmentationConfig] = None) -> ValidationResult:
    return SceneValidator(config).validate(scenes)
