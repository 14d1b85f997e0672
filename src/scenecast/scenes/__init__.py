"""Text normalization, scene segmentation, editing and validation."""

from scenecast.scenes.editor import SceneEditError, SceneEditor, reindex_scenes
from scenecast.scenes.normalizer import normalize
from scenecast.scenes.response_parser import (
    ResponseErrorDetail,
    SegmentationResponseError,
    parse_segmentation_response,
)
from scenecast.scenes.segmentation import SegmentationEngine, rule_based_segments
from scenecast.scenes.validator import SceneValidator, validate_scenes

__all__ = [
    "normalize",
    "SegmentationEngine",
    "rule_based_segments",
    "parse_segmentation_response",
    "SegmentationResponseError",
    "ResponseErrorDetail",
    "SceneEditor",
    "SceneEditError",
    "reindex_scenes",
    "SceneValidator",
    "validate_scenes",
]
