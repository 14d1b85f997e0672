"""Pydantic schemas for data contracts between components."""

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
    VoiceType,
)
from scenecast.schemas.scene import (
    MergeOperation,
    ReorderOperation,
    Scene,
    SceneEditOperation,
    SegmentationConfig,
    SegmentationResult,
    SegmentationStats,
    SplitOperation,
    UpdateOperation,
    ValidationResult,
    parse_edit_operation,
)

__all__ = [
    # Scenes
    "Scene",
    "SegmentationConfig",
    "SegmentationStats",
    "SegmentationResult",
    "ValidationResult",
    # Edit operations
    "MergeOperation",
    "SplitOperation",
    "ReorderOperation",
    "UpdateOperation",
    "SceneEditOperation",
    "parse_edit_operation",
    # Generation
    "ErrorKind",
    "ErrorDetail",
    "CallOutcome",
    "AspectRatio",
    "VoiceType",
    "TextGenerationOptions",
    "ImageGenerationOptions",
    "SpeechOptions",
    "GeneratedImage",
    "GeneratedSpeech",
]
