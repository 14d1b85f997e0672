"""Scene segmentation and resilient generation for narrative-to-video pipelines."""

from scenecast.gateway import GatewaySettings, GenerationGateway
from scenecast.scenes import (
    SceneEditError,
    SceneEditor,
    SceneValidator,
    SegmentationEngine,
    normalize,
)
from scenecast.schemas import (
    CallOutcome,
    Scene,
    SegmentationConfig,
    SegmentationResult,
    ValidationResult,
)
from scenecast.services import SceneGenerationService

__version__ = "0.1.0"

__all__ = [
    "Scene",
    "SegmentationConfig",
    "SegmentationResult",
    "ValidationResult",
    "CallOutcome",
    "normalize",
    "SegmentationEngine",
    "SceneEditor",
    "SceneEditError",
    "SceneValidator",
    "GenerationGateway",
    "GatewaySettings",
    "SceneGenerationService",
]
