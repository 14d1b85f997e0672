"""Scene schemas shared by segmentation, editing and validation."""

from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator


class Scene(BaseModel):
    """Single bounded-length unit of narrative text."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique identifier for the scene")
    index: int = Field(..., ge=0, description="Sequential position in the scene list")
    text: str = Field(..., description="Narrative text of the scene")

    @field_validator('id')
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Ensure id is not empty."""
        if not v or not v.strip():
            raise ValueError("scene id cannot be empty")
        return v


class SegmentationConfig(BaseModel):
    """Parameters for a single segmentation call.

    Lengths are measured in characters. Both bounds are inclusive.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    min_length: int = Field(100, ge=1, description="Soft minimum characters per scene")
    max_length: int = Field(280, ge=1, description="Hard maximum characters per scene")
    use_provider_assist: bool = Field(
        False,
        description="Ask the generation provider to propose scene boundaries first"
    )
    preserve_paragraphs: bool = Field(True, description="Keep blank-line paragraphs intact where possible")
    smart_split: bool = Field(
        True,
        description="Break over-long sentences on clause punctuation and word boundaries"
    )
    sentence_terminators: str = Field(
        "。！？；.!?;",
        min_length=1,
        description="Characters that end a sentence"
    )
    clause_separators: str = Field(
        "，,、：:",
        description="Characters used to break over-long sentences into clauses"
    )

    @model_validator(mode='after')
    def validate_bounds(self) -> 'SegmentationConfig':
        """Ensure min_length does not exceed max_length."""
        if self.min_length > self.max_length:
            raise ValueError(
                f"min_length ({self.min_length}) cannot exceed max_length ({self.max_length})"
            )
        return self

    def merged(self, overrides: Optional[Mapping[str, Any]] = None) -> 'SegmentationConfig':
        """Return a new config with caller overrides applied.

        Keys whose value is None are ignored so partially-filled request
        payloads fall back to the current values.
        """
        if not overrides:
            return self
        values = self.model_dump()
        values.update({key: value for key, value in overrides.items() if value is not None})
        return SegmentationConfig(**values)


class SegmentationStats(BaseModel):
    """Summary statistics for a segmentation run."""

    original_length: int = Field(..., ge=0)
    normalized_length: int = Field(..., ge=0)
    scene_count: int = Field(..., ge=0)
    average_scene_length: int = Field(..., ge=0)
    processing_time_ms: float = Field(..., ge=0.0)
    fallback_reason: Optional[str] = Field(
        None,
        description="Why provider-assisted segmentation was abandoned, if it was"
    )


class SegmentationResult(BaseModel):
    """Ordered scenes plus the path that produced them."""

    scenes: List[Scene] = Field(default_factory=list)
    method: Literal["rule_based", "provider_assisted"]
    stats: SegmentationStats


class ValidationResult(BaseModel):
    """Outcome of checking a scene list against length constraints.

    Errors make the set unusable; warnings are advisory.
    """

    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class MergeOperation(BaseModel):
    """Merge two or more scenes into one."""

    type: Literal["merge"] = "merge"
    scene_ids: List[str] = Field(..., description="Ids of the scenes to merge")


class SplitOperation(BaseModel):
    """Split one scene in two at a character position."""

    type: Literal["split"] = "split"
    scene_id: str
    position: int


class ReorderOperation(BaseModel):
    """Move one scene to a new index."""

    type: Literal["reorder"] = "reorder"
    scene_id: str
    new_index: int


class UpdateOperation(BaseModel):
    """Replace the text of one scene."""

    type: Literal["update"] = "update"
    scene_id: str
    new_text: str


SceneEditOperation = Annotated[
    Union[MergeOperation, SplitOperation, ReorderOperation, UpdateOperation],
    Field(discriminator="type"),
]

_EDIT_OPERATION_ADAPTER: TypeAdapter = TypeAdapter(SceneEditOperation)


def parse_edit_operation(payload: Dict[str, Any]) -> Union[
    MergeOperation, SplitOperation, ReorderOperation, UpdateOperation
]:
    """Validate a structured edit command into its operation model.

    Raises:
        pydantic.ValidationError: If the payload has an unknown type or
            is missing fields for its type
    """
    return _EDIT_OPERATION_ADAPTER.validate_python(payload)
