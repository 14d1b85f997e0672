"""User-driven edits of a scene list.

Every operation works on a new list (scenes are immutable models) and ends
with a reindex pass, so indices are always ``0..n-1`` in list order.
Invalid operations raise ``SceneEditError`` immediately; they are caller
mistakes and are never retried.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from scenecast.scenes.validator import SceneValidator
from scenecast.schemas.scene import (
    MergeOperation,
    ReorderOperation,
    Scene,
    SegmentationConfig,
    SplitOperation,
    UpdateOperation,
    ValidationResult,
    parse_edit_operation,
)


logger = logging.getLogger(__name__)


EditOperation = Union[MergeOperation, SplitOperation, ReorderOperation, UpdateOperation]


class SceneEditError(Exception):
    """Exception raised for an edit that cannot be applied

    Attributes:
        error_code: Machine-readable error code
        message: Human-readable error message
        context: Additional context about the failure
    """

    def __init__(self, error_code: str, message: str, context: Optional[Dict[str, Any]] = None):
        self.error_code = error_code
        self.message = message
        self.context = context or {}
        super().__init__(f"[{error_code}] {message}")


def reindex_scenes(scenes: Iterable[Scene]) -> List[Scene]:
    """Return scenes with indices reassigned to their list positions."""
    return [
        scene if scene.index == i else scene.model_copy(update={"index": i})
        for i, scene in enumerate(scenes)
    ]


def unique_scene_id(candidate: str, taken: Iterable[str]) -> str:
    """Return ``candidate``, or ``candidate_<n>`` with the first free suffix."""
    taken = set(taken)
    if candidate not in taken:
        return candidate
    suffix = 1
    while f"{candidate}_{suffix}" in taken:
        suffix += 1
    return f"{candidate}_{suffix}"


class SceneEditor:
    """Applies merge, split, reorder and update operations to scene lists."""

    def __init__(self, validator: Optional[SceneValidator] = None):
        self.validator = validator or SceneValidator()

    def edit(self, scenes: List[Scene], operation: Union[EditOperation, Dict[str, Any]]) -> List[Scene]:
        """Apply one edit operation and return the new scene list.

        Args:
            scenes: Current scenes; not modified
            operation: Operation model, or a structured command dict

        Raises:
            SceneEditError: If the operation is invalid for these scenes
        """
        if isinstance(operation, dict):
            operation = parse_edit_operation(operation)

        ordered = sorted(scenes, key=lambda scene: scene.index)

        if isinstance(operation, MergeOperation):
            result = self._merge(ordered, operation.scene_ids)
        elif isinstance(operation, SplitOperation):
            result = self._split(ordered, operation.scene_id, operation.position)
        elif isinstance(operation, ReorderOperation):
            result = self._reorder(ordered, operation.scene_id, operation.new_index)
        elif isinstance(operation, UpdateOperation):
            result = self._update(ordered, operation.scene_id, operation.new_text)
        else:
            raise SceneEditError(
                "UNSUPPORTED_OPERATION",
                f"Unsupported edit operation: {type(operation).__name__}"
            )

        logger.debug(f"Applied {operation.type} edit: {len(scenes)} -> {len(result)} scene(s)")
        return reindex_scenes(result)

    def edit_and_validate(
        self,
        scenes: List[Scene],
        operation: Union[EditOperation, Dict[str, Any]],
        config: Optional[SegmentationConfig] = None
    ) -> Tuple[List[Scene], ValidationResult]:
        """Apply an edit, then validate the resulting list."""
        edited = self.edit(scenes, operation)
        return edited, self.validator.validate(edited, config)

    def _position_of(self, scenes: List[Scene], scene_id: str) -> int:
        for position, scene in enumerate(scenes):
            if scene.id == scene_id:
                return position
        raise SceneEditError("SCENE_NOT_FOUND", f"Scene not found: {scene_id}", {"scene_id": scene_id})

    def _merge(self, scenes: List[Scene], scene_ids: List[str]) -> List[Scene]:
        requested = list(dict.fromkeys(scene_ids))
        if len(requested) < 2:
            raise SceneEditError(
                "INSUFFICIENT_SCENES",
                "At least two distinct scenes are required to merge",
                {"scene_ids": scene_ids}
            )

        existing = {scene.id for scene in scenes}
        missing = [scene_id for scene_id in requested if scene_id not in existing]
        if missing:
            raise SceneEditError(
                "SCENES_NOT_FOUND",
                f"Scene(s) not found: {', '.join(missing)}",
                {"scene_ids": missing}
            )

        wanted = set(requested)
        merged_scenes = [scene for scene in scenes if scene.id in wanted]
        first = merged_scenes[0]
        remaining_ids = [scene.id for scene in scenes if scene.id not in wanted]

        merged = Scene(
            id=unique_scene_id(f"merged_{first.id}", remaining_ids),
            index=first.index,
            text=" ".join(scene.text for scene in merged_scenes)
        )

        result = []
        for scene in scenes:
            if scene.id == first.id:
                result.append(merged)
            elif scene.id not in wanted:
                result.append(scene)
        return result

    def _split(self, scenes: List[Scene], scene_id: str, position: int) -> List[Scene]:
        at = self._position_of(scenes, scene_id)
        scene = scenes[at]

        if not 0 < position < len(scene.text):
            raise SceneEditError(
                "INVALID_SPLIT_POSITION",
                f"Invalid split position {position} for scene of length {len(scene.text)}",
                {"scene_id": scene_id, "position": position}
            )

        head = scene.text[:position].strip()
        tail = scene.text[position:].strip()
        if not head or not tail:
            raise SceneEditError(
                "EMPTY_SCENE",
                "Split would produce an empty scene",
                {"scene_id": scene_id, "position": position}
            )

        taken = [other.id for other in scenes if other.id != scene_id]
        first_id = unique_scene_id(f"{scene_id}_part1", taken)
        second_id = unique_scene_id(f"{scene_id}_part2", taken + [first_id])

        return (
            scenes[:at]
            + [
                Scene(id=first_id, index=at, text=head),
                Scene(id=second_id, index=at + 1, text=tail),
            ]
            + scenes[at + 1:]
        )

    def _reorder(self, scenes: List[Scene], scene_id: str, new_index: int) -> List[Scene]:
        at = self._position_of(scenes, scene_id)
        if not 0 <= new_index < len(scenes):
            raise SceneEditError(
                "INVALID_INDEX",
                f"Invalid index {new_index} for {len(scenes)} scene(s)",
                {"scene_id": scene_id, "new_index": new_index}
            )

        result = list(scenes)
        moved = result.pop(at)
        result.insert(new_index, moved)
        return result

    def _update(self, scenes: List[Scene], scene_id: str, new_text: str) -> List[Scene]:
        at = self._position_of(scenes, scene_id)
        text = new_text.strip()
        if not text:
            raise SceneEditError(
                "EMPTY_SCENE",
                "Scene text cannot be empty",
                {"scene_id": scene_id}
            )

        result = list(scenes)
        result[at] = scenes[at].model_copy(update={"text": text})
        return result
