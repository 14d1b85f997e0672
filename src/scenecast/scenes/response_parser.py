"""Strict parsing of provider-proposed scene boundaries."""

import json
import re
from dataclasses import dataclass
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator


_CODE_FENCE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)


@dataclass
class ResponseErrorDetail:
    """Detailed information about one problem in a provider response."""

    field_path: str
    violation_type: str
    message: str


class SegmentationResponseError(Exception):
    """Provider output could not be turned into scenes.

    Attributes:
        message: Summary of why parsing failed
        errors: Field-level problems, when the payload was valid JSON
    """

    def __init__(self, message: str, errors: Optional[List[ResponseErrorDetail]] = None):
        self.message = message
        self.errors = errors or []
        super().__init__(message)


class ProposedScene(BaseModel):
    index: int = Field(..., ge=0)
    text: str

    @field_validator('text')
    @classmethod
    def validate_text(cls, v: str) -> str:
        """Ensure text is not empty after trimming."""
        if not v.strip():
            raise ValueError("scene text cannot be empty")
        return v.strip()


class ProposedSegmentation(BaseModel):
    scenes: List[ProposedScene] = Field(..., min_length=1)


def _extract_validation_errors(validation_error: ValidationError) -> List[ResponseErrorDetail]:
    errors: List[ResponseErrorDetail] = []
    for error in validation_error.errors():
        errors.append(ResponseErrorDetail(
            field_path=".".join(str(loc) for loc in error["loc"]),
            violation_type=error["type"],
            message=error["msg"]
        ))
    return errors


def strip_code_fences(response: str) -> str:
    """Remove markdown code fences a model may wrap around JSON."""
    return _CODE_FENCE.sub("", response).strip()


def parse_segmentation_response(response: str) -> List[str]:
    """Return scene texts from a ``{"scenes": [{"index", "text"}]}`` response.

    Scenes are ordered by their proposed ``index`` (ties keep response
    order). Every item must carry non-empty text; one bad item rejects the
    whole response.

    Raises:
        SegmentationResponseError: If the response is not JSON or does not
            match the expected shape
    """
    if not response or not response.strip():
        raise SegmentationResponseError("Empty segmentation response")

    try:
        payload = json.loads(strip_code_fences(response))
    except json.JSONDecodeError as e:
        raise SegmentationResponseError(f"Segmentation response is not valid JSON: {e}") from e

    try:
        proposal = ProposedSegmentation.model_validate(payload)
    except ValidationError as e:
        errors = _extract_validation_errors(e)
        raise SegmentationResponseError(
            f"Segmentation response failed validation with {len(errors)} error(s)",
            errors
        ) from e

    ordered = sorted(enumerate(proposal.scenes), key=lambda item: (item[1].index, item[0]))
    return [scene.text for _, scene in ordered]
