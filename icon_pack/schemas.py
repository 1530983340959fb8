"""
Module: icon_pack.schemas
Purpose: Wire models for the generation backend's HTTP and push-event payloads
Dependencies: pydantic

Field names follow Python conventions; aliases carry the backend's camelCase
names. Requests are serialized with ``to_wire()`` which drops unset optionals.
"""

import base64
import binascii
import json
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from icon_pack.errors import StreamParseError
from icon_pack.session import Icon

SERVICE_UPDATE = "service_update"
GENERATION_COMPLETE = "generation_complete"
GENERATION_ERROR = "generation_error"


class WireModel(BaseModel):
    """Base for every payload exchanged with the backend."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# Request/Response models
class IconPayload(WireModel):
    """One icon as the backend sends it."""
    base64_data: str = Field(..., alias="base64Data", description="PNG bytes, base64 encoded")
    description: Optional[str] = Field(None, description="Text the icon was generated from")

    @field_validator("base64_data")
    @classmethod
    def _check_base64(cls, value: str) -> str:
        try:
            base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError(f"icon data is not valid base64: {exc}") from exc
        return value

    def to_icon(self) -> Icon:
        return Icon.from_base64(self.base64_data, self.description)


class GenerationRequest(WireModel):
    """Body of ``POST /generate-stream``."""
    icon_count: int = Field(9, alias="iconCount", ge=1, description="Icons per grid")
    generations_per_service: int = Field(
        1, alias="generationsPerService", ge=1, le=2,
        description="Independent grids per enabled provider"
    )
    individual_descriptions: List[str] = Field(
        default_factory=list, alias="individualDescriptions",
        description="Optional per-icon descriptions"
    )
    general_description: Optional[str] = Field(None, alias="generalDescription")
    reference_image_base64: Optional[str] = Field(None, alias="referenceImageBase64")
    seed: Optional[int] = Field(None, description="Base seed; providers derive one per generation")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "iconCount": 9,
                "generationsPerService": 1,
                "individualDescriptions": ["a house", "a tree"],
                "generalDescription": "flat pastel line icons",
            }
        },
    )

    @field_validator("individual_descriptions")
    @classmethod
    def _strip_blank(cls, value: List[str]) -> List[str]:
        return [desc.strip() for desc in value if desc and desc.strip()]

    @model_validator(mode="after")
    def _needs_theme_or_image(self) -> "GenerationRequest":
        has_text = bool(self.general_description and self.general_description.strip())
        has_image = bool(self.reference_image_base64 and self.reference_image_base64.strip())
        if not has_text and not has_image:
            raise ValueError("either a general description or a reference image is required")
        return self

    @property
    def has_reference_image(self) -> bool:
        return bool(self.reference_image_base64)


class GenerationStartResponse(WireModel):
    """Response of ``POST /generate-stream``."""
    request_id: str = Field(..., alias="requestId", min_length=1)
    enabled_services: Dict[str, bool] = Field(default_factory=dict, alias="enabledServices")


class ServiceUpdate(WireModel):
    """Payload of a ``service_update`` push event."""
    service_name: str = Field(..., alias="serviceName", min_length=1)
    status: Literal["started", "upscaling", "success", "error"]
    message: Optional[str] = None
    icons: List[IconPayload] = Field(default_factory=list)
    original_grid_image_base64: Optional[str] = Field(None, alias="originalGridImageBase64")
    generation_time_ms: Optional[int] = Field(None, alias="generationTimeMs")
    request_id: Optional[str] = Field(None, alias="requestId")
    generation_index: Optional[int] = Field(None, alias="generationIndex")
    seed: Optional[int] = Field(None, description="Seed the grid was generated with")

    @field_validator("icons", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class GenerationComplete(WireModel):
    """Payload of the ``generation_complete`` push event."""
    request_id: Optional[str] = Field(None, alias="requestId")
    message: Optional[str] = None
    trial_mode: Optional[bool] = Field(None, alias="trialMode")

    @property
    def is_trial(self) -> bool:
        if self.trial_mode is not None:
            return self.trial_mode
        return bool(self.message and "trial" in self.message.lower())


class GenerationErrorEvent(WireModel):
    """Payload of the ``generation_error`` push event."""
    message: Optional[str] = None


class ExportRequest(WireModel):
    """Body of ``POST /export``."""
    request_id: str = Field(..., alias="requestId")
    service_name: str = Field(..., alias="serviceName")
    generation_index: int = Field(..., alias="generationIndex", ge=1)
    remove_background: bool = Field(False, alias="removeBackground")


class MoreIconsRequest(WireModel):
    """Body of ``POST /generate-more``."""
    original_request_id: str = Field(..., alias="originalRequestId")
    service_name: str = Field(..., alias="serviceName")
    original_image_base64: str = Field(..., alias="originalImageBase64")
    general_description: Optional[str] = Field(None, alias="generalDescription")
    icon_descriptions: List[str] = Field(default_factory=list, alias="iconDescriptions")
    icon_count: int = Field(9, alias="iconCount")
    seed: Optional[int] = None


class MoreIconsResponse(WireModel):
    """Response of ``POST /generate-more``."""
    status: Literal["success", "error"]
    message: Optional[str] = None
    new_icons: List[IconPayload] = Field(default_factory=list, alias="newIcons")
    generation_time_ms: Optional[int] = Field(None, alias="generationTimeMs")

    @field_validator("new_icons", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class StatusResponse(WireModel):
    """Response of ``GET /status/{requestId}``."""
    status: str
    message: Optional[str] = None


class UnsubscribeResponse(WireModel):
    """Response of ``GET /api/user/unsubscribe``."""
    success: bool
    message: Optional[str] = None


class FeedbackRequest(WireModel):
    """Body of ``POST /api/feedback``."""
    feedback: str = Field(..., min_length=1)


StreamEvent = Union[ServiceUpdate, GenerationComplete, GenerationErrorEvent]

_EVENT_MODELS = {
    SERVICE_UPDATE: ServiceUpdate,
    GENERATION_COMPLETE: GenerationComplete,
    GENERATION_ERROR: GenerationErrorEvent,
}


def is_known_event(name: str) -> bool:
    return name in _EVENT_MODELS


def decode_event(name: str, data: str) -> StreamEvent:
    """
    Parse the JSON body of a named push event.

    Args:
        name: SSE event name
        data: Raw ``data`` field

    Returns:
        The typed payload

    Raises:
        StreamParseError: If the name is unknown or the body does not parse
    """
    model = _EVENT_MODELS.get(name)
    if model is None:
        raise StreamParseError(name, "unknown event type")

    try:
        payload = json.loads(data) if data.strip() else {}
    except json.JSONDecodeError as exc:
        raise StreamParseError(name, f"invalid JSON ({exc.msg})") from exc

    if not isinstance(payload, dict):
        raise StreamParseError(name, "payload is not a JSON object")

    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise StreamParseError(name, str(exc.errors()[0]["msg"])) from exc
