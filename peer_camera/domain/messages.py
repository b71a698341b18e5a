"""Wire messages exchanged between the camera and remote roles.

Every message is a frozen pydantic model carrying a ``type`` tag. Field
names travel in camelCase; unknown keys are ignored on the way in.
"""
from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from peer_camera.common.clock import now_ms
from peer_camera.domain.camera import AspectRatio, CameraState, FlashMode


class MessageKind(str, Enum):
    PREVIEW_FRAME = "PreviewFrame"
    CAPTURE_CONFIRMATION = "CaptureConfirmation"
    STATE_SYNC = "StateSync"
    QUALITY_UPDATE = "QualityUpdate"
    CAPTURE_COMMAND = "CaptureCommand"
    CONTROL_UPDATE = "ControlUpdate"
    FOCUS_POINT = "FocusPoint"
    PING = "Ping"
    PONG = "Pong"


class _Message(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
        allow_inf_nan=False,
    )


# Camera -> remote(s)

class PreviewFrame(_Message):
    kind: Literal["PreviewFrame"] = Field(default="PreviewFrame", alias="type")
    jpeg_base64: str
    timestamp: int


class CaptureConfirmation(_Message):
    kind: Literal["CaptureConfirmation"] = Field(default="CaptureConfirmation", alias="type")
    success: bool
    photo_uri: Optional[str] = None
    error_message: Optional[str] = None


class StateSync(_Message):
    kind: Literal["StateSync"] = Field(default="StateSync", alias="type")
    state: CameraState


class QualityUpdate(_Message):
    kind: Literal["QualityUpdate"] = Field(default="QualityUpdate", alias="type")
    latency_ms: int
    timestamp: int = Field(default_factory=now_ms)


# Remote -> camera

class CaptureCommand(_Message):
    kind: Literal["CaptureCommand"] = Field(default="CaptureCommand", alias="type")
    sender_id: str
    timestamp: int = Field(default_factory=now_ms)


class ControlUpdate(_Message):
    """Partial update: ``None`` means leave the parameter alone."""
    kind: Literal["ControlUpdate"] = Field(default="ControlUpdate", alias="type")
    zoom_ratio: Optional[float] = None
    exposure_compensation: Optional[int] = None
    aspect_ratio: Optional[AspectRatio] = None
    flash_mode: Optional[FlashMode] = None

    def is_empty(self) -> bool:
        return (self.zoom_ratio is None and self.exposure_compensation is None
                and self.aspect_ratio is None and self.flash_mode is None)


class FocusPoint(_Message):
    kind: Literal["FocusPoint"] = Field(default="FocusPoint", alias="type")
    x: float = Field(ge=0.0, le=1.0)
    y: float = Field(ge=0.0, le=1.0)


# Either direction

class Ping(_Message):
    kind: Literal["Ping"] = Field(default="Ping", alias="type")
    timestamp: int = Field(default_factory=now_ms)


class Pong(_Message):
    kind: Literal["Pong"] = Field(default="Pong", alias="type")
    original_timestamp: int
    response_timestamp: int = Field(default_factory=now_ms)


Message = Annotated[
    Union[
        PreviewFrame,
        CaptureConfirmation,
        StateSync,
        QualityUpdate,
        CaptureCommand,
        ControlUpdate,
        FocusPoint,
        Ping,
        Pong,
    ],
    Field(discriminator="kind"),
]
