from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class AspectRatio(str, Enum):
    RATIO_4_3 = "RATIO_4_3"
    RATIO_16_9 = "RATIO_16_9"
    RATIO_1_1 = "RATIO_1_1"

    @property
    def value_ratio(self) -> float:
        return _RATIOS[self]

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_RATIOS = {
    AspectRatio.RATIO_4_3: 4 / 3,
    AspectRatio.RATIO_16_9: 16 / 9,
    AspectRatio.RATIO_1_1: 1.0,
}
_DISPLAY_NAMES = {
    AspectRatio.RATIO_4_3: "4:3",
    AspectRatio.RATIO_16_9: "16:9",
    AspectRatio.RATIO_1_1: "1:1",
}


class FlashMode(str, Enum):
    AUTO = "AUTO"
    ON = "ON"
    OFF = "OFF"


class CameraLens(str, Enum):
    BACK = "BACK"
    FRONT = "FRONT"

    def flipped(self) -> CameraLens:
        return CameraLens.FRONT if self is CameraLens.BACK else CameraLens.BACK


class CameraState(BaseModel):
    """Camera parameters shared by both roles.

    The camera role owns the authoritative copy; the remote role keeps a
    cache that a StateSync overwrites wholesale.
    """
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
        allow_inf_nan=False,
    )

    zoom_ratio: float = 1.0
    min_zoom_ratio: float = 1.0
    max_zoom_ratio: float = 1.0
    exposure_compensation: int = 0
    min_exposure_compensation: int = 0
    max_exposure_compensation: int = 0
    aspect_ratio: AspectRatio = AspectRatio.RATIO_4_3
    flash_mode: FlashMode = FlashMode.AUTO
    lens: CameraLens = CameraLens.BACK
    is_camera_ready: bool = False

    @property
    def zoom_progress(self) -> float:
        if self.max_zoom_ratio > self.min_zoom_ratio:
            return (self.zoom_ratio - self.min_zoom_ratio) / (self.max_zoom_ratio - self.min_zoom_ratio)
        return 0.0

    @property
    def exposure_progress(self) -> float:
        if self.max_exposure_compensation > self.min_exposure_compensation:
            span = self.max_exposure_compensation - self.min_exposure_compensation
            return (self.exposure_compensation - self.min_exposure_compensation) / span
        return 0.5

    def zoom_for_progress(self, progress: float) -> float:
        return self.min_zoom_ratio + (self.max_zoom_ratio - self.min_zoom_ratio) * progress

    def exposure_for_progress(self, progress: float) -> int:
        span = self.max_exposure_compensation - self.min_exposure_compensation
        return int(self.min_exposure_compensation + span * progress)

    def with_capabilities(self, caps: DeviceCapabilities) -> CameraState:
        return self.model_copy(update={
            "zoom_ratio": caps.zoom_ratio,
            "min_zoom_ratio": caps.min_zoom_ratio,
            "max_zoom_ratio": caps.max_zoom_ratio,
            "exposure_compensation": caps.exposure_compensation,
            "min_exposure_compensation": caps.min_exposure_compensation,
            "max_exposure_compensation": caps.max_exposure_compensation,
            "is_camera_ready": True,
        })


@dataclass(frozen=True)
class DeviceCapabilities:
    """What the capture device reports once it is ready."""
    min_zoom_ratio: float = 1.0
    max_zoom_ratio: float = 1.0
    zoom_ratio: float = 1.0
    min_exposure_compensation: int = 0
    max_exposure_compensation: int = 0
    exposure_compensation: int = 0


@dataclass(frozen=True)
class CaptureResult:
    success: bool
    uri: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def ok(cls, uri: str) -> CaptureResult:
        return cls(success=True, uri=uri)

    @classmethod
    def failed(cls, message: str) -> CaptureResult:
        return cls(success=False, error_message=message)


class PixelFormat(str, Enum):
    BGR = "bgr"
    RGB = "rgb"
    NV21 = "nv21"
    I420 = "i420"
    GRAY = "gray"


@dataclass(frozen=True, eq=False)
class RawFrame:
    """One frame as delivered by the capture device.

    Planar YUV formats carry a single-channel buffer of ``height * 3 // 2``
    rows; interleaved formats carry ``(height, width[, channels])``.
    """
    pixels: np.ndarray
    width: int
    height: int
    pixel_format: PixelFormat = PixelFormat.BGR
    rotation_degrees: int = 0
    timestamp_ms: int = 0
