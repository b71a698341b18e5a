from typing import Optional

import cv2
import numpy as np

from peer_camera.common.logger import setup_logger
from peer_camera.domain.camera import PixelFormat, RawFrame

logger = setup_logger("PreviewEncoder")

_TO_BGR = {
    PixelFormat.RGB: cv2.COLOR_RGB2BGR,
    PixelFormat.NV21: cv2.COLOR_YUV2BGR_NV21,
    PixelFormat.I420: cv2.COLOR_YUV2BGR_I420,
    PixelFormat.GRAY: cv2.COLOR_GRAY2BGR,
}

_ROTATIONS = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


def to_bgr(frame: RawFrame) -> np.ndarray:
    """Convert a sensor buffer to an interleaved BGR image."""
    if frame.pixel_format is PixelFormat.BGR:
        return frame.pixels
    if frame.pixel_format in (PixelFormat.NV21, PixelFormat.I420):
        planar = frame.pixels.reshape((frame.height * 3 // 2, frame.width))
        return cv2.cvtColor(planar, _TO_BGR[frame.pixel_format])
    return cv2.cvtColor(frame.pixels, _TO_BGR[frame.pixel_format])


def rotate(image: np.ndarray, degrees: int) -> np.ndarray:
    degrees %= 360
    if degrees == 0:
        return image
    if degrees not in _ROTATIONS:
        raise ValueError(f"unsupported rotation {degrees}")
    return cv2.rotate(image, _ROTATIONS[degrees])


def encode_jpeg(image: np.ndarray, quality: int) -> np.ndarray:
    ok, buf = cv2.imencode(".jpg", image, [cv2.IMWRITE_JPEG_QUALITY, quality])
    if not ok:
        raise ValueError("JPEG encoding failed")
    return buf


class PreviewEncoder:
    """Turns one raw frame into a small upright JPEG for the transport.

    Stages: convert to BGR, compress at ``intermediate_quality``, scale down
    by ``scale_factor``, rotate upright, re-compress at ``final_quality``.
    Returns ``None`` when any stage fails.
    """

    def __init__(self, scale_factor: int = 4, intermediate_quality: int = 50, final_quality: int = 60):
        if scale_factor < 1:
            raise ValueError("scale_factor must be >= 1")
        self.scale_factor = scale_factor
        self.intermediate_quality = intermediate_quality
        self.final_quality = final_quality

    def __call__(self, frame: RawFrame) -> Optional[bytes]:
        try:
            image = to_bgr(frame)
            buf = encode_jpeg(image, self.intermediate_quality)
            del image

            full = cv2.imdecode(buf, cv2.IMREAD_COLOR)
            del buf
            if full is None:
                raise ValueError("intermediate JPEG could not be decoded")

            height, width = full.shape[:2]
            size = (max(1, width // self.scale_factor), max(1, height // self.scale_factor))
            scaled = cv2.resize(full, size, interpolation=cv2.INTER_AREA)
            del full

            upright = rotate(scaled, frame.rotation_degrees)
            del scaled

            return encode_jpeg(upright, self.final_quality).tobytes()
        except (cv2.error, ValueError) as e:
            logger.warning(f"Failed to convert frame to JPEG: {e}")
            return None


def decode_preview(jpeg: bytes) -> Optional[np.ndarray]:
    """Consumer side: JPEG bytes to a BGR image, or ``None`` if unreadable."""
    if not jpeg:
        return None
    try:
        image = cv2.imdecode(np.frombuffer(jpeg, dtype=np.uint8), cv2.IMREAD_COLOR)
    except cv2.error as e:
        logger.warning(f"Failed to decode preview frame: {e}")
        return None
    return image
