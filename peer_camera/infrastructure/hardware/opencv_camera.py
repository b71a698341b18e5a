"""
OpenCV capture device adapter.
"""

import asyncio
import threading
import time
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from peer_camera.common.clock import now_ms, to_formatted_string
from peer_camera.common.logger import setup_logger
from peer_camera.domain.camera import (
    AspectRatio,
    CameraLens,
    CaptureResult,
    DeviceCapabilities,
    FlashMode,
    PixelFormat,
    RawFrame,
)
from peer_camera.domain.exceptions import CaptureDeviceError
from peer_camera.domain.ports import CaptureDevicePort, FrameCallback, ReadyCallback

logger = setup_logger('OpenCVCamera')

MAX_ZOOM = 4.0
MIN_EXPOSURE = -4
MAX_EXPOSURE = 4


def crop(image: np.ndarray, zoom: float, aspect_ratio: AspectRatio) -> np.ndarray:
    """Center-crop to the aspect ratio, then to 1/zoom of each side."""
    height, width = image.shape[:2]
    ratio = aspect_ratio.value_ratio
    if width / height > ratio:
        width, height = int(round(height * ratio)), height
    else:
        width, height = width, int(round(width / ratio))

    zoom = max(1.0, zoom)
    width = max(1, int(width / zoom))
    height = max(1, int(height / zoom))

    top = (image.shape[0] - height) // 2
    left = (image.shape[1] - width) // 2
    return image[top:top + height, left:left + width]


class OpenCVCaptureDevice(CaptureDevicePort):
    """Webcam via cv2.VideoCapture.

    A reader thread keeps the latest frame and hands a cropped copy to
    ``on_frame`` every ``frame_interval_ms``. Zoom is digital; the back
    and front lenses are two device indices.
    """

    def __init__(self, camera_index: int = 0, front_camera_index: int = 1,
                 photo_dir: Path = Path("photos"), photo_quality: int = 95,
                 frame_interval_ms: int = 150):
        self.camera_index = camera_index
        self.front_camera_index = front_camera_index
        self.photo_dir = photo_dir
        self.photo_quality = photo_quality
        self.frame_interval_ms = frame_interval_ms

        self.cv_camera: Optional[cv2.VideoCapture] = None
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._latest: Optional[np.ndarray] = None

        self._lens = CameraLens.BACK
        self._aspect_ratio = AspectRatio.RATIO_4_3
        self._zoom = 1.0
        self._exposure = 0
        self._base_exposure = 0.0
        self._flash_mode = FlashMode.AUTO
        self._on_ready: Optional[ReadyCallback] = None
        self._on_frame: Optional[FrameCallback] = None

    def _device_index(self, lens: CameraLens) -> int:
        return self.front_camera_index if lens is CameraLens.FRONT else self.camera_index

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self, lens: CameraLens, aspect_ratio: AspectRatio,
                   on_ready: ReadyCallback, on_frame: FrameCallback) -> None:
        self._on_ready = on_ready
        self._on_frame = on_frame
        self._aspect_ratio = aspect_ratio
        await self._bind(lens)

    async def _bind(self, lens: CameraLens) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._release)

        index = self._device_index(lens)
        logger.info(f"Opening camera {index} ({lens.value} lens)...")
        cv_camera = await loop.run_in_executor(None, cv2.VideoCapture, index)
        if not cv_camera.isOpened():
            cv_camera.release()
            raise CaptureDeviceError(f"Failed to open camera {index}")

        ret, frame = await loop.run_in_executor(None, cv_camera.read)
        if not ret or frame is None:
            cv_camera.release()
            raise CaptureDeviceError(f"Camera {index} test capture failed")

        self._base_exposure = cv_camera.get(cv2.CAP_PROP_EXPOSURE)
        height, width = frame.shape[:2]
        logger.info(f"Camera {index} initialized: {width}x{height}")

        with self._lock:
            self.cv_camera = cv_camera
            self._latest = frame
        self._lens = lens
        self._zoom = 1.0
        self._exposure = 0

        self._stop.clear()
        self._thread = threading.Thread(target=self._read_loop, name=f"camera-{index}", daemon=True)
        self._thread.start()
        self._report_ready()

    async def close(self) -> None:
        await asyncio.get_running_loop().run_in_executor(None, self._release)

    def _release(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None
        with self._lock:
            if self.cv_camera is not None:
                self.cv_camera.release()
                self.cv_camera = None
                logger.info(f"Camera {self._device_index(self._lens)} released")
            self._latest = None

    def _report_ready(self) -> None:
        if self._on_ready is not None:
            self._on_ready(DeviceCapabilities(
                min_zoom_ratio=1.0,
                max_zoom_ratio=MAX_ZOOM,
                zoom_ratio=self._zoom,
                min_exposure_compensation=MIN_EXPOSURE,
                max_exposure_compensation=MAX_EXPOSURE,
                exposure_compensation=self._exposure,
            ))

    def _read_loop(self) -> None:
        interval = self.frame_interval_ms / 1000
        next_delivery = time.monotonic()
        while not self._stop.is_set():
            with self._lock:
                if self.cv_camera is None:
                    break
                ret, frame = self.cv_camera.read()
            if not ret or frame is None:
                logger.warning("Failed to read frame")
                self._stop.wait(interval)
                continue
            with self._lock:
                self._latest = frame

            now = time.monotonic()
            if now >= next_delivery and self._on_frame is not None:
                next_delivery = now + interval
                image = np.ascontiguousarray(crop(frame, self._zoom, self._aspect_ratio))
                self._on_frame(RawFrame(
                    pixels=image,
                    width=image.shape[1],
                    height=image.shape[0],
                    pixel_format=PixelFormat.BGR,
                    timestamp_ms=now_ms(),
                ))

    # ------------------------------------------------------------------
    # Controls
    # ------------------------------------------------------------------

    def set_zoom(self, ratio: float) -> None:
        self._zoom = min(MAX_ZOOM, max(1.0, ratio))

    def set_exposure_compensation(self, index: int) -> None:
        self._exposure = min(MAX_EXPOSURE, max(MIN_EXPOSURE, index))
        with self._lock:
            if self.cv_camera is not None:
                self.cv_camera.set(cv2.CAP_PROP_EXPOSURE, self._base_exposure + self._exposure)

    def set_flash_mode(self, mode: FlashMode) -> None:
        self._flash_mode = mode
        logger.debug(f"Flash mode {mode.value} recorded; webcams have no flash")

    async def set_aspect_ratio(self, ratio: AspectRatio) -> None:
        self._aspect_ratio = ratio
        self._report_ready()

    async def switch_lens(self, lens: CameraLens) -> None:
        await self._bind(lens)

    def focus_at(self, x: float, y: float) -> None:
        with self._lock:
            if self.cv_camera is not None:
                self.cv_camera.set(cv2.CAP_PROP_AUTOFOCUS, 1)
        logger.debug(f"Autofocus requested at ({x:.2f}, {y:.2f})")

    # ------------------------------------------------------------------
    # Stills
    # ------------------------------------------------------------------

    async def capture_photo(self) -> CaptureResult:
        with self._lock:
            frame = self._latest
        if frame is None:
            raise CaptureDeviceError("Camera not initialized")

        image = crop(frame, self._zoom, self._aspect_ratio)
        filepath = self.photo_dir / f"IMG_{to_formatted_string(now_ms())}.jpg"
        try:
            success = await asyncio.get_running_loop().run_in_executor(None, self._write, filepath, image)
        except (OSError, cv2.error) as e:
            raise CaptureDeviceError(f"Failed to save photo {filepath.name}: {e}") from e
        if not success:
            raise CaptureDeviceError(f"Failed to save photo: {filepath.name}")
        logger.info(f"Captured photo: {filepath.name}")
        return CaptureResult.ok(filepath.resolve().as_uri())

    def _write(self, filepath: Path, image: np.ndarray) -> bool:
        self.photo_dir.mkdir(parents=True, exist_ok=True)
        return bool(cv2.imwrite(str(filepath), image, [cv2.IMWRITE_JPEG_QUALITY, self.photo_quality]))
