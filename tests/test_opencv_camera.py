import threading
from pathlib import Path
from unittest.mock import MagicMock, patch
from urllib.parse import urlparse

import cv2
import numpy as np
import pytest

from peer_camera.domain.camera import AspectRatio, CameraLens, DeviceCapabilities, RawFrame
from peer_camera.domain.exceptions import CaptureDeviceError
from peer_camera.infrastructure.hardware.opencv_camera import MAX_ZOOM, OpenCVCaptureDevice, crop

from tests.fakes import eventually


def fake_capture(frame: np.ndarray, opened: bool = True) -> MagicMock:
    cv_camera = MagicMock()
    cv_camera.isOpened.return_value = opened
    cv_camera.read.return_value = (True, frame)
    cv_camera.get.return_value = 0.0
    return cv_camera


@pytest.mark.parametrize("ratio, zoom, shape", [
    (AspectRatio.RATIO_4_3, 1.0, (480, 640)),
    (AspectRatio.RATIO_16_9, 1.0, (360, 640)),
    (AspectRatio.RATIO_1_1, 1.0, (480, 480)),
    (AspectRatio.RATIO_4_3, 2.0, (240, 320)),
    (AspectRatio.RATIO_4_3, 0.5, (480, 640)),
])
def test_crop(ratio, zoom, shape):
    image = np.zeros((480, 640, 3), dtype=np.uint8)
    assert crop(image, zoom, ratio).shape[:2] == shape


def test_crop_is_centered():
    image = np.zeros((100, 100), dtype=np.uint8)
    image[50, 50] = 255
    cropped = crop(image, 4.0, AspectRatio.RATIO_1_1)
    assert cropped.shape == (25, 25)
    assert cropped.max() == 255


@pytest.mark.asyncio
async def test_open_reports_capabilities_and_streams_frames(tmp_path):
    frame = np.zeros((480, 640, 3), dtype=np.uint8)
    ready = []
    frames = []
    got_frame = threading.Event()

    def on_frame(raw: RawFrame):
        frames.append(raw)
        got_frame.set()

    device = OpenCVCaptureDevice(photo_dir=tmp_path, frame_interval_ms=10)
    with patch("cv2.VideoCapture", return_value=fake_capture(frame)) as video_capture:
        await device.open(CameraLens.BACK, AspectRatio.RATIO_16_9, ready.append, on_frame)
        await eventually(got_frame.is_set)
        await device.close()

    video_capture.assert_called_once_with(0)
    assert ready == [DeviceCapabilities(min_zoom_ratio=1.0, max_zoom_ratio=MAX_ZOOM, zoom_ratio=1.0,
                                        min_exposure_compensation=-4, max_exposure_compensation=4,
                                        exposure_compensation=0)]
    assert (frames[0].height, frames[0].width) == (360, 640)


@pytest.mark.asyncio
async def test_open_failure_raises():
    device = OpenCVCaptureDevice()
    with patch("cv2.VideoCapture", return_value=fake_capture(None, opened=False)):
        with pytest.raises(CaptureDeviceError):
            await device.open(CameraLens.BACK, AspectRatio.RATIO_4_3, lambda caps: None, lambda f: None)


@pytest.mark.asyncio
async def test_switch_lens_reopens_front_index(tmp_path):
    frame = np.zeros((480, 640, 3), dtype=np.uint8)
    ready = []
    device = OpenCVCaptureDevice(camera_index=2, front_camera_index=5, photo_dir=tmp_path)
    with patch("cv2.VideoCapture", return_value=fake_capture(frame)) as video_capture:
        await device.open(CameraLens.BACK, AspectRatio.RATIO_4_3, ready.append, lambda f: None)
        device.set_zoom(3.0)
        await device.switch_lens(CameraLens.FRONT)
        await device.close()

    assert [c.args[0] for c in video_capture.call_args_list] == [2, 5]
    assert len(ready) == 2
    assert ready[1].zoom_ratio == 1.0


@pytest.mark.asyncio
async def test_capture_photo_writes_jpeg(tmp_path):
    frame = np.full((480, 640, 3), 90, dtype=np.uint8)
    device = OpenCVCaptureDevice(photo_dir=tmp_path / "photos")
    with patch("cv2.VideoCapture", return_value=fake_capture(frame)):
        await device.open(CameraLens.BACK, AspectRatio.RATIO_1_1, lambda caps: None, lambda f: None)
        device.set_zoom(2.0)
        result = await device.capture_photo()
        await device.close()

    assert result.success
    path = Path(urlparse(result.uri).path)
    assert path.parent == (tmp_path / "photos").resolve()
    assert cv2.imread(str(path)).shape == (240, 240, 3)


@pytest.mark.asyncio
async def test_capture_before_open_fails():
    with pytest.raises(CaptureDeviceError):
        await OpenCVCaptureDevice().capture_photo()


def test_controls_are_clamped():
    device = OpenCVCaptureDevice()
    device.set_zoom(99.0)
    device.set_exposure_compensation(-99)
    assert device._zoom == MAX_ZOOM
    assert device._exposure == -4


@pytest.mark.asyncio
async def test_unwritable_photo_dir_raises_capture_error(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    frame = np.full((480, 640, 3), 90, dtype=np.uint8)
    device = OpenCVCaptureDevice(photo_dir=blocker / "photos")
    with patch("cv2.VideoCapture", return_value=fake_capture(frame)):
        await device.open(CameraLens.BACK, AspectRatio.RATIO_4_3, lambda caps: None, lambda f: None)
        with pytest.raises(CaptureDeviceError, match="Failed to save photo"):
            await device.capture_photo()
        await device.close()
