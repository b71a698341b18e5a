import asyncio
import threading

import cv2
import numpy as np
import pytest

from peer_camera.application.frame_pipeline import FramePipeline
from peer_camera.domain.camera import PixelFormat, RawFrame
from peer_camera.infrastructure.imaging.preview import PreviewEncoder, decode_preview

from tests.fakes import eventually


def make_frame(tag: int, width: int = 64, height: int = 48, **kwargs) -> RawFrame:
    pixels = np.full((height, width, 3), tag, dtype=np.uint8)
    return RawFrame(pixels=pixels, width=width, height=height, timestamp_ms=tag, **kwargs)


class GatedTransform:
    """Blocks on the worker thread until released, recording what it saw."""

    def __init__(self):
        self.release = threading.Event()
        self.started = threading.Event()
        self.seen = []

    def __call__(self, frame: RawFrame) -> bytes:
        self.seen.append(frame.timestamp_ms)
        self.started.set()
        self.release.wait(timeout=2.0)
        return f"jpeg-{frame.timestamp_ms}".encode()


@pytest.mark.asyncio
async def test_newest_pending_frame_replaces_older_one():
    transform = GatedTransform()
    pipeline = FramePipeline(transform)
    pipeline.start()
    try:
        pipeline.offer(make_frame(1))
        await asyncio.get_running_loop().run_in_executor(None, transform.started.wait, 2.0)

        pipeline.offer(make_frame(2))
        pipeline.offer(make_frame(3))
        transform.release.set()

        await eventually(lambda: pipeline.latest_frame.value == b"jpeg-3")
        assert transform.seen == [1, 3]
        assert pipeline.frames_dropped == 1
        assert pipeline.frames_produced == 2
    finally:
        await pipeline.stop()
        pipeline.close()


@pytest.mark.asyncio
async def test_failed_transform_skips_the_cycle():
    calls = []

    def flaky(frame: RawFrame):
        calls.append(frame.timestamp_ms)
        if frame.timestamp_ms == 1:
            raise RuntimeError("encoder exploded")
        return b"ok"

    pipeline = FramePipeline(flaky)
    pipeline.start()
    try:
        pipeline.offer(make_frame(1))
        await eventually(lambda: calls == [1])
        assert pipeline.latest_frame.value is None

        pipeline.offer(make_frame(2))
        await eventually(lambda: pipeline.latest_frame.value == b"ok")
    finally:
        await pipeline.stop()
        pipeline.close()


@pytest.mark.asyncio
async def test_frames_before_start_are_ignored_and_stop_clears_slot():
    pipeline = FramePipeline(lambda frame: b"jpeg")
    pipeline.offer(make_frame(1))
    assert pipeline.frames_offered == 0

    pipeline.start()
    pipeline.offer(make_frame(2))
    await eventually(lambda: pipeline.latest_frame.value == b"jpeg")

    await pipeline.stop()
    pipeline.close()
    assert pipeline.latest_frame.value is None
    assert not pipeline.is_running


def test_encoder_downscales_by_four():
    jpeg = PreviewEncoder()(make_frame(128, width=640, height=480))
    image = decode_preview(jpeg)
    assert image.shape[:2] == (120, 160)


def test_encoder_applies_rotation():
    jpeg = PreviewEncoder()(make_frame(128, width=640, height=480, rotation_degrees=90))
    image = decode_preview(jpeg)
    assert image.shape[:2] == (160, 120)


def test_encoder_converts_nv21():
    width, height = 64, 48
    yuv = np.full((height * 3 // 2, width), 128, dtype=np.uint8)
    frame = RawFrame(pixels=yuv, width=width, height=height, pixel_format=PixelFormat.NV21)

    image = decode_preview(PreviewEncoder(scale_factor=2)(frame))

    assert image.shape == (24, 32, 3)


def test_encoder_returns_none_on_bad_input():
    frame = RawFrame(pixels=np.zeros((10,), dtype=np.uint8), width=64, height=48,
                     pixel_format=PixelFormat.I420)
    assert PreviewEncoder()(frame) is None

    assert PreviewEncoder()(make_frame(1, rotation_degrees=45)) is None


def test_decode_preview_rejects_garbage():
    assert decode_preview(b"") is None
    assert decode_preview(b"definitely not a jpeg") is None


def test_preview_is_smaller_than_full_quality_jpeg():
    rng = np.random.default_rng(0)
    pixels = rng.integers(0, 255, size=(480, 640, 3), dtype=np.uint8)
    frame = RawFrame(pixels=pixels, width=640, height=480)
    ok, full = cv2.imencode(".jpg", pixels, [cv2.IMWRITE_JPEG_QUALITY, 95])

    assert ok
    assert len(PreviewEncoder()(frame)) < len(full.tobytes())
