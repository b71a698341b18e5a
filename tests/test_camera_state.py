import pytest

from peer_camera.domain.camera import CameraLens, CameraState, DeviceCapabilities


def test_defaults():
    state = CameraState()
    assert state.zoom_ratio == 1.0
    assert state.min_zoom_ratio == state.max_zoom_ratio == 1.0
    assert state.exposure_compensation == 0
    assert state.is_camera_ready is False
    assert state.lens is CameraLens.BACK


def test_progress_with_empty_ranges():
    state = CameraState()
    assert state.zoom_progress == 0.0
    assert state.exposure_progress == 0.5


def test_progress_mapping():
    state = CameraState(zoom_ratio=3.0, min_zoom_ratio=1.0, max_zoom_ratio=5.0,
                        exposure_compensation=2, min_exposure_compensation=-4,
                        max_exposure_compensation=4)
    assert state.zoom_progress == pytest.approx(0.5)
    assert state.exposure_progress == pytest.approx(0.75)
    assert state.zoom_for_progress(0.25) == pytest.approx(2.0)
    assert state.exposure_for_progress(0.5) == 0
    assert state.exposure_for_progress(0.9) == 3


def test_capabilities_mark_camera_ready():
    caps = DeviceCapabilities(min_zoom_ratio=1.0, max_zoom_ratio=10.0, zoom_ratio=1.0,
                              min_exposure_compensation=-3, max_exposure_compensation=3)
    state = CameraState().with_capabilities(caps)
    assert state.is_camera_ready
    assert state.max_zoom_ratio == 10.0
    assert state.min_exposure_compensation == -3


def test_lens_flip():
    assert CameraLens.BACK.flipped() is CameraLens.FRONT
    assert CameraLens.FRONT.flipped() is CameraLens.BACK
