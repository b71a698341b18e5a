import asyncio
from typing import Optional

from peer_camera.application.frame_pipeline import FramePipeline
from peer_camera.common.logger import setup_logger
from peer_camera.common.observable import MutableObservable, Observable
from peer_camera.domain.camera import AspectRatio, CameraState, CaptureResult, DeviceCapabilities, FlashMode
from peer_camera.domain.exceptions import CaptureDeviceError
from peer_camera.domain.messages import ControlUpdate
from peer_camera.domain.ports import CaptureDevicePort

logger = setup_logger("CameraController")


class CameraController:
    """Owns the authoritative CameraState on the camera role.

    Every control goes to the device first and is then reflected in the
    published state. Device capability reports (after open, lens switch or
    aspect change) overwrite ranges and mark the camera ready.
    """

    def __init__(self, device: CaptureDevicePort, pipeline: FramePipeline):
        self._device = device
        self._pipeline = pipeline
        self._state: MutableObservable[CameraState] = MutableObservable(CameraState())
        self._capture_result: MutableObservable[Optional[CaptureResult]] = MutableObservable(None)
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def state(self) -> Observable[CameraState]:
        return self._state

    @property
    def capture_result(self) -> Observable[Optional[CaptureResult]]:
        return self._capture_result

    async def open(self) -> None:
        self._loop = asyncio.get_running_loop()
        state = self._state.value
        logger.info(f"Opening capture device (lens={state.lens.value}, aspect={state.aspect_ratio.display_name})")
        await self._device.open(state.lens, state.aspect_ratio,
                                on_ready=self._on_ready, on_frame=self._pipeline.offer)

    async def close(self) -> None:
        await self._device.close()
        self._update(is_camera_ready=False)

    def _on_ready(self, caps: DeviceCapabilities) -> None:
        if self._loop is None:
            self._apply_capabilities(caps)
            return
        self._loop.call_soon_threadsafe(self._apply_capabilities, caps)

    def _apply_capabilities(self, caps: DeviceCapabilities) -> None:
        self._state.set(self._state.value.with_capabilities(caps))
        logger.info(
            f"Camera ready. Zoom: {caps.min_zoom_ratio}-{caps.max_zoom_ratio}x, "
            f"exposure: {caps.min_exposure_compensation}..{caps.max_exposure_compensation}"
        )

    # ------------------------------------------------------------------
    # Controls
    # ------------------------------------------------------------------

    def set_zoom(self, ratio: float) -> None:
        self._device.set_zoom(ratio)
        self._update(zoom_ratio=ratio)

    def set_zoom_progress(self, progress: float) -> None:
        self.set_zoom(self._state.value.zoom_for_progress(progress))

    def set_exposure_compensation(self, index: int) -> None:
        self._device.set_exposure_compensation(index)
        self._update(exposure_compensation=index)

    def set_exposure_progress(self, progress: float) -> None:
        self.set_exposure_compensation(self._state.value.exposure_for_progress(progress))

    def set_flash_mode(self, mode: FlashMode) -> None:
        self._device.set_flash_mode(mode)
        self._update(flash_mode=mode)

    async def set_aspect_ratio(self, ratio: AspectRatio) -> None:
        self._update(aspect_ratio=ratio)
        await self._device.set_aspect_ratio(ratio)

    async def switch_lens(self) -> None:
        lens = self._state.value.lens.flipped()
        logger.info(f"Switching to {lens.value} lens")
        self._update(lens=lens)
        try:
            await self._device.switch_lens(lens)
        except CaptureDeviceError as e:
            logger.error(f"Failed to switch to {lens.value} lens: {e}")
            self._update(is_camera_ready=False)

    def focus_at(self, x: float, y: float) -> None:
        self._device.focus_at(x, y)

    async def apply_control(self, update: ControlUpdate) -> None:
        """Apply only the fields present in ``update``."""
        if update.zoom_ratio is not None:
            self.set_zoom(update.zoom_ratio)
        if update.exposure_compensation is not None:
            self.set_exposure_compensation(update.exposure_compensation)
        if update.aspect_ratio is not None:
            await self.set_aspect_ratio(update.aspect_ratio)
        if update.flash_mode is not None:
            self.set_flash_mode(update.flash_mode)

    async def capture_photo(self) -> CaptureResult:
        logger.debug("Taking photo...")
        try:
            result = await self._device.capture_photo()
        except CaptureDeviceError as e:
            logger.error(f"Photo capture failed: {e}")
            result = CaptureResult.failed(str(e) or "Capture failed")
        self._capture_result.set(result)
        return result

    def clear_capture_result(self) -> None:
        self._capture_result.set(None)

    def _update(self, **changes) -> None:
        self._state.set(self._state.value.model_copy(update=changes))
