import asyncio
from typing import Optional, Tuple

import numpy as np

from peer_camera.application import serializer
from peer_camera.application.connection_registry import ConnectionRegistry
from peer_camera.application.liveness import LivenessLoop
from peer_camera.application.pairing import PairingStateMachine
from peer_camera.application.peer_link import PeerLink
from peer_camera.application.services.base_session import PeerSession
from peer_camera.common.clock import Clock, now_ms
from peer_camera.common.logger import setup_logger
from peer_camera.common.observable import MutableObservable, Observable
from peer_camera.domain.camera import AspectRatio, CameraState, FlashMode
from peer_camera.domain.connection import DiscoveredDevice, Role
from peer_camera.domain.messages import (
    CaptureCommand,
    CaptureConfirmation,
    ControlUpdate,
    FocusPoint,
    MessageKind,
    PreviewFrame,
    QualityUpdate,
    StateSync,
)
from peer_camera.infrastructure.imaging.preview import decode_preview

logger = setup_logger("RemoteSession")

_LOG_EVERY = 30
NO_RESPONSE = "Capture failed: no response from camera"


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


class RemoteSession(PeerSession):
    """Remote role: discovers a camera, shows its preview and drives it.

    The local CameraState is a cache. Local controls update it right away
    and send only the changed field; the next StateSync from the camera
    replaces it wholesale.
    """

    role = Role.REMOTE

    def __init__(self, pairing: PairingStateMachine, registry: ConnectionRegistry,
                 link: PeerLink, liveness: LivenessLoop, capture_timeout_s: float = 10.0,
                 clock: Clock = now_ms):
        super().__init__(pairing, registry, link, liveness, clock)
        self._capture_timeout_s = capture_timeout_s

        self._camera_state: MutableObservable[CameraState] = MutableObservable(CameraState())
        self._preview: MutableObservable[Optional[np.ndarray]] = MutableObservable(None)
        self._confirmation: MutableObservable[Optional[CaptureConfirmation]] = MutableObservable(None)
        self._is_capturing: MutableObservable[bool] = MutableObservable(False)
        self._peer_quality: MutableObservable[Optional[QualityUpdate]] = MutableObservable(None)
        self._timeout_task: Optional[asyncio.Task] = None
        self.frames_received = 0

        bus = link.bus
        bus.subscribe(MessageKind.PREVIEW_FRAME, self._on_preview_frame)
        bus.subscribe(MessageKind.STATE_SYNC, self._on_state_sync)
        bus.subscribe(MessageKind.CAPTURE_CONFIRMATION, self._on_capture_confirmation)
        bus.subscribe(MessageKind.QUALITY_UPDATE, self._on_quality_update)

    # Published state

    @property
    def camera_state(self) -> Observable[CameraState]:
        return self._camera_state

    @property
    def preview_image(self) -> Observable[Optional[np.ndarray]]:
        return self._preview

    @property
    def capture_confirmation(self) -> Observable[Optional[CaptureConfirmation]]:
        return self._confirmation

    @property
    def is_capturing(self) -> Observable[bool]:
        return self._is_capturing

    @property
    def peer_quality(self) -> Observable[Optional[QualityUpdate]]:
        return self._peer_quality

    @property
    def discovered_devices(self) -> Observable[Tuple[DiscoveredDevice, ...]]:
        return self._pairing.discovered

    @property
    def capture_timeout_s(self) -> float:
        return self._capture_timeout_s

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        logger.info("Starting remote session")
        self._start_link()
        await self._pairing.start_as_remote()

    async def stop(self) -> None:
        if not self._started:
            return
        logger.info("Stopping remote session")
        self._started = False
        self._cancel_timeout()
        await self._cancel_tasks()
        await self._stop_link()
        self._preview.set(None)
        self._is_capturing.set(False)
        self._confirmation.set(None)
        self._peer_quality.set(None)
        self.frames_received = 0

    async def connect_to(self, device: DiscoveredDevice) -> None:
        await self._pairing.connect_to(device)

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------

    async def _on_preview_frame(self, endpoint_id: str, message: PreviewFrame) -> None:
        self.frames_received += 1
        jpeg = serializer.decode_image(message.jpeg_base64)
        if jpeg is None:
            logger.warning(f"Preview frame from {endpoint_id} is not valid base64")
            return
        image = await asyncio.get_running_loop().run_in_executor(None, decode_preview, jpeg)
        if image is None:
            logger.warning(f"Preview frame from {endpoint_id} is not a readable JPEG")
            return
        if self.frames_received % _LOG_EVERY == 1:
            logger.debug(f"Received preview frame #{self.frames_received} ({len(jpeg)} bytes, {image.shape[1]}x{image.shape[0]})")
        self._preview.set(image)

    async def _on_state_sync(self, endpoint_id: str, message: StateSync) -> None:
        logger.debug(f"StateSync: zoom={message.state.zoom_ratio}, ready={message.state.is_camera_ready}")
        self._camera_state.set(message.state)

    async def _on_capture_confirmation(self, endpoint_id: str, message: CaptureConfirmation) -> None:
        logger.info(f"Capture confirmation: success={message.success}, uri={message.photo_uri}")
        self._cancel_timeout()
        self._confirmation.set(message)
        self._is_capturing.set(False)

    async def _on_quality_update(self, endpoint_id: str, message: QualityUpdate) -> None:
        logger.debug(f"Camera reports latency {message.latency_ms}ms")
        self._peer_quality.set(message)

    # ------------------------------------------------------------------
    # Controls (optimistic)
    # ------------------------------------------------------------------

    async def set_zoom(self, ratio: float) -> None:
        update = ControlUpdate(zoom_ratio=ratio)
        self._update(zoom_ratio=ratio)
        await self._link.send_to_all(update)

    async def set_zoom_progress(self, progress: float) -> None:
        await self.set_zoom(self._camera_state.value.zoom_for_progress(progress))

    async def set_exposure(self, index: int) -> None:
        self._update(exposure_compensation=index)
        await self._link.send_to_all(ControlUpdate(exposure_compensation=index))

    async def set_exposure_progress(self, progress: float) -> None:
        await self.set_exposure(self._camera_state.value.exposure_for_progress(progress))

    async def set_aspect_ratio(self, ratio: AspectRatio) -> None:
        self._update(aspect_ratio=ratio)
        await self._link.send_to_all(ControlUpdate(aspect_ratio=ratio))

    async def set_flash_mode(self, mode: FlashMode) -> None:
        self._update(flash_mode=mode)
        await self._link.send_to_all(ControlUpdate(flash_mode=mode))

    async def focus_at(self, x: float, y: float, width: float, height: float) -> None:
        """Focus at a point given in preview pixels."""
        if width <= 0 or height <= 0:
            raise ValueError("preview size must be positive")
        point = FocusPoint(x=_clamp(x / width), y=_clamp(y / height))
        logger.debug(f"Sending FocusPoint ({point.x:.3f}, {point.y:.3f})")
        await self._link.send_to_all(point)

    async def capture_photo(self) -> bool:
        """Ask the camera to take a photo.

        Returns ``False`` if a capture is already pending. The pending state
        clears on the camera's confirmation or after the capture timeout.
        """
        if self._is_capturing.value:
            return False
        logger.info("Triggering remote capture")
        self._is_capturing.set(True)
        self._confirmation.set(None)
        self._timeout_task = self._spawn(self._expire_capture(), "capture-timeout")
        await self._link.send_to_all(CaptureCommand(sender_id=f"remote_{self._clock()}",
                                                    timestamp=self._clock()))
        return True

    async def _expire_capture(self) -> None:
        await asyncio.sleep(self._capture_timeout_s)
        if self._is_capturing.value:
            logger.warning("Capture confirmation timeout")
            self._confirmation.set(CaptureConfirmation(success=False, error_message=NO_RESPONSE))
            self._is_capturing.set(False)

    def clear_capture_confirmation(self) -> None:
        self._confirmation.set(None)

    async def refresh_preview(self) -> None:
        await self._link.send_ping()

    def _cancel_timeout(self) -> None:
        if self._timeout_task is not None:
            if self._timeout_task is not asyncio.current_task():
                self._timeout_task.cancel()
            self._timeout_task = None

    def _update(self, **changes) -> None:
        self._camera_state.set(self._camera_state.value.model_copy(update=changes))
