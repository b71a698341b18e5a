from typing import Optional, Tuple

from peer_camera.application import serializer
from peer_camera.application.camera_controller import CameraController
from peer_camera.application.connection_registry import ConnectionRegistry
from peer_camera.application.frame_pipeline import FramePipeline
from peer_camera.application.liveness import LivenessLoop
from peer_camera.application.pairing import PairingStateMachine
from peer_camera.application.peer_link import PeerLink
from peer_camera.application.services.base_session import PeerSession
from peer_camera.common.clock import Clock, now_ms
from peer_camera.common.logger import setup_logger
from peer_camera.common.observable import MutableObservable, Observable
from peer_camera.domain.camera import AspectRatio, CameraState, CaptureResult, FlashMode
from peer_camera.domain.connection import ConnectedPeer, Role
from peer_camera.domain.exceptions import CaptureDeviceError
from peer_camera.domain.messages import (
    CaptureCommand,
    CaptureConfirmation,
    ControlUpdate,
    FocusPoint,
    MessageKind,
    Pong,
    PreviewFrame,
    QualityUpdate,
    StateSync,
)

logger = setup_logger("CameraSession")

_LOG_EVERY = 30


class CameraSession(PeerSession):
    """Camera role: advertises, streams preview frames and executes commands."""

    role = Role.CAMERA

    def __init__(self, pairing: PairingStateMachine, registry: ConnectionRegistry,
                 link: PeerLink, liveness: LivenessLoop, controller: CameraController,
                 pipeline: FramePipeline, device_name: str, clock: Clock = now_ms):
        super().__init__(pairing, registry, link, liveness, clock)
        self._controller = controller
        self._pipeline = pipeline
        self._device_name = device_name
        self._is_capturing: MutableObservable[bool] = MutableObservable(False)
        self._peer_count = len(registry.snapshot())
        self._unsubscribe = None
        self.frames_sent = 0

        bus = link.bus
        bus.subscribe(MessageKind.CAPTURE_COMMAND, self._on_capture_command)
        bus.subscribe(MessageKind.CONTROL_UPDATE, self._on_control_update)
        bus.subscribe(MessageKind.FOCUS_POINT, self._on_focus_point)
        bus.subscribe(MessageKind.PONG, self._on_pong)

    # Published state

    @property
    def camera_state(self) -> Observable[CameraState]:
        return self._controller.state

    @property
    def is_capturing(self) -> Observable[bool]:
        return self._is_capturing

    @property
    def last_capture_result(self) -> Observable[Optional[CaptureResult]]:
        return self._controller.capture_result

    @property
    def latest_preview(self) -> Observable[Optional[bytes]]:
        return self._pipeline.latest_frame

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        logger.info(f"Starting camera session as '{self._device_name}'")

        self._peer_count = len(self._registry.snapshot())
        self._unsubscribe = self._registry.peers.subscribe(self._on_peers_changed)
        self._start_link()
        await self._pairing.start_as_camera(self._device_name)

        self._spawn(self._stream_when_ready(), "camera-ready")
        try:
            await self._controller.open()
        except CaptureDeviceError as e:
            logger.error(f"Capture device unavailable: {e}")

    async def stop(self) -> None:
        if not self._started:
            return
        logger.info("Stopping camera session")
        self._started = False
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        await self._cancel_tasks()
        await self._pipeline.stop()
        await self._stop_link()
        await self._controller.close()
        self._is_capturing.set(False)
        self.frames_sent = 0

    async def _stream_when_ready(self) -> None:
        await self._controller.state.wait_for(lambda s: s.is_camera_ready)
        logger.info("Camera is ready, starting preview streaming")
        self._pipeline.start()
        await self._send_frames()

    async def _send_frames(self) -> None:
        async for jpeg in self._pipeline.latest_frame.watch():
            if jpeg is None or self._registry.is_empty():
                continue
            message = PreviewFrame(jpeg_base64=serializer.encode_image(jpeg), timestamp=self._clock())
            await self._link.send_to_all(message)
            self.frames_sent += 1
            if self.frames_sent % _LOG_EVERY == 1:
                logger.debug(
                    f"Sent preview frame #{self.frames_sent} ({len(jpeg)} bytes) "
                    f"to {len(self._registry.snapshot())} peer(s)"
                )

    def _on_peers_changed(self, peers: Tuple[ConnectedPeer, ...]) -> None:
        joined = len(peers) > self._peer_count
        self._peer_count = len(peers)
        if joined:
            logger.info("Peer joined, syncing camera state")
            self._spawn(self.sync_state(), "state-sync")

    async def sync_state(self) -> None:
        await self._link.send_to_all(StateSync(state=self._controller.state.value))

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------

    async def _on_capture_command(self, endpoint_id: str, message: CaptureCommand) -> None:
        logger.info(f"Capture requested by {message.sender_id} via {endpoint_id}")
        await self.capture_photo()

    async def _on_control_update(self, endpoint_id: str, message: ControlUpdate) -> None:
        logger.debug(
            f"ControlUpdate: zoom={message.zoom_ratio}, exposure={message.exposure_compensation}, "
            f"aspect={message.aspect_ratio}, flash={message.flash_mode}"
        )
        await self._controller.apply_control(message)
        await self.sync_state()

    async def _on_focus_point(self, endpoint_id: str, message: FocusPoint) -> None:
        logger.debug(f"FocusPoint: ({message.x:.3f}, {message.y:.3f})")
        self._controller.focus_at(message.x, message.y)

    async def _on_pong(self, endpoint_id: str, message: Pong) -> None:
        latency = self._registry.quality.value.latency_ms
        await self._link.send_to_all(QualityUpdate(latency_ms=latency, timestamp=self._clock()))

    # ------------------------------------------------------------------
    # Local controls
    # ------------------------------------------------------------------

    async def set_zoom(self, ratio: float) -> None:
        self._controller.set_zoom(ratio)
        await self.sync_state()

    async def set_zoom_progress(self, progress: float) -> None:
        self._controller.set_zoom_progress(progress)
        await self.sync_state()

    async def set_exposure(self, index: int) -> None:
        self._controller.set_exposure_compensation(index)
        await self.sync_state()

    async def set_exposure_progress(self, progress: float) -> None:
        self._controller.set_exposure_progress(progress)
        await self.sync_state()

    async def set_aspect_ratio(self, ratio: AspectRatio) -> None:
        await self._controller.set_aspect_ratio(ratio)
        await self.sync_state()

    async def set_flash_mode(self, mode: FlashMode) -> None:
        self._controller.set_flash_mode(mode)
        await self.sync_state()

    async def switch_lens(self) -> None:
        await self._controller.switch_lens()
        await self.sync_state()

    def focus_at(self, x: float, y: float) -> None:
        self._controller.focus_at(x, y)

    async def capture_photo(self) -> Optional[CaptureResult]:
        """Take a photo and tell every peer how it went.

        Returns ``None`` when a capture is already in flight.
        """
        if self._is_capturing.value:
            logger.debug("Capture already in progress")
            return None
        self._is_capturing.set(True)
        try:
            result = await self._controller.capture_photo()
            logger.info(f"Photo captured: {'success' if result.success else 'failed'}")
            await self._link.send_to_all(CaptureConfirmation(
                success=result.success,
                photo_uri=result.uri,
                error_message=result.error_message,
            ))
            return result
        finally:
            self._is_capturing.set(False)

    def clear_capture_result(self) -> None:
        self._controller.clear_capture_result()
