from dataclasses import dataclass, field
from typing import Optional, Union

from peer_camera.application.camera_controller import CameraController
from peer_camera.application.connection_registry import ConnectionRegistry
from peer_camera.application.frame_pipeline import FramePipeline
from peer_camera.application.liveness import LivenessLoop
from peer_camera.application.messagebus import MessageBus
from peer_camera.application.pairing import PairingStateMachine
from peer_camera.application.peer_link import PeerLink
from peer_camera.application.services.camera_session import CameraSession
from peer_camera.application.services.remote_session import RemoteSession
from peer_camera.common.logger import set_default_level
from peer_camera.domain.connection import Role
from peer_camera.domain.ports import TransportPort
from peer_camera.infrastructure.hardware.opencv_camera import OpenCVCaptureDevice
from peer_camera.infrastructure.imaging.preview import PreviewEncoder
from peer_camera.infrastructure.network.socketio_client import SocketIOClientTransport
from peer_camera.infrastructure.network.socketio_host import SocketIOHostTransport
from peer_camera.settings import Settings, get_settings


@dataclass
class App:
    role: Role
    session: Union[CameraSession, RemoteSession]
    transport: TransportPort
    pipeline: Optional[FramePipeline] = field(default=None)

    async def start(self):
        await self.session.start()

    async def stop(self):
        await self.session.stop()
        if self.pipeline is not None:
            self.pipeline.close()


def _create_core(transport: TransportPort, role: Role, settings: Settings):
    registry = ConnectionRegistry()
    bus = MessageBus()
    pairing = PairingStateMachine(transport, registry, role)
    link = PeerLink(transport, registry, bus)
    liveness = LivenessLoop(link, registry, interval_s=settings.ping_interval_s)
    return registry, pairing, link, liveness


def create_camera_app(settings: Settings) -> App:
    transport = SocketIOHostTransport(settings.host, settings.port, settings.service_id)
    registry, pairing, link, liveness = _create_core(transport, Role.CAMERA, settings)

    encoder = PreviewEncoder(
        scale_factor=settings.preview_scale_factor,
        intermediate_quality=settings.preview_intermediate_quality,
        final_quality=settings.preview_final_quality,
    )
    pipeline = FramePipeline(encoder)
    device = OpenCVCaptureDevice(
        camera_index=settings.camera_index,
        front_camera_index=settings.front_camera_index,
        photo_dir=settings.photo_dir,
        photo_quality=settings.photo_quality,
        frame_interval_ms=settings.preview_interval_ms,
    )
    controller = CameraController(device, pipeline)

    session = CameraSession(
        pairing=pairing,
        registry=registry,
        link=link,
        liveness=liveness,
        controller=controller,
        pipeline=pipeline,
        device_name=settings.device_name,
    )
    return App(role=Role.CAMERA, session=session, transport=transport, pipeline=pipeline)


def create_remote_app(settings: Settings) -> App:
    transport = SocketIOClientTransport(
        name=settings.device_name,
        service_id=settings.service_id,
        camera_urls=settings.camera_urls,
        discovery_interval_s=settings.discovery_interval_s,
        connect_timeout_s=settings.connect_timeout_s,
    )
    registry, pairing, link, liveness = _create_core(transport, Role.REMOTE, settings)
    session = RemoteSession(
        pairing=pairing,
        registry=registry,
        link=link,
        liveness=liveness,
        capture_timeout_s=settings.capture_timeout_s,
    )
    return App(role=Role.REMOTE, session=session, transport=transport)


def create_app(role: Role, settings: Optional[Settings] = None) -> App:
    settings = settings or get_settings()
    set_default_level(settings.log_level)
    if role is Role.CAMERA:
        return create_camera_app(settings)
    return create_remote_app(settings)
