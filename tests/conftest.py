"""Shared fixtures: fully wired sessions over in-memory fakes."""
from dataclasses import dataclass

import pytest
import pytest_asyncio

from peer_camera.application.camera_controller import CameraController
from peer_camera.application.connection_registry import ConnectionRegistry
from peer_camera.application.frame_pipeline import FramePipeline
from peer_camera.application.liveness import LivenessLoop
from peer_camera.application.messagebus import MessageBus
from peer_camera.application.pairing import PairingStateMachine
from peer_camera.application.peer_link import PeerLink
from peer_camera.application.services.camera_session import CameraSession
from peer_camera.application.services.remote_session import RemoteSession
from peer_camera.domain.connection import Role

from tests.fakes import FakeCaptureDevice, FakeTransport, ManualClock


@dataclass
class Stack:
    transport: FakeTransport
    registry: ConnectionRegistry
    pairing: PairingStateMachine
    link: PeerLink
    liveness: LivenessLoop
    clock: ManualClock


def build_stack(role: Role, ping_interval_s: float = 60.0) -> Stack:
    clock = ManualClock()
    transport = FakeTransport()
    registry = ConnectionRegistry(clock=clock)
    pairing = PairingStateMachine(transport, registry, role)
    link = PeerLink(transport, registry, MessageBus(), clock=clock)
    liveness = LivenessLoop(link, registry, interval_s=ping_interval_s)
    return Stack(transport, registry, pairing, link, liveness, clock)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def device() -> FakeCaptureDevice:
    return FakeCaptureDevice()


@pytest.fixture
def camera_stack() -> Stack:
    return build_stack(Role.CAMERA)


@pytest.fixture
def remote_stack() -> Stack:
    return build_stack(Role.REMOTE)


@pytest_asyncio.fixture
async def camera_session(camera_stack, device):
    pipeline = FramePipeline(lambda frame: b"\xff\xd8jpeg\xff\xd9")
    controller = CameraController(device, pipeline)
    session = CameraSession(
        pairing=camera_stack.pairing,
        registry=camera_stack.registry,
        link=camera_stack.link,
        liveness=camera_stack.liveness,
        controller=controller,
        pipeline=pipeline,
        device_name="Test Camera",
        clock=camera_stack.clock,
    )
    yield session
    await session.stop()
    pipeline.close()


@pytest_asyncio.fixture
async def remote_session(remote_stack):
    session = RemoteSession(
        pairing=remote_stack.pairing,
        registry=remote_stack.registry,
        link=remote_stack.link,
        liveness=remote_stack.liveness,
        capture_timeout_s=0.2,
        clock=remote_stack.clock,
    )
    yield session
    await session.stop()
