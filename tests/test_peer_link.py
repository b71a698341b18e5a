import asyncio
from unittest.mock import AsyncMock

import pytest

from peer_camera.application import serializer
from peer_camera.application.connection_registry import ConnectionRegistry
from peer_camera.application.liveness import LivenessLoop
from peer_camera.application.messagebus import MessageBus
from peer_camera.application.peer_link import PeerLink
from peer_camera.domain.camera import CameraState
from peer_camera.domain.connection import ConnectedPeer
from peer_camera.domain.messages import CaptureCommand, MessageKind, Ping, Pong, StateSync

from tests.fakes import FakeTransport, ManualClock, eventually


@pytest.fixture
def link_parts():
    clock = ManualClock()
    transport = FakeTransport()
    registry = ConnectionRegistry(clock=clock)
    bus = MessageBus()
    link = PeerLink(transport, registry, bus, clock=clock)
    return link, transport, registry, bus, clock


@pytest.mark.asyncio
async def test_ping_is_answered_with_echoed_timestamp(link_parts):
    link, transport, registry, bus, clock = link_parts
    registry.on_connected(ConnectedPeer("a", "A"))
    clock.advance(5)

    await link.receive("a", serializer.encode(Ping(timestamp=123)))

    (pong,) = transport.messages("a")
    assert isinstance(pong, Pong)
    assert pong.original_timestamp == 123
    assert pong.response_timestamp == clock()


@pytest.mark.asyncio
async def test_pong_updates_quality_and_reaches_bus(link_parts):
    link, transport, registry, bus, clock = link_parts
    handler = AsyncMock()
    bus.subscribe(MessageKind.PONG, handler)
    sent_at = clock()
    clock.advance(250)

    await link.receive("a", serializer.encode(Pong(original_timestamp=sent_at, response_timestamp=sent_at + 100)))

    assert registry.quality.value.latency_ms == 250
    handler.assert_awaited_once()


@pytest.mark.asyncio
async def test_undecodable_payload_is_dropped(link_parts):
    link, transport, registry, bus, clock = link_parts
    handler = AsyncMock()
    bus.subscribe(MessageKind.CAPTURE_COMMAND, handler)

    await link.receive("a", b"\x00\x01garbage")

    assert link.dropped_payloads == 1
    handler.assert_not_awaited()
    assert transport.sent == []


@pytest.mark.asyncio
async def test_send_failure_to_one_peer_does_not_block_others(link_parts):
    link, transport, registry, bus, clock = link_parts
    for endpoint in ("a", "b", "c"):
        registry.on_connected(ConnectedPeer(endpoint, endpoint.upper()))
    transport.failing.add("b")

    delivered = await link.send_to_all(StateSync(state=CameraState()))

    assert delivered == 2
    assert [eid for eid, _ in transport.sent] == ["a", "c"]
    assert registry.connected_count.value == 3


@pytest.mark.asyncio
async def test_send_to_all_without_peers_sends_nothing(link_parts):
    link, transport, registry, bus, clock = link_parts
    assert await link.send_to_all(Ping(timestamp=1)) == 0
    assert transport.sent == []


@pytest.mark.asyncio
async def test_handler_errors_do_not_stop_the_receive_loop(link_parts):
    link, transport, registry, bus, clock = link_parts
    seen = []

    async def broken(endpoint_id, message):
        raise RuntimeError("handler bug")

    async def recording(endpoint_id, message):
        seen.append(message.sender_id)

    bus.subscribe(MessageKind.CAPTURE_COMMAND, broken)
    bus.subscribe(MessageKind.CAPTURE_COMMAND, recording)
    link.start()
    try:
        await transport.deliver("a", CaptureCommand(sender_id="one", timestamp=1))
        await transport.inbound.put(("a", b"nope"))
        await transport.deliver("a", CaptureCommand(sender_id="two", timestamp=2))
        await eventually(lambda: seen == ["one", "two"])
    finally:
        await link.stop()


@pytest.mark.asyncio
async def test_liveness_pings_only_while_connected(link_parts):
    link, transport, registry, bus, clock = link_parts
    liveness = LivenessLoop(link, registry, interval_s=0.01)
    liveness.start()
    try:
        await eventually(lambda: liveness.is_running)
        await asyncio.sleep(0.05)
        assert transport.sent == []

        registry.on_connected(ConnectedPeer("a", "A"))
        await eventually(lambda: len(transport.messages_of("Ping", "a")) >= 2)
    finally:
        await liveness.stop()
    assert not liveness.is_running
