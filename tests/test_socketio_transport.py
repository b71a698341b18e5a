import asyncio
import socket
from unittest.mock import AsyncMock

import pytest

from peer_camera.application.connection_registry import ConnectionRegistry
from peer_camera.application.pairing import PairingStateMachine
from peer_camera.domain.connection import ConnectionState, DiscoveredDevice, Role
from peer_camera.domain.events import (
    AdvertisingStarted,
    Connected,
    ConnectionRequested,
    DeviceFound,
    Disconnected,
    DiscoveryStarted,
    PairingError,
)
from peer_camera.domain.exceptions import TransportError
from peer_camera.infrastructure.network.socketio_client import SocketIOClientTransport
from peer_camera.infrastructure.network.socketio_host import ACCEPTED_EVENT, SocketIOHostTransport

SERVICE = "peer-camera-test"


def free_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


async def next_event(queue, timeout: float = 5.0):
    return await asyncio.wait_for(queue.get(), timeout)


@pytest.mark.asyncio
async def test_host_refuses_wrong_service():
    host = SocketIOHostTransport("127.0.0.1", 0, SERVICE)

    assert await host._on_connect("sid-1", {}, {"name": "Phone", "service": "other"}) is False
    assert await host._on_connect("sid-2", {}, None) is False
    assert host.events.empty()


@pytest.mark.asyncio
async def test_host_accept_flow_and_payload_gate():
    host = SocketIOHostTransport("127.0.0.1", 0, SERVICE)
    host.sio.emit = AsyncMock()
    host.sio.disconnect = AsyncMock()
    host.name = "Cam"

    assert await host._on_connect("sid-1", {}, {"name": "Phone", "service": SERVICE}) is True
    requested = host.events.get_nowait()
    assert isinstance(requested, ConnectionRequested)
    assert requested.device == DiscoveredDevice("sid-1", "Phone", SERVICE)

    await host._on_payload("sid-1", b"early")
    assert host.inbound.empty()
    with pytest.raises(TransportError):
        await host.send_payload("sid-1", b"data")

    await host.accept_connection("sid-1")
    host.sio.emit.assert_awaited_once_with(ACCEPTED_EVENT, {"name": "Cam", "service": SERVICE}, to="sid-1")
    connected = host.events.get_nowait()
    assert isinstance(connected, Connected)
    assert connected.peer.display_name == "Phone"

    await host._on_payload("sid-1", b"hello")
    assert host.inbound.get_nowait() == ("sid-1", b"hello")

    await host._on_disconnect("sid-1", "client disconnect")
    assert host.events.get_nowait() == Disconnected("sid-1")


@pytest.mark.asyncio
async def test_host_send_failure_becomes_transport_error():
    host = SocketIOHostTransport("127.0.0.1", 0, SERVICE)
    host.sio.emit = AsyncMock()
    await host._on_connect("sid-1", {}, {"name": "Phone", "service": SERVICE})
    await host.accept_connection("sid-1")
    host.sio.emit = AsyncMock(side_effect=RuntimeError("socket gone"))

    with pytest.raises(TransportError):
        await host.send_payload("sid-1", b"data")


@pytest.mark.asyncio
async def test_host_cannot_discover():
    host = SocketIOHostTransport("127.0.0.1", 0, SERVICE)
    await host.start_discovery()
    assert isinstance(host.events.get_nowait(), PairingError)


@pytest.mark.asyncio
async def test_client_send_requires_connection():
    client = SocketIOClientTransport("Phone", SERVICE, ["http://127.0.0.1:1"])
    with pytest.raises(TransportError):
        await client.send_payload("http://127.0.0.1:1", b"data")


@pytest.mark.asyncio
async def test_client_reports_unreachable_camera_as_error():
    client = SocketIOClientTransport("Phone", SERVICE, [], connect_timeout_s=1.0)
    url = f"http://127.0.0.1:{free_port()}"

    await client.request_connection(DiscoveredDevice(url, "Ghost"))

    event = await next_event(client.events)
    assert isinstance(event, PairingError)
    await client.stop_all()


@pytest.mark.asyncio
async def test_host_and_client_pair_and_exchange_payloads():
    port = free_port()
    url = f"http://127.0.0.1:{port}"
    host = SocketIOHostTransport("127.0.0.1", port, SERVICE)
    client = SocketIOClientTransport("Phone", SERVICE, [url], discovery_interval_s=0.1, connect_timeout_s=5.0)
    try:
        await host.start_advertising("Cam")
        assert isinstance(await next_event(host.events), AdvertisingStarted)

        await client.start_discovery()
        assert isinstance(await next_event(client.events), DiscoveryStarted)
        found = await next_event(client.events)
        assert isinstance(found, DeviceFound)
        assert found.device.name == "Cam"

        await client.request_connection(found.device)
        requested = await next_event(host.events)
        assert isinstance(requested, ConnectionRequested)
        assert requested.device.name == "Phone"

        await host.accept_connection(requested.device.endpoint_id)
        assert isinstance(await next_event(host.events), Connected)
        connected = await next_event(client.events)
        assert isinstance(connected, Connected)
        assert connected.peer.endpoint_id == url

        await host.send_payload(requested.device.endpoint_id, b"\x00frame\xff")
        assert await next_event(client.inbound) == (url, b"\x00frame\xff")

        await client.send_payload(url, b"command")
        assert await next_event(host.inbound) == (requested.device.endpoint_id, b"command")

        await client.disconnect(url)
        assert await next_event(host.events) == Disconnected(requested.device.endpoint_id)
    finally:
        await client.stop_all()
        await host.stop_all()


@pytest.mark.asyncio
async def test_camera_refusing_a_pending_connection_surfaces_as_pairing_error():
    port = free_port()
    url = f"http://127.0.0.1:{port}"
    host = SocketIOHostTransport("127.0.0.1", port, SERVICE)
    client = SocketIOClientTransport("Phone", SERVICE, [url], discovery_interval_s=0.1, connect_timeout_s=5.0)
    pairing = PairingStateMachine(client, ConnectionRegistry(), Role.REMOTE)
    try:
        await host.start_advertising("Cam")
        assert isinstance(await next_event(host.events), AdvertisingStarted)

        await pairing.start_as_remote()
        requested = await next_event(host.events)
        assert isinstance(requested, ConnectionRequested)

        await host.reject_connection(requested.device.endpoint_id)

        await asyncio.wait_for(pairing.state.wait_for(lambda s: s is ConnectionState.ERROR), 5.0)
        assert "refused" in pairing.last_error.value
        assert url not in client._clients
    finally:
        await pairing.stop()
        await host.stop_all()
