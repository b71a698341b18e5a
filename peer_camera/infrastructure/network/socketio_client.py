import asyncio
from typing import Dict, List, Optional, Set

import aiohttp
import socketio
from socketio.exceptions import ConnectionError as SocketConnectError, SocketIOError

from peer_camera.common.logger import setup_logger
from peer_camera.domain.connection import ConnectedPeer, DiscoveredDevice
from peer_camera.domain.events import (
    Connected,
    DeviceFound,
    DeviceLost,
    Disconnected,
    DiscoveryStarted,
    PairingError,
)
from peer_camera.domain.exceptions import TransportError
from peer_camera.domain.ports import TransportPort
from peer_camera.infrastructure.network.socketio_host import ACCEPTED_EVENT, PAYLOAD_EVENT

logger = setup_logger("SocketIOClient")


class SocketIOClientTransport(TransportPort):
    """Remote-side transport: probes camera URLs and connects over Socket.IO.

    The camera's base URL is its endpoint id. A connection counts as
    established only once the camera sends ``peer.accepted``.
    """

    def __init__(self, name: str, service_id: str, camera_urls: List[str],
                 discovery_interval_s: float = 2.0, connect_timeout_s: float = 5.0):
        super().__init__()
        self.name = name
        self.service_id = service_id
        self.camera_urls = [url.rstrip("/") for url in camera_urls]
        self.discovery_interval_s = discovery_interval_s
        self.connect_timeout_s = connect_timeout_s

        self._session: Optional[aiohttp.ClientSession] = None
        self._discovery_task: Optional[asyncio.Task] = None
        self._found: Dict[str, DiscoveredDevice] = {}
        self._clients: Dict[str, socketio.AsyncClient] = {}
        self._accepted: Set[str] = set()

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def start_discovery(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.connect_timeout_s)
            )
        if self._discovery_task is None or self._discovery_task.done():
            self._discovery_task = asyncio.create_task(self._discover(), name="socketio-discovery")
        logger.info(f"Discovering cameras at {', '.join(self.camera_urls)}")
        await self.events.put(DiscoveryStarted())

    async def _discover(self) -> None:
        while True:
            for url in self.camera_urls:
                device = await self._probe(url)
                if device is not None and url not in self._found:
                    self._found[url] = device
                    await self.events.put(DeviceFound(device))
                elif device is None and url in self._found and url not in self._clients:
                    del self._found[url]
                    await self.events.put(DeviceLost(url))
            await asyncio.sleep(self.discovery_interval_s)

    async def _probe(self, url: str) -> Optional[DiscoveredDevice]:
        try:
            async with self._session.get(f"{url}/info") as response:
                if response.status != 200:
                    return None
                info = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.debug(f"Probe of {url} failed: {e}")
            return None
        if info.get("service") != self.service_id:
            return None
        return DiscoveredDevice(endpoint_id=url, name=str(info.get("name") or url), service_id=self.service_id)

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    async def request_connection(self, device: DiscoveredDevice) -> None:
        url = device.endpoint_id
        if url in self._clients:
            logger.debug(f"Already connected or connecting to {url}")
            return

        client = socketio.AsyncClient(reconnection=False)
        self._install_handlers(client, device)
        self._clients[url] = client
        try:
            await client.connect(
                url,
                auth={"name": self.name, "service": self.service_id},
                transports=["websocket"],
                wait_timeout=self.connect_timeout_s,
            )
        except (SocketConnectError, asyncio.TimeoutError) as e:
            self._clients.pop(url, None)
            logger.error(f"Failed to connect to {device.name} at {url}: {e}")
            await self.events.put(PairingError(f"Connection to {device.name} failed: {e}"))

    def _install_handlers(self, client: socketio.AsyncClient, device: DiscoveredDevice) -> None:
        url = device.endpoint_id

        async def on_accepted(data=None) -> None:
            name = (data or {}).get("name") or device.name
            self._accepted.add(url)
            logger.info(f"Camera {name} accepted the connection")
            await self.events.put(Connected(ConnectedPeer(endpoint_id=url, display_name=name)))

        async def on_payload(data) -> None:
            if isinstance(data, str):
                data = data.encode("utf-8")
            await self.inbound.put((url, bytes(data)))

        async def on_disconnect(*args) -> None:
            if self._clients.get(url) is not client:
                return
            del self._clients[url]
            if url in self._accepted:
                self._accepted.discard(url)
                await self.events.put(Disconnected(url))
            else:
                logger.warning(f"{device.name} closed the connection before accepting it")
                await self.events.put(PairingError(f"Connection to {device.name} was refused"))

        client.on(ACCEPTED_EVENT, on_accepted)
        client.on(PAYLOAD_EVENT, on_payload)
        client.on("disconnect", on_disconnect)

    async def start_advertising(self, name: str) -> None:
        await self.events.put(PairingError("Advertising is not supported by the remote transport"))

    async def accept_connection(self, endpoint_id: str) -> None:
        logger.debug(f"Nothing to accept for {endpoint_id}; cameras accept remotes")

    async def reject_connection(self, endpoint_id: str) -> None:
        await self.disconnect(endpoint_id)

    async def send_payload(self, endpoint_id: str, data: bytes) -> None:
        client = self._clients.get(endpoint_id)
        if client is None or endpoint_id not in self._accepted:
            raise TransportError(f"{endpoint_id} is not connected")
        try:
            await client.emit(PAYLOAD_EVENT, data)
        except SocketIOError as e:
            raise TransportError(str(e)) from e

    async def disconnect(self, endpoint_id: str) -> None:
        client = self._clients.pop(endpoint_id, None)
        self._accepted.discard(endpoint_id)
        if client is not None:
            await client.disconnect()

    async def stop_all(self) -> None:
        if self._discovery_task is not None:
            self._discovery_task.cancel()
            try:
                await self._discovery_task
            except asyncio.CancelledError:
                pass
            self._discovery_task = None
        for url in list(self._clients):
            await self.disconnect(url)
        if self._session is not None:
            await self._session.close()
            self._session = None
        self._found.clear()
        logger.info("Stopped discovery")
