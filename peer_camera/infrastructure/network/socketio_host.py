from typing import Dict, Optional, Set

import socketio
from aiohttp import web

from peer_camera.common.logger import setup_logger
from peer_camera.domain.connection import ConnectedPeer, DiscoveredDevice
from peer_camera.domain.events import (
    AdvertisingStarted,
    Connected,
    ConnectionRequested,
    Disconnected,
    PairingError,
)
from peer_camera.domain.exceptions import TransportError
from peer_camera.domain.ports import TransportPort

logger = setup_logger("SocketIOHost")

PAYLOAD_EVENT = "peer.payload"
ACCEPTED_EVENT = "peer.accepted"


class SocketIOHostTransport(TransportPort):
    """Camera-side transport: a Socket.IO server on an aiohttp app.

    Advertising means listening; ``GET /info`` lets remotes probe the
    device name before connecting. Each Socket.IO session id is an
    endpoint id.
    """

    def __init__(self, host: str, port: int, service_id: str):
        super().__init__()
        self.host = host
        self.port = port
        self.service_id = service_id
        self.name = ""

        self.sio = socketio.AsyncServer(async_mode="aiohttp", cors_allowed_origins="*")
        self.app = web.Application()
        self.sio.attach(self.app)
        self.app.router.add_get("/info", self._info)

        self.sio.on("connect", self._on_connect)
        self.sio.on("disconnect", self._on_disconnect)
        self.sio.on(PAYLOAD_EVENT, self._on_payload)

        self._runner: Optional[web.AppRunner] = None
        self._pending: Dict[str, str] = {}
        self._accepted: Set[str] = set()

    async def _info(self, request: web.Request) -> web.Response:
        return web.json_response({"name": self.name, "service": self.service_id})

    # ------------------------------------------------------------------
    # Socket.IO handlers
    # ------------------------------------------------------------------

    async def _on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None):
        auth = auth or {}
        if auth.get("service") != self.service_id:
            logger.warning(f"Refusing {sid}: service '{auth.get('service')}' does not match")
            return False
        name = str(auth.get("name") or sid)
        self._pending[sid] = name
        await self.events.put(ConnectionRequested(
            DiscoveredDevice(endpoint_id=sid, name=name, service_id=self.service_id)
        ))
        return True

    async def _on_disconnect(self, sid: str, *args) -> None:
        self._pending.pop(sid, None)
        if sid in self._accepted:
            self._accepted.discard(sid)
            await self.events.put(Disconnected(sid))

    async def _on_payload(self, sid: str, data) -> None:
        if sid not in self._accepted:
            logger.debug(f"Ignoring payload from unaccepted session {sid}")
            return
        if isinstance(data, str):
            data = data.encode("utf-8")
        await self.inbound.put((sid, bytes(data)))

    # ------------------------------------------------------------------
    # TransportPort
    # ------------------------------------------------------------------

    async def start_advertising(self, name: str) -> None:
        self.name = name
        if self._runner is None:
            runner = web.AppRunner(self.app)
            try:
                await runner.setup()
                await web.TCPSite(runner, self.host, self.port).start()
            except OSError as e:
                await runner.cleanup()
                logger.error(f"Failed to listen on {self.host}:{self.port}: {e}")
                await self.events.put(PairingError(f"Advertising failed: {e}"))
                return
            self._runner = runner
        logger.info(f"Advertising '{name}' on {self.host}:{self.port}")
        await self.events.put(AdvertisingStarted())

    async def start_discovery(self) -> None:
        await self.events.put(PairingError("Discovery is not supported by the camera transport"))

    async def request_connection(self, device: DiscoveredDevice) -> None:
        await self.events.put(PairingError("Outgoing connections are not supported by the camera transport"))

    async def accept_connection(self, endpoint_id: str) -> None:
        name = self._pending.pop(endpoint_id, None)
        if name is None:
            logger.warning(f"No pending connection for {endpoint_id}")
            return
        try:
            await self.sio.emit(ACCEPTED_EVENT, {"name": self.name, "service": self.service_id}, to=endpoint_id)
        except Exception as e:
            logger.error(f"Failed to accept {endpoint_id}: {e}")
            await self.events.put(PairingError(f"Accept failed: {e}"))
            return
        self._accepted.add(endpoint_id)
        await self.events.put(Connected(ConnectedPeer(endpoint_id=endpoint_id, display_name=name)))

    async def reject_connection(self, endpoint_id: str) -> None:
        self._pending.pop(endpoint_id, None)
        await self.sio.disconnect(endpoint_id)

    async def send_payload(self, endpoint_id: str, data: bytes) -> None:
        if endpoint_id not in self._accepted:
            raise TransportError(f"{endpoint_id} is not connected")
        try:
            await self.sio.emit(PAYLOAD_EVENT, data, to=endpoint_id)
        except Exception as e:
            raise TransportError(str(e)) from e

    async def disconnect(self, endpoint_id: str) -> None:
        self._accepted.discard(endpoint_id)
        self._pending.pop(endpoint_id, None)
        await self.sio.disconnect(endpoint_id)

    async def stop_all(self) -> None:
        for sid in list(self._accepted) + list(self._pending):
            await self.disconnect(sid)
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Stopped advertising")
