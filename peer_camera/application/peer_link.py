import asyncio
from typing import Optional

from peer_camera.application import serializer
from peer_camera.application.connection_registry import ConnectionRegistry
from peer_camera.application.messagebus import MessageBus
from peer_camera.common.clock import Clock, now_ms
from peer_camera.common.logger import setup_logger
from peer_camera.domain.exceptions import TransportError
from peer_camera.domain.messages import Message, MessageKind, Ping, Pong
from peer_camera.domain.ports import TransportPort

logger = setup_logger("PeerLink")

_QUIET_KINDS = {MessageKind.PREVIEW_FRAME, MessageKind.PING, MessageKind.PONG}


class PeerLink:
    """Message-level view of the transport.

    Outbound messages are encoded once and sent to each peer independently.
    Inbound payloads are decoded and answered (Ping) or accounted (Pong)
    here; everything else goes to the message bus in arrival order.
    """

    def __init__(self, transport: TransportPort, registry: ConnectionRegistry,
                 bus: MessageBus, clock: Clock = now_ms):
        self._transport = transport
        self._registry = registry
        self._bus = bus
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self.dropped_payloads = 0

    @property
    def bus(self) -> MessageBus:
        return self._bus

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._receive_loop(), name="peer-link-receive")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        while not self._transport.inbound.empty():
            self._transport.inbound.get_nowait()

    async def send_to_all(self, message: Message) -> int:
        """Send to every connected peer; returns how many sends succeeded."""
        peers = self._registry.snapshot()
        if not peers:
            return 0
        data = serializer.encode(message)
        if MessageKind(message.kind) not in _QUIET_KINDS:
            logger.info(f"Sending {message.kind} to {len(peers)} peer(s)")
        results = await asyncio.gather(*(self._send(p.endpoint_id, data) for p in peers))
        return sum(results)

    async def send_to(self, endpoint_id: str, message: Message) -> bool:
        return await self._send(endpoint_id, serializer.encode(message))

    async def send_ping(self) -> int:
        return await self.send_to_all(Ping(timestamp=self._clock()))

    async def _send(self, endpoint_id: str, data: bytes) -> bool:
        try:
            await self._transport.send_payload(endpoint_id, data)
            return True
        except TransportError as e:
            logger.warning(f"Failed to send to {endpoint_id}: {e}")
            return False

    async def _receive_loop(self) -> None:
        while True:
            endpoint_id, data = await self._transport.inbound.get()
            try:
                await self.receive(endpoint_id, data)
            except Exception as e:
                logger.error(f"Failed to process payload from {endpoint_id}: {e}")

    async def receive(self, endpoint_id: str, data: bytes) -> None:
        message = serializer.decode(data)
        if message is None:
            self.dropped_payloads += 1
            logger.warning(f"Dropping undecodable payload from {endpoint_id} ({len(data)} bytes)")
            return

        kind = MessageKind(message.kind)
        if kind is MessageKind.PING:
            logger.debug(f"Ping from {endpoint_id}")
            await self.send_to(endpoint_id, Pong(original_timestamp=message.timestamp,
                                                 response_timestamp=self._clock()))
            return
        if kind is MessageKind.PONG:
            quality = self._registry.on_pong_received(message.original_timestamp)
            logger.debug(f"Pong from {endpoint_id}, latency={quality.latency_ms}ms")
            await self._bus.handle(endpoint_id, message)
            return

        if kind not in _QUIET_KINDS:
            logger.info(f"Received {message.kind} from {endpoint_id}")
        await self._bus.handle(endpoint_id, message)
