import asyncio
from typing import Awaitable, Callable, Dict, Optional, Set, Tuple

from peer_camera.application.connection_registry import ConnectionRegistry
from peer_camera.common.logger import setup_logger
from peer_camera.common.observable import MutableObservable, Observable
from peer_camera.domain.connection import ConnectedPeer, ConnectionState, DiscoveredDevice, Role
from peer_camera.domain.events import (
    Connected,
    ConnectionRequested,
    DeviceFound,
    DeviceLost,
    Disconnected,
    PairingError,
    PairingEvent,
    PairingEventKind,
)
from peer_camera.domain.ports import TransportPort

logger = setup_logger("Pairing")


class PairingStateMachine:
    """Drives ConnectionState from transport events.

    Pairing is automatic: the remote role connects to the first device it
    finds and every incoming connection request is accepted without a
    confirmation step. There is no retry; failures park the machine in
    ERROR until ``stop()`` and a fresh start.
    """

    def __init__(self, transport: TransportPort, registry: ConnectionRegistry, role: Role):
        self._transport = transport
        self._registry = registry
        self._role = role

        self._state: MutableObservable[ConnectionState] = MutableObservable(ConnectionState.IDLE)
        self._last_error: MutableObservable[Optional[str]] = MutableObservable(None)
        self._discovered: MutableObservable[Tuple[DiscoveredDevice, ...]] = MutableObservable(())

        self._connect_pending = False
        self._had_peers = not registry.is_empty()
        self._task: Optional[asyncio.Task] = None
        self._requests: Set[asyncio.Task] = set()

        self._handlers: Dict[PairingEventKind, Callable[[PairingEvent], Awaitable[None]]] = {
            PairingEventKind.ADVERTISING_STARTED: self._on_advertising_started,
            PairingEventKind.DISCOVERY_STARTED: self._on_discovery_started,
            PairingEventKind.DEVICE_FOUND: self._on_device_found,
            PairingEventKind.DEVICE_LOST: self._on_device_lost,
            PairingEventKind.CONNECTION_REQUESTED: self._on_connection_requested,
            PairingEventKind.CONNECTED: self._on_connected,
            PairingEventKind.DISCONNECTED: self._on_disconnected,
            PairingEventKind.ERROR: self._on_error,
        }
        registry.peers.subscribe(self._on_peers_changed)

    @property
    def role(self) -> Role:
        return self._role

    @property
    def state(self) -> Observable[ConnectionState]:
        return self._state

    @property
    def last_error(self) -> Observable[Optional[str]]:
        return self._last_error

    @property
    def discovered(self) -> Observable[Tuple[DiscoveredDevice, ...]]:
        return self._discovered

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def start_as_camera(self, name: str) -> None:
        logger.info(f"Starting as camera (advertising as '{name}')")
        self._ensure_running()
        await self._transport.start_advertising(name)

    async def start_as_remote(self) -> None:
        logger.info("Starting as remote (discovering)")
        self._ensure_running()
        await self._transport.start_discovery()

    async def connect_to(self, device: DiscoveredDevice) -> None:
        logger.info(f"Connecting to {device.endpoint_id} ({device.name})")
        self._connect_pending = True
        if self._registry.is_empty():
            self._set_state(ConnectionState.CONNECTING)
        await self._transport.request_connection(device)

    async def disconnect(self, endpoint_id: str) -> None:
        logger.info(f"Disconnecting from {endpoint_id}")
        await self._transport.disconnect(endpoint_id)
        self._registry.on_disconnected(endpoint_id)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        for request in list(self._requests):
            request.cancel()
        self._requests.clear()

        await self._transport.stop_all()
        while not self._transport.events.empty():
            self._transport.events.get_nowait()

        self._registry.clear()
        self._discovered.set(())
        self._connect_pending = False
        self._last_error.set(None)
        self._set_state(ConnectionState.IDLE)

    async def handle(self, event: PairingEvent) -> None:
        logger.debug(f"Pairing event: {event.kind.value}")
        await self._handlers[event.kind](event)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    async def _on_advertising_started(self, event: PairingEvent) -> None:
        if self._role is not Role.CAMERA:
            logger.warning("Ignoring AdvertisingStarted on the remote role")
            return
        if self._state.value is ConnectionState.IDLE:
            self._set_state(ConnectionState.ADVERTISING)

    async def _on_discovery_started(self, event: PairingEvent) -> None:
        if self._role is not Role.REMOTE:
            logger.warning("Ignoring DiscoveryStarted on the camera role")
            return
        if self._state.value is ConnectionState.IDLE:
            self._set_state(ConnectionState.DISCOVERING)

    async def _on_device_found(self, event: DeviceFound) -> None:
        device = event.device
        if self._role is not Role.REMOTE:
            logger.debug(f"Camera role ignores discovered device {device.endpoint_id}")
            return
        known = tuple(d for d in self._discovered.value if d.endpoint_id != device.endpoint_id)
        self._discovered.set(known + (device,))

        if self._state.value is ConnectionState.ERROR:
            logger.info(f"Device found: {device.endpoint_id} ({device.name}), not connecting while in ERROR")
            return
        if self._connect_pending or not self._registry.is_empty():
            logger.info(f"Device found: {device.endpoint_id} ({device.name}), already paired or pairing")
            return

        logger.info(f"Device found: {device.endpoint_id} ({device.name}) - auto-connecting")
        self._connect_pending = True
        self._set_state(ConnectionState.CONNECTING)
        request = asyncio.create_task(self._transport.request_connection(device))
        self._requests.add(request)
        request.add_done_callback(self._requests.discard)

    async def _on_device_lost(self, event: DeviceLost) -> None:
        logger.debug(f"Device lost: {event.endpoint_id}")
        self._discovered.set(tuple(d for d in self._discovered.value if d.endpoint_id != event.endpoint_id))

    async def _on_connection_requested(self, event: ConnectionRequested) -> None:
        device = event.device
        if self._state.value is ConnectionState.ERROR:
            logger.warning(f"Rejecting connection from {device.endpoint_id} while in ERROR")
            await self._transport.reject_connection(device.endpoint_id)
            return
        logger.info(f"Connection requested from {device.endpoint_id} ({device.name}) - auto-accepting")
        if self._registry.is_empty():
            self._set_state(ConnectionState.CONNECTING)
        await self._transport.accept_connection(device.endpoint_id)

    async def _on_connected(self, event: Connected) -> None:
        peer: ConnectedPeer = event.peer
        logger.info(f"Connected to {peer.endpoint_id} ({peer.display_name})")
        self._connect_pending = False
        self._registry.on_connected(peer)

    async def _on_disconnected(self, event: Disconnected) -> None:
        logger.info(f"Disconnected from {event.endpoint_id}")
        self._connect_pending = False
        self._registry.on_disconnected(event.endpoint_id)

    async def _on_error(self, event: PairingError) -> None:
        logger.error(f"Pairing error: {event.message}")
        self._connect_pending = False
        self._last_error.set(event.message)
        self._set_state(ConnectionState.ERROR)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _on_peers_changed(self, peers: Tuple[ConnectedPeer, ...]) -> None:
        has_peers = bool(peers)
        if has_peers and not self._had_peers:
            self._discovered.set(())
            self._set_state(ConnectionState.CONNECTED)
        elif not has_peers and self._had_peers:
            if self._state.value is ConnectionState.CONNECTED:
                self._set_state(ConnectionState.IDLE)
        self._had_peers = has_peers

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state.value:
            logger.info(f"State -> {state.value}")
        self._state.set(state)

    def _ensure_running(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="pairing-events")

    async def _run(self) -> None:
        while True:
            event = await self._transport.events.get()
            try:
                await self.handle(event)
            except Exception as e:
                logger.error(f"Failed to handle {event.kind.value}: {e}")
