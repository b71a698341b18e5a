import asyncio
from typing import Coroutine, Optional, Set, Tuple

from peer_camera.application.connection_registry import ConnectionRegistry
from peer_camera.application.liveness import LivenessLoop
from peer_camera.application.messagebus import MessageBus
from peer_camera.application.pairing import PairingStateMachine
from peer_camera.application.peer_link import PeerLink
from peer_camera.common.clock import Clock, now_ms
from peer_camera.common.logger import setup_logger
from peer_camera.common.observable import Observable
from peer_camera.domain.connection import ConnectedPeer, ConnectionQuality, ConnectionState, Role

logger = setup_logger("PeerSession")


class PeerSession:
    """Plumbing shared by both roles: pairing, link, liveness and teardown."""

    role: Role

    def __init__(self, pairing: PairingStateMachine, registry: ConnectionRegistry,
                 link: PeerLink, liveness: LivenessLoop, clock: Clock = now_ms):
        if pairing.role is not self.role:
            raise ValueError(f"{type(self).__name__} needs a {self.role.value} pairing state machine")
        self._pairing = pairing
        self._registry = registry
        self._link = link
        self._liveness = liveness
        self._clock = clock
        self._tasks: Set[asyncio.Task] = set()
        self._started = False

    # Published state

    @property
    def connection_state(self) -> Observable[ConnectionState]:
        return self._pairing.state

    @property
    def last_error(self) -> Observable[Optional[str]]:
        return self._pairing.last_error

    @property
    def peers(self) -> Observable[Tuple[ConnectedPeer, ...]]:
        return self._registry.peers

    @property
    def quality(self) -> Observable[ConnectionQuality]:
        return self._registry.quality

    @property
    def bus(self) -> MessageBus:
        return self._link.bus

    @property
    def is_started(self) -> bool:
        return self._started

    async def disconnect(self, endpoint_id: str) -> None:
        await self._pairing.disconnect(endpoint_id)

    # Lifecycle helpers

    def _start_link(self) -> None:
        self._link.start()
        self._liveness.start()

    async def _stop_link(self) -> None:
        await self._liveness.stop()
        await self._link.stop()
        await self._pairing.stop()

    def _spawn(self, coro: Coroutine, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _cancel_tasks(self) -> None:
        tasks = [t for t in self._tasks if t is not asyncio.current_task()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Background task {task.get_name()} failed: {e}")
        self._tasks.clear()
