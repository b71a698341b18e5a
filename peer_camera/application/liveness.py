import asyncio
from typing import Optional

from peer_camera.application.connection_registry import ConnectionRegistry
from peer_camera.application.peer_link import PeerLink
from peer_camera.common.logger import setup_logger

logger = setup_logger("Liveness")


class LivenessLoop:
    """Pings every peer at a fixed interval while at least one is connected."""

    def __init__(self, link: PeerLink, registry: ConnectionRegistry, interval_s: float = 2.0):
        self._link = link
        self._registry = registry
        self._interval_s = interval_s
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="liveness")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval_s)
            if self._registry.is_empty():
                continue
            await self._link.send_ping()
