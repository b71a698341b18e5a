from typing import Optional, Tuple

from peer_camera.common.clock import Clock, now_ms
from peer_camera.common.logger import setup_logger
from peer_camera.common.observable import MutableObservable, Observable
from peer_camera.domain.connection import ConnectedPeer, ConnectionQuality

logger = setup_logger("ConnectionRegistry")


class ConnectionRegistry:
    """Owns the connected-peer set and the latest latency measurement."""

    def __init__(self, clock: Clock = now_ms):
        self._clock = clock
        self._peers: MutableObservable[Tuple[ConnectedPeer, ...]] = MutableObservable(())
        self._count: MutableObservable[int] = MutableObservable(0)
        self._quality: MutableObservable[ConnectionQuality] = MutableObservable(
            ConnectionQuality(last_updated=clock())
        )

    @property
    def peers(self) -> Observable[Tuple[ConnectedPeer, ...]]:
        return self._peers

    @property
    def connected_count(self) -> Observable[int]:
        return self._count

    @property
    def quality(self) -> Observable[ConnectionQuality]:
        return self._quality

    def snapshot(self) -> Tuple[ConnectedPeer, ...]:
        return self._peers.value

    def get(self, endpoint_id: str) -> Optional[ConnectedPeer]:
        for peer in self._peers.value:
            if peer.endpoint_id == endpoint_id:
                return peer
        return None

    def is_empty(self) -> bool:
        return not self._peers.value

    def on_connected(self, peer: ConnectedPeer) -> None:
        if self.get(peer.endpoint_id) is not None:
            logger.debug(f"Peer {peer.endpoint_id} already registered")
            return
        self._publish(self._peers.value + (peer,))
        logger.info(f"Registered peer {peer.endpoint_id} ({peer.display_name}), {len(self._peers.value)} connected")

    def on_disconnected(self, endpoint_id: str) -> None:
        remaining = tuple(p for p in self._peers.value if p.endpoint_id != endpoint_id)
        if len(remaining) == len(self._peers.value):
            return
        self._publish(remaining)
        logger.info(f"Removed peer {endpoint_id}, {len(remaining)} connected")

    def clear(self) -> None:
        if self._peers.value:
            self._publish(())
            logger.info("Cleared all peers")

    def on_pong_received(self, original_timestamp: int) -> ConnectionQuality:
        """Record a round trip that started at ``original_timestamp``.

        Clock skew and implausible deltas are recorded as measured.
        """
        now = self._clock()
        latency = now - original_timestamp
        last_updated = max(now, self._quality.value.last_updated)
        quality = ConnectionQuality(latency_ms=latency, last_updated=last_updated)
        self._quality.set(quality)
        logger.debug(f"Round trip {latency}ms ({quality.level.value})")
        return quality

    def _publish(self, peers: Tuple[ConnectedPeer, ...]) -> None:
        self._peers.set(peers)
        self._count.set(len(peers))
