from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from peer_camera.common.clock import now_ms


class Role(str, Enum):
    CAMERA = "camera"
    REMOTE = "remote"


class ConnectionState(str, Enum):
    IDLE = "IDLE"
    ADVERTISING = "ADVERTISING"
    DISCOVERING = "DISCOVERING"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    ERROR = "ERROR"


class QualityLevel(str, Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"


@dataclass(frozen=True)
class ConnectedPeer:
    endpoint_id: str
    display_name: str
    connected_at: int = field(default_factory=now_ms)


@dataclass(frozen=True)
class DiscoveredDevice:
    endpoint_id: str
    name: str
    service_id: str = ""


@dataclass(frozen=True)
class ConnectionQuality:
    """Most recent round trip to any peer."""
    latency_ms: int = 0
    last_updated: int = 0

    @property
    def level(self) -> QualityLevel:
        return quality_level(self.latency_ms)


def quality_level(latency_ms: int) -> QualityLevel:
    if latency_ms < 100:
        return QualityLevel.EXCELLENT
    if latency_ms < 300:
        return QualityLevel.GOOD
    if latency_ms < 600:
        return QualityLevel.FAIR
    return QualityLevel.POOR
