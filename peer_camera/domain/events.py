from __future__ import annotations

from abc import ABC
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar

from peer_camera.domain.connection import ConnectedPeer, DiscoveredDevice


class PairingEventKind(str, Enum):
    ADVERTISING_STARTED = "advertising_started"
    DISCOVERY_STARTED = "discovery_started"
    DEVICE_FOUND = "device_found"
    DEVICE_LOST = "device_lost"
    CONNECTION_REQUESTED = "connection_requested"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class PairingEvent(ABC):
    """Raised by the transport; consumed by the pairing state machine."""
    kind: ClassVar[PairingEventKind]


@dataclass(frozen=True)
class AdvertisingStarted(PairingEvent):
    kind: ClassVar[PairingEventKind] = PairingEventKind.ADVERTISING_STARTED


@dataclass(frozen=True)
class DiscoveryStarted(PairingEvent):
    kind: ClassVar[PairingEventKind] = PairingEventKind.DISCOVERY_STARTED


@dataclass(frozen=True)
class DeviceFound(PairingEvent):
    device: DiscoveredDevice
    kind: ClassVar[PairingEventKind] = PairingEventKind.DEVICE_FOUND


@dataclass(frozen=True)
class DeviceLost(PairingEvent):
    endpoint_id: str
    kind: ClassVar[PairingEventKind] = PairingEventKind.DEVICE_LOST


@dataclass(frozen=True)
class ConnectionRequested(PairingEvent):
    device: DiscoveredDevice
    kind: ClassVar[PairingEventKind] = PairingEventKind.CONNECTION_REQUESTED


@dataclass(frozen=True)
class Connected(PairingEvent):
    peer: ConnectedPeer
    kind: ClassVar[PairingEventKind] = PairingEventKind.CONNECTED


@dataclass(frozen=True)
class Disconnected(PairingEvent):
    endpoint_id: str
    kind: ClassVar[PairingEventKind] = PairingEventKind.DISCONNECTED


@dataclass(frozen=True)
class PairingError(PairingEvent):
    message: str
    kind: ClassVar[PairingEventKind] = PairingEventKind.ERROR
