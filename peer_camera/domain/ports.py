from abc import ABC, abstractmethod
import asyncio
from typing import Callable, Tuple

from .camera import AspectRatio, CameraLens, CaptureResult, DeviceCapabilities, FlashMode, RawFrame
from .connection import DiscoveredDevice
from .events import PairingEvent


class TransportPort(ABC):
    """Peer transport: discovery, connection negotiation and byte delivery.

    Outcomes of advertising, discovery and connection calls arrive on
    ``events``; inbound payloads arrive on ``inbound`` as
    ``(endpoint_id, data)``. Both queues preserve per-source order.
    """

    def __init__(self) -> None:
        self.events: "asyncio.Queue[PairingEvent]" = asyncio.Queue()
        self.inbound: "asyncio.Queue[Tuple[str, bytes]]" = asyncio.Queue()

    @abstractmethod
    async def start_advertising(self, name: str) -> None:
        pass

    @abstractmethod
    async def start_discovery(self) -> None:
        pass

    @abstractmethod
    async def request_connection(self, device: DiscoveredDevice) -> None:
        pass

    @abstractmethod
    async def accept_connection(self, endpoint_id: str) -> None:
        pass

    @abstractmethod
    async def reject_connection(self, endpoint_id: str) -> None:
        pass

    @abstractmethod
    async def send_payload(self, endpoint_id: str, data: bytes) -> None:
        """Deliver one payload; raises TransportError on failure."""
        pass

    @abstractmethod
    async def disconnect(self, endpoint_id: str) -> None:
        pass

    @abstractmethod
    async def stop_all(self) -> None:
        pass


FrameCallback = Callable[[RawFrame], None]
ReadyCallback = Callable[[DeviceCapabilities], None]


class CaptureDevicePort(ABC):
    """Image sensor. ``on_frame`` may be invoked from any thread."""

    @abstractmethod
    async def open(self, lens: CameraLens, aspect_ratio: AspectRatio,
                   on_ready: ReadyCallback, on_frame: FrameCallback) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    def set_zoom(self, ratio: float) -> None:
        pass

    @abstractmethod
    def set_exposure_compensation(self, index: int) -> None:
        pass

    @abstractmethod
    def set_flash_mode(self, mode: FlashMode) -> None:
        pass

    @abstractmethod
    async def set_aspect_ratio(self, ratio: AspectRatio) -> None:
        """Rebind at the new ratio; capabilities are re-reported via ``on_ready``."""
        pass

    @abstractmethod
    async def switch_lens(self, lens: CameraLens) -> None:
        """Rebind on the given lens; capabilities are re-reported via ``on_ready``."""
        pass

    @abstractmethod
    def focus_at(self, x: float, y: float) -> None:
        """Focus and meter at normalized preview coordinates."""
        pass

    @abstractmethod
    async def capture_photo(self) -> CaptureResult:
        pass
