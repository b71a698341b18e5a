from .camera import AspectRatio, CameraLens, CameraState, CaptureResult, DeviceCapabilities, FlashMode, PixelFormat, RawFrame
from .connection import ConnectedPeer, ConnectionQuality, ConnectionState, DiscoveredDevice, QualityLevel, Role
from .exceptions import CaptureDeviceError, PeerCameraError, TransportError
from .ports import CaptureDevicePort, TransportPort

__all__ = [
    'AspectRatio',
    'CameraLens',
    'CameraState',
    'CaptureResult',
    'DeviceCapabilities',
    'FlashMode',
    'PixelFormat',
    'RawFrame',

    'ConnectedPeer',
    'ConnectionQuality',
    'ConnectionState',
    'DiscoveredDevice',
    'QualityLevel',
    'Role',

    'CaptureDeviceError',
    'PeerCameraError',
    'TransportError',

    'CaptureDevicePort',
    'TransportPort',
]
