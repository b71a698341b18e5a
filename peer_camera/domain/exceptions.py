class PeerCameraError(Exception):
    pass


class TransportError(PeerCameraError):
    """A payload could not be handed to the transport for one endpoint."""


class CaptureDeviceError(PeerCameraError):
    pass
