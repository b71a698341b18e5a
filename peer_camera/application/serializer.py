import base64
import binascii
from typing import Optional

from pydantic import TypeAdapter, ValidationError

from peer_camera.common.logger import setup_logger
from peer_camera.domain.messages import Message

logger = setup_logger("MessageSerializer")

_adapter: TypeAdapter = TypeAdapter(Message)


def encode(message: Message) -> bytes:
    return message.model_dump_json(by_alias=True).encode("utf-8")


def decode(data: bytes) -> Optional[Message]:
    """Decode one payload. Returns ``None`` for anything malformed."""
    try:
        return _adapter.validate_json(data)
    except (ValidationError, ValueError) as e:
        logger.debug(f"Undecodable payload ({len(data)} bytes): {e.__class__.__name__}")
        return None


def encode_image(jpeg: bytes) -> str:
    return base64.b64encode(jpeg).decode("ascii")


def decode_image(text: str) -> Optional[bytes]:
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        return None
