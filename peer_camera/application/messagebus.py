import inspect
from typing import Awaitable, Callable, Dict, List, Union

from peer_camera.common.logger import setup_logger
from peer_camera.domain.messages import Message, MessageKind

logger = setup_logger("MessageBus")

Handler = Callable[[str, Message], Union[None, Awaitable[None]]]


class MessageBus:
    """Routes decoded messages to handlers registered per message kind.

    Handlers run in registration order and are awaited one at a time, so a
    peer's messages are handled in the order they arrived.
    """

    def __init__(self):
        self._handlers: Dict[MessageKind, List[Handler]] = {}

    async def handle(self, endpoint_id: str, message: Message) -> None:
        handlers = self._handlers.get(MessageKind(message.kind), [])
        if not handlers:
            logger.debug(f"No handler for {message.kind} from {endpoint_id}")
            return

        for handler in handlers:
            try:
                result = handler(endpoint_id, message)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Error in handler {getattr(handler, '__name__', handler)} for "
                    f"{message.kind}: {e}"
                )

    def subscribe(self, kind: MessageKind, handler: Handler) -> None:
        self._handlers.setdefault(kind, []).append(handler)
        logger.debug(f"Subscribed {getattr(handler, '__name__', handler)} to {kind.value}")

    def clear(self) -> None:
        self._handlers.clear()
