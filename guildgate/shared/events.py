"""
MODULE OVERVIEW:
The event dispatcher: the only door through which decoded application frames
leave the gateway core.

WHAT IS HAPPENING HERE:
This is a lookup table, not a pub/sub bus. Exactly one handler is kept per
`(opcode, event_type)` pair and registering again for the same pair replaces
the previous handler. Frames nobody registered for are dropped quietly.

A handler reports failure by returning `False` or raising `HandlerError`; that
is logged and the connection keeps reading. Anything else it raises is a bug,
and is left to propagate to the connection, which logs the traceback and
reconnects the shard.
"""
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from loguru import logger
from pydantic import BaseModel, ValidationError

from guildgate.shared.codec import Envelope, OpCode, parse_data
from guildgate.shared.errors import HandlerError
from guildgate.shared.models import Message

EventHandler = Callable[[Envelope, Any], Awaitable[bool | None] | bool | None]

# Intent bit the gateway requires before it will push a given event type.
EVENT_INTENTS: dict[str, int] = {
    "GUILD_CREATE": 1 << 0,
    "GUILD_UPDATE": 1 << 0,
    "GUILD_DELETE": 1 << 0,
    "CHANNEL_CREATE": 1 << 0,
    "CHANNEL_UPDATE": 1 << 0,
    "CHANNEL_DELETE": 1 << 0,
    "GUILD_MEMBER_ADD": 1 << 1,
    "GUILD_MEMBER_UPDATE": 1 << 1,
    "GUILD_MEMBER_REMOVE": 1 << 1,
    "MESSAGE_CREATE": 1 << 9,
    "MESSAGE_DELETE": 1 << 9,
    "MESSAGE_REACTION_ADD": 1 << 10,
    "MESSAGE_REACTION_REMOVE": 1 << 10,
    "DIRECT_MESSAGE_CREATE": 1 << 12,
    "DIRECT_MESSAGE_DELETE": 1 << 12,
    "INTERACTION_CREATE": 1 << 26,
    "AT_MESSAGE_CREATE": 1 << 30,
    "PUBLIC_MESSAGE_DELETE": 1 << 30,
}

EVENT_MODELS: dict[str, type[BaseModel]] = {
    "AT_MESSAGE_CREATE": Message,
    "MESSAGE_CREATE": Message,
    "DIRECT_MESSAGE_CREATE": Message,
}


@dataclass
class _Registration:
    handler: EventHandler
    model: type[BaseModel] | None


class EventDispatcher:
    def __init__(self):
        self._handlers: dict[tuple[int, str], _Registration] = {}

    def register(
        self,
        event_type: str,
        handler: EventHandler,
        *,
        opcode: int = OpCode.DISPATCH,
        model: type[BaseModel] | None = None,
    ) -> None:
        key = (int(opcode), event_type)
        if key in self._handlers:
            logger.info(f"event={event_type} op={int(opcode)} action=replace_handler")
        self._handlers[key] = _Registration(handler, model or EVENT_MODELS.get(event_type))

    def on(self, event_type: str, **kwargs) -> Callable[[EventHandler], EventHandler]:
        """Decorator form of `register`."""
        def decorator(handler: EventHandler) -> EventHandler:
            self.register(event_type, handler, **kwargs)
            return handler
        return decorator

    def handler_for(self, opcode: int, event_type: str | None) -> EventHandler | None:
        registration = self._handlers.get((opcode, event_type or ""))
        return registration.handler if registration else None

    @property
    def intents(self) -> int:
        bits = 0
        for _, event_type in self._handlers:
            bits |= EVENT_INTENTS.get(event_type, 0)
        return bits

    async def dispatch(self, envelope: Envelope) -> bool:
        """
        Deliver one frame to its handler.
        Returns False when the frame was dropped or the handler reported a failure.
        """
        registration = self._handlers.get((envelope.op, envelope.type or ""))
        if registration is None:
            logger.debug(f"op={envelope.op} event={envelope.type} action=drop reason=no_handler")
            return False

        try:
            data = parse_data(envelope, registration.model) if registration.model else envelope.data
        except ValidationError as e:
            logger.warning(f"event={envelope.type} seq={envelope.seq} action=parse_failed error={e}")
            return False

        try:
            result = registration.handler(envelope, data)
            if inspect.isawaitable(result):
                result = await result
        except HandlerError as e:
            logger.warning(f"event={envelope.type} seq={envelope.seq} action=handler_failed error={e}")
            return False

        if result is False:
            logger.warning(f"event={envelope.type} seq={envelope.seq} action=handler_failed")
            return False
        return True
