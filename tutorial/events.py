"""Typed message channels and a local event bus."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Callable, Dict, List, Protocol

import structlog

logger = structlog.get_logger(__name__)

Handler = Callable[[Any], None]


class Channel(str, Enum):
    """Channels steps and the host use to signal each other."""

    ENTITY_EXPLODED = "Entity-Exploded"
    TUTORIAL_SPINNER = "Tutorial-Spinner"
    OBJECT_MANIPULATION = "Hifi-Object-Manipulation"
    CONTROLLER_ACTION = "Controller-Action"
    AWAY_ENABLE = "Hifi-Away-Enable"


class EventBus(Protocol):
    def subscribe(self, channel: Channel, handler: Handler) -> None:
        ...

    def unsubscribe(self, channel: Channel, handler: Handler) -> None:
        ...

    def publish(self, channel: Channel, message: Any = None) -> None:
        ...


class MessageBus:
    """In-process bus delivering messages synchronously to subscribers."""

    def __init__(self) -> None:
        self._handlers: Dict[Channel, List[Handler]] = {}

    def subscribe(self, channel: Channel, handler: Handler) -> None:
        handlers = self._handlers.setdefault(channel, [])
        if handler not in handlers:
            handlers.append(handler)

    def unsubscribe(self, channel: Channel, handler: Handler) -> None:
        handlers = self._handlers.get(channel)
        if not handlers or handler not in handlers:
            return
        handlers.remove(handler)
        if not handlers:
            del self._handlers[channel]

    def subscribers(self, channel: Channel) -> int:
        return len(self._handlers.get(channel, []))

    def publish(self, channel: Channel, message: Any = None) -> None:
        # Snapshot so a handler can unsubscribe itself mid-delivery.
        for handler in list(self._handlers.get(channel, [])):
            handler(message)
        logger.debug("message_published", channel=channel.value)


def parse_message(message: Any) -> Dict[str, object]:
    """Decode a channel payload into a dict.

    Payloads may arrive as dicts or JSON strings; anything that does not
    decode to a JSON object yields an empty dict.
    """
    if isinstance(message, dict):
        return message
    if not isinstance(message, (str, bytes)):
        return {}
    try:
        data = json.loads(message)
    except (TypeError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


__all__ = ["Channel", "EventBus", "Handler", "MessageBus", "parse_message"]
