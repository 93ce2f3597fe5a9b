"""Synchronous in-process dispatch of decoded domain events."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable


class EventBus:
    """Routes each event to the handlers subscribed to its exact type.

    Handlers are called synchronously in registration order. Consumers feed
    it after decoding a broker message, so handlers only ever see typed
    events.
    """

    def __init__(self) -> None:
        self._subscribers: dict[type, list[Callable]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: Callable) -> None:
        self._subscribers[event_type].append(handler)

    def publish(self, event: Any) -> int:
        handlers = self._subscribers.get(type(event), [])
        for handler in handlers:
            handler(event)
        return len(handlers)
