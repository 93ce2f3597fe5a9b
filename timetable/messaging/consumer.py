"""Long-running subscriber that feeds decoded events into an EventBus."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import redis.asyncio as redis
from pydantic import ValidationError as PayloadError

from timetable.config import BrokerSettings
from timetable.domain.bus import EventBus
from timetable.domain.errors import ConsumerSetupError
from timetable.domain.events import UnknownRoutingKey, decode_event
from timetable.messaging.connection import (
    TRANSIENT_ERRORS,
    ClientFactory,
    RetryPolicy,
    connect_with_retry,
    create_client,
    open_client,
)

logger = logging.getLogger(__name__)

ALL_SCHEDULE_EVENTS = "schedule.*"


def _is_pattern(binding: str) -> bool:
    return any(ch in binding for ch in "*?[")


class EventConsumer:
    """Binds to routing keys or patterns and dispatches every message.

    Messages are acknowledged on receipt: a message that fails to decode or
    whose handler raises is logged and dropped, never redelivered. Losing
    the broker connection triggers a reconnect under the retry policy;
    ``run()`` only returns by cancellation or by raising
    ``ConsumerSetupError`` when reconnecting is hopeless.
    """

    def __init__(
        self,
        settings: BrokerSettings,
        bus: EventBus,
        bindings: list[str] | None = None,
        name: str = "consumer",
        client_factory: ClientFactory = create_client,
        retry: RetryPolicy | None = None,
    ) -> None:
        self.settings = settings
        self.bus = bus
        self.bindings = bindings or [ALL_SCHEDULE_EVENTS]
        self.name = name
        self._client_factory = client_factory
        self._retry = retry or RetryPolicy.from_settings(settings)
        self._client: redis.Redis | None = None
        self.ready = asyncio.Event()
        self.processed = 0
        self.failed = 0

    async def run(self) -> None:
        while True:
            pubsub = await self._subscribe()
            try:
                async for message in pubsub.listen():
                    self.handle_message(message)
            except TRANSIENT_ERRORS as exc:
                logger.warning("%s: lost broker connection: %s", self.name, exc)
            finally:
                self.ready.clear()
                await self._close(pubsub)

    def handle_message(self, message: dict[str, Any]) -> None:
        if message.get("type") not in ("message", "pmessage"):
            return
        channel = message["channel"]
        if isinstance(channel, bytes):
            channel = channel.decode()
        routing_key = self.settings.routing_key_of(channel)
        try:
            event = decode_event(routing_key, message["data"])
            handled = self.bus.publish(event)
        except UnknownRoutingKey:
            self.failed += 1
            logger.warning("%s: unknown routing key %s", self.name, routing_key)
        except PayloadError as exc:
            self.failed += 1
            logger.error("%s: undecodable %s payload: %s", self.name, routing_key, exc)
        except Exception:
            self.failed += 1
            logger.exception("%s: error processing %s", self.name, routing_key)
        else:
            self.processed += 1
            logger.debug("%s: %s handled by %d handlers", self.name, routing_key, handled)

    async def _subscribe(self):
        try:
            self._client = await connect_with_retry(
                lambda: open_client(self.settings, self._client_factory),
                self._retry,
                label=self.name,
            )
        except TRANSIENT_ERRORS as exc:
            raise ConsumerSetupError(
                f"{self.name}: could not connect to broker: {exc}"
            ) from exc

        pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        channels = [self.settings.channel_for(b) for b in self.bindings]
        patterns = [c for c in channels if _is_pattern(c)]
        exact = [c for c in channels if not _is_pattern(c)]
        try:
            if patterns:
                await pubsub.psubscribe(*patterns)
            if exact:
                await pubsub.subscribe(*exact)
        except TRANSIENT_ERRORS as exc:
            await self._close(pubsub)
            raise ConsumerSetupError(
                f"{self.name}: could not bind {self.bindings}: {exc}"
            ) from exc

        logger.info("%s: listening on %s", self.name, ", ".join(channels))
        self.ready.set()
        return pubsub

    async def _close(self, pubsub) -> None:
        client, self._client = self._client, None
        try:
            await pubsub.aclose()
            if client is not None:
                await client.aclose()
        except TRANSIENT_ERRORS as exc:
            logger.debug("%s: ignoring error on close: %s", self.name, exc)
