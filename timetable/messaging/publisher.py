"""Publishes domain events to the schedule exchange."""

from __future__ import annotations

import asyncio
import logging

import redis.asyncio as redis

from timetable.config import BrokerSettings
from timetable.domain.errors import PublishError
from timetable.domain.events import DomainEvent, encode_event, routing_key_for
from timetable.messaging.connection import (
    TRANSIENT_ERRORS,
    ClientFactory,
    RetryPolicy,
    connect_with_retry,
    create_client,
    open_client,
)

logger = logging.getLogger(__name__)


class EventPublisher:
    """Serializes domain events and hands them to the broker.

    Construction does no I/O. ``start()`` is the connect phase: it retries
    per the policy and raises ``PublishError`` once the budget is spent,
    which a service owning a publisher must treat as fatal. After that,
    a failed publish triggers exactly one reconnect before giving up.
    """

    def __init__(
        self,
        settings: BrokerSettings,
        client_factory: ClientFactory = create_client,
        retry: RetryPolicy | None = None,
    ) -> None:
        self.settings = settings
        self._client_factory = client_factory
        self._retry = retry or RetryPolicy.from_settings(settings)
        self._client: redis.Redis | None = None
        self._lock = asyncio.Lock()

    @property
    def ready(self) -> bool:
        return self._client is not None

    async def start(self) -> None:
        # Bind the lock to the loop that owns this publisher from now on.
        self._lock = asyncio.Lock()
        try:
            self._client = await connect_with_retry(
                lambda: open_client(self.settings, self._client_factory),
                self._retry,
                label="publisher",
            )
        except TRANSIENT_ERRORS as exc:
            raise PublishError(f"Could not connect to broker: {exc}") from exc

    async def publish(self, event: DomainEvent, routing_key: str | None = None) -> int:
        """Publish *event*; return how many subscribers received it."""
        routing_key = routing_key or routing_key_for(event)
        channel = self.settings.channel_for(routing_key)
        payload = encode_event(event)

        async with self._lock:
            if self._client is None:
                logger.warning("Publisher not connected, attempting to reconnect...")
                await self._reconnect(routing_key)
            try:
                receivers = await self._client.publish(channel, payload)
            except TRANSIENT_ERRORS as exc:
                logger.warning("Publish to %s failed (%s), reconnecting", routing_key, exc)
                await self._reconnect(routing_key)
                try:
                    receivers = await self._client.publish(channel, payload)
                except TRANSIENT_ERRORS as retry_exc:
                    await self._discard()
                    raise PublishError(
                        f"Publishing {routing_key} failed: {retry_exc}"
                    ) from retry_exc

        logger.debug("Published %s to %d receivers", routing_key, receivers)
        return receivers

    async def close(self) -> None:
        async with self._lock:
            await self._discard()

    async def _reconnect(self, routing_key: str) -> None:
        await self._discard()
        try:
            self._client = await open_client(self.settings, self._client_factory)
        except TRANSIENT_ERRORS as exc:
            raise PublishError(
                f"Publishing {routing_key} failed: broker unavailable ({exc})"
            ) from exc

    async def _discard(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.aclose()
        except TRANSIENT_ERRORS as exc:
            logger.debug("Ignoring error while closing broker client: %s", exc)
