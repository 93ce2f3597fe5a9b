"""Shared fixtures: an in-memory stand-in for the Redis pub/sub broker."""

from __future__ import annotations

import asyncio
import fnmatch
import time

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from timetable.config import BrokerSettings
from timetable.messaging.connection import RetryPolicy


class FakePubSub:
    def __init__(self, broker: FakeBroker) -> None:
        self.broker = broker
        self.patterns: list[str] = []
        self.channels: list[str] = []
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def psubscribe(self, *patterns: str) -> None:
        self.patterns.extend(patterns)
        self._attach()

    async def subscribe(self, *channels: str) -> None:
        self.channels.extend(channels)
        self._attach()

    def _attach(self) -> None:
        if self not in self.broker.subscribers:
            self.broker.subscribers.append(self)

    def deliver(self, channel: str, data: str) -> int:
        for pattern in self.patterns:
            if fnmatch.fnmatchcase(channel, pattern):
                self.queue.put_nowait(
                    {"type": "pmessage", "pattern": pattern, "channel": channel, "data": data}
                )
                return 1
        if channel in self.channels:
            self.queue.put_nowait(
                {"type": "message", "pattern": None, "channel": channel, "data": data}
            )
            return 1
        return 0

    def drop(self) -> None:
        self.queue.put_nowait(None)

    async def listen(self):
        while True:
            message = await self.queue.get()
            if message is None:
                raise RedisConnectionError("Connection closed by server.")
            yield message

    async def aclose(self) -> None:
        self.closed = True
        if self in self.broker.subscribers:
            self.broker.subscribers.remove(self)


class FakeRedis:
    def __init__(self, broker: FakeBroker) -> None:
        self.broker = broker
        self.closed = False

    async def ping(self) -> bool:
        if self.broker.refuse_connections > 0:
            self.broker.refuse_connections -= 1
            raise RedisConnectionError("Error 111 connecting. Connection refused.")
        return True

    async def publish(self, channel: str, data: str) -> int:
        if self.broker.fail_publishes > 0:
            self.broker.fail_publishes -= 1
            raise RedisConnectionError("Connection reset by peer")
        self.broker.published.append((channel, data))
        return sum(sub.deliver(channel, data) for sub in list(self.broker.subscribers))

    def pubsub(self, ignore_subscribe_messages: bool = False) -> FakePubSub:
        return FakePubSub(self.broker)

    async def aclose(self) -> None:
        self.closed = True


class FakeBroker:
    """Routes published messages to subscribed FakePubSub queues."""

    def __init__(self) -> None:
        self.subscribers: list[FakePubSub] = []
        self.published: list[tuple[str, str]] = []
        self.clients: list[FakeRedis] = []
        self.refuse_connections = 0
        self.fail_publishes = 0

    def client(self, settings: BrokerSettings) -> FakeRedis:
        client = FakeRedis(self)
        self.clients.append(client)
        return client

    def drop_connections(self) -> None:
        for sub in list(self.subscribers):
            sub.drop()

    def routing_keys(self, settings: BrokerSettings) -> list[str]:
        return [settings.routing_key_of(channel) for channel, _ in self.published]


@pytest.fixture()
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture()
def settings() -> BrokerSettings:
    return BrokerSettings(host="broker.test", exchange="test_exchange")


@pytest.fixture()
def fast_retry() -> RetryPolicy:
    return RetryPolicy(attempts=3, delay=0)


@pytest.fixture()
def wait_until():
    """Poll a predicate from a sync test while background tasks catch up."""

    def _wait(predicate, timeout: float = 2.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.01)
        return predicate()

    return _wait


@pytest.fixture()
def eventually():
    """Async variant of ``wait_until`` that yields to the event loop."""

    async def _wait(predicate, timeout: float = 2.0) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if predicate():
                return True
            await asyncio.sleep(0.01)
        return predicate()

    return _wait
