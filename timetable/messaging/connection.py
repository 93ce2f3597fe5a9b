"""Broker connection setup with a bounded, cancellable retry policy."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import redis.asyncio as redis
from redis.exceptions import RedisError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from timetable.config import BrokerSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")

ClientFactory = Callable[[BrokerSettings], redis.Redis]

# Failures that mean "broker not reachable yet", worth another attempt.
TRANSIENT_ERRORS = (RedisError, OSError)


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 10
    delay: float = 2.0

    @classmethod
    def from_settings(cls, settings: BrokerSettings) -> RetryPolicy:
        return cls(
            attempts=max(1, settings.connect_attempts),
            delay=settings.retry_delay_seconds,
        )


def create_client(settings: BrokerSettings) -> redis.Redis:
    return redis.Redis(
        host=settings.host,
        port=settings.port,
        db=settings.db,
        username=settings.username,
        password=settings.password,
        decode_responses=True,
        socket_connect_timeout=30,
        socket_timeout=None,
    )


async def open_client(
    settings: BrokerSettings, client_factory: ClientFactory = create_client
) -> redis.Redis:
    """Create a client and prove the broker answers before handing it out."""
    client = client_factory(settings)
    try:
        await client.ping()
    except TRANSIENT_ERRORS:
        await client.aclose()
        raise
    return client


async def connect_with_retry(
    connect: Callable[[], Awaitable[T]], policy: RetryPolicy, label: str
) -> T:
    """Run *connect* until it succeeds or the policy's attempts run out.

    The last error is re-raised when the budget is exhausted. Waiting between
    attempts happens on the event loop, so cancelling the caller stops it.
    """

    def _log_failure(state: RetryCallState) -> None:
        logger.warning(
            "%s: connection failed (%d/%d): %s",
            label,
            state.attempt_number,
            policy.attempts,
            state.outcome.exception(),
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.attempts),
        wait=wait_fixed(policy.delay),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        before_sleep=_log_failure,
        reraise=True,
    )
    try:
        async for attempt in retrying:
            with attempt:
                logger.info(
                    "%s: connecting to broker (%d/%d)",
                    label,
                    attempt.retry_state.attempt_number,
                    policy.attempts,
                )
                result = await connect()
    except TRANSIENT_ERRORS as exc:
        logger.error(
            "%s: broker unreachable after %d attempts: %s", label, policy.attempts, exc
        )
        raise
    logger.info("%s: connected to broker", label)
    return result
