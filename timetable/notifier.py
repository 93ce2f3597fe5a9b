"""Notification service: renders every schedule event into a text file.

Run with ``python -m timetable.notifier``.
"""

from __future__ import annotations

import asyncio
import logging

from timetable import config
from timetable.config import BrokerSettings
from timetable.domain.bus import EventBus
from timetable.messaging.consumer import ALL_SCHEDULE_EVENTS, EventConsumer
from timetable.notifications.renderer import NotificationHandlers, NotificationSink

logger = logging.getLogger(__name__)


def build_consumer(
    settings: BrokerSettings, sink: NotificationSink, **kwargs
) -> EventConsumer:
    bus = EventBus()
    NotificationHandlers(bus=bus, sink=sink)
    return EventConsumer(
        settings, bus, bindings=[ALL_SCHEDULE_EVENTS], name="notifications", **kwargs
    )


async def main() -> None:
    sink = NotificationSink(config.NOTIFICATIONS_FILE)
    consumer = build_consumer(BrokerSettings.from_env(), sink)
    logger.info("Notifications will be saved to %s", sink.path.resolve())
    await consumer.run()


if __name__ == "__main__":
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Notification service stopped")
