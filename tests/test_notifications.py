"""Tests for notification rendering and the file sink."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from timetable.domain.bus import EventBus
from timetable.domain.events import (
    ChangeType,
    ConflictDetected,
    ConflictScope,
    OptimizationStatus,
    ScheduleOptimized,
    ScheduleUpdated,
)
from timetable.messaging.publisher import EventPublisher
from timetable.notifications.renderer import (
    NotificationHandlers,
    NotificationSink,
    render_conflict,
    render_optimized,
    render_updated,
)
from timetable.notifier import build_consumer

_AT = datetime(2026, 3, 2, 9, 30, 0, tzinfo=timezone.utc)


def test_render_updated_block():
    text = render_updated(
        ScheduleUpdated(
            schedule_id=4,
            change_type=ChangeType.CREATED,
            details="Schedule 'Week 1' created",
            updated_at=_AT,
        )
    )
    lines = text.splitlines()
    assert lines[0].startswith("╔") and lines[0].endswith("╗")
    assert "SCHEDULE UPDATE NOTIFICATION" in lines[1]
    assert len(lines[0]) == len(lines[1])
    assert " Schedule ID: 4" in lines
    assert " Change Type: Created" in lines
    assert " Updated At: 2026-03-02 09:30:00" in lines
    assert lines[-1].startswith("╚")


def test_render_optimized_block():
    text = render_optimized(
        ScheduleOptimized(
            schedule_id=2,
            schedule_name="Week 1",
            status=OptimizationStatus.COMPLETED,
            windows_reduced=1,
            load_balance_improvement=95.5,
            optimized_at=_AT,
            message="done",
        )
    )
    assert "SCHEDULE OPTIMIZATION NOTIFICATION" in text
    assert " Status: Completed" in text
    assert " Load Balance Improvement: 95.5%" in text


def test_render_conflict_lists_entities():
    text = render_conflict(
        ConflictDetected(
            conflict_type=ConflictScope.INTERNAL,
            affected_entities=["Room 'Room101' is double-booked on Monday at 09:00"],
            description="Found 1 internal conflicts in schedule 'Week 1'",
            detected_at=_AT,
        )
    )
    assert "SCHEDULE CONFLICT DETECTED" in text
    assert " Schedule ID: 0" in text
    assert "   - Room 'Room101' is double-booked on Monday at 09:00" in text


def test_sink_appends_with_timestamp(tmp_path):
    sink = NotificationSink(tmp_path / "notifications.txt")
    sink.append("first\n", at=datetime(2026, 1, 1, 8, 0, 0))
    sink.append("second\n", at=datetime(2026, 1, 1, 8, 0, 5))

    content = sink.path.read_text(encoding="utf-8")
    assert content == "[2026-01-01 08:00:00]\nfirst\n\n[2026-01-01 08:00:05]\nsecond\n\n"


def test_handlers_render_each_event_kind(tmp_path):
    bus = EventBus()
    sink = NotificationSink(tmp_path / "n.txt")
    NotificationHandlers(bus=bus, sink=sink)

    bus.publish(ScheduleUpdated(schedule_id=1, change_type=ChangeType.DELETED))
    bus.publish(ScheduleOptimized(schedule_id=1, status=OptimizationStatus.FAILED))
    bus.publish(ConflictDetected(conflict_type=ConflictScope.GLOBAL))

    content = sink.path.read_text(encoding="utf-8")
    assert content.count("╔") == 3
    assert "Change Type: Deleted" in content
    assert "Status: Failed" in content
    assert "Conflict Type: Global" in content


def test_append_failure_is_logged_not_raised(tmp_path, caplog):
    bus = EventBus()
    sink = NotificationSink(tmp_path / "missing-dir" / "n.txt")
    NotificationHandlers(bus=bus, sink=sink)

    bus.publish(ScheduleUpdated(schedule_id=1, change_type=ChangeType.CREATED))

    assert "Failed to save notification" in caplog.text


@pytest.mark.asyncio
async def test_notifier_consumes_from_broker(
    tmp_path, broker, settings, fast_retry, eventually
):
    sink = NotificationSink(tmp_path / "n.txt")
    consumer = build_consumer(
        settings, sink, client_factory=broker.client, retry=fast_retry
    )
    task = asyncio.create_task(consumer.run())
    await asyncio.wait_for(consumer.ready.wait(), timeout=2)

    publisher = EventPublisher(settings, client_factory=broker.client, retry=fast_retry)
    await publisher.publish(ScheduleUpdated(schedule_id=8, change_type=ChangeType.CREATED))

    assert await eventually(lambda: sink.path.exists())
    assert "Schedule ID: 8" in sink.path.read_text(encoding="utf-8")

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
