"""Tests for the analytics aggregator."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from timetable.analytics.aggregator import AnalyticsAggregator
from timetable.domain.bus import EventBus
from timetable.domain.events import (
    ChangeType,
    ConflictDetected,
    ConflictScope,
    OptimizationStatus,
    ScheduleOptimized,
    ScheduleUpdated,
)
from timetable.domain.models import ScheduleMetrics

_NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def env():
    bus = EventBus()
    aggregator = AnalyticsAggregator()
    aggregator.register(bus)
    return bus, aggregator


def _updated(schedule_id: int, change: ChangeType) -> ScheduleUpdated:
    return ScheduleUpdated(schedule_id=schedule_id, change_type=change)


def _optimized(schedule_id: int, status: OptimizationStatus, at: datetime, **kw) -> ScheduleOptimized:
    return ScheduleOptimized(schedule_id=schedule_id, status=status, optimized_at=at, **kw)


def test_starts_empty(env):
    _, aggregator = env
    stats = aggregator.snapshot()
    assert stats.total_schedules == 0
    assert stats.total_updates == 0
    assert stats.average_optimization_time == 0.0


@pytest.mark.parametrize("created,deleted", [(1, 0), (5, 2), (4, 4)])
def test_total_schedules_is_created_minus_deleted(env, created, deleted):
    bus, aggregator = env
    for schedule_id in range(1, created + 1):
        bus.publish(_updated(schedule_id, ChangeType.CREATED))
    for schedule_id in range(1, deleted + 1):
        bus.publish(_updated(schedule_id, ChangeType.DELETED))

    stats = aggregator.snapshot()
    assert stats.total_schedules == created - deleted
    assert stats.total_updates == created + deleted


def test_duplicate_created_does_not_inflate_schedule_count(env):
    bus, aggregator = env
    bus.publish(_updated(1, ChangeType.CREATED))
    bus.publish(_updated(1, ChangeType.CREATED))

    stats = aggregator.snapshot()
    assert stats.total_schedules == 1
    assert stats.total_updates == 2


def test_updated_change_type_only_counts_update(env):
    bus, aggregator = env
    bus.publish(_updated(1, ChangeType.CREATED))
    bus.publish(_updated(1, ChangeType.UPDATED))
    bus.publish(_updated(1, ChangeType.PUBLISHED))

    stats = aggregator.snapshot()
    assert stats.total_schedules == 1
    assert stats.total_updates == 3


def test_conflicts_counted(env):
    bus, aggregator = env
    bus.publish(ConflictDetected(conflict_type=ConflictScope.INTERNAL))
    bus.publish(ConflictDetected(schedule_id=3, conflict_type=ConflictScope.MULTIPLE))
    assert aggregator.snapshot().total_conflicts_detected == 2


def test_every_optimized_message_counts(env):
    bus, aggregator = env
    bus.publish(_optimized(1, OptimizationStatus.STARTED, _NOW))
    bus.publish(_optimized(1, OptimizationStatus.IN_PROGRESS, _NOW))
    bus.publish(_optimized(1, OptimizationStatus.COMPLETED, _NOW + timedelta(seconds=2)))
    assert aggregator.snapshot().total_optimizations == 3


def test_average_optimization_time(env):
    bus, aggregator = env
    bus.publish(_optimized(1, OptimizationStatus.STARTED, _NOW))
    bus.publish(_optimized(1, OptimizationStatus.COMPLETED, _NOW + timedelta(seconds=2)))
    bus.publish(_optimized(2, OptimizationStatus.STARTED, _NOW))
    bus.publish(_optimized(2, OptimizationStatus.FAILED, _NOW + timedelta(seconds=4)))

    assert aggregator.snapshot().average_optimization_time == pytest.approx(3.0)


def test_schedule_metrics_created_lazily(env):
    bus, aggregator = env
    assert aggregator.schedule_metrics(1) is None

    bus.publish(_updated(1, ChangeType.CREATED))

    metrics = aggregator.schedule_metrics(1)
    assert metrics is not None
    assert metrics.schedule_id == 1
    assert metrics.optimization_count == 0


def test_completed_optimization_folds_into_metrics(env):
    bus, aggregator = env
    bus.publish(_updated(1, ChangeType.CREATED))
    bus.publish(
        _optimized(1, OptimizationStatus.COMPLETED, _NOW, load_balance_improvement=80.0)
    )
    bus.publish(
        _optimized(1, OptimizationStatus.COMPLETED, _NOW, load_balance_improvement=100.0)
    )

    metrics = aggregator.schedule_metrics(1)
    assert metrics.optimization_count == 2
    assert metrics.average_load_balance == pytest.approx(90.0)


def test_caller_supplied_metrics(env):
    _, aggregator = env
    aggregator.update_schedule_metrics(4, ScheduleMetrics(schedule_id=4, total_windows=3))
    assert aggregator.schedule_metrics(4).total_windows == 3


def test_recent_events_newest_first_and_bounded():
    bus = EventBus()
    aggregator = AnalyticsAggregator(recent_limit=3)
    aggregator.register(bus)
    for schedule_id in range(1, 6):
        bus.publish(_updated(schedule_id, ChangeType.CREATED))

    events = aggregator.recent_events()
    assert len(events) == 3
    assert events[0].routing_key == "schedule.updated"
    assert events[0].type == "updated"
    assert '"scheduleId":5' in events[0].payload


def test_reset(env):
    bus, aggregator = env
    bus.publish(_updated(1, ChangeType.CREATED))
    aggregator.reset()
    assert aggregator.snapshot().total_schedules == 0
    assert aggregator.recent_events() == []
