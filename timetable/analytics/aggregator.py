"""Folds the schedule event stream into system statistics."""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime, timezone

from timetable.domain.bus import EventBus
from timetable.domain.events import (
    ChangeType,
    ConflictDetected,
    DomainEvent,
    OptimizationStatus,
    ScheduleOptimized,
    ScheduleUpdated,
    encode_event,
    kind_of,
    routing_key_for,
)
from timetable.domain.models import AnalyticsEvent, ScheduleMetrics, SystemStatistics

logger = logging.getLogger(__name__)

RECENT_EVENTS_LIMIT = 50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnalyticsAggregator:
    """Running counters fed by exactly one consumer loop.

    The total schedule count is the size of the active-id set, so a
    duplicated "Created" for the same id does not inflate it. Other counters
    are plain increments and do count duplicate deliveries.
    """

    def __init__(self, recent_limit: int = RECENT_EVENTS_LIMIT) -> None:
        self._lock = threading.Lock()
        self._active_ids: set[int] = set()
        self._total_optimizations = 0
        self._total_conflicts = 0
        self._total_updates = 0
        self._metrics: dict[int, ScheduleMetrics] = {}
        self._events: deque[AnalyticsEvent] = deque(maxlen=recent_limit)
        self._started_at: dict[int, datetime] = {}
        self._durations: list[float] = []
        self._last_updated = _utcnow()

    def register(self, bus: EventBus) -> None:
        bus.subscribe(ScheduleUpdated, self.on_schedule_updated)
        bus.subscribe(ScheduleOptimized, self.on_schedule_optimized)
        bus.subscribe(ConflictDetected, self.on_conflict_detected)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_schedule_updated(self, event: ScheduleUpdated) -> None:
        with self._lock:
            self._record(event)
            self._total_updates += 1
            if event.schedule_id <= 0:
                return
            if event.change_type == ChangeType.CREATED:
                self._active_ids.add(event.schedule_id)
                self._metrics.setdefault(
                    event.schedule_id, ScheduleMetrics(schedule_id=event.schedule_id)
                )
            elif event.change_type == ChangeType.DELETED:
                self._active_ids.discard(event.schedule_id)
        logger.info(
            "Update recorded for schedule %s (%s)", event.schedule_id, event.change_type
        )

    def on_schedule_optimized(self, event: ScheduleOptimized) -> None:
        with self._lock:
            self._record(event)
            self._total_optimizations += 1
            if event.status == OptimizationStatus.STARTED:
                self._started_at[event.schedule_id] = event.optimized_at
            elif event.status in (
                OptimizationStatus.COMPLETED,
                OptimizationStatus.FAILED,
            ):
                started = self._started_at.pop(event.schedule_id, None)
                if started is not None:
                    elapsed = (event.optimized_at - started).total_seconds()
                    self._durations.append(max(0.0, elapsed))
                if event.status == OptimizationStatus.COMPLETED:
                    self._fold_optimization(event)
        logger.info(
            "Optimization event for schedule %s: %s", event.schedule_id, event.status
        )

    def on_conflict_detected(self, event: ConflictDetected) -> None:
        with self._lock:
            self._record(event)
            self._total_conflicts += 1
        logger.info(
            "Conflict recorded for schedule %s (%s)",
            event.schedule_id,
            event.conflict_type,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> SystemStatistics:
        with self._lock:
            average = (
                round(sum(self._durations) / len(self._durations), 3)
                if self._durations
                else 0.0
            )
            return SystemStatistics(
                total_schedules=len(self._active_ids),
                total_optimizations=self._total_optimizations,
                total_conflicts_detected=self._total_conflicts,
                total_updates=self._total_updates,
                average_optimization_time=average,
                last_updated=self._last_updated,
            )

    def schedule_metrics(self, schedule_id: int) -> ScheduleMetrics | None:
        with self._lock:
            metrics = self._metrics.get(schedule_id)
            return metrics.model_copy() if metrics else None

    def update_schedule_metrics(self, schedule_id: int, metrics: ScheduleMetrics) -> None:
        with self._lock:
            self._metrics[schedule_id] = metrics.model_copy(
                update={"schedule_id": schedule_id}
            )

    def recent_events(self, limit: int = RECENT_EVENTS_LIMIT) -> list[AnalyticsEvent]:
        """Most recent events first."""
        with self._lock:
            return list(reversed(self._events))[:limit]

    def reset(self) -> None:
        with self._lock:
            self._active_ids.clear()
            self._total_optimizations = 0
            self._total_conflicts = 0
            self._total_updates = 0
            self._metrics.clear()
            self._events.clear()
            self._started_at.clear()
            self._durations.clear()
            self._last_updated = _utcnow()

    # ------------------------------------------------------------------
    # Helpers (call with the lock held)
    # ------------------------------------------------------------------

    def _record(self, event: DomainEvent) -> None:
        self._events.append(
            AnalyticsEvent(
                type=kind_of(event).value,
                routing_key=routing_key_for(event),
                payload=encode_event(event),
            )
        )
        self._last_updated = _utcnow()

    def _fold_optimization(self, event: ScheduleOptimized) -> None:
        metrics = self._metrics.get(event.schedule_id)
        if metrics is None:
            return
        count = metrics.optimization_count + 1
        average = (
            metrics.average_load_balance * metrics.optimization_count
            + event.load_balance_improvement
        ) / count
        self._metrics[event.schedule_id] = metrics.model_copy(
            update={
                "optimization_count": count,
                "average_load_balance": round(average, 2),
                "last_calculated": _utcnow(),
            }
        )
