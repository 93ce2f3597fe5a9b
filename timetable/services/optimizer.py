"""Asynchronous schedule optimization with lifecycle events.

A run always ends with exactly one Completed or Failed event, after Started
and InProgress. The heuristic itself is a stable sort by day and start
time.
"""

from __future__ import annotations

import asyncio
import logging
import statistics
from collections import defaultdict
from datetime import datetime, timedelta, timezone

from timetable.domain.errors import PublishError
from timetable.domain.events import OptimizationStatus, ScheduleOptimized
from timetable.domain.models import (
    OptimizationResult,
    ScheduleEntry,
    ScheduleStatus,
)
from timetable.messaging.publisher import EventPublisher
from timetable.services.conflicts import detect_intra_conflicts
from timetable.services.store import ScheduleStore

logger = logging.getLogger(__name__)

WINDOW_THRESHOLD = timedelta(minutes=15)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _minutes(value) -> int:
    return value.hour * 60 + value.minute


def count_windows(
    entries: list[ScheduleEntry], threshold: timedelta = WINDOW_THRESHOLD
) -> int:
    """Count idle gaps longer than *threshold* between consecutive same-day entries."""
    by_day: dict[int, list[ScheduleEntry]] = defaultdict(list)
    for entry in entries:
        by_day[entry.day_of_week].append(entry)

    limit = threshold.total_seconds() / 60
    windows = 0
    for day_entries in by_day.values():
        day_entries.sort(key=lambda e: e.start_time)
        for current, following in zip(day_entries, day_entries[1:]):
            if _minutes(following.start_time) - _minutes(current.end_time) > limit:
                windows += 1
    return windows


def load_balance_score(entries: list[ScheduleEntry]) -> float:
    """100 for a perfectly even spread over the used days, less as it skews."""
    per_day: dict[int, int] = defaultdict(int)
    for entry in entries:
        per_day[entry.day_of_week] += 1
    if not per_day:
        return 0.0
    spread = statistics.pstdev(list(per_day.values()))
    return round(max(0.0, 100 - spread * 10), 2)


def reorder(entries: list[ScheduleEntry]) -> list[ScheduleEntry]:
    return sorted(entries, key=lambda e: (e.day_of_week, e.start_time))


class Optimizer:
    def __init__(
        self,
        store: ScheduleStore,
        publisher: EventPublisher,
        window_threshold: timedelta = WINDOW_THRESHOLD,
        delay: float = 0.0,
    ) -> None:
        self.store = store
        self.publisher = publisher
        self.window_threshold = window_threshold
        self.delay = delay
        self._runs: set[asyncio.Task] = set()

    async def start(self, schedule_id: int) -> asyncio.Task:
        """Mark the schedule optimizing, emit Started and detach the rest.

        Raises ``NotFoundError`` for an unknown id, before any event goes out.
        """
        schedule = self.store.mark_optimizing(schedule_id)
        await self._emit(
            schedule_id,
            schedule.name,
            OptimizationStatus.STARTED,
            message="Optimization process started",
        )
        task = asyncio.create_task(self._continue(schedule_id, schedule.name))
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)
        return task

    async def optimize(self, schedule_id: int) -> OptimizationResult:
        """Run a whole optimization inline and return its result."""
        try:
            schedule = self.store.mark_optimizing(schedule_id)
        except Exception as exc:
            return await self._fail(schedule_id, "", exc)
        await self._emit(
            schedule_id,
            schedule.name,
            OptimizationStatus.STARTED,
            message="Optimization process started",
        )
        return await self._continue(schedule_id, schedule.name)

    async def wait_idle(self) -> None:
        if self._runs:
            await asyncio.gather(*list(self._runs), return_exceptions=True)

    async def _continue(self, schedule_id: int, name: str) -> OptimizationResult:
        try:
            await self._emit(
                schedule_id,
                name,
                OptimizationStatus.IN_PROGRESS,
                message="Optimization in progress...",
            )
            result = await self._run(schedule_id)
        except Exception as exc:
            return await self._fail(schedule_id, name, exc)

        await self._emit(
            schedule_id,
            name,
            OptimizationStatus.COMPLETED,
            windows_reduced=result.windows_reduced,
            load_balance_improvement=result.load_balance_improvement,
            conflicts_resolved=result.conflicts_resolved,
            optimized_at=result.completed_at,
            message=result.message,
        )
        logger.info(
            "Optimization of schedule %s completed: windows reduced %d, conflicts resolved %d",
            schedule_id,
            result.windows_reduced,
            result.conflicts_resolved,
        )
        return result

    async def _run(self, schedule_id: int) -> OptimizationResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        schedule = self.store.get(schedule_id)
        if not schedule.entries:
            self.store.apply_optimization_result(
                schedule_id, [], ScheduleStatus.OPTIMIZED
            )
            return OptimizationResult(
                schedule_id=schedule_id, success=True, message="No entries to optimize"
            )

        logger.info(
            "Optimizing schedule %s with %d entries", schedule_id, len(schedule.entries)
        )
        windows_before = count_windows(schedule.entries, self.window_threshold)
        conflicts_before = len(detect_intra_conflicts(schedule.entries))

        entries = reorder(schedule.entries)

        windows_after = count_windows(entries, self.window_threshold)
        conflicts_after = len(detect_intra_conflicts(entries))
        self.store.apply_optimization_result(
            schedule_id, entries, ScheduleStatus.OPTIMIZED
        )

        return OptimizationResult(
            schedule_id=schedule_id,
            success=True,
            windows_reduced=max(0, windows_before - windows_after),
            load_balance_improvement=load_balance_score(entries),
            conflicts_resolved=max(0, conflicts_before - conflicts_after),
            completed_at=_utcnow(),
            message="Schedule optimized: entries sorted by day and time",
        )

    async def _fail(
        self, schedule_id: int, name: str, exc: Exception
    ) -> OptimizationResult:
        logger.error("Optimization failed for schedule %s: %s", schedule_id, exc)
        result = OptimizationResult(
            schedule_id=schedule_id,
            success=False,
            message=f"Optimization failed: {exc}",
        )
        await self._emit(
            schedule_id,
            name,
            OptimizationStatus.FAILED,
            optimized_at=result.completed_at,
            message=result.message,
        )
        return result

    async def _emit(
        self, schedule_id: int, name: str, status: OptimizationStatus, **fields
    ) -> None:
        event = ScheduleOptimized(
            schedule_id=schedule_id, schedule_name=name, status=status, **fields
        )
        try:
            await self.publisher.publish(event)
        except PublishError as exc:
            logger.error(
                "Could not publish %s event for schedule %s: %s", status, schedule_id, exc
            )
