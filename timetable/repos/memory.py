"""In-memory repository for schedules."""

from __future__ import annotations

from timetable.domain.models import Schedule


class ScheduleRepository:
    """Dict-backed store for Schedule instances, keyed by id.

    Ids come from a single counter and are never handed out twice, even
    after the schedule holding one is deleted. Not synchronized; the
    ``ScheduleStore`` owns locking.
    """

    def __init__(self) -> None:
        self._store: dict[int, Schedule] = {}
        self._next_id = 1

    def next_id(self) -> int:
        schedule_id = self._next_id
        self._next_id += 1
        return schedule_id

    def add(self, schedule: Schedule) -> None:
        self._store[schedule.id] = schedule

    def get(self, schedule_id: int) -> Schedule | None:
        return self._store.get(schedule_id)

    def list_all(self) -> list[Schedule]:
        return list(self._store.values())

    def list_others(self, schedule_id: int) -> list[Schedule]:
        return [s for s in self._store.values() if s.id != schedule_id]

    def replace(self, schedule: Schedule) -> None:
        self._store[schedule.id] = schedule

    def delete(self, schedule_id: int) -> Schedule | None:
        return self._store.pop(schedule_id, None)

    def clear(self) -> None:
        """Drop all schedules. The id counter keeps counting."""
        self._store.clear()
