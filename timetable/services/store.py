"""Authoritative schedule store: validation, conflict checks and commits."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone

from timetable.domain.errors import ConflictError, NotFoundError, ValidationError
from timetable.domain.events import ConflictScope
from timetable.domain.models import (
    Conflict,
    Schedule,
    ScheduleEntry,
    ScheduleEntryRequest,
    ScheduleRequest,
    ScheduleStatus,
)
from timetable.repos.memory import ScheduleRepository
from timetable.services.conflicts import detect_cross_conflicts, detect_intra_conflicts

logger = logging.getLogger(__name__)

# Status changes a client may request directly; the optimizer moves through
# Optimizing/Optimized via its own operations.
_EXTERNAL_TRANSITIONS: dict[ScheduleStatus, set[ScheduleStatus]] = {
    ScheduleStatus.DRAFT: {ScheduleStatus.PUBLISHED, ScheduleStatus.ARCHIVED},
    ScheduleStatus.OPTIMIZING: {ScheduleStatus.ARCHIVED},
    ScheduleStatus.OPTIMIZED: {ScheduleStatus.PUBLISHED, ScheduleStatus.ARCHIVED},
    ScheduleStatus.PUBLISHED: {ScheduleStatus.ARCHIVED},
    ScheduleStatus.ARCHIVED: set(),
}

_OPTIMIZABLE = {
    ScheduleStatus.DRAFT,
    ScheduleStatus.OPTIMIZING,
    ScheduleStatus.OPTIMIZED,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _validated_entry(entry: ScheduleEntryRequest) -> ScheduleEntry:
    if not all(
        field.strip()
        for field in (entry.subject, entry.teacher, entry.group, entry.room)
    ):
        raise ValidationError(
            "All fields (subject, teacher, group, room) must be filled"
        )
    if entry.end_time <= entry.start_time:
        raise ValidationError("End time must be after start time")
    return ScheduleEntry(**entry.model_dump())


def validate_request(request: ScheduleRequest) -> list[ScheduleEntry]:
    """Check field completeness and time ordering; return frozen entries."""
    if not request.name.strip():
        raise ValidationError("Schedule name is required")
    return [_validated_entry(entry) for entry in request.entries]


class ScheduleStore:
    """Owns every schedule and serializes all mutations.

    Each mutation runs validation, both conflict checks and the commit under
    one lock, so two writers can never both commit entries that collide with
    each other. Reads hand out deep copies.
    """

    def __init__(self, repo: ScheduleRepository | None = None) -> None:
        self._repo = repo or ScheduleRepository()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, schedule_id: int) -> Schedule:
        with self._lock:
            return self._require(schedule_id).model_copy(deep=True)

    def list(self) -> list[Schedule]:
        with self._lock:
            return [s.model_copy(deep=True) for s in self._repo.list_all()]

    def check_conflicts(self, schedule_id: int) -> list[Conflict]:
        """Re-run both checks for a stored schedule against the current state."""
        with self._lock:
            schedule = self._require(schedule_id)
            return detect_intra_conflicts(schedule.entries) + detect_cross_conflicts(
                schedule.entries, self._repo.list_others(schedule_id)
            )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(self, request: ScheduleRequest) -> Schedule:
        entries = validate_request(request)
        with self._lock:
            self._check(request.name, entries, self._repo.list_all())
            schedule = Schedule(
                id=self._repo.next_id(),
                name=request.name,
                status=ScheduleStatus.DRAFT,
                created_at=_utcnow(),
                entries=entries,
            )
            self._repo.add(schedule)
            logger.info("Created schedule %s '%s'", schedule.id, schedule.name)
            return schedule.model_copy(deep=True)

    def update(self, schedule_id: int, request: ScheduleRequest) -> Schedule:
        with self._lock:
            existing = self._require(schedule_id)
            if existing.status == ScheduleStatus.ARCHIVED:
                raise ValidationError(f"Schedule {schedule_id} is archived")
            entries = validate_request(request)
            self._check(request.name, entries, self._repo.list_others(schedule_id))
            schedule = existing.model_copy(
                update={
                    "name": request.name,
                    "entries": entries,
                    "status": ScheduleStatus.DRAFT,
                },
                deep=True,
            )
            self._repo.replace(schedule)
            logger.info("Updated schedule %s '%s'", schedule.id, schedule.name)
            return schedule.model_copy(deep=True)

    def delete(self, schedule_id: int) -> Schedule:
        with self._lock:
            removed = self._repo.delete(schedule_id)
            if removed is None:
                raise NotFoundError(schedule_id)
            logger.info("Deleted schedule %s", schedule_id)
            return removed

    def mark_optimizing(self, schedule_id: int) -> Schedule:
        with self._lock:
            schedule = self._require(schedule_id)
            if schedule.status not in _OPTIMIZABLE:
                raise ValidationError(
                    f"Cannot optimize schedule {schedule_id} in status {schedule.status}"
                )
            schedule.status = ScheduleStatus.OPTIMIZING
            return schedule.model_copy(deep=True)

    def apply_optimization_result(
        self,
        schedule_id: int,
        entries: list[ScheduleEntry],
        status: ScheduleStatus = ScheduleStatus.OPTIMIZED,
    ) -> Schedule:
        with self._lock:
            schedule = self._require(schedule_id)
            if schedule.status != ScheduleStatus.OPTIMIZING:
                raise ValidationError(
                    f"Schedule {schedule_id} is no longer being optimized"
                )
            schedule.entries = list(entries)
            schedule.status = status
            schedule.last_optimized_at = _utcnow()
            return schedule.model_copy(deep=True)

    def transition(self, schedule_id: int, status: ScheduleStatus) -> Schedule:
        """Apply a client-requested status change (publish, archive)."""
        with self._lock:
            schedule = self._require(schedule_id)
            if status not in _EXTERNAL_TRANSITIONS[schedule.status]:
                raise ValidationError(
                    f"Cannot move schedule {schedule_id} from {schedule.status} to {status}"
                )
            schedule.status = status
            return schedule.model_copy(deep=True)

    def clear(self) -> None:
        with self._lock:
            self._repo.clear()

    # ------------------------------------------------------------------
    # Helpers (call with the lock held)
    # ------------------------------------------------------------------

    def _require(self, schedule_id: int) -> Schedule:
        schedule = self._repo.get(schedule_id)
        if schedule is None:
            raise NotFoundError(schedule_id)
        return schedule

    def _check(
        self, name: str, entries: list[ScheduleEntry], others: list[Schedule]
    ) -> None:
        conflicts = detect_intra_conflicts(entries)
        if conflicts:
            logger.info(
                "Rejecting schedule '%s': %d internal conflicts", name, len(conflicts)
            )
            raise ConflictError(
                "Schedule has conflicts", ConflictScope.INTERNAL, conflicts
            )
        conflicts = detect_cross_conflicts(entries, others)
        if conflicts:
            logger.info(
                "Rejecting schedule '%s': %d conflicts with existing schedules",
                name,
                len(conflicts),
            )
            raise ConflictError(
                "Schedule conflicts with existing schedules",
                ConflictScope.GLOBAL,
                conflicts,
            )
