"""Schedule operations that pair a store mutation with its domain event."""

from __future__ import annotations

import logging

from timetable.domain.errors import ConflictError, PublishError
from timetable.domain.events import (
    UNSAVED_SCHEDULE_ID,
    ChangeType,
    ConflictDetected,
    ConflictScope,
    DomainEvent,
    ScheduleUpdated,
)
from timetable.domain.models import Conflict, Schedule, ScheduleRequest, ScheduleStatus
from timetable.messaging.publisher import EventPublisher
from timetable.services.store import ScheduleStore

logger = logging.getLogger(__name__)


class ScheduleService:
    """Commits through the store first, then announces the outcome.

    Events are best effort: a ``PublishError`` is logged and the committed
    change stands. Rejected changes are announced as ``ConflictDetected``.
    """

    def __init__(self, store: ScheduleStore, publisher: EventPublisher) -> None:
        self.store = store
        self.publisher = publisher

    async def create(self, request: ScheduleRequest) -> Schedule:
        logger.info(
            "Checking conflicts for schedule '%s' with %d entries",
            request.name,
            len(request.entries),
        )
        try:
            schedule = self.store.create(request)
        except ConflictError as exc:
            await self._announce_conflict(UNSAVED_SCHEDULE_ID, request.name, exc)
            raise
        await self._announce(
            ScheduleUpdated(
                schedule_id=schedule.id,
                change_type=ChangeType.CREATED,
                details=f"Schedule '{schedule.name}' created",
            )
        )
        return schedule

    async def update(self, schedule_id: int, request: ScheduleRequest) -> Schedule:
        try:
            schedule = self.store.update(schedule_id, request)
        except ConflictError as exc:
            await self._announce_conflict(schedule_id, request.name, exc)
            raise
        await self._announce(
            ScheduleUpdated(
                schedule_id=schedule.id,
                change_type=ChangeType.UPDATED,
                details=f"Schedule '{schedule.name}' updated",
            )
        )
        return schedule

    async def delete(self, schedule_id: int) -> None:
        removed = self.store.delete(schedule_id)
        await self._announce(
            ScheduleUpdated(
                schedule_id=schedule_id,
                change_type=ChangeType.DELETED,
                details=f"Schedule '{removed.name}' deleted",
            )
        )

    async def publish(self, schedule_id: int) -> Schedule:
        return await self._transition(
            schedule_id, ScheduleStatus.PUBLISHED, ChangeType.PUBLISHED
        )

    async def archive(self, schedule_id: int) -> Schedule:
        return await self._transition(
            schedule_id, ScheduleStatus.ARCHIVED, ChangeType.ARCHIVED
        )

    async def check_conflicts(self, schedule_id: int) -> list[Conflict]:
        conflicts = self.store.check_conflicts(schedule_id)
        if conflicts:
            await self._announce(
                ConflictDetected(
                    schedule_id=schedule_id,
                    conflict_type=ConflictScope.MULTIPLE,
                    affected_entities=[c.description for c in conflicts],
                    description=f"Found {len(conflicts)} conflicts in schedule",
                )
            )
        return conflicts

    async def _transition(
        self, schedule_id: int, status: ScheduleStatus, change: ChangeType
    ) -> Schedule:
        schedule = self.store.transition(schedule_id, status)
        await self._announce(
            ScheduleUpdated(
                schedule_id=schedule_id,
                change_type=change,
                details=f"Schedule '{schedule.name}' {change.lower()}",
            )
        )
        return schedule

    async def _announce_conflict(
        self, schedule_id: int, name: str, exc: ConflictError
    ) -> None:
        if exc.scope == ConflictScope.GLOBAL:
            description = (
                f"Found {len(exc.conflicts)} conflicts with existing schedules for '{name}'"
            )
        else:
            description = (
                f"Found {len(exc.conflicts)} internal conflicts in schedule '{name}'"
            )
        await self._announce(
            ConflictDetected(
                schedule_id=schedule_id,
                conflict_type=exc.scope,
                affected_entities=exc.descriptions,
                description=description,
            )
        )

    async def _announce(self, event: DomainEvent) -> None:
        try:
            await self.publisher.publish(event)
        except PublishError as exc:
            logger.error("Event not published, state change kept: %s", exc)
