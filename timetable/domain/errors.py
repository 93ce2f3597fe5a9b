"""Errors raised by the schedule store and the messaging layer."""

from __future__ import annotations

from timetable.domain.events import ConflictScope
from timetable.domain.models import Conflict


class ScheduleError(Exception):
    pass


class ValidationError(ScheduleError):
    """Malformed schedule input."""


class ConflictError(ScheduleError):
    """Entries overlap within the schedule or with stored schedules."""

    def __init__(
        self, message: str, scope: ConflictScope, conflicts: list[Conflict]
    ) -> None:
        super().__init__(message)
        self.message = message
        self.scope = scope
        self.conflicts = conflicts

    @property
    def descriptions(self) -> list[str]:
        return [c.description for c in self.conflicts]


class NotFoundError(ScheduleError):
    def __init__(self, schedule_id: int) -> None:
        super().__init__(f"Schedule {schedule_id} not found")
        self.schedule_id = schedule_id


class PublishError(ScheduleError):
    """The broker could not take an event."""


class ConsumerSetupError(ScheduleError):
    """A consumer could not (re)connect within its retry budget."""
