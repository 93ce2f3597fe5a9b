"""Domain events published on the schedule exchange.

Each event variant travels under its own routing key. The routing key is
the tag of the union: ``decode_event`` picks the variant from it once, at
the transport boundary, and everything downstream works with typed models.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from typing import Union

from pydantic import Field

from timetable.domain.models import CamelModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventKind(StrEnum):
    UPDATED = "updated"
    OPTIMIZED = "optimized"
    CONFLICT = "conflict"

    @property
    def routing_key(self) -> str:
        return f"schedule.{self.value}"


class ChangeType(StrEnum):
    CREATED = "Created"
    UPDATED = "Updated"
    DELETED = "Deleted"
    PUBLISHED = "Published"
    ARCHIVED = "Archived"


class OptimizationStatus(StrEnum):
    STARTED = "Started"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"


class ConflictScope(StrEnum):
    INTERNAL = "Internal"
    GLOBAL = "Global"
    MULTIPLE = "Multiple"


# Schedule id carried by conflict events for a schedule that was never stored.
UNSAVED_SCHEDULE_ID = 0


class ScheduleUpdated(CamelModel):
    """Fired after a schedule is created, replaced, deleted or transitioned."""

    schedule_id: int
    updated_by: str = "System"
    change_type: ChangeType
    details: str = ""
    updated_at: datetime = Field(default_factory=_utcnow)


class ScheduleOptimized(CamelModel):
    """Lifecycle marker of one optimization run."""

    schedule_id: int
    schedule_name: str = ""
    status: OptimizationStatus
    windows_reduced: int = 0
    load_balance_improvement: float = 0.0
    conflicts_resolved: int = 0
    optimized_at: datetime = Field(default_factory=_utcnow)
    message: str = ""


class ConflictDetected(CamelModel):
    """Fired when a change is rejected, or an audit finds overlaps."""

    schedule_id: int = UNSAVED_SCHEDULE_ID
    conflict_type: ConflictScope
    affected_entities: list[str] = Field(default_factory=list)
    description: str = ""
    detected_at: datetime = Field(default_factory=_utcnow)


DomainEvent = Union[ScheduleUpdated, ScheduleOptimized, ConflictDetected]

EVENT_TYPES: dict[EventKind, type[DomainEvent]] = {
    EventKind.UPDATED: ScheduleUpdated,
    EventKind.OPTIMIZED: ScheduleOptimized,
    EventKind.CONFLICT: ConflictDetected,
}

_KINDS_BY_TYPE = {event_type: kind for kind, event_type in EVENT_TYPES.items()}
_KINDS_BY_ROUTING_KEY = {kind.routing_key: kind for kind in EventKind}


class UnknownRoutingKey(ValueError):
    pass


def kind_of(event: DomainEvent) -> EventKind:
    return _KINDS_BY_TYPE[type(event)]


def routing_key_for(event: DomainEvent) -> str:
    return kind_of(event).routing_key


def encode_event(event: DomainEvent) -> str:
    return event.model_dump_json(by_alias=True)


def decode_event(routing_key: str, payload: str | bytes) -> DomainEvent:
    """Turn a wire message back into its event variant.

    Raises ``UnknownRoutingKey`` for keys outside the schedule exchange and
    pydantic's ``ValidationError`` for payloads that don't fit the variant.
    """
    kind = _KINDS_BY_ROUTING_KEY.get(routing_key)
    if kind is None:
        raise UnknownRoutingKey(routing_key)
    return EVENT_TYPES[kind].model_validate_json(payload)
