"""Domain models for the timetable scheduling system."""

from __future__ import annotations

from datetime import datetime, time, timezone
from enum import IntEnum, StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class DayOfWeek(IntEnum):
    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6

    @property
    def label(self) -> str:
        return self.name.title()


class ScheduleStatus(StrEnum):
    DRAFT = "Draft"
    OPTIMIZING = "Optimizing"
    OPTIMIZED = "Optimized"
    PUBLISHED = "Published"
    ARCHIVED = "Archived"


class ConflictKind(StrEnum):
    TEACHER = "teacher"
    GROUP = "group"
    ROOM = "room"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model that speaks camelCase JSON and accepts either spelling."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Core domain models
# ---------------------------------------------------------------------------


class ScheduleEntry(CamelModel):
    model_config = ConfigDict(frozen=True)

    subject: str
    teacher: str
    group: str
    room: str
    day_of_week: DayOfWeek
    start_time: time
    end_time: time

    @model_validator(mode="after")
    def _end_after_start(self) -> ScheduleEntry:
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class Schedule(CamelModel):
    id: int
    name: str
    status: ScheduleStatus = ScheduleStatus.DRAFT
    created_at: datetime = Field(default_factory=_utcnow)
    last_optimized_at: datetime | None = None
    entries: list[ScheduleEntry] = Field(default_factory=list)


class Conflict(CamelModel):
    """A pairwise resource collision between two entries."""

    kind: ConflictKind
    first: ScheduleEntry
    second: ScheduleEntry
    day_of_week: DayOfWeek
    start_time: time
    end_time: time
    description: str
    other_schedule_id: int | None = None
    other_schedule_name: str | None = None


class SystemStatistics(CamelModel):
    total_schedules: int = 0
    total_optimizations: int = 0
    total_conflicts_detected: int = 0
    total_updates: int = 0
    average_optimization_time: float = 0.0
    last_updated: datetime = Field(default_factory=_utcnow)


class ScheduleMetrics(CamelModel):
    schedule_id: int
    total_windows: int = 0
    total_conflicts: int = 0
    average_load_balance: float = 0.0
    optimization_count: int = 0
    last_calculated: datetime = Field(default_factory=_utcnow)


class AnalyticsEvent(CamelModel):
    type: str
    routing_key: str
    payload: str
    timestamp: datetime = Field(default_factory=_utcnow)


class OptimizationResult(CamelModel):
    schedule_id: int
    success: bool
    windows_reduced: int = 0
    load_balance_improvement: float = 0.0
    conflicts_resolved: int = 0
    completed_at: datetime = Field(default_factory=_utcnow)
    message: str = ""


# ---------------------------------------------------------------------------
# Request / Response DTOs
# ---------------------------------------------------------------------------


class ScheduleEntryRequest(CamelModel):
    """Entry as submitted by a client; checked by the store, not here."""

    subject: str = ""
    teacher: str = ""
    group: str = ""
    room: str = ""
    day_of_week: DayOfWeek
    start_time: time
    end_time: time


class ScheduleRequest(CamelModel):
    name: str = ""
    entries: list[ScheduleEntryRequest] = Field(default_factory=list)


class ConflictReport(CamelModel):
    conflicts: list[str]


class OptimizationAccepted(CamelModel):
    message: str = "Optimization started"
    schedule_id: int
