"""Renders schedule events as text notifications and appends them to a file."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from timetable.domain.bus import EventBus
from timetable.domain.events import ConflictDetected, ScheduleOptimized, ScheduleUpdated

logger = logging.getLogger(__name__)

_WIDTH = 59
_STAMP = "%Y-%m-%d %H:%M:%S"


def _box(title: str, lines: list[str]) -> str:
    rule = "═" * _WIDTH
    block = [
        f"╔{rule}╗",
        f"║ {title.ljust(_WIDTH - 1)}║",
        f"╠{rule}╣",
        *(f" {line}" for line in lines),
        f"╚{rule}╝",
    ]
    return "\n".join(block) + "\n"


def render_optimized(event: ScheduleOptimized) -> str:
    return _box(
        "SCHEDULE OPTIMIZATION NOTIFICATION",
        [
            f"Schedule ID: {event.schedule_id}",
            f"Schedule Name: {event.schedule_name}",
            f"Status: {event.status}",
            f"Windows Reduced: {event.windows_reduced}",
            f"Load Balance Improvement: {event.load_balance_improvement}%",
            f"Conflicts Resolved: {event.conflicts_resolved}",
            f"Optimized At: {event.optimized_at.strftime(_STAMP)}",
            f"Message: {event.message}",
        ],
    )


def render_updated(event: ScheduleUpdated) -> str:
    return _box(
        "SCHEDULE UPDATE NOTIFICATION",
        [
            f"Schedule ID: {event.schedule_id}",
            f"Updated By: {event.updated_by}",
            f"Change Type: {event.change_type}",
            f"Details: {event.details}",
            f"Updated At: {event.updated_at.strftime(_STAMP)}",
        ],
    )


def render_conflict(event: ConflictDetected) -> str:
    return _box(
        "SCHEDULE CONFLICT DETECTED",
        [
            f"Schedule ID: {event.schedule_id}",
            f"Conflict Type: {event.conflict_type}",
            "Affected Entities:",
            *(f"  - {entity}" for entity in event.affected_entities),
            f"Description: {event.description}",
            f"Detected At: {event.detected_at.strftime(_STAMP)}",
        ],
    )


class NotificationSink:
    """Append-only text file of rendered notifications."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def append(self, text: str, at: datetime | None = None) -> None:
        stamp = (at or datetime.now()).strftime(_STAMP)
        with self.path.open("a", encoding="utf-8") as fh:
            fh.write(f"[{stamp}]\n{text}\n")


class NotificationHandlers:
    """Wires renderers to the bus; each rendered block goes to the sink."""

    def __init__(self, bus: EventBus, sink: NotificationSink) -> None:
        self.bus = bus
        self.sink = sink
        self._register()

    def _register(self) -> None:
        self.bus.subscribe(ScheduleOptimized, self.on_schedule_optimized)
        self.bus.subscribe(ScheduleUpdated, self.on_schedule_updated)
        self.bus.subscribe(ConflictDetected, self.on_conflict_detected)

    def on_schedule_optimized(self, event: ScheduleOptimized) -> None:
        self._save(render_optimized(event))

    def on_schedule_updated(self, event: ScheduleUpdated) -> None:
        self._save(render_updated(event))

    def on_conflict_detected(self, event: ConflictDetected) -> None:
        self._save(render_conflict(event))

    def _save(self, text: str) -> None:
        try:
            self.sink.append(text)
        except OSError as exc:
            logger.error("Failed to save notification to %s: %s", self.sink.path, exc)
        else:
            logger.info("Notification saved to %s", self.sink.path)
