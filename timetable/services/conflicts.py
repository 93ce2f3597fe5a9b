"""Service for detecting resource conflicts between schedule entries.

Both checks are plain pairwise scans: O(n²) within a schedule and O(n·m)
against the stored schedules. That is fine for timetables of a few dozen
entries each and is a known scaling limit. The scan order is fixed (entries
sorted by day then start time, attributes checked teacher, group, room) so
the produced conflict lists and their messages are deterministic.

Within a schedule identifiers must match exactly. Against stored schedules
they are trimmed and compared case-insensitively.
"""

from __future__ import annotations

from collections.abc import Iterable

from timetable.domain.models import Conflict, ConflictKind, Schedule, ScheduleEntry

_ATTRIBUTES = (
    (ConflictKind.TEACHER, "teacher"),
    (ConflictKind.GROUP, "group"),
    (ConflictKind.ROOM, "room"),
)


def _overlaps(a: ScheduleEntry, b: ScheduleEntry) -> bool:
    """Half-open overlap on the same day; touching boundaries don't collide."""
    return (
        a.day_of_week == b.day_of_week
        and a.start_time < b.end_time
        and b.start_time < a.end_time
    )


def _same_exact(left: str, right: str) -> bool:
    return bool(left) and left == right


def _same_folded(left: str, right: str) -> bool:
    left, right = left.strip(), right.strip()
    return bool(left) and bool(right) and left.casefold() == right.casefold()


def _sorted(entries: Iterable[ScheduleEntry]) -> list[ScheduleEntry]:
    return sorted(entries, key=lambda e: (e.day_of_week, e.start_time))


def _hh_mm(value) -> str:
    return value.strftime("%H:%M")


def _intra_description(kind: ConflictKind, value: str, a: ScheduleEntry) -> str:
    day, at = a.day_of_week.label, _hh_mm(a.start_time)
    if kind is ConflictKind.TEACHER:
        return f"Teacher '{value}' has overlapping classes on {day} at {at}"
    if kind is ConflictKind.GROUP:
        return f"Group '{value}' has overlapping classes on {day} at {at}"
    return f"Room '{value}' is double-booked on {day} at {at}"


def _cross_description(
    kind: ConflictKind, value: str, existing: ScheduleEntry, schedule_name: str
) -> str:
    when = (
        f"on {existing.day_of_week.label} from {_hh_mm(existing.start_time)} "
        f"to {_hh_mm(existing.end_time)} in schedule '{schedule_name}'"
    )
    if kind is ConflictKind.TEACHER:
        return f"Teacher '{value}' is already scheduled {when}"
    if kind is ConflictKind.GROUP:
        return f"Group '{value}' is already scheduled {when}"
    return f"Room '{value}' is already booked {when}"


def detect_intra_conflicts(entries: Iterable[ScheduleEntry]) -> list[Conflict]:
    """Return every resource collision between entries of one schedule.

    A single overlapping pair yields one conflict per shared attribute, so
    up to three (teacher, group, room).
    """
    ordered = _sorted(entries)
    conflicts: list[Conflict] = []
    for i, first in enumerate(ordered):
        for second in ordered[i + 1 :]:
            if not _overlaps(first, second):
                continue
            start = max(first.start_time, second.start_time)
            end = min(first.end_time, second.end_time)
            for kind, attr in _ATTRIBUTES:
                value = getattr(first, attr)
                if not _same_exact(value, getattr(second, attr)):
                    continue
                conflicts.append(
                    Conflict(
                        kind=kind,
                        first=first,
                        second=second,
                        day_of_week=first.day_of_week,
                        start_time=start,
                        end_time=end,
                        description=_intra_description(kind, value, first),
                    )
                )
    return conflicts


def detect_cross_conflicts(
    candidate_entries: Iterable[ScheduleEntry],
    other_schedules: Iterable[Schedule],
) -> list[Conflict]:
    """Return collisions between candidate entries and already stored schedules.

    The caller is responsible for leaving the schedule being replaced out of
    *other_schedules*.
    """
    others = list(other_schedules)
    conflicts: list[Conflict] = []
    for candidate in _sorted(candidate_entries):
        for schedule in others:
            for existing in schedule.entries:
                if not _overlaps(candidate, existing):
                    continue
                for kind, attr in _ATTRIBUTES:
                    value = getattr(candidate, attr)
                    if not _same_folded(value, getattr(existing, attr)):
                        continue
                    conflicts.append(
                        Conflict(
                            kind=kind,
                            first=candidate,
                            second=existing,
                            day_of_week=candidate.day_of_week,
                            start_time=max(candidate.start_time, existing.start_time),
                            end_time=min(candidate.end_time, existing.end_time),
                            description=_cross_description(
                                kind, value, existing, schedule.name
                            ),
                            other_schedule_id=schedule.id,
                            other_schedule_name=schedule.name,
                        )
                    )
    return conflicts
