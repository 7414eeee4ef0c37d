"""Estimated-timeline arithmetic for the phases of a work package.

Everything here is pure: functions operate on ``PhaseSlot`` snapshots and
mutate them in place, leaving persistence to the service layer. Dates are
plain calendar days; no weekend or holiday skipping is applied.

Rules maintained:

* ``estimated_end_date == estimated_start_date + phase_total_duration`` days
  whenever both the start and the duration are known.
* The first phase starts on the work package's effective start date unless its
  start date has been locked by a manual edit.
* Every later phase starts one day after the previous phase ends.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import StrEnum
from typing import Any

from bdcrm.workpackages.ordering import OrderedPhases


PHASE_GAP_DAYS = 1


class TimelineValidationError(ValueError):
    pass


class TimelineStatus(StrEnum):
    COMPLETE = "complete"
    UNSCHEDULED = "unscheduled"
    OVERDUE = "overdue"
    DUE_SOON = "due_soon"
    ON_TRACK = "on_track"


@dataclass(slots=True)
class PhaseSlot:
    id: uuid.UUID
    position: int
    phase_total_duration: int | None
    estimated_start_date: date | None
    estimated_end_date: date | None
    start_date_locked: bool = False

    @classmethod
    def from_phase(cls, phase: Any) -> PhaseSlot:
        return cls(
            id=phase.id,
            position=phase.position,
            phase_total_duration=phase.phase_total_duration,
            estimated_start_date=phase.estimated_start_date,
            estimated_end_date=phase.estimated_end_date,
            start_date_locked=bool(phase.start_date_locked),
        )

    def changes_from(self, phase: Any) -> dict[str, Any]:
        changes: dict[str, Any] = {}
        for field_name in (
            "phase_total_duration",
            "estimated_start_date",
            "estimated_end_date",
            "start_date_locked",
        ):
            value = getattr(self, field_name)
            if getattr(phase, field_name) != value:
                changes[field_name] = value
        return changes


@dataclass(slots=True)
class EstimatedDatePatch:
    estimated_start_date: date | None = None
    estimated_end_date: date | None = None
    phase_total_duration: int | None = None


def add_days(value: date, days: int) -> date:
    return value + timedelta(days=days)


def days_between(start: date, end: date) -> int:
    return (end - start).days


def validate_duration(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TimelineValidationError("phase_total_duration must be a whole number of days")
    if value < 0:
        raise TimelineValidationError("phase_total_duration cannot be negative")
    return value


def _end_for(slot: PhaseSlot, new_start: date) -> date | None:
    if slot.phase_total_duration is not None:
        return add_days(new_start, slot.phase_total_duration)
    if slot.estimated_start_date is not None and slot.estimated_end_date is not None:
        return add_days(slot.estimated_end_date, days_between(slot.estimated_start_date, new_start))
    return None


def resolve_date_patch(slot: PhaseSlot, patch: EstimatedDatePatch, *, default_start: date | None = None) -> None:
    """Apply an estimated-date edit to one phase.

    An explicit duration wins over an explicit end date; an end date wins
    over the end implied by moving the start. ``default_start`` places a
    phase that has never been scheduled.
    """
    start_given = patch.estimated_start_date is not None
    new_start = patch.estimated_start_date if start_given else (slot.estimated_start_date or default_start)

    if patch.phase_total_duration is not None:
        slot.phase_total_duration = validate_duration(patch.phase_total_duration)
        if new_start is not None:
            slot.estimated_end_date = add_days(new_start, slot.phase_total_duration)
    elif patch.estimated_end_date is not None:
        if new_start is not None and patch.estimated_end_date < new_start:
            raise TimelineValidationError("estimated_end_date cannot be before estimated_start_date")
        slot.estimated_end_date = patch.estimated_end_date
        if new_start is not None:
            slot.phase_total_duration = max(days_between(new_start, patch.estimated_end_date), 0)
    elif new_start is not None and new_start != slot.estimated_start_date:
        slot.estimated_end_date = _end_for(slot, new_start)

    slot.estimated_start_date = new_start

    if (
        slot.estimated_start_date is not None
        and slot.estimated_end_date is not None
        and slot.estimated_end_date < slot.estimated_start_date
    ):
        raise TimelineValidationError("estimated_end_date cannot be before estimated_start_date")


def anchor_first_phase(slot: PhaseSlot, anchor: date) -> bool:
    """Start ``slot`` on ``anchor``; returns whether its dates moved.

    A locked phase keeps its own start and only has its end recomputed. The
    lock is released once the anchor lands on that start.
    """
    if slot.start_date_locked and slot.estimated_start_date not in (None, anchor):
        new_end = _end_for(slot, slot.estimated_start_date)
        changed = new_end != slot.estimated_end_date
        slot.estimated_end_date = new_end
        return changed
    slot.start_date_locked = False
    new_end = _end_for(slot, anchor)
    changed = (slot.estimated_start_date, slot.estimated_end_date) != (anchor, new_end)
    slot.estimated_start_date = anchor
    slot.estimated_end_date = new_end
    return changed


def cascade_after(ordered: OrderedPhases[PhaseSlot], phase_id: uuid.UUID) -> list[PhaseSlot]:
    """Re-chain every phase after ``phase_id``; returns the slots that moved.

    Each later phase keeps its own duration and only changes place. The walk
    stops at the first phase whose predecessor has no end date.
    """
    previous = ordered.get(phase_id)
    moved: list[PhaseSlot] = []
    for slot in ordered.after(phase_id):
        if previous.estimated_end_date is None:
            break
        new_start = add_days(previous.estimated_end_date, PHASE_GAP_DAYS)
        new_end = _end_for(slot, new_start)
        if (slot.estimated_start_date, slot.estimated_end_date) != (new_start, new_end):
            slot.estimated_start_date = new_start
            slot.estimated_end_date = new_end
            moved.append(slot)
        previous = slot
    return moved


def build_timeline(ordered: OrderedPhases[PhaseSlot], anchor: date | None) -> list[PhaseSlot]:
    first = ordered.first
    if first is None or anchor is None:
        return []

    moved: list[PhaseSlot] = []
    if anchor_first_phase(first, anchor):
        moved.append(first)
    moved.extend(cascade_after(ordered, first.id))
    return moved


def default_start_for(ordered: OrderedPhases[PhaseSlot], phase_id: uuid.UUID, anchor: date | None) -> date | None:
    previous = ordered.previous(phase_id)
    if previous is None:
        return anchor
    if previous.estimated_end_date is None:
        return None
    return add_days(previous.estimated_end_date, PHASE_GAP_DAYS)


def expected_end_date(actual_end_date: datetime | None, estimated_end_date: date | None) -> date | None:
    if actual_end_date is not None:
        return actual_end_date.date()
    return estimated_end_date


def timeline_status(
    status: str,
    expected_end: date | None,
    *,
    today: date,
    due_soon_days: int,
) -> TimelineStatus:
    if status == "completed":
        return TimelineStatus.COMPLETE
    if expected_end is None:
        return TimelineStatus.UNSCHEDULED
    if expected_end < today:
        return TimelineStatus.OVERDUE
    if days_between(today, expected_end) <= due_soon_days:
        return TimelineStatus.DUE_SOON
    return TimelineStatus.ON_TRACK
