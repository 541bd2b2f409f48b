from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from .errors import (
    CapacityExceededError,
    DuplicateReservationError,
    PriorityAlreadyTakenError,
    SlotNotOpenError,
)


@dataclass(frozen=True)
class Interval:
    """Half-open `[start, end)` in minutes since midnight."""

    start: int
    end: int

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and self.end > other.start

    def active_at(self, minute: int) -> bool:
        return self.start <= minute < self.end


def overlapping(existing: Iterable[Interval], candidate: Interval) -> list[Interval]:
    return [iv for iv in existing if iv.overlaps(candidate)]


def check_capacity(existing: Sequence[Interval], candidate: Interval, capacity: int) -> None:
    """
    Sweep-line admission check. The candidate spans the whole checked range, so
    it is admitted iff every breakpoint inside it has fewer than `capacity`
    existing intervals active. Raises CapacityExceededError otherwise.
    """
    hits = overlapping(existing, candidate)
    if not hits:
        return

    points = {candidate.start}
    for iv in hits:
        if candidate.start < iv.start < candidate.end:
            points.add(iv.start)
        if candidate.start < iv.end < candidate.end:
            points.add(iv.end)

    for minute in sorted(points):
        active = sum(1 for iv in hits if iv.active_at(minute))
        if active >= capacity:
            raise CapacityExceededError(capacity, at_minute=minute)


def peak_occupancy(intervals: Sequence[Interval]) -> int:
    """Maximum number of intervals active at any instant."""
    events: list[tuple[int, int]] = []
    for iv in intervals:
        events.append((iv.start, 1))
        events.append((iv.end, -1))
    # Ends sort before starts at the same minute (half-open).
    events.sort(key=lambda e: (e[0], e[1]))
    current = peak = 0
    for _, delta in events:
        current += delta
        peak = max(peak, current)
    return peak


@dataclass(frozen=True)
class SlotSnapshot:
    is_active: bool
    capacity: int
    existing: tuple[Interval, ...]
    user_has_active_reservation: bool
    lottery_mode: bool
    priority_taken: bool = False


def validate_reservation(snapshot: SlotSnapshot, *, candidate: Interval) -> None:
    """
    Pure validation: slot is open, no duplicate, priority free (lottery) or
    capacity available (direct). Raises domain errors otherwise.
    """
    if snapshot.user_has_active_reservation:
        raise DuplicateReservationError("student already has an active reservation for this slot")
    if not snapshot.is_active:
        raise SlotNotOpenError("slot is not active")
    if snapshot.lottery_mode:
        if snapshot.priority_taken:
            raise PriorityAlreadyTakenError("an application with this priority already exists")
        # Capacity is enforced when the lottery is drawn.
        return
    check_capacity(snapshot.existing, candidate, snapshot.capacity)
