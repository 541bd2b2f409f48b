from __future__ import annotations

import random
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, MutableSequence, Protocol

PRIORITY_ROUNDS = (1, 2, 3)


class RandomSource(Protocol):
    def shuffle(self, x: MutableSequence[Any]) -> None: ...


@dataclass(frozen=True)
class Application:
    reservation_id: int
    student_id: int
    slot_id: int
    priority: int


@dataclass
class LotteryOutcome:
    winners: list[Application] = field(default_factory=list)
    deleted_reservation_ids: list[int] = field(default_factory=list)
    remaining: list[Application] = field(default_factory=list)

    @property
    def winner_student_ids(self) -> set[int]:
        return {a.student_id for a in self.winners}


def draw_lottery(
    applications: Iterable[Application],
    *,
    capacities: Mapping[int, int],
    occupied: Mapping[int, int],
    already_confirmed: Iterable[int],
    rng: RandomSource | None = None,
) -> LotteryOutcome:
    """
    Resolve `applied` applications in three priority rounds.

    `capacities` maps slot id to max capacity and `occupied` to the count of
    reservations already holding a seat. Students in `already_confirmed` never
    win. When a slot is oversubscribed the applicants are shuffled and the
    first `remaining` are taken. Pure apart from `rng`.
    """
    rng = rng if rng is not None else random.SystemRandom()
    pending = sorted(applications, key=lambda a: (a.priority, a.slot_id, a.reservation_id))
    previously_confirmed = set(already_confirmed)
    remaining_seats = {
        slot_id: max(capacity - occupied.get(slot_id, 0), 0) for slot_id, capacity in capacities.items()
    }

    outcome = LotteryOutcome()
    won: set[int] = set()

    for priority in PRIORITY_ROUNDS:
        by_slot: dict[int, list[Application]] = defaultdict(list)
        for app in pending:
            if app.priority != priority:
                continue
            if app.student_id in won or app.student_id in previously_confirmed:
                continue
            by_slot[app.slot_id].append(app)

        for slot_id in sorted(by_slot):
            # A student can only take one seat per run, even across slots of the same round.
            applicants = _one_per_student(a for a in by_slot[slot_id] if a.student_id not in won)
            seats = remaining_seats.get(slot_id, 0)
            if seats <= 0 or not applicants:
                continue
            if len(applicants) > seats:
                rng.shuffle(applicants)
                applicants = applicants[:seats]
            for app in applicants:
                if app.student_id in won:
                    continue
                outcome.winners.append(app)
                won.add(app.student_id)
                seats -= 1
            remaining_seats[slot_id] = seats

    winning_ids = {a.reservation_id for a in outcome.winners}
    prune_students = won | previously_confirmed
    for app in pending:
        if app.reservation_id in winning_ids:
            continue
        if app.student_id in prune_students:
            outcome.deleted_reservation_ids.append(app.reservation_id)
        else:
            outcome.remaining.append(app)
    return outcome


def _one_per_student(applications: Iterable[Application]) -> list[Application]:
    """Duplicate applications of one student to one slot compete as a single entry."""
    seen: set[int] = set()
    unique: list[Application] = []
    for app in applications:
        if app.student_id in seen:
            continue
        seen.add(app.student_id)
        unique.append(app)
    return unique
