import random
from collections import Counter
from typing import Any, MutableSequence

from placement.domain.lottery import Application, draw_lottery


class RecordingRandom:
    """Keeps the given order and records the pools it was asked to shuffle."""

    def __init__(self) -> None:
        self.calls: list[list[int]] = []

    def shuffle(self, x: MutableSequence[Any]) -> None:
        self.calls.append([a.reservation_id for a in x])


def _app(reservation_id: int, student_id: int, slot_id: int, priority: int) -> Application:
    return Application(reservation_id=reservation_id, student_id=student_id, slot_id=slot_id, priority=priority)


def test_single_seat_tie_picks_exactly_one() -> None:
    apps = [_app(1, 10, 100, 1), _app(2, 11, 100, 1), _app(3, 12, 100, 1)]
    outcome = draw_lottery(apps, capacities={100: 1}, occupied={}, already_confirmed=(), rng=random.Random(3))
    assert len(outcome.winners) == 1
    # Losers won nothing, so they stay applied for a later run.
    assert outcome.deleted_reservation_ids == []
    assert len(outcome.remaining) == 2


def test_single_seat_tie_is_uniform() -> None:
    rng = random.Random(20261018)
    apps = [_app(1, 10, 100, 1), _app(2, 11, 100, 1), _app(3, 12, 100, 1)]
    wins: Counter[int] = Counter()
    runs = 1000
    for _ in range(runs):
        outcome = draw_lottery(apps, capacities={100: 1}, occupied={}, already_confirmed=(), rng=rng)
        wins[outcome.winners[0].student_id] += 1
    assert set(wins) == {10, 11, 12}
    for count in wins.values():
        # Expected 333; this band is ~5 standard deviations wide.
        assert 250 <= count <= 420


def test_no_shuffle_when_everyone_fits() -> None:
    rng = RecordingRandom()
    apps = [_app(1, 10, 100, 1), _app(2, 11, 100, 1)]
    outcome = draw_lottery(apps, capacities={100: 3}, occupied={}, already_confirmed=(), rng=rng)
    assert {a.reservation_id for a in outcome.winners} == {1, 2}
    assert rng.calls == []


def test_occupied_seats_reduce_remaining_capacity() -> None:
    apps = [_app(1, 10, 100, 1), _app(2, 11, 100, 1)]
    outcome = draw_lottery(apps, capacities={100: 2}, occupied={100: 1}, already_confirmed=(), rng=RecordingRandom())
    assert [a.reservation_id for a in outcome.winners] == [1]
    assert [a.reservation_id for a in outcome.remaining] == [2]


def test_full_slot_admits_nobody() -> None:
    apps = [_app(1, 10, 100, 1)]
    outcome = draw_lottery(apps, capacities={100: 2}, occupied={100: 2}, already_confirmed=())
    assert outcome.winners == []
    assert [a.reservation_id for a in outcome.remaining] == [1]


def test_winner_of_first_round_is_pruned_from_later_rounds() -> None:
    apps = [
        _app(1, 10, 100, 1),
        _app(2, 10, 200, 2),
        _app(3, 11, 200, 2),
        _app(4, 10, 300, 3),
    ]
    outcome = draw_lottery(apps, capacities={100: 1, 200: 1, 300: 1}, occupied={}, already_confirmed=())
    assert [a.reservation_id for a in outcome.winners] == [1, 3]
    assert sorted(outcome.deleted_reservation_ids) == [2, 4]
    assert outcome.remaining == []


def test_capacity_carries_across_rounds() -> None:
    apps = [_app(1, 10, 100, 1), _app(2, 11, 100, 2), _app(3, 12, 100, 3)]
    outcome = draw_lottery(apps, capacities={100: 2}, occupied={}, already_confirmed=())
    assert [a.reservation_id for a in outcome.winners] == [1, 2]
    assert [a.reservation_id for a in outcome.remaining] == [3]


def test_previously_confirmed_students_never_win_and_are_pruned() -> None:
    apps = [_app(1, 10, 100, 1), _app(2, 11, 100, 1)]
    outcome = draw_lottery(apps, capacities={100: 5}, occupied={}, already_confirmed={10})
    assert [a.student_id for a in outcome.winners] == [11]
    assert outcome.deleted_reservation_ids == [1]


def test_student_wins_at_most_once_even_within_a_round() -> None:
    apps = [_app(1, 10, 100, 1), _app(2, 10, 200, 1)]
    outcome = draw_lottery(apps, capacities={100: 1, 200: 1}, occupied={}, already_confirmed=())
    assert len(outcome.winners) == 1
    assert outcome.deleted_reservation_ids == [2]


def test_seeded_runs_are_reproducible_and_exclusive() -> None:
    apps = [_app(i, 1000 + (i % 7), 100 + (i % 3), 1 + (i % 3)) for i in range(1, 31)]
    capacities = {100: 2, 101: 2, 102: 2}
    first = draw_lottery(apps, capacities=capacities, occupied={}, already_confirmed=(), rng=random.Random(42))
    second = draw_lottery(apps, capacities=capacities, occupied={}, already_confirmed=(), rng=random.Random(42))
    assert first.winners == second.winners

    winners_per_student = Counter(a.student_id for a in first.winners)
    assert all(count == 1 for count in winners_per_student.values())
    seats = Counter(a.slot_id for a in first.winners)
    assert all(count <= 2 for count in seats.values())
    winner_students = set(winners_per_student)
    assert all(a.student_id not in winner_students for a in first.remaining)


def test_duplicate_applications_of_one_student_take_one_seat() -> None:
    apps = [_app(1, 10, 100, 1), _app(2, 10, 100, 1), _app(3, 11, 100, 1)]
    outcome = draw_lottery(apps, capacities={100: 3}, occupied={}, already_confirmed=(), rng=random.Random(5))
    assert Counter(a.student_id for a in outcome.winners) == {10: 1, 11: 1}
    assert outcome.deleted_reservation_ids == [2]
    assert outcome.remaining == []


def test_duplicates_do_not_crowd_out_other_students() -> None:
    # Two seats: the duplicate of student 10 must not force a draw that can shut out student 11.
    apps = [_app(1, 10, 100, 1), _app(2, 10, 100, 1), _app(3, 11, 100, 1)]
    rng = RecordingRandom()
    outcome = draw_lottery(apps, capacities={100: 2}, occupied={}, already_confirmed=(), rng=rng)
    assert {a.student_id for a in outcome.winners} == {10, 11}
    assert rng.calls == []
