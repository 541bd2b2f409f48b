from datetime import date

import pytest
from fakes import FakeReservationRepo, FakeSlotRepo, Store
from placement.domain.errors import RecordNotFoundError, SlotHasActiveReservationsError
from placement.models import ReservationStatus, TrainingType
from placement.usecases import slots as uc

DAY = date(2026, 11, 2)


@pytest.mark.asyncio
async def test_create_slot_normalizes_times() -> None:
    store = Store()
    slot = await uc.create_slot(
        FakeSlotRepo(store),
        slot_date=DAY,
        start_time="9:00",
        end_time="12:00:00",
        training_type=TrainingType.II,
        max_capacity=4,
    )
    assert (slot.start_time, slot.end_time) == ("09:00", "12:00")
    assert slot.availability_cache == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("start", "end", "capacity"),
    [("12:00", "09:00", 4), ("09:00", "09:00", 4), ("09:00", "12:00", 0)],
)
async def test_create_slot_rejects_bad_bounds(start: str, end: str, capacity: int) -> None:
    with pytest.raises(ValueError):
        await uc.create_slot(
            FakeSlotRepo(Store()),
            slot_date=DAY,
            start_time=start,
            end_time=end,
            training_type=TrainingType.I,
            max_capacity=capacity,
        )


@pytest.mark.asyncio
async def test_bulk_create_uses_the_three_daily_templates() -> None:
    store = Store()
    created = await uc.bulk_create_slots(
        FakeSlotRepo(store), slot_date=DAY, training_type=TrainingType.IV, max_capacity=5
    )
    assert [(s.start_time, s.end_time) for s in created] == [
        ("09:00", "12:00"),
        ("13:00", "17:00"),
        ("17:30", "20:30"),
    ]
    assert all(s.training_type == TrainingType.IV for s in created)


@pytest.mark.asyncio
async def test_update_slot_does_not_touch_reservation_snapshots() -> None:
    store = Store()
    store.add_student(1)
    slot = store.add_slot(slot_date=DAY, start_time="08:30", end_time="12:00")
    reservation = store.add_reservation(slot, 1)

    updated = await uc.update_slot(FakeSlotRepo(store), slot_id=slot.id, end_time="13:00", max_capacity=8)
    assert (updated.end_time, updated.max_capacity) == ("13:00", 8)
    assert reservation.slot_end_time == "12:00"

    with pytest.raises(ValueError):
        await uc.update_slot(FakeSlotRepo(store), slot_id=slot.id, start_time="14:00")
    with pytest.raises(RecordNotFoundError):
        await uc.update_slot(FakeSlotRepo(store), slot_id=404, is_active=False)


@pytest.mark.asyncio
async def test_delete_slot_refuses_while_reservations_are_live() -> None:
    store = Store()
    store.add_student(1)
    slot = store.add_slot(slot_date=DAY)
    reservation = store.add_reservation(slot, 1)
    slot_repo, res_repo = FakeSlotRepo(store), FakeReservationRepo(store)

    with pytest.raises(SlotHasActiveReservationsError):
        await uc.delete_slot(slot_repo, res_repo, slot_id=slot.id)

    reservation.status = ReservationStatus.CANCELLED
    await uc.delete_slot(slot_repo, res_repo, slot_id=slot.id)
    assert slot.id not in store.slots
    assert reservation.id not in store.reservations


@pytest.mark.asyncio
async def test_availability_reports_peak_and_remaining() -> None:
    store = Store()
    for student_id in (1, 2, 3):
        store.add_student(student_id)
    slot = store.add_slot(slot_date=DAY, start_time="08:30", end_time="17:00", max_capacity=3)
    store.add_slot(slot_date=DAY, is_active=False)
    store.add_reservation(slot, 1, start="08:30", end="10:30")
    store.add_reservation(slot, 2, start="11:00", end="13:00")
    store.add_reservation(slot, 3, status=ReservationStatus.COMPLETED, start="08:30", end="10:30")

    rows = await uc.list_availability(FakeSlotRepo(store), start=DAY, end=DAY, training_type=None)
    assert len(rows) == 1
    assert rows[0]["booked"] == 2
    assert rows[0]["peak"] == 1
    assert rows[0]["remaining"] == 2

    with pytest.raises(ValueError):
        await uc.list_availability(FakeSlotRepo(store), start=DAY, end=date(2026, 11, 1), training_type=None)


@pytest.mark.asyncio
async def test_bookable_intervals_for_slot() -> None:
    store = Store()
    slot = store.add_slot(slot_date=DAY, start_time="13:00", end_time="17:00")
    found, intervals = await uc.get_bookable_intervals(FakeSlotRepo(store), slot_id=slot.id)
    assert found is slot
    assert list(intervals) == ["13:20", "15:00"]
    with pytest.raises(RecordNotFoundError):
        await uc.get_bookable_intervals(FakeSlotRepo(store), slot_id=404)
