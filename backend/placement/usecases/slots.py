from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from ..domain.availability import live_intervals
from ..domain.errors import RecordNotFoundError, SlotHasActiveReservationsError
from ..domain.repositories import ReservationRepository, SlotRepository
from ..domain.services import peak_occupancy
from ..domain.timeslots import bookable_intervals
from ..models import Slot, TrainingType
from ..utils.time import normalize_hhmm, parse_hhmm

DEFAULT_TEMPLATES: tuple[tuple[str, str], ...] = (
    ("09:00", "12:00"),
    ("13:00", "17:00"),
    ("17:30", "20:30"),
)


def _validate_bounds(start_time: str, end_time: str, capacity: int) -> tuple[str, str]:
    start = normalize_hhmm(start_time)
    end = normalize_hhmm(end_time)
    if parse_hhmm(start) >= parse_hhmm(end):
        raise ValueError("start_time must be earlier than end_time")
    if capacity < 1:
        raise ValueError("max_capacity must be >= 1")
    return start, end


async def list_availability(
    slot_repo: SlotRepository,
    *,
    start: date,
    end: date,
    training_type: TrainingType | None,
) -> List[Dict[str, Any]]:
    if start > end:
        raise ValueError("start must not be after end")
    slots = await slot_repo.list_in_range(start, end, training_type, only_active=True)
    items: List[Dict[str, Any]] = []
    for slot in slots:
        intervals = live_intervals(slot.availability_cache)
        peak = peak_occupancy(intervals)
        items.append(
            {
                "slot": slot,
                "booked": len(intervals),
                "peak": peak,
                "remaining": max(slot.max_capacity - peak, 0),
            }
        )
    return items


async def get_bookable_intervals(slot_repo: SlotRepository, *, slot_id: int) -> tuple[Slot, dict[str, list[str]]]:
    slot = await slot_repo.get(slot_id)
    if slot is None:
        raise RecordNotFoundError("slot not found")
    return slot, bookable_intervals(slot.start_time, slot.end_time)


async def create_slot(
    slot_repo: SlotRepository,
    *,
    slot_date: date,
    start_time: str,
    end_time: str,
    training_type: TrainingType,
    max_capacity: int,
    is_active: bool = True,
) -> Slot:
    start, end = _validate_bounds(start_time, end_time, max_capacity)
    return await slot_repo.create(
        slot_date=slot_date,
        start_time=start,
        end_time=end,
        training_type=training_type,
        max_capacity=max_capacity,
        is_active=is_active,
    )


async def bulk_create_slots(
    slot_repo: SlotRepository,
    *,
    slot_date: date,
    training_type: TrainingType,
    max_capacity: int,
    templates: Sequence[tuple[str, str]] = DEFAULT_TEMPLATES,
) -> List[Slot]:
    bounds = [_validate_bounds(s, e, max_capacity) for s, e in templates]
    created: List[Slot] = []
    for start, end in bounds:
        created.append(
            await slot_repo.create(
                slot_date=slot_date,
                start_time=start,
                end_time=end,
                training_type=training_type,
                max_capacity=max_capacity,
                is_active=True,
            )
        )
    return created


async def update_slot(
    slot_repo: SlotRepository,
    *,
    slot_id: int,
    start_time: Optional[str] = None,
    end_time: Optional[str] = None,
    max_capacity: Optional[int] = None,
    is_active: Optional[bool] = None,
) -> Slot:
    """Edit a slot's bounds. Existing reservations keep their booking-time snapshot."""
    slot = await slot_repo.get_for_update(slot_id)
    if slot is None:
        raise RecordNotFoundError("slot not found")
    start, end = _validate_bounds(
        start_time if start_time is not None else slot.start_time,
        end_time if end_time is not None else slot.end_time,
        max_capacity if max_capacity is not None else slot.max_capacity,
    )
    slot.start_time = start
    slot.end_time = end
    if max_capacity is not None:
        slot.max_capacity = max_capacity
    if is_active is not None:
        slot.is_active = is_active
    return await slot_repo.save(slot)


async def delete_slot(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    *,
    slot_id: int,
) -> None:
    slot = await slot_repo.get_for_update(slot_id)
    if slot is None:
        raise RecordNotFoundError("slot not found")
    active = await res_repo.count_active_by_slot(slot_id)
    if active > 0:
        raise SlotHasActiveReservationsError(f"slot has {active} active reservation(s)")
    await slot_repo.delete(slot)
