from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from ..domain.availability import upsert_entry
from ..domain.errors import InvalidTransitionError, RecordNotFoundError, StudentNumberMismatchError
from ..domain.repositories import ReservationRepository, SlotRepository, StudentRepository
from ..models import Reservation, ReservationStatus, Student
from ..utils.time import duration_minutes, jst_hhmm, jst_today, utc_now_naive
from .reservations import TransitionResult


@dataclass
class KioskBoard:
    awaiting_check_in: list[Reservation] = field(default_factory=list)
    checked_in: list[Reservation] = field(default_factory=list)
    students: dict[int, Student] = field(default_factory=dict)


async def kiosk_board(
    res_repo: ReservationRepository,
    student_repo: StudentRepository,
    *,
    day: date,
) -> KioskBoard:
    confirmed = await res_repo.list_for_day(day, ReservationStatus.CONFIRMED)
    board = KioskBoard(students=await student_repo.get_many(r.student_id for r in confirmed))
    for reservation in confirmed:
        if reservation.check_in_time and not reservation.check_out_time:
            board.checked_in.append(reservation)
        elif not reservation.check_in_time:
            board.awaiting_check_in.append(reservation)
    return board


async def _verified(
    res_repo: ReservationRepository,
    student_repo: StudentRepository,
    *,
    reservation_id: int,
    student_number: str,
    now: datetime,
):
    row = await res_repo.get_for_update(reservation_id)
    if row is None:
        raise RecordNotFoundError("reservation not found")
    reservation, slot = row
    student = await student_repo.get(reservation.student_id)
    if student is None:
        raise RecordNotFoundError("student not found")
    if student.student_number.strip().lower() != student_number.strip().lower():
        raise StudentNumberMismatchError("student number does not match")
    if reservation.status != ReservationStatus.CONFIRMED:
        raise InvalidTransitionError(f"cannot record attendance on a {reservation.status} reservation")
    if reservation.slot_date != jst_today(now):
        raise InvalidTransitionError("attendance can only be recorded on the reservation day")
    return reservation, slot, student


async def check_in(
    res_repo: ReservationRepository,
    student_repo: StudentRepository,
    *,
    reservation_id: int,
    student_number: str,
    now: Optional[datetime] = None,
) -> TransitionResult:
    now = now or utc_now_naive()
    reservation, slot, student = await _verified(
        res_repo, student_repo, reservation_id=reservation_id, student_number=student_number, now=now
    )
    if reservation.check_in_time:
        raise InvalidTransitionError("already checked in")
    reservation.check_in_time = jst_hhmm(now)
    reservation.version += 1
    reservation.updated_at = now
    await res_repo.save(reservation)
    return TransitionResult(reservation=reservation, slot=slot, student=student, status_from=reservation.status)


async def check_out(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    student_repo: StudentRepository,
    *,
    reservation_id: int,
    student_number: str,
    now: Optional[datetime] = None,
) -> TransitionResult:
    """Close the attendance interval and complete the reservation with the measured minutes."""
    now = now or utc_now_naive()
    reservation, slot, student = await _verified(
        res_repo, student_repo, reservation_id=reservation_id, student_number=student_number, now=now
    )
    if not reservation.check_in_time:
        raise InvalidTransitionError("not checked in")
    status_from = reservation.status
    reservation.check_out_time = jst_hhmm(now)
    reservation.actual_minutes = max(duration_minutes(reservation.check_in_time, reservation.check_out_time), 0)
    reservation.status = ReservationStatus.COMPLETED
    reservation.version += 1
    reservation.updated_at = now
    await res_repo.save(reservation)
    slot.availability_cache = upsert_entry(slot.availability_cache, reservation, expect_existing=True)
    await slot_repo.save(slot)
    return TransitionResult(reservation=reservation, slot=slot, student=student, status_from=status_from)
