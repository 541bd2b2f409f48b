from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from ..domain.actors import Actor
from ..domain.availability import remove_entry, upsert_entry
from ..domain.errors import (
    BookingWindowClosedError,
    CancellationWindowClosedError,
    CapacityExceededError,
    InvalidIntervalError,
    InvalidTransitionError,
    RecordNotFoundError,
    StudentAlreadyConfirmedError,
    TrainingTypeMismatchError,
    VersionConflictError,
)
from ..domain.repositories import ReservationRepository, SlotRepository, StudentRepository
from ..domain.services import Interval, SlotSnapshot, validate_reservation
from ..domain.timeslots import validate_custom_interval
from ..domain.training_config import TrainingConfig
from ..models import CancelledBy, Reservation, ReservationStatus, Slot, Student
from ..utils.time import duration_minutes, parse_hhmm, slot_start_utc_naive, utc_now_naive


@dataclass
class TransitionResult:
    reservation: Reservation
    slot: Slot
    student: Optional[Student]
    status_from: Optional[ReservationStatus]

    @property
    def changed(self) -> bool:
        return self.status_from != self.reservation.status


@dataclass(frozen=True)
class StudentProgress:
    student_id: int
    credited_minutes: int
    required_minutes: int
    completed_count: int

    @property
    def ratio(self) -> float:
        if self.required_minutes <= 0:
            return 1.0
        return min(self.credited_minutes / self.required_minutes, 1.0)


def _bump(reservation: Reservation, now: datetime) -> None:
    reservation.version += 1
    reservation.updated_at = now


async def book_reservation(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    student_repo: StudentRepository,
    *,
    config: TrainingConfig,
    slot_id: int,
    student_id: int,
    custom_start_time: Optional[str] = None,
    custom_end_time: Optional[str] = None,
    priority: Optional[int] = None,
    now: Optional[datetime] = None,
) -> TransitionResult:
    """
    Create a reservation: `applied` when the slot's training type is in
    lottery mode, otherwise `confirmed` after the capacity sweep admits it.
    The slot row is locked so the capacity read, the reservation insert and
    the cache update happen in one transaction.
    """
    now = now or utc_now_naive()
    student = await student_repo.get(student_id)
    if student is None:
        raise RecordNotFoundError("student not found")
    slot = await slot_repo.get_for_update(slot_id)
    if slot is None:
        raise RecordNotFoundError("slot not found")
    if student.training_type != slot.training_type:
        raise TrainingTypeMismatchError("slot is for a different training type")

    if (custom_start_time is None) != (custom_end_time is None):
        raise InvalidIntervalError("custom start and end must be given together")
    if custom_start_time is not None and custom_end_time is not None:
        start, end = validate_custom_interval(slot.start_time, slot.end_time, custom_start_time, custom_end_time)
    else:
        start, end = slot.start_time, slot.end_time
    if duration_minutes(start, end) > config.max_daily_minutes:
        raise InvalidIntervalError(f"interval exceeds the daily maximum of {config.max_daily_minutes} minutes")

    if now >= slot_start_utc_naive(slot.date, start) - timedelta(hours=config.booking_visibility_hours):
        raise BookingWindowClosedError(
            f"bookings close {config.booking_visibility_hours} hours before the start time"
        )

    lottery_mode = config.is_lottery_mode(slot.training_type)
    if lottery_mode and priority not in (1, 2, 3):
        raise ValueError("priority 1-3 is required while the lottery is open")

    existing = await res_repo.list_live_by_slot(slot.id)
    snapshot = SlotSnapshot(
        is_active=slot.is_active,
        capacity=slot.max_capacity,
        existing=tuple(
            Interval(parse_hhmm(r.custom_start_time), parse_hhmm(r.custom_end_time)) for r in existing
        ),
        user_has_active_reservation=await res_repo.student_has_active(slot.id, student.id),
        lottery_mode=lottery_mode,
        priority_taken=lottery_mode and priority is not None and await res_repo.priority_taken(student.id, priority),
    )
    validate_reservation(snapshot, candidate=Interval(parse_hhmm(start), parse_hhmm(end)))

    reservation = await res_repo.create(
        student_id=student.id,
        slot_id=slot.id,
        status=ReservationStatus.APPLIED if lottery_mode else ReservationStatus.CONFIRMED,
        slot_date=slot.date,
        slot_start_time=slot.start_time,
        slot_end_time=slot.end_time,
        slot_training_type=slot.training_type,
        custom_start_time=start,
        custom_end_time=end,
        priority=priority if lottery_mode else None,
        is_first_day=False,
    )
    slot.availability_cache = upsert_entry(slot.availability_cache, reservation)
    await slot_repo.save(slot)
    return TransitionResult(reservation=reservation, slot=slot, student=student, status_from=None)


async def _locked(res_repo: ReservationRepository, reservation_id: int) -> tuple[Reservation, Slot]:
    row = await res_repo.get_for_update(reservation_id)
    if row is None:
        raise RecordNotFoundError("reservation not found")
    return row


async def cancel_reservation(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    *,
    actor: Actor,
    reservation_id: int,
    config: TrainingConfig,
    version: Optional[int] = None,
    now: Optional[datetime] = None,
) -> TransitionResult:
    now = now or utc_now_naive()
    reservation, slot = await _locked(res_repo, reservation_id)
    if not actor.is_admin and reservation.student_id != actor.user_id:
        raise RecordNotFoundError("reservation not found")
    status_from = reservation.status
    # Idempotent: already cancelled returns as-is
    if reservation.status == ReservationStatus.CANCELLED:
        return TransitionResult(reservation=reservation, slot=slot, student=None, status_from=status_from)
    if version is not None and reservation.version != version:
        raise VersionConflictError("version mismatch")
    if reservation.status not in (ReservationStatus.APPLIED, ReservationStatus.CONFIRMED):
        raise InvalidTransitionError(f"cannot cancel a {reservation.status} reservation")
    if not actor.is_admin and _is_within_cutoff(reservation, now=now, hours=config.cancellation_deadline_hours):
        raise CancellationWindowClosedError(
            f"cancellation closes {config.cancellation_deadline_hours} hours before the start time; "
            "contact an administrator"
        )

    reservation.status = ReservationStatus.CANCELLED
    reservation.cancelled_at = now
    reservation.cancelled_by = CancelledBy.ADMIN if actor.is_admin else CancelledBy.STUDENT
    _bump(reservation, now)
    await res_repo.save(reservation)
    slot.availability_cache = remove_entry(slot.availability_cache, reservation.id)
    await slot_repo.save(slot)
    return TransitionResult(reservation=reservation, slot=slot, student=None, status_from=status_from)


async def confirm_reservation(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    *,
    reservation_id: int,
    now: Optional[datetime] = None,
) -> TransitionResult:
    """
    Manual admin approval of a pending application. Holds the same limits as a
    lottery win: one confirmed placement per student, and confirmed plus
    completed reservations never exceed the slot capacity.
    """
    now = now or utc_now_naive()
    reservation, slot = await _locked(res_repo, reservation_id)
    status_from = reservation.status
    if reservation.status == ReservationStatus.CONFIRMED:
        return TransitionResult(reservation=reservation, slot=slot, student=None, status_from=status_from)
    if reservation.status != ReservationStatus.APPLIED:
        raise InvalidTransitionError(f"cannot confirm a {reservation.status} reservation")
    if await res_repo.list_by_student(reservation.student_id, ReservationStatus.CONFIRMED):
        raise StudentAlreadyConfirmedError("student already holds a confirmed placement")
    occupied = (await res_repo.occupied_counts([slot.id])).get(slot.id, 0)
    if occupied >= slot.max_capacity:
        raise CapacityExceededError(slot.max_capacity)

    reservation.status = ReservationStatus.CONFIRMED
    _bump(reservation, now)
    await res_repo.save(reservation)
    slot.availability_cache = upsert_entry(slot.availability_cache, reservation, expect_existing=True)
    await slot_repo.save(slot)
    return TransitionResult(reservation=reservation, slot=slot, student=None, status_from=status_from)


def default_actual_minutes(reservation: Reservation) -> int:
    if reservation.check_in_time and reservation.check_out_time:
        return max(duration_minutes(reservation.check_in_time, reservation.check_out_time), 0)
    return duration_minutes(reservation.custom_start_time, reservation.custom_end_time)


async def complete_reservation(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    *,
    reservation_id: int,
    actual_minutes: Optional[int] = None,
    now: Optional[datetime] = None,
) -> TransitionResult:
    """Approve attendance, or correct the credited minutes of a completed record."""
    now = now or utc_now_naive()
    if actual_minutes is not None and actual_minutes < 0:
        raise ValueError("actual_minutes must be >= 0")
    reservation, slot = await _locked(res_repo, reservation_id)
    status_from = reservation.status

    if reservation.status == ReservationStatus.COMPLETED:
        if actual_minutes is None:
            raise InvalidTransitionError("reservation is already completed")
        reservation.actual_minutes = actual_minutes
        _bump(reservation, now)
        await res_repo.save(reservation)
        return TransitionResult(reservation=reservation, slot=slot, student=None, status_from=status_from)
    if reservation.status != ReservationStatus.CONFIRMED:
        raise InvalidTransitionError(f"cannot complete a {reservation.status} reservation")

    reservation.status = ReservationStatus.COMPLETED
    reservation.actual_minutes = actual_minutes if actual_minutes is not None else default_actual_minutes(reservation)
    _bump(reservation, now)
    await res_repo.save(reservation)
    slot.availability_cache = upsert_entry(slot.availability_cache, reservation, expect_existing=True)
    await slot_repo.save(slot)
    return TransitionResult(reservation=reservation, slot=slot, student=None, status_from=status_from)


async def delete_reservation(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    *,
    reservation_id: int,
) -> TransitionResult:
    reservation, slot = await _locked(res_repo, reservation_id)
    status_from = reservation.status
    if reservation.status == ReservationStatus.CANCELLED:
        # Cancelled records were already stripped; only drop a stale entry if one exists.
        slot.availability_cache = [
            e for e in (slot.availability_cache or []) if e.get("reservation_id") != reservation.id
        ]
    else:
        slot.availability_cache = remove_entry(slot.availability_cache, reservation.id)
    await res_repo.delete(reservation)
    await slot_repo.save(slot)
    return TransitionResult(reservation=reservation, slot=slot, student=None, status_from=status_from)


async def list_student_reservations(
    res_repo: ReservationRepository,
    *,
    student_id: int,
    status: Optional[ReservationStatus] = None,
) -> list[tuple[Reservation, Slot]]:
    return await res_repo.list_by_student(student_id, status)


async def list_reservations(
    res_repo: ReservationRepository,
    *,
    status: Optional[ReservationStatus] = None,
    day: Optional[date] = None,
) -> list[Reservation]:
    """Admin queue: every reservation, optionally narrowed to one status and one training day."""
    return await res_repo.search(status=status, day=day)


async def get_student_reservation(
    res_repo: ReservationRepository,
    *,
    reservation_id: int,
    student_id: int,
) -> tuple[Reservation, Slot] | None:
    row = await res_repo.get(reservation_id)
    if row is None or row[0].student_id != student_id:
        return None
    return row


async def student_progress(
    res_repo: ReservationRepository,
    *,
    student_id: int,
    config: TrainingConfig,
) -> StudentProgress:
    """Credited minutes are always summed from completed reservations, never stored."""
    minutes, count = await res_repo.completed_minutes(student_id)
    return StudentProgress(
        student_id=student_id,
        credited_minutes=minutes,
        required_minutes=config.required_minutes,
        completed_count=count,
    )


def _is_within_cutoff(reservation: Reservation, *, now: datetime, hours: int) -> bool:
    """True when `now` (naive UTC) is at or past `hours` before the reservation's own start."""
    starts_at = slot_start_utc_naive(reservation.slot_date, reservation.custom_start_time)
    return now >= starts_at - timedelta(hours=hours)
