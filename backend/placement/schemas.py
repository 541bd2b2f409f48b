from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_serializer, field_validator

from .models import CancelledBy, Reservation, ReservationStatus, Slot, TrainingType
from .utils.time import normalize_hhmm, utc_naive_to_jst


def _hhmm(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return normalize_hhmm(value)


class CacheEntryRead(BaseModel):
    start: str
    end: str
    status: ReservationStatus
    reservation_id: int


class SlotRead(BaseModel):
    slot_id: int
    date: date
    start_time: str
    end_time: str
    training_type: TrainingType
    max_capacity: int
    is_active: bool
    availability_cache: list[CacheEntryRead]

    @classmethod
    def from_db(cls, *, slot: Slot) -> "SlotRead":
        return cls(
            slot_id=slot.id,
            date=slot.date,
            start_time=slot.start_time,
            end_time=slot.end_time,
            training_type=slot.training_type,
            max_capacity=slot.max_capacity,
            is_active=slot.is_active,
            availability_cache=[CacheEntryRead(**e) for e in (slot.availability_cache or [])],
        )


class SlotAvailability(SlotRead):
    booked: int
    peak: int
    remaining: int


class SlotIntervals(BaseModel):
    slot_id: int
    start_time: str
    end_time: str
    intervals: dict[str, list[str]]


class SlotCreate(BaseModel):
    date: date
    start_time: str
    end_time: str
    training_type: TrainingType
    max_capacity: Optional[int] = Field(default=None, ge=1)
    is_active: bool = True

    @field_validator("start_time", "end_time")
    @classmethod
    def _normalize_times(cls, value: Optional[str]) -> Optional[str]:
        return _hhmm(value)


class SlotBulkCreate(BaseModel):
    date: date
    training_type: TrainingType
    max_capacity: Optional[int] = Field(default=None, ge=1)


class SlotUpdate(BaseModel):
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    max_capacity: Optional[int] = Field(default=None, ge=1)
    is_active: Optional[bool] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _normalize_times(cls, value: Optional[str]) -> Optional[str]:
        return _hhmm(value)


class ReservationCreate(BaseModel):
    slot_id: int
    custom_start_time: Optional[str] = None
    custom_end_time: Optional[str] = None
    priority: Optional[int] = Field(default=None, ge=1, le=3)


class ReservationCancel(BaseModel):
    version: Optional[int] = Field(default=None, ge=1)


class ReservationComplete(BaseModel):
    actual_minutes: Optional[int] = Field(default=None, ge=0)


class KioskVerify(BaseModel):
    student_number: str = Field(min_length=1, max_length=50)


class ReservationRead(BaseModel):
    reservation_id: int
    student_id: int
    slot_id: int
    status: ReservationStatus
    version: int
    slot_date: date
    slot_start_time: str
    slot_end_time: str
    slot_training_type: TrainingType
    custom_start_time: str
    custom_end_time: str
    priority: Optional[int]
    is_first_day: bool
    actual_minutes: Optional[int]
    check_in_time: Optional[str]
    check_out_time: Optional[str]
    cancelled_at: Optional[datetime]
    cancelled_by: Optional[CancelledBy]

    @field_serializer("cancelled_at")
    def _ser_datetime(self, dt: Optional[datetime]) -> Optional[str]:
        if dt is None:
            return None
        return utc_naive_to_jst(dt).isoformat()

    @classmethod
    def from_db(cls, *, reservation: Reservation) -> "ReservationRead":
        return cls(
            reservation_id=reservation.id,
            student_id=reservation.student_id,
            slot_id=reservation.slot_id,
            status=reservation.status,
            version=reservation.version,
            slot_date=reservation.slot_date,
            slot_start_time=reservation.slot_start_time,
            slot_end_time=reservation.slot_end_time,
            slot_training_type=reservation.slot_training_type,
            custom_start_time=reservation.custom_start_time,
            custom_end_time=reservation.custom_end_time,
            priority=reservation.priority,
            is_first_day=bool(reservation.is_first_day),
            actual_minutes=reservation.actual_minutes,
            check_in_time=reservation.check_in_time,
            check_out_time=reservation.check_out_time,
            cancelled_at=reservation.cancelled_at,
            cancelled_by=reservation.cancelled_by,
        )


class ProgressRead(BaseModel):
    student_id: int
    credited_minutes: int
    required_minutes: int
    completed_count: int
    ratio: float


class LotteryRunRead(BaseModel):
    status: str = "ok"
    winners: int
    deleted: int
    remaining: int


class RebuildRead(BaseModel):
    processed: int
    changed: list[int]


class DriftRead(BaseModel):
    drifted_slot_ids: list[int]


class RekeyRead(BaseModel):
    merged_students: int
    moved_reservations: int
    skipped_emails: list[str]
    conflicting_emails: list[str] = Field(default_factory=list)


class KioskEntry(BaseModel):
    reservation: ReservationRead
    student_name: Optional[str]


class KioskBoardRead(BaseModel):
    date: date
    awaiting_check_in: list[KioskEntry]
    checked_in: list[KioskEntry]


class ErrorDetail(BaseModel):
    code: str
    message: str
    extra: dict[str, Any] = Field(default_factory=dict)
