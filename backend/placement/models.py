from __future__ import annotations

from datetime import date as date_type, datetime
from enum import StrEnum
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, CheckConstraint, Date, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql.sqltypes import BigInteger, DateTime, Integer, String


class Base(DeclarativeBase):
    pass


class TrainingType(StrEnum):
    I = "I"  # noqa: E741
    II = "II"
    IV = "IV"


class ReservationStatus(StrEnum):
    APPLIED = "applied"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CancelledBy(StrEnum):
    STUDENT = "student"
    ADMIN = "admin"


def _str_enum(enum_cls: type[StrEnum]) -> Enum:
    return Enum(
        enum_cls,
        values_callable=lambda cls: [e.value for e in cls],
        native_enum=False,
    )


class Student(Base):
    __tablename__ = "students"
    __table_args__ = (
        UniqueConstraint("auth_user_id", name="uq_students_auth_user"),
        Index("idx_students_email", "email"),
        Index("idx_students_number", "student_number"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    student_number: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    training_type: Mapped[TrainingType] = mapped_column(_str_enum(TrainingType), nullable=False)
    auth_user_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    reservations: Mapped[list["Reservation"]] = relationship(back_populates="student")


class Admin(Base):
    __tablename__ = "admins"
    __table_args__ = (UniqueConstraint("email", name="uq_admins_email"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class Slot(Base):
    __tablename__ = "slots"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="chk_slots_time"),
        CheckConstraint("max_capacity >= 1", name="chk_slots_capacity"),
        Index("idx_slots_date", "date"),
        Index("idx_slots_type_date", "training_type", "date"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    date: Mapped[date_type] = mapped_column(Date, nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    training_type: Mapped[TrainingType] = mapped_column(_str_enum(TrainingType), nullable=False)
    max_capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Materialized view of non-cancelled reservations; always reassign, never mutate in place.
    availability_cache: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    reservations: Mapped[list["Reservation"]] = relationship(back_populates="slot")


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        CheckConstraint("priority IS NULL OR (priority BETWEEN 1 AND 3)", name="chk_res_priority"),
        CheckConstraint("custom_start_time < custom_end_time", name="chk_res_custom_time"),
        Index("idx_res_slot", "slot_id"),
        Index("idx_res_student", "student_id"),
        Index("idx_res_status_priority", "status", "priority"),
        Index("idx_res_slot_date", "slot_date"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id"), nullable=False)
    slot_id: Mapped[int] = mapped_column(ForeignKey("slots.id"), nullable=False)
    status: Mapped[ReservationStatus] = mapped_column(
        _str_enum(ReservationStatus),
        nullable=False,
        default=ReservationStatus.CONFIRMED,
    )
    # Snapshot of the slot at booking time; slot edits do not cascade here.
    slot_date: Mapped[date_type] = mapped_column(Date, nullable=False)
    slot_start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    slot_end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    slot_training_type: Mapped[TrainingType] = mapped_column(_str_enum(TrainingType), nullable=False)
    custom_start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    custom_end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    priority: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_first_day: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    actual_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    check_in_time: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    check_out_time: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    cancelled_by: Mapped[Optional[CancelledBy]] = mapped_column(_str_enum(CancelledBy), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    slot: Mapped["Slot"] = relationship(back_populates="reservations")
    student: Mapped["Student"] = relationship(back_populates="reservations")


class SystemSetting(Base):
    __tablename__ = "system_settings"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
