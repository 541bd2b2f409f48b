from __future__ import annotations

from datetime import date
from typing import Any, Iterable, List, Optional, Tuple, cast

from sqlalchemy import Select, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.repositories import ReservationRepository, SettingsRepository, SlotRepository, StudentRepository
from ..models import Reservation, ReservationStatus, Slot, Student, SystemSetting, TrainingType
from ..utils.time import utc_now_naive

_LIVE = (ReservationStatus.APPLIED, ReservationStatus.CONFIRMED)
_OCCUPYING = (ReservationStatus.CONFIRMED, ReservationStatus.COMPLETED)


class SqlAlchemySlotRepository(SlotRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, slot_id: int) -> Slot | None:
        return await self.session.get(Slot, slot_id)

    async def get_for_update(self, slot_id: int) -> Slot | None:
        result = await self.session.scalar(select(Slot).where(Slot.id == slot_id).with_for_update())
        return result if isinstance(result, Slot) else None

    async def get_many_for_update(self, slot_ids: Iterable[int]) -> List[Slot]:
        ids = sorted(set(slot_ids))
        if not ids:
            return []
        # Lock in id order so concurrent batch jobs cannot deadlock each other.
        stmt = select(Slot).where(Slot.id.in_(ids)).order_by(Slot.id).with_for_update()
        return list((await self.session.scalars(stmt)).all())

    async def list_all(self) -> List[Slot]:
        stmt = select(Slot).order_by(Slot.id)
        return list((await self.session.scalars(stmt)).all())

    async def list_all_for_update(self) -> List[Slot]:
        stmt = select(Slot).order_by(Slot.id).with_for_update()
        return list((await self.session.scalars(stmt)).all())

    async def list_in_range(
        self,
        start: date,
        end: date,
        training_type: TrainingType | None,
        only_active: bool = True,
    ) -> List[Slot]:
        stmt = select(Slot).where(Slot.date >= start, Slot.date <= end)
        if training_type is not None:
            stmt = stmt.where(Slot.training_type == training_type)
        if only_active:
            stmt = stmt.where(Slot.is_active.is_(True))
        stmt = stmt.order_by(Slot.date, Slot.start_time, Slot.id)
        return list((await self.session.scalars(stmt)).all())

    async def create(
        self,
        *,
        slot_date: date,
        start_time: str,
        end_time: str,
        training_type: TrainingType,
        max_capacity: int,
        is_active: bool,
    ) -> Slot:
        now = utc_now_naive()
        slot = Slot(
            date=slot_date,
            start_time=start_time,
            end_time=end_time,
            training_type=training_type,
            max_capacity=max_capacity,
            is_active=is_active,
            availability_cache=[],
            created_at=now,
            updated_at=now,
        )
        self.session.add(slot)
        await self.session.flush()
        return slot

    async def save(self, slot: Slot) -> Slot:
        slot.updated_at = utc_now_naive()
        self.session.add(slot)
        await self.session.flush()
        return slot

    async def delete(self, slot: Slot) -> None:
        # Cancelled reservations are history of this slot only; drop them with it.
        await self.session.execute(delete(Reservation).where(Reservation.slot_id == slot.id))
        await self.session.delete(slot)
        await self.session.flush()


class SqlAlchemyReservationRepository(ReservationRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def student_has_active(self, slot_id: int, student_id: int) -> bool:
        stmt = select(Reservation.id).where(
            Reservation.slot_id == slot_id,
            Reservation.student_id == student_id,
            Reservation.status != ReservationStatus.CANCELLED,
        )
        return await self.session.scalar(stmt.limit(1)) is not None

    async def priority_taken(self, student_id: int, priority: int) -> bool:
        stmt = select(Reservation.id).where(
            Reservation.student_id == student_id,
            Reservation.priority == priority,
            Reservation.status == ReservationStatus.APPLIED,
        )
        return await self.session.scalar(stmt.limit(1)) is not None

    async def list_live_by_slot(self, slot_id: int) -> List[Reservation]:
        stmt = select(Reservation).where(Reservation.slot_id == slot_id, Reservation.status.in_(_LIVE))
        return list((await self.session.scalars(stmt)).all())

    async def list_by_slot(self, slot_id: int) -> List[Reservation]:
        stmt = select(Reservation).where(Reservation.slot_id == slot_id).order_by(Reservation.id)
        return list((await self.session.scalars(stmt)).all())

    async def count_active_by_slot(self, slot_id: int) -> int:
        stmt = select(func.count(Reservation.id)).where(
            Reservation.slot_id == slot_id,
            Reservation.status != ReservationStatus.CANCELLED,
        )
        return int(await self.session.scalar(stmt) or 0)

    async def get(self, reservation_id: int) -> Optional[Tuple[Reservation, Slot]]:
        stmt: Select[Tuple[Reservation, Slot]] = (
            select(Reservation, Slot)
            .join(Slot, Reservation.slot_id == Slot.id)
            .where(Reservation.id == reservation_id)
        )
        row = (await self.session.execute(stmt)).first()
        return cast(Optional[Tuple[Reservation, Slot]], row)

    async def get_for_update(self, reservation_id: int) -> Optional[Tuple[Reservation, Slot]]:
        # Locks both rows: the reservation write and the slot cache write commit together.
        stmt: Select[Tuple[Reservation, Slot]] = (
            select(Reservation, Slot)
            .join(Slot, Reservation.slot_id == Slot.id)
            .where(Reservation.id == reservation_id)
            .with_for_update()
        )
        row = (await self.session.execute(stmt)).first()
        return cast(Optional[Tuple[Reservation, Slot]], row)

    async def create(self, **fields: Any) -> Reservation:
        now = utc_now_naive()
        reservation = Reservation(version=1, created_at=now, updated_at=now, **fields)
        self.session.add(reservation)
        await self.session.flush()
        return reservation

    async def save(self, reservation: Reservation) -> Reservation:
        self.session.add(reservation)
        await self.session.flush()
        return reservation

    async def delete(self, reservation: Reservation) -> None:
        await self.session.delete(reservation)
        await self.session.flush()

    async def delete_many(self, reservation_ids: Iterable[int]) -> int:
        ids = list(reservation_ids)
        if not ids:
            return 0
        result = await self.session.execute(
            delete(Reservation).where(Reservation.id.in_(ids)).execution_options(synchronize_session="fetch")
        )
        return int(result.rowcount or 0)

    async def list_by_student(
        self,
        student_id: int,
        status: ReservationStatus | None = None,
    ) -> List[Tuple[Reservation, Slot]]:
        stmt: Select[Tuple[Reservation, Slot]] = (
            select(Reservation, Slot)
            .join(Slot, Reservation.slot_id == Slot.id)
            .where(Reservation.student_id == student_id)
            .order_by(Reservation.slot_date, Reservation.custom_start_time)
        )
        if status is not None:
            stmt = stmt.where(Reservation.status == status)
        rows = await self.session.execute(stmt)
        return cast(List[Tuple[Reservation, Slot]], list(rows.all()))

    async def list_applied_for_update(self) -> List[Reservation]:
        stmt = (
            select(Reservation)
            .where(Reservation.status == ReservationStatus.APPLIED)
            .order_by(Reservation.id)
            .with_for_update()
        )
        return list((await self.session.scalars(stmt)).all())

    async def confirmed_student_ids(self) -> set[int]:
        stmt = select(Reservation.student_id).where(Reservation.status == ReservationStatus.CONFIRMED).distinct()
        return set((await self.session.scalars(stmt)).all())

    async def occupied_counts(self, slot_ids: Iterable[int]) -> dict[int, int]:
        ids = list(slot_ids)
        if not ids:
            return {}
        stmt = (
            select(Reservation.slot_id, func.count(Reservation.id))
            .where(Reservation.slot_id.in_(ids), Reservation.status.in_(_OCCUPYING))
            .group_by(Reservation.slot_id)
        )
        rows = await self.session.execute(stmt)
        return {int(slot_id): int(count) for slot_id, count in rows.all()}

    async def list_all(self) -> List[Reservation]:
        stmt = select(Reservation).order_by(Reservation.id)
        return list((await self.session.scalars(stmt)).all())

    async def list_for_day(self, day: date, status: ReservationStatus) -> List[Reservation]:
        stmt = (
            select(Reservation)
            .where(Reservation.slot_date == day, Reservation.status == status)
            .order_by(Reservation.custom_start_time, Reservation.id)
        )
        return list((await self.session.scalars(stmt)).all())

    async def search(
        self,
        *,
        status: ReservationStatus | None = None,
        day: date | None = None,
    ) -> List[Reservation]:
        stmt = select(Reservation).order_by(Reservation.slot_date, Reservation.custom_start_time, Reservation.id)
        if status is not None:
            stmt = stmt.where(Reservation.status == status)
        if day is not None:
            stmt = stmt.where(Reservation.slot_date == day)
        return list((await self.session.scalars(stmt)).all())

    async def completed_minutes(self, student_id: int) -> tuple[int, int]:
        stmt = select(
            func.coalesce(func.sum(Reservation.actual_minutes), 0),
            func.count(Reservation.id),
        ).where(
            Reservation.student_id == student_id,
            Reservation.status == ReservationStatus.COMPLETED,
        )
        total, count = (await self.session.execute(stmt)).one()
        return int(total or 0), int(count or 0)

    async def reassign_student(self, from_student_ids: Iterable[int], to_student_id: int) -> int:
        ids = list(from_student_ids)
        if not ids:
            return 0
        result = await self.session.execute(
            update(Reservation)
            .where(Reservation.student_id.in_(ids))
            .values(student_id=to_student_id, updated_at=utc_now_naive())
            .execution_options(synchronize_session="fetch")
        )
        return int(result.rowcount or 0)


class SqlAlchemyStudentRepository(StudentRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, student_id: int) -> Student | None:
        return await self.session.get(Student, student_id)

    async def get_many(self, student_ids: Iterable[int]) -> dict[int, Student]:
        ids = list(set(student_ids))
        if not ids:
            return {}
        rows = await self.session.scalars(select(Student).where(Student.id.in_(ids)))
        return {s.id: s for s in rows.all()}

    async def list_all_for_update(self) -> List[Student]:
        stmt = select(Student).order_by(Student.id).with_for_update()
        return list((await self.session.scalars(stmt)).all())

    async def delete(self, student: Student) -> None:
        await self.session.delete(student)
        await self.session.flush()


class SqlAlchemySettingsRepository(SettingsRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, key: str) -> SystemSetting | None:
        return await self.session.get(SystemSetting, key)

    async def get_for_update(self, key: str) -> SystemSetting | None:
        result = await self.session.scalar(select(SystemSetting).where(SystemSetting.key == key).with_for_update())
        return result if isinstance(result, SystemSetting) else None

    async def put(self, key: str, value: dict[str, Any]) -> SystemSetting:
        setting = await self.get_for_update(key)
        now = utc_now_naive()
        if setting is None:
            setting = SystemSetting(key=key, value=dict(value), updated_at=now)
            self.session.add(setting)
        else:
            setting.value = dict(value)
            setting.updated_at = now
        await self.session.flush()
        return setting
