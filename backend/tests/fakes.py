"""In-memory repositories shared by the usecase tests."""
from datetime import date, datetime, timezone
from typing import Any, Iterable, List, Optional, Tuple

from placement.domain.availability import build_cache
from placement.models import (
    Reservation,
    ReservationStatus,
    Slot,
    Student,
    SystemSetting,
    TrainingType,
)

_LIVE = (ReservationStatus.APPLIED, ReservationStatus.CONFIRMED)
_OCCUPYING = (ReservationStatus.CONFIRMED, ReservationStatus.COMPLETED)


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Store:
    def __init__(self) -> None:
        self.slots: dict[int, Slot] = {}
        self.reservations: dict[int, Reservation] = {}
        self.students: dict[int, Student] = {}
        self.settings: dict[str, SystemSetting] = {}
        self._next_slot_id = 1
        self._next_reservation_id = 1

    def add_student(
        self,
        student_id: int,
        *,
        training_type: TrainingType = TrainingType.I,
        email: Optional[str] = None,
        student_number: Optional[str] = None,
        auth_user_id: Optional[str] = None,
    ) -> Student:
        now = utc_now_naive()
        student = Student(
            id=student_id,
            student_number=student_number or f"S{student_id:04d}",
            name=f"Student {student_id}",
            email=email,
            training_type=training_type,
            auth_user_id=auth_user_id,
            created_at=now,
            updated_at=now,
        )
        self.students[student_id] = student
        return student

    def add_slot(
        self,
        *,
        slot_date: date,
        start_time: str = "08:30",
        end_time: str = "12:00",
        training_type: TrainingType = TrainingType.I,
        max_capacity: int = 5,
        is_active: bool = True,
    ) -> Slot:
        now = utc_now_naive()
        slot = Slot(
            id=self._next_slot_id,
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
        self._next_slot_id += 1
        self.slots[slot.id] = slot
        return slot

    def add_reservation(
        self,
        slot: Slot,
        student_id: int,
        *,
        status: ReservationStatus = ReservationStatus.CONFIRMED,
        start: Optional[str] = None,
        end: Optional[str] = None,
        priority: Optional[int] = None,
        sync_cache: bool = True,
    ) -> Reservation:
        now = utc_now_naive()
        reservation = Reservation(
            id=self._next_reservation_id,
            student_id=student_id,
            slot_id=slot.id,
            status=status,
            slot_date=slot.date,
            slot_start_time=slot.start_time,
            slot_end_time=slot.end_time,
            slot_training_type=slot.training_type,
            custom_start_time=start or slot.start_time,
            custom_end_time=end or slot.end_time,
            priority=priority,
            is_first_day=False,
            version=1,
            created_at=now,
            updated_at=now,
        )
        self._next_reservation_id += 1
        self.reservations[reservation.id] = reservation
        if sync_cache:
            self.sync_cache(slot)
        return reservation

    def sync_cache(self, slot: Slot) -> None:
        slot.availability_cache = [
            dict(e) for e in build_cache(r for r in self.reservations.values() if r.slot_id == slot.id)
        ]


class FakeSlotRepo:
    def __init__(self, store: Store) -> None:
        self.store = store
        self.saved: list[int] = []

    async def get(self, slot_id: int) -> Slot | None:
        return self.store.slots.get(slot_id)

    async def get_for_update(self, slot_id: int) -> Slot | None:
        return self.store.slots.get(slot_id)

    async def get_many_for_update(self, slot_ids: Iterable[int]) -> List[Slot]:
        return [self.store.slots[i] for i in sorted(set(slot_ids)) if i in self.store.slots]

    async def list_all(self) -> List[Slot]:
        return [self.store.slots[i] for i in sorted(self.store.slots)]

    async def list_all_for_update(self) -> List[Slot]:
        return await self.list_all()

    async def list_in_range(
        self,
        start: date,
        end: date,
        training_type: TrainingType | None,
        only_active: bool = True,
    ) -> List[Slot]:
        slots = [
            s
            for s in self.store.slots.values()
            if start <= s.date <= end
            and (training_type is None or s.training_type == training_type)
            and (s.is_active or not only_active)
        ]
        return sorted(slots, key=lambda s: (s.date, s.start_time, s.id))

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
        return self.store.add_slot(
            slot_date=slot_date,
            start_time=start_time,
            end_time=end_time,
            training_type=training_type,
            max_capacity=max_capacity,
            is_active=is_active,
        )

    async def save(self, slot: Slot) -> Slot:
        self.saved.append(slot.id)
        return slot

    async def delete(self, slot: Slot) -> None:
        for rid in [r.id for r in self.store.reservations.values() if r.slot_id == slot.id]:
            del self.store.reservations[rid]
        del self.store.slots[slot.id]


class FakeReservationRepo:
    def __init__(self, store: Store) -> None:
        self.store = store

    def _rows(self) -> List[Reservation]:
        return [self.store.reservations[i] for i in sorted(self.store.reservations)]

    async def student_has_active(self, slot_id: int, student_id: int) -> bool:
        return any(
            r.slot_id == slot_id and r.student_id == student_id and r.status != ReservationStatus.CANCELLED
            for r in self._rows()
        )

    async def priority_taken(self, student_id: int, priority: int) -> bool:
        return any(
            r.student_id == student_id and r.priority == priority and r.status == ReservationStatus.APPLIED
            for r in self._rows()
        )

    async def list_live_by_slot(self, slot_id: int) -> List[Reservation]:
        return [r for r in self._rows() if r.slot_id == slot_id and r.status in _LIVE]

    async def list_by_slot(self, slot_id: int) -> List[Reservation]:
        return [r for r in self._rows() if r.slot_id == slot_id]

    async def count_active_by_slot(self, slot_id: int) -> int:
        return sum(1 for r in self._rows() if r.slot_id == slot_id and r.status != ReservationStatus.CANCELLED)

    async def get(self, reservation_id: int) -> Optional[Tuple[Reservation, Slot]]:
        reservation = self.store.reservations.get(reservation_id)
        if reservation is None:
            return None
        return reservation, self.store.slots[reservation.slot_id]

    async def get_for_update(self, reservation_id: int) -> Optional[Tuple[Reservation, Slot]]:
        return await self.get(reservation_id)

    async def create(self, **fields: Any) -> Reservation:
        slot = self.store.slots[fields["slot_id"]]
        reservation = self.store.add_reservation(
            slot,
            fields["student_id"],
            status=fields["status"],
            start=fields["custom_start_time"],
            end=fields["custom_end_time"],
            priority=fields.get("priority"),
            sync_cache=False,
        )
        reservation.is_first_day = fields.get("is_first_day", False)
        return reservation

    async def save(self, reservation: Reservation) -> Reservation:
        return reservation

    async def delete(self, reservation: Reservation) -> None:
        self.store.reservations.pop(reservation.id, None)

    async def delete_many(self, reservation_ids: Iterable[int]) -> int:
        deleted = 0
        for rid in list(reservation_ids):
            if self.store.reservations.pop(rid, None) is not None:
                deleted += 1
        return deleted

    async def list_by_student(
        self,
        student_id: int,
        status: ReservationStatus | None = None,
    ) -> List[Tuple[Reservation, Slot]]:
        return [
            (r, self.store.slots[r.slot_id])
            for r in self._rows()
            if r.student_id == student_id and (status is None or r.status == status)
        ]

    async def list_applied_for_update(self) -> List[Reservation]:
        return [r for r in self._rows() if r.status == ReservationStatus.APPLIED]

    async def confirmed_student_ids(self) -> set[int]:
        return {r.student_id for r in self._rows() if r.status == ReservationStatus.CONFIRMED}

    async def occupied_counts(self, slot_ids: Iterable[int]) -> dict[int, int]:
        wanted = set(slot_ids)
        counts: dict[int, int] = {}
        for r in self._rows():
            if r.slot_id in wanted and r.status in _OCCUPYING:
                counts[r.slot_id] = counts.get(r.slot_id, 0) + 1
        return counts

    async def list_all(self) -> List[Reservation]:
        return self._rows()

    async def list_for_day(self, day: date, status: ReservationStatus) -> List[Reservation]:
        rows = [r for r in self._rows() if r.slot_date == day and r.status == status]
        return sorted(rows, key=lambda r: (r.custom_start_time, r.id))

    async def search(
        self,
        *,
        status: ReservationStatus | None = None,
        day: date | None = None,
    ) -> List[Reservation]:
        rows = [
            r for r in self._rows() if (status is None or r.status == status) and (day is None or r.slot_date == day)
        ]
        return sorted(rows, key=lambda r: (r.slot_date, r.custom_start_time, r.id))

    async def completed_minutes(self, student_id: int) -> tuple[int, int]:
        done = [r for r in self._rows() if r.student_id == student_id and r.status == ReservationStatus.COMPLETED]
        return sum(r.actual_minutes or 0 for r in done), len(done)

    async def reassign_student(self, from_student_ids: Iterable[int], to_student_id: int) -> int:
        ids = set(from_student_ids)
        moved = 0
        for r in self._rows():
            if r.student_id in ids:
                r.student_id = to_student_id
                moved += 1
        return moved


class FakeStudentRepo:
    def __init__(self, store: Store) -> None:
        self.store = store

    async def get(self, student_id: int) -> Student | None:
        return self.store.students.get(student_id)

    async def get_many(self, student_ids: Iterable[int]) -> dict[int, Student]:
        return {i: self.store.students[i] for i in set(student_ids) if i in self.store.students}

    async def list_all_for_update(self) -> List[Student]:
        return [self.store.students[i] for i in sorted(self.store.students)]

    async def delete(self, student: Student) -> None:
        del self.store.students[student.id]


class FakeSettingsRepo:
    def __init__(self, store: Store) -> None:
        self.store = store

    async def get(self, key: str) -> SystemSetting | None:
        return self.store.settings.get(key)

    async def get_for_update(self, key: str) -> SystemSetting | None:
        return self.store.settings.get(key)

    async def put(self, key: str, value: dict[str, Any]) -> SystemSetting:
        setting = SystemSetting(key=key, value=dict(value), updated_at=utc_now_naive())
        self.store.settings[key] = setting
        return setting


class DummySession:
    """Stands in for AsyncSession in router tests: `async with session.begin()` only."""

    async def __aenter__(self) -> "DummySession":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False

    def begin(self) -> "DummySession":
        return self
