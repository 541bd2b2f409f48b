from __future__ import annotations

from datetime import date
from typing import Any, Iterable, Protocol

from ..models import Reservation, ReservationStatus, Slot, Student, SystemSetting, TrainingType


class SlotRepository(Protocol):
    async def get(self, slot_id: int) -> Slot | None: ...

    async def get_for_update(self, slot_id: int) -> Slot | None: ...

    async def get_many_for_update(self, slot_ids: Iterable[int]) -> list[Slot]: ...

    async def list_all(self) -> list[Slot]: ...

    async def list_all_for_update(self) -> list[Slot]: ...

    async def list_in_range(
        self,
        start: date,
        end: date,
        training_type: TrainingType | None,
        only_active: bool = True,
    ) -> list[Slot]: ...

    async def create(
        self,
        *,
        slot_date: date,
        start_time: str,
        end_time: str,
        training_type: TrainingType,
        max_capacity: int,
        is_active: bool,
    ) -> Slot: ...

    async def save(self, slot: Slot) -> Slot: ...

    async def delete(self, slot: Slot) -> None: ...


class ReservationRepository(Protocol):
    async def student_has_active(self, slot_id: int, student_id: int) -> bool: ...

    async def priority_taken(self, student_id: int, priority: int) -> bool: ...

    async def list_live_by_slot(self, slot_id: int) -> list[Reservation]: ...

    async def list_by_slot(self, slot_id: int) -> list[Reservation]: ...

    async def count_active_by_slot(self, slot_id: int) -> int: ...

    async def get(self, reservation_id: int) -> tuple[Reservation, Slot] | None: ...

    async def get_for_update(self, reservation_id: int) -> tuple[Reservation, Slot] | None: ...

    async def create(self, **fields: Any) -> Reservation: ...

    async def save(self, reservation: Reservation) -> Reservation: ...

    async def delete(self, reservation: Reservation) -> None: ...

    async def delete_many(self, reservation_ids: Iterable[int]) -> int: ...

    async def list_by_student(
        self,
        student_id: int,
        status: ReservationStatus | None = None,
    ) -> list[tuple[Reservation, Slot]]: ...

    async def list_applied_for_update(self) -> list[Reservation]: ...

    async def confirmed_student_ids(self) -> set[int]: ...

    async def occupied_counts(self, slot_ids: Iterable[int]) -> dict[int, int]: ...

    async def list_all(self) -> list[Reservation]: ...

    async def list_for_day(self, day: date, status: ReservationStatus) -> list[Reservation]: ...

    async def search(
        self,
        *,
        status: ReservationStatus | None = None,
        day: date | None = None,
    ) -> list[Reservation]: ...

    async def completed_minutes(self, student_id: int) -> tuple[int, int]: ...

    async def reassign_student(self, from_student_ids: Iterable[int], to_student_id: int) -> int: ...


class StudentRepository(Protocol):
    async def get(self, student_id: int) -> Student | None: ...

    async def get_many(self, student_ids: Iterable[int]) -> dict[int, Student]: ...

    async def list_all_for_update(self) -> list[Student]: ...

    async def delete(self, student: Student) -> None: ...


class SettingsRepository(Protocol):
    async def get(self, key: str) -> SystemSetting | None: ...

    async def get_for_update(self, key: str) -> SystemSetting | None: ...

    async def put(self, key: str, value: dict[str, Any]) -> SystemSetting: ...
