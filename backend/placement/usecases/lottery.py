from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError

from ..domain.availability import remove_entry, upsert_entry
from ..domain.errors import LotteryAlreadyRunningError
from ..domain.lottery import Application, RandomSource, draw_lottery
from ..domain.repositories import ReservationRepository, SettingsRepository, SlotRepository, StudentRepository
from ..models import Reservation, ReservationStatus, Student
from ..utils.time import utc_now_naive

LOTTERY_LOCK_KEY = "lottery_lock"


@dataclass
class LotteryRunResult:
    winners: list[Reservation] = field(default_factory=list)
    deleted: int = 0
    remaining: int = 0
    students: dict[int, Student] = field(default_factory=dict)


async def acquire_run_lock(
    settings_repo: SettingsRepository,
    *,
    ttl_seconds: int,
    now: Optional[datetime] = None,
) -> str:
    """Take the allocator run-lock; a lock older than `ttl_seconds` is treated as abandoned."""
    now = now or utc_now_naive()
    setting = await settings_repo.get_for_update(LOTTERY_LOCK_KEY)
    if setting is not None and setting.value.get("locked_at"):
        locked_at = datetime.fromisoformat(setting.value["locked_at"])
        if now - locked_at < timedelta(seconds=ttl_seconds):
            raise LotteryAlreadyRunningError("a lottery run is already in progress")
    token = now.isoformat()
    try:
        await settings_repo.put(LOTTERY_LOCK_KEY, {"locked_at": token})
    except IntegrityError as exc:
        # Another run inserted the first lock row between our read and write.
        raise LotteryAlreadyRunningError("a lottery run is already in progress") from exc
    return token


async def release_run_lock(settings_repo: SettingsRepository, *, token: str) -> None:
    setting = await settings_repo.get_for_update(LOTTERY_LOCK_KEY)
    # Only the holder clears the lock; a takeover after expiry keeps its own token.
    if setting is None or setting.value.get("locked_at") != token:
        return
    await settings_repo.put(LOTTERY_LOCK_KEY, {"locked_at": None})


async def run_lottery(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    student_repo: StudentRepository,
    *,
    rng: Optional[RandomSource] = None,
    now: Optional[datetime] = None,
) -> LotteryRunResult:
    """
    Resolve every `applied` reservation. Must run inside a single transaction:
    status updates, deletions and cache rewrites commit together or not at all.
    """
    now = now or utc_now_naive()
    applied = await res_repo.list_applied_for_update()
    if not applied:
        return LotteryRunResult()

    by_id = {r.id: r for r in applied}
    slots = {s.id: s for s in await slot_repo.get_many_for_update({r.slot_id for r in applied})}
    occupied = await res_repo.occupied_counts(slots.keys())
    already_confirmed = await res_repo.confirmed_student_ids()

    outcome = draw_lottery(
        (
            Application(reservation_id=r.id, student_id=r.student_id, slot_id=r.slot_id, priority=r.priority or 0)
            for r in applied
            if r.slot_id in slots
        ),
        capacities={slot_id: slot.max_capacity for slot_id, slot in slots.items()},
        occupied=occupied,
        already_confirmed=already_confirmed,
        rng=rng,
    )

    winners: list[Reservation] = []
    for app in outcome.winners:
        reservation = by_id[app.reservation_id]
        reservation.status = ReservationStatus.CONFIRMED
        reservation.is_first_day = True
        reservation.version += 1
        reservation.updated_at = now
        await res_repo.save(reservation)
        slot = slots[reservation.slot_id]
        slot.availability_cache = upsert_entry(slot.availability_cache, reservation, expect_existing=True)
        winners.append(reservation)

    for reservation_id in outcome.deleted_reservation_ids:
        reservation = by_id[reservation_id]
        slot = slots[reservation.slot_id]
        slot.availability_cache = remove_entry(slot.availability_cache, reservation_id)
    deleted = await res_repo.delete_many(outcome.deleted_reservation_ids)

    touched = {r.slot_id for r in winners} | {by_id[i].slot_id for i in outcome.deleted_reservation_ids}
    for slot_id in sorted(touched):
        await slot_repo.save(slots[slot_id])

    students = await student_repo.get_many(r.student_id for r in winners)
    return LotteryRunResult(
        winners=winners,
        deleted=deleted,
        remaining=len(outcome.remaining),
        students=students,
    )
