"""Out-of-band repair jobs. Both are idempotent and safe to re-run."""
import logging
from collections import defaultdict
from dataclasses import dataclass, field

from ..domain.availability import build_cache, caches_equal
from ..domain.repositories import ReservationRepository, SlotRepository, StudentRepository
from ..models import Reservation, ReservationStatus, Student

logger = logging.getLogger(__name__)


@dataclass
class RebuildReport:
    processed: int = 0
    changed: list[int] = field(default_factory=list)


@dataclass
class RekeyReport:
    merged_students: int = 0
    moved_reservations: int = 0
    skipped_emails: list[str] = field(default_factory=list)
    conflicting_emails: list[str] = field(default_factory=list)


def _group_by_slot(reservations: list[Reservation]) -> dict[int, list[Reservation]]:
    grouped: dict[int, list[Reservation]] = defaultdict(list)
    for reservation in reservations:
        grouped[reservation.slot_id].append(reservation)
    return grouped


async def rebuild_availability_cache(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
) -> RebuildReport:
    """
    Recompute every slot's cache from the reservation records and overwrite it.
    Slots with no reservations are reset to an empty cache.
    """
    slots = await slot_repo.list_all_for_update()
    grouped = _group_by_slot(await res_repo.list_all())
    report = RebuildReport()
    for slot in slots:
        rebuilt = build_cache(grouped.get(slot.id, []))
        if not caches_equal(slot.availability_cache, rebuilt):
            report.changed.append(slot.id)
        slot.availability_cache = [dict(e) for e in rebuilt]
        await slot_repo.save(slot)
        report.processed += 1
    if report.changed:
        logger.warning("Availability cache drift repaired", extra={"event": "cache_rebuilt", "slots": report.changed})
    return report


async def find_cache_drift(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
) -> list[int]:
    """Read-only: ids of slots whose stored cache differs from the rebuilt one."""
    slots = await slot_repo.list_all()
    grouped = _group_by_slot(await res_repo.list_all())
    return [
        slot.id
        for slot in slots
        if not caches_equal(slot.availability_cache, build_cache(grouped.get(slot.id, [])))
    ]


async def rekey_legacy_students(
    student_repo: StudentRepository,
    res_repo: ReservationRepository,
) -> RekeyReport:
    """
    Merge legacy student rows onto the canonical row that carries an
    `auth_user_id`, matching by email. Reservations are re-pointed and the
    legacy rows removed. A group whose merged reservations would hold two
    live bookings of one slot, or two applications at one priority, is
    reported in `conflicting_emails` and left as it is.
    """
    by_email: dict[str, list[Student]] = defaultdict(list)
    for student in await student_repo.list_all_for_update():
        if student.email:
            by_email[student.email.strip().lower()].append(student)

    report = RekeyReport()
    for email, group in sorted(by_email.items()):
        if len(group) < 2:
            continue
        canonical = [s for s in group if s.auth_user_id]
        if len(canonical) != 1:
            # Zero or several identities claim this email; needs a human decision.
            report.skipped_emails.append(email)
            continue
        target = canonical[0]
        legacy = [s for s in group if s.id != target.id]
        if await _merge_would_clash(res_repo, group):
            report.conflicting_emails.append(email)
            continue
        report.moved_reservations += await res_repo.reassign_student((s.id for s in legacy), target.id)
        for student in legacy:
            await student_repo.delete(student)
        report.merged_students += len(legacy)
    if report.skipped_emails:
        logger.warning("Ambiguous student identities left untouched", extra={"emails": report.skipped_emails})
    if report.conflicting_emails:
        logger.warning(
            "Student identities with clashing reservations left untouched",
            extra={"emails": report.conflicting_emails},
        )
    return report


async def _merge_would_clash(res_repo: ReservationRepository, group: list[Student]) -> bool:
    slots: set[int] = set()
    priorities: set[int] = set()
    for student in group:
        for reservation, _slot in await res_repo.list_by_student(student.id):
            if reservation.status == ReservationStatus.CANCELLED:
                continue
            if reservation.slot_id in slots:
                return True
            slots.add(reservation.slot_id)
            if reservation.status == ReservationStatus.APPLIED and reservation.priority:
                if reservation.priority in priorities:
                    return True
                priorities.add(reservation.priority)
    return False
