import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Path, Query, Response, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import get_settings
from ..database import with_db_retry_async
from ..deps import (
    get_notification_dispatcher,
    get_random_source,
    get_session,
    get_session_factory,
    require_admin,
)
from ..domain import notifications
from ..domain.actors import Actor
from ..domain.errors import DomainError, LotteryRunFailedError
from ..domain.lottery import RandomSource
from ..domain.notifications import NotificationDispatcher
from ..domain.training_config import TrainingConfig
from ..infrastructure.notifications import dispatch_all
from ..models import ReservationStatus
from ..infrastructure.repositories import (
    SqlAlchemyReservationRepository,
    SqlAlchemySettingsRepository,
    SqlAlchemySlotRepository,
    SqlAlchemyStudentRepository,
)
from ..schemas import (
    DriftRead,
    LotteryRunRead,
    RebuildRead,
    RekeyRead,
    ReservationCancel,
    ReservationComplete,
    ReservationRead,
    SlotBulkCreate,
    SlotCreate,
    SlotRead,
    SlotUpdate,
)
from ..usecases import lottery as lottery_usecase
from ..usecases import maintenance as maintenance_usecase
from ..usecases import reservations as reservation_usecase
from ..usecases import settings as settings_usecase
from ..usecases import slots as slot_usecase
from .errors import audit, bad_request, domain_http_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.post("/slots", response_model=SlotRead, status_code=status.HTTP_201_CREATED)
async def create_slot(
    payload: SlotCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
) -> SlotRead:
    slot_repo = SqlAlchemySlotRepository(session)
    settings_repo = SqlAlchemySettingsRepository(session)
    async with session.begin():
        try:
            config = await settings_usecase.get_training_config(settings_repo)
            slot = await slot_usecase.create_slot(
                slot_repo,
                slot_date=payload.date,
                start_time=payload.start_time,
                end_time=payload.end_time,
                training_type=payload.training_type,
                max_capacity=payload.max_capacity or config.max_students_per_slot,
                is_active=payload.is_active,
            )
        except ValueError as exc:
            raise bad_request(exc)
    audit(action="slot.created", initiator="admin", actor_id=actor.user_id, slot_id=slot.id)
    return SlotRead.from_db(slot=slot)


@router.post("/slots/bulk", response_model=List[SlotRead], status_code=status.HTTP_201_CREATED)
async def bulk_create_slots(
    payload: SlotBulkCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
) -> list[SlotRead]:
    slot_repo = SqlAlchemySlotRepository(session)
    settings_repo = SqlAlchemySettingsRepository(session)
    async with session.begin():
        try:
            config = await settings_usecase.get_training_config(settings_repo)
            created = await slot_usecase.bulk_create_slots(
                slot_repo,
                slot_date=payload.date,
                training_type=payload.training_type,
                max_capacity=payload.max_capacity or config.max_students_per_slot,
            )
        except ValueError as exc:
            raise bad_request(exc)
    for slot in created:
        audit(action="slot.created", initiator="admin", actor_id=actor.user_id, slot_id=slot.id)
    return [SlotRead.from_db(slot=slot) for slot in created]


@router.patch("/slots/{slot_id}", response_model=SlotRead)
async def update_slot(
    payload: SlotUpdate,
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
) -> SlotRead:
    slot_repo = SqlAlchemySlotRepository(session)
    async with session.begin():
        try:
            slot = await slot_usecase.update_slot(
                slot_repo,
                slot_id=slot_id,
                start_time=payload.start_time,
                end_time=payload.end_time,
                max_capacity=payload.max_capacity,
                is_active=payload.is_active,
            )
        except DomainError as exc:
            raise domain_http_error(exc)
        except ValueError as exc:
            raise bad_request(exc)
    audit(
        action="slot.updated",
        initiator="admin",
        actor_id=actor.user_id,
        slot_id=slot.id,
        extra=payload.model_dump(exclude_none=True),
    )
    return SlotRead.from_db(slot=slot)


@router.delete("/slots/{slot_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_slot(
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
) -> Response:
    slot_repo = SqlAlchemySlotRepository(session)
    res_repo = SqlAlchemyReservationRepository(session)
    async with session.begin():
        try:
            await slot_usecase.delete_slot(slot_repo, res_repo, slot_id=slot_id)
        except DomainError as exc:
            raise domain_http_error(exc)
    audit(action="slot.deleted", initiator="admin", actor_id=actor.user_id, slot_id=slot_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


def _audit_transition(result: reservation_usecase.TransitionResult, *, action: str, actor: Actor) -> None:
    reservation = result.reservation
    audit(
        action=action,
        initiator="admin",
        actor_id=actor.user_id,
        reservation_id=reservation.id,
        slot_id=reservation.slot_id,
        student_id=reservation.student_id,
        status_from=result.status_from,
        status_to=reservation.status,
        version=reservation.version,
    )


@router.get("/reservations", response_model=List[ReservationRead])
async def list_reservations(
    status_filter: Optional[ReservationStatus] = Query(default=None, alias="status"),
    day: Optional[date] = Query(default=None, alias="date"),
    session: AsyncSession = Depends(get_session),
) -> list[ReservationRead]:
    rows = await reservation_usecase.list_reservations(
        SqlAlchemyReservationRepository(session), status=status_filter, day=day
    )
    return [ReservationRead.from_db(reservation=r) for r in rows]


@router.post("/reservations/{reservation_id}/confirm", response_model=ReservationRead)
async def confirm_reservation(
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> ReservationRead:
    slot_repo = SqlAlchemySlotRepository(session)
    res_repo = SqlAlchemyReservationRepository(session)
    student_repo = SqlAlchemyStudentRepository(session)
    async with session.begin():
        try:
            result = await reservation_usecase.confirm_reservation(slot_repo, res_repo, reservation_id=reservation_id)
            student = await student_repo.get(result.reservation.student_id)
        except DomainError as exc:
            raise domain_http_error(exc)
    if result.changed:
        _audit_transition(result, action="reservation.confirmed", actor=actor)
        if student is not None:
            await dispatch_all(dispatcher, [notifications.booking_confirmed(student, result.reservation)])
    return ReservationRead.from_db(reservation=result.reservation)


@router.post("/reservations/{reservation_id}/complete", response_model=ReservationRead)
async def complete_reservation(
    reservation_id: int = Path(..., ge=1),
    payload: Optional[ReservationComplete] = Body(default=None),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> ReservationRead:
    slot_repo = SqlAlchemySlotRepository(session)
    res_repo = SqlAlchemyReservationRepository(session)
    student_repo = SqlAlchemyStudentRepository(session)
    async with session.begin():
        try:
            result = await reservation_usecase.complete_reservation(
                slot_repo,
                res_repo,
                reservation_id=reservation_id,
                actual_minutes=payload.actual_minutes if payload else None,
            )
            student = await student_repo.get(result.reservation.student_id)
        except DomainError as exc:
            raise domain_http_error(exc)
        except ValueError as exc:
            raise bad_request(exc)
    _audit_transition(result, action="reservation.completed", actor=actor)
    if result.changed and student is not None:
        await dispatch_all(dispatcher, [notifications.attendance_approved(student, result.reservation)])
    return ReservationRead.from_db(reservation=result.reservation)


@router.post("/reservations/{reservation_id}/cancel", response_model=ReservationRead)
async def cancel_reservation(
    reservation_id: int = Path(..., ge=1),
    payload: Optional[ReservationCancel] = Body(default=None),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> ReservationRead:
    """Administrators may cancel inside the student cutoff window."""
    slot_repo = SqlAlchemySlotRepository(session)
    res_repo = SqlAlchemyReservationRepository(session)
    student_repo = SqlAlchemyStudentRepository(session)
    settings_repo = SqlAlchemySettingsRepository(session)
    async with session.begin():
        try:
            config = await settings_usecase.get_training_config(settings_repo)
            result = await reservation_usecase.cancel_reservation(
                slot_repo,
                res_repo,
                actor=actor,
                reservation_id=reservation_id,
                config=config,
                version=payload.version if payload else None,
            )
            student = await student_repo.get(result.reservation.student_id)
        except DomainError as exc:
            raise domain_http_error(exc)
    if result.changed:
        _audit_transition(result, action="reservation.cancelled", actor=actor)
        if student is not None:
            await dispatch_all(dispatcher, [notifications.reservation_cancelled(student, result.reservation)])
    return ReservationRead.from_db(reservation=result.reservation)


@router.delete("/reservations/{reservation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_reservation(
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
) -> Response:
    slot_repo = SqlAlchemySlotRepository(session)
    res_repo = SqlAlchemyReservationRepository(session)
    async with session.begin():
        try:
            result = await reservation_usecase.delete_reservation(slot_repo, res_repo, reservation_id=reservation_id)
        except DomainError as exc:
            raise domain_http_error(exc)
    audit(
        action="reservation.deleted",
        initiator="admin",
        actor_id=actor.user_id,
        reservation_id=reservation_id,
        slot_id=result.slot.id,
        student_id=result.reservation.student_id,
        status_from=result.status_from,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/lottery/run", response_model=LotteryRunRead)
async def run_lottery(
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
    rng: RandomSource = Depends(get_random_source),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> LotteryRunRead:
    slot_repo = SqlAlchemySlotRepository(session)
    res_repo = SqlAlchemyReservationRepository(session)
    student_repo = SqlAlchemyStudentRepository(session)
    settings_repo = SqlAlchemySettingsRepository(session)

    try:
        async with session.begin():
            token = await lottery_usecase.acquire_run_lock(
                settings_repo, ttl_seconds=get_settings().lottery_lock_ttl_seconds
            )
    except DomainError as exc:
        raise domain_http_error(exc)

    try:
        async with session.begin():
            result = await lottery_usecase.run_lottery(slot_repo, res_repo, student_repo, rng=rng)
    except DomainError as exc:
        raise domain_http_error(exc)
    except SQLAlchemyError as exc:
        logger.exception("Lottery run failed", extra={"event": "lottery_run_failed"})
        raise domain_http_error(LotteryRunFailedError("lottery run failed; no allocation was applied")) from exc
    finally:
        async with session.begin():
            await lottery_usecase.release_run_lock(settings_repo, token=token)

    audit(
        action="lottery.completed",
        initiator="admin",
        actor_id=actor.user_id,
        extra={"winners": len(result.winners), "deleted": result.deleted, "remaining": result.remaining},
    )
    await dispatch_all(
        dispatcher,
        [
            notifications.lottery_won(result.students[r.student_id], r)
            for r in result.winners
            if r.student_id in result.students
        ],
    )
    return LotteryRunRead(winners=len(result.winners), deleted=result.deleted, remaining=result.remaining)


@router.post("/maintenance/rebuild-cache", response_model=RebuildRead)
async def rebuild_cache(
    actor: Actor = Depends(require_admin),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> RebuildRead:
    async def _attempt() -> maintenance_usecase.RebuildReport:
        async with session_factory() as session:
            async with session.begin():
                return await maintenance_usecase.rebuild_availability_cache(
                    SqlAlchemySlotRepository(session),
                    SqlAlchemyReservationRepository(session),
                )

    report = await with_db_retry_async(
        "rebuild_availability_cache",
        _attempt,
        max_attempts=get_settings().db_retry_attempts,
    )
    audit(
        action="maintenance.cache_rebuilt",
        initiator="admin",
        actor_id=actor.user_id,
        extra={"processed": report.processed, "changed": report.changed},
    )
    return RebuildRead(processed=report.processed, changed=report.changed)


@router.get("/maintenance/cache-drift", response_model=DriftRead)
async def cache_drift(session: AsyncSession = Depends(get_session)) -> DriftRead:
    drifted = await maintenance_usecase.find_cache_drift(
        SqlAlchemySlotRepository(session),
        SqlAlchemyReservationRepository(session),
    )
    return DriftRead(drifted_slot_ids=drifted)


@router.post("/maintenance/rekey-students", response_model=RekeyRead)
async def rekey_students(
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
) -> RekeyRead:
    async with session.begin():
        report = await maintenance_usecase.rekey_legacy_students(
            SqlAlchemyStudentRepository(session),
            SqlAlchemyReservationRepository(session),
        )
    audit(
        action="maintenance.students_rekeyed",
        initiator="admin",
        actor_id=actor.user_id,
        extra={"merged": report.merged_students, "moved": report.moved_reservations},
    )
    return RekeyRead(
        merged_students=report.merged_students,
        moved_reservations=report.moved_reservations,
        skipped_emails=report.skipped_emails,
        conflicting_emails=report.conflicting_emails,
    )


@router.get("/settings", response_model=TrainingConfig)
async def get_training_settings(session: AsyncSession = Depends(get_session)) -> TrainingConfig:
    return await settings_usecase.get_training_config(SqlAlchemySettingsRepository(session))


@router.put("/settings", response_model=TrainingConfig)
async def put_training_settings(
    payload: TrainingConfig,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
) -> TrainingConfig:
    async with session.begin():
        config = await settings_usecase.update_training_config(SqlAlchemySettingsRepository(session), config=payload)
    audit(
        action="settings.updated",
        initiator="admin",
        actor_id=actor.user_id,
        extra=config.model_dump(mode="json"),
    )
    return config
