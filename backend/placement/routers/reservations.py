import re
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_notification_dispatcher, get_session, require_student
from ..domain import notifications
from ..domain.actors import Actor
from ..domain.errors import DomainError
from ..domain.notifications import NotificationDispatcher
from ..infrastructure.notifications import dispatch_all
from ..infrastructure.repositories import (
    SqlAlchemyReservationRepository,
    SqlAlchemySettingsRepository,
    SqlAlchemySlotRepository,
    SqlAlchemyStudentRepository,
)
from ..models import ReservationStatus
from ..schemas import ProgressRead, ReservationCancel, ReservationCreate, ReservationRead
from ..usecases import reservations as reservation_usecase
from ..usecases import settings as settings_usecase
from .errors import audit, bad_request, domain_http_error

router = APIRouter(prefix="", tags=["reservations"])

_ETAG_RE = re.compile(r'^(?:W/)?"(\d+)"$')


def _extract_version(if_match: Optional[str], payload: Optional[ReservationCancel]) -> int:
    """If-Match wins over the body; the version must be a positive integer."""
    if if_match is not None:
        match = _ETAG_RE.match(if_match.strip())
        if match is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid If-Match header")
        version = int(match.group(1))
    elif payload is not None and payload.version is not None:
        version = payload.version
    else:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="version required (If-Match or body)")
    if version < 1:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="version must be >= 1")
    return version


@router.post("/reservations", response_model=ReservationRead, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    payload: ReservationCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_student),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> ReservationRead:
    slot_repo = SqlAlchemySlotRepository(session)
    res_repo = SqlAlchemyReservationRepository(session)
    student_repo = SqlAlchemyStudentRepository(session)
    settings_repo = SqlAlchemySettingsRepository(session)
    async with session.begin():
        try:
            config = await settings_usecase.get_training_config(settings_repo)
            result = await reservation_usecase.book_reservation(
                slot_repo,
                res_repo,
                student_repo,
                config=config,
                slot_id=payload.slot_id,
                student_id=actor.user_id,
                custom_start_time=payload.custom_start_time,
                custom_end_time=payload.custom_end_time,
                priority=payload.priority,
            )
        except DomainError as exc:
            raise domain_http_error(exc)
        except ValueError as exc:
            raise bad_request(exc)

    reservation = result.reservation
    audit(
        action="reservation.applied" if reservation.status == ReservationStatus.APPLIED else "reservation.created",
        initiator="student",
        actor_id=actor.user_id,
        reservation_id=reservation.id,
        slot_id=reservation.slot_id,
        student_id=reservation.student_id,
        status_from=None,
        status_to=reservation.status,
        version=reservation.version,
        extra={"priority": reservation.priority},
    )
    if result.student is not None:
        template = (
            notifications.application_received
            if reservation.status == ReservationStatus.APPLIED
            else notifications.booking_confirmed
        )
        await dispatch_all(dispatcher, [template(result.student, reservation)])
    return ReservationRead.from_db(reservation=reservation)


@router.get("/me/reservations", response_model=List[ReservationRead])
async def list_my_reservations(
    status_filter: Optional[ReservationStatus] = Query(default=None, alias="status"),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_student),
) -> list[ReservationRead]:
    res_repo = SqlAlchemyReservationRepository(session)
    rows = await reservation_usecase.list_student_reservations(
        res_repo, student_id=actor.user_id, status=status_filter
    )
    return [ReservationRead.from_db(reservation=res) for res, _ in rows]


@router.get("/me/reservations/{reservation_id}", response_model=ReservationRead)
async def get_my_reservation(
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_student),
) -> ReservationRead:
    res_repo = SqlAlchemyReservationRepository(session)
    row = await reservation_usecase.get_student_reservation(
        res_repo, reservation_id=reservation_id, student_id=actor.user_id
    )
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="reservation not found")
    reservation, _ = row
    return ReservationRead.from_db(reservation=reservation)


@router.post("/me/reservations/{reservation_id}/cancel", response_model=ReservationRead)
async def cancel_reservation(
    reservation_id: int = Path(..., ge=1),
    payload: Optional[ReservationCancel] = Body(default=None),
    if_match: Optional[str] = Header(default=None, alias="If-Match"),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_student),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> ReservationRead:
    version = _extract_version(if_match, payload)
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
                version=version,
            )
            student = await student_repo.get(actor.user_id) if result.changed else None
        except DomainError as exc:
            raise domain_http_error(exc)

    reservation = result.reservation
    if result.changed:
        audit(
            action="reservation.cancelled",
            initiator="student",
            actor_id=actor.user_id,
            reservation_id=reservation.id,
            slot_id=reservation.slot_id,
            student_id=reservation.student_id,
            status_from=result.status_from,
            status_to=reservation.status,
            version=reservation.version,
        )
        if student is not None:
            await dispatch_all(dispatcher, [notifications.reservation_cancelled(student, reservation)])
    return ReservationRead.from_db(reservation=reservation)


@router.get("/me/progress", response_model=ProgressRead)
async def get_my_progress(
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_student),
) -> ProgressRead:
    res_repo = SqlAlchemyReservationRepository(session)
    settings_repo = SqlAlchemySettingsRepository(session)
    config = await settings_usecase.get_training_config(settings_repo)
    progress = await reservation_usecase.student_progress(res_repo, student_id=actor.user_id, config=config)
    return ProgressRead(
        student_id=progress.student_id,
        credited_minutes=progress.credited_minutes,
        required_minutes=progress.required_minutes,
        completed_count=progress.completed_count,
        ratio=progress.ratio,
    )
