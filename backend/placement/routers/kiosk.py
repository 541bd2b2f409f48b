from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_session, require_admin
from ..domain.actors import Actor
from ..domain.errors import DomainError
from ..infrastructure.repositories import (
    SqlAlchemyReservationRepository,
    SqlAlchemySlotRepository,
    SqlAlchemyStudentRepository,
)
from ..schemas import KioskBoardRead, KioskEntry, KioskVerify, ReservationRead
from ..usecases import attendance as attendance_usecase
from ..usecases.reservations import TransitionResult
from ..utils.time import jst_today, utc_now_naive
from .errors import audit, domain_http_error

# The kiosk runs on a site terminal signed in with an administrator account.
router = APIRouter(prefix="/kiosk", tags=["kiosk"], dependencies=[Depends(require_admin)])


def _audit_attendance(result: TransitionResult, *, action: str, actor: Actor) -> None:
    reservation = result.reservation
    audit(
        action=action,
        initiator="kiosk",
        actor_id=actor.user_id,
        reservation_id=reservation.id,
        slot_id=reservation.slot_id,
        student_id=reservation.student_id,
        status_from=result.status_from,
        status_to=reservation.status,
        version=reservation.version,
        extra={
            "check_in_time": reservation.check_in_time,
            "check_out_time": reservation.check_out_time,
            "actual_minutes": reservation.actual_minutes,
        },
    )


@router.get("/board", response_model=KioskBoardRead)
async def get_board(session: AsyncSession = Depends(get_session)) -> KioskBoardRead:
    today = jst_today(utc_now_naive())
    board = await attendance_usecase.kiosk_board(
        SqlAlchemyReservationRepository(session),
        SqlAlchemyStudentRepository(session),
        day=today,
    )

    def _entry(reservation) -> KioskEntry:
        student = board.students.get(reservation.student_id)
        return KioskEntry(
            reservation=ReservationRead.from_db(reservation=reservation),
            student_name=student.name if student else None,
        )

    return KioskBoardRead(
        date=today,
        awaiting_check_in=[_entry(r) for r in board.awaiting_check_in],
        checked_in=[_entry(r) for r in board.checked_in],
    )


@router.post("/reservations/{reservation_id}/check-in", response_model=ReservationRead)
async def check_in(
    payload: KioskVerify,
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
) -> ReservationRead:
    async with session.begin():
        try:
            result = await attendance_usecase.check_in(
                SqlAlchemyReservationRepository(session),
                SqlAlchemyStudentRepository(session),
                reservation_id=reservation_id,
                student_number=payload.student_number,
            )
        except DomainError as exc:
            raise domain_http_error(exc)
    _audit_attendance(result, action="reservation.checked_in", actor=actor)
    return ReservationRead.from_db(reservation=result.reservation)


@router.post("/reservations/{reservation_id}/check-out", response_model=ReservationRead)
async def check_out(
    payload: KioskVerify,
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
) -> ReservationRead:
    async with session.begin():
        try:
            result = await attendance_usecase.check_out(
                SqlAlchemySlotRepository(session),
                SqlAlchemyReservationRepository(session),
                SqlAlchemyStudentRepository(session),
                reservation_id=reservation_id,
                student_number=payload.student_number,
            )
        except DomainError as exc:
            raise domain_http_error(exc)
    _audit_attendance(result, action="reservation.completed", actor=actor)
    return ReservationRead.from_db(reservation=result.reservation)
