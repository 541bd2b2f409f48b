from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_current_actor, get_session
from ..domain.errors import DomainError
from ..infrastructure.repositories import SqlAlchemySlotRepository
from ..models import TrainingType
from ..schemas import SlotAvailability, SlotIntervals, SlotRead
from ..usecases import slots as slot_usecase
from .errors import bad_request, domain_http_error

router = APIRouter(prefix="/slots", tags=["slots"], dependencies=[Depends(get_current_actor)])


@router.get("/availability", response_model=List[SlotAvailability])
async def list_availability(
    start: date = Query(..., description="first date (YYYY-MM-DD)"),
    end: date = Query(..., description="last date (YYYY-MM-DD), inclusive"),
    training_type: Optional[TrainingType] = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> list[SlotAvailability]:
    slot_repo = SqlAlchemySlotRepository(session)
    try:
        rows = await slot_usecase.list_availability(slot_repo, start=start, end=end, training_type=training_type)
    except ValueError as exc:
        raise bad_request(exc)
    return [
        SlotAvailability(
            **SlotRead.from_db(slot=entry["slot"]).model_dump(),
            booked=entry["booked"],
            peak=entry["peak"],
            remaining=entry["remaining"],
        )
        for entry in rows
    ]


@router.get("/{slot_id}/intervals", response_model=SlotIntervals)
async def get_bookable_intervals(
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> SlotIntervals:
    slot_repo = SqlAlchemySlotRepository(session)
    try:
        slot, intervals = await slot_usecase.get_bookable_intervals(slot_repo, slot_id=slot_id)
    except DomainError as exc:
        raise domain_http_error(exc)
    return SlotIntervals(slot_id=slot.id, start_time=slot.start_time, end_time=slot.end_time, intervals=intervals)
