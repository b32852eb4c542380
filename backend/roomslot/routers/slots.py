from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_session
from ..infrastructure.repositories import SqlAlchemySlotRepository
from ..schemas import SlotAvailability
from ..usecases import slots as slot_usecase

router = APIRouter(prefix="/slots", tags=["slots"])


@router.get("/available", response_model=List[SlotAvailability])
async def list_available(
    label: Optional[str] = Query(default=None, description="Room label filter"),
    day: Optional[date] = Query(default=None, alias="date", description="YYYY-MM-DD"),
    session: AsyncSession = Depends(get_session),
) -> list[SlotAvailability]:
    slot_repo = SqlAlchemySlotRepository(session)
    rows = await slot_usecase.list_available_slots(slot_repo, label=label, day=day)
    return [SlotAvailability.from_db(slot=slot, window=window, resource=resource) for slot, window, resource in rows]
