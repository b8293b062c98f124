import uuid
from datetime import date
from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession
from carebook.core.clock import Clock, get_clock
from carebook.core.db import get_session
from carebook.core.security import require_scopes
from carebook.modules.schedules.schemas import ScheduleEntryCreate, ScheduleEntryOut, DayScheduleReplace
from carebook.modules.schedules.service import ScheduleStore

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session), clock: Clock = Depends(get_clock)) -> ScheduleStore:
    return ScheduleStore(session, clock=clock)

@router.get("/providers/{provider_id}/schedule", response_model=list[ScheduleEntryOut], dependencies=[Depends(require_scopes("availability:read"))])
async def list_schedule(provider_id: uuid.UUID, on: date | None = None, store: ScheduleStore = Depends(svc)):
    return await store.list_entries(provider_id, on=on)

@router.post("/providers/{provider_id}/schedule", response_model=ScheduleEntryOut, status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_scopes("schedules:write"))])
async def add_schedule_entry(provider_id: uuid.UUID, payload: ScheduleEntryCreate, store: ScheduleStore = Depends(svc)):
    return await store.add_entry(provider_id, **payload.model_dump())

@router.put("/providers/{provider_id}/schedule/{day_of_week}", response_model=list[ScheduleEntryOut], dependencies=[Depends(require_scopes("schedules:write"))])
async def replace_day(provider_id: uuid.UUID, payload: DayScheduleReplace, day_of_week: int = Path(ge=0, le=6), store: ScheduleStore = Depends(svc)):
    entries = [e.model_dump() for e in payload.entries]
    return await store.supersede_day(provider_id, day_of_week, entries, payload.effective_from)
