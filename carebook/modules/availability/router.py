import uuid
from datetime import date
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from carebook.core.clock import Clock, get_clock
from carebook.core.config import settings
from carebook.core.db import get_session
from carebook.core.security import require_scopes
from carebook.modules.availability.schemas import SlotOut
from carebook.modules.availability.service import AvailabilityService

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session), clock: Clock = Depends(get_clock)) -> AvailabilityService:
    return AvailabilityService(session, clock=clock)

@router.get("/providers/{provider_id}/availability", response_model=list[SlotOut], dependencies=[Depends(require_scopes("availability:read"))])
async def get_availability(
    provider_id: uuid.UUID,
    from_date: date | None = None,
    horizon_days: int = Query(default=settings.DEFAULT_HORIZON_DAYS, ge=1, le=settings.MAX_HORIZON_DAYS),
    limit: int = Query(default=settings.MAX_SLOTS_PER_QUERY, ge=1, le=500),
    service: AvailabilityService = Depends(svc),
):
    return await service.get_availability(provider_id, from_date=from_date, horizon_days=horizon_days, limit=limit)

@router.get("/providers/{provider_id}/availability/next", response_model=SlotOut | None, dependencies=[Depends(require_scopes("availability:read"))])
async def next_available(provider_id: uuid.UUID, service: AvailabilityService = Depends(svc)):
    return await service.next_available(provider_id)
