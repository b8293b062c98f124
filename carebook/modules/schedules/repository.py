import uuid
from datetime import date
from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_, or_, func
from carebook.modules.schedules.models import WeeklyAvailability

class ScheduleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, provider_id: uuid.UUID, **data) -> WeeklyAvailability:
        obj = WeeklyAvailability(provider_id=provider_id, **data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def list_for_provider(
        self,
        provider_id: uuid.UUID,
        *,
        day_of_week: int | None = None,
        start: date | None = None,
        end: date | None = None,
        for_update: bool = False,
    ) -> Sequence[WeeklyAvailability]:
        """Entries whose effective range intersects ``[start, end)``."""
        cond = [WeeklyAvailability.provider_id == provider_id]
        if day_of_week is not None:
            cond.append(WeeklyAvailability.day_of_week == day_of_week)
        if end is not None:
            cond.append(WeeklyAvailability.effective_from < end)
        if start is not None:
            cond.append(or_(WeeklyAvailability.effective_until.is_(None), WeeklyAvailability.effective_until > start))
        q = (
            select(WeeklyAvailability)
            .where(and_(*cond))
            .order_by(WeeklyAvailability.day_of_week.asc(), WeeklyAvailability.start_minute.asc())
        )
        if for_update:
            # serialises bookings per provider on databases with row locks
            q = q.with_for_update()
        res = await self.session.execute(q)
        return res.scalars().all()

    async def exists_for_provider(self, provider_id: uuid.UUID) -> bool:
        res = await self.session.execute(
            select(func.count()).select_from(WeeklyAvailability).where(WeeklyAvailability.provider_id == provider_id)
        )
        return res.scalar_one() > 0
