import uuid
import logging
from datetime import date, datetime, time, timedelta
from sqlalchemy.ext.asyncio import AsyncSession
from carebook.core.clock import Clock, local_now
from carebook.core.config import settings
from carebook.modules.appointments.repository import AppointmentRepository
from carebook.modules.availability.slots import SlotOffer, generate_slots
from carebook.modules.schedules.service import ScheduleStore

logger = logging.getLogger(__name__)

class AvailabilityService:
    """Read-only view of a provider's open slots.

    Results are computed fresh on every call. A slot returned here can be lost
    to another booking at any moment; ``BookingCoordinator.book`` re-checks.
    """

    def __init__(self, session: AsyncSession, clock: Clock = local_now):
        self.schedules = ScheduleStore(session, clock=clock)
        self.appts = AppointmentRepository(session)
        self.clock = clock

    async def get_availability(
        self,
        provider_id: uuid.UUID,
        from_date: date | None = None,
        horizon_days: int | None = None,
        limit: int | None = None,
    ) -> list[SlotOffer]:
        now = self.clock()
        from_date = from_date or now.date()
        if horizon_days is None:
            horizon_days = settings.DEFAULT_HORIZON_DAYS
        horizon_days = min(horizon_days, settings.MAX_HORIZON_DAYS)
        if limit is None:
            limit = settings.MAX_SLOTS_PER_QUERY
        if horizon_days <= 0 or limit <= 0:
            return []

        until = from_date + timedelta(days=horizon_days)
        schedule = await self.schedules.get_schedule(provider_id, from_date, until)
        window_start = datetime.combine(from_date, time.min)
        blocking = await self.appts.blocking_in_range(provider_id, window_start, datetime.combine(until, time.min))

        slots = [s for s in generate_slots(schedule, blocking, from_date, horizon_days) if s.datetime > now]
        logger.debug(f"Availability for provider {provider_id} from {from_date} (+{horizon_days}d): {len(slots)} open")
        return slots[:limit]

    async def next_available(self, provider_id: uuid.UUID, horizon_days: int | None = None) -> SlotOffer | None:
        slots = await self.get_availability(provider_id, horizon_days=horizon_days or settings.MAX_HORIZON_DAYS, limit=1)
        return slots[0] if slots else None
