import uuid
import logging
from datetime import date, timedelta
from sqlalchemy.ext.asyncio import AsyncSession
from carebook.core.clock import Clock, local_now
from carebook.core.config import settings
from carebook.core.db import unit_of_work
from carebook.core.errors import ConfigurationError, NotFoundError
from carebook.modules.schedules.models import WeeklyAvailability, ProviderSchedule
from carebook.modules.schedules.repository import ScheduleRepository

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60

# Default onboarding schedule: Monday to Friday, 09:00 to 17:00
DEFAULT_WORKING_DAYS = range(1, 6)
DEFAULT_START_MINUTE = 9 * 60
DEFAULT_END_MINUTE = 17 * 60

def validate_entry(*, day_of_week: int, start_minute: int, end_minute: int, slot_minutes: int, max_concurrent: int = 1) -> None:
    if not 0 <= day_of_week <= 6:
        raise ConfigurationError("day_of_week must be between 0 (Sunday) and 6 (Saturday)", day_of_week=day_of_week)
    if not 0 <= start_minute < MINUTES_PER_DAY or not 0 < end_minute <= MINUTES_PER_DAY:
        raise ConfigurationError("availability must fall within a single day", start_minute=start_minute, end_minute=end_minute)
    if end_minute <= start_minute:
        raise ConfigurationError("end time must be after start time", start_minute=start_minute, end_minute=end_minute)
    if slot_minutes <= 0:
        raise ConfigurationError("slot duration must be positive", slot_minutes=slot_minutes)
    if slot_minutes > end_minute - start_minute:
        raise ConfigurationError("slot duration exceeds the availability window", slot_minutes=slot_minutes)
    if max_concurrent < 1:
        raise ConfigurationError("max_concurrent must be at least 1", max_concurrent=max_concurrent)

def _check_disjoint(rows: list[dict]) -> None:
    ordered = sorted(rows, key=lambda s: s["start_minute"])
    for prev, nxt in zip(ordered, ordered[1:]):
        if nxt["start_minute"] < prev["end_minute"]:
            raise ConfigurationError(
                "entries for the same weekday must not overlap",
                day_of_week=nxt["day_of_week"],
            )

class ScheduleStore:
    """Recurring weekly availability per provider.

    This is the write boundary where malformed schedules are rejected, so the
    slot generator only ever sees well-formed entries.
    """

    def __init__(self, session: AsyncSession, clock: Clock = local_now):
        self.session = session
        self.repo = ScheduleRepository(session)
        self.clock = clock

    async def add_entry(
        self,
        provider_id: uuid.UUID,
        *,
        day_of_week: int,
        start_minute: int,
        end_minute: int,
        slot_minutes: int | None = None,
        max_concurrent: int = 1,
        effective_from: date | None = None,
    ) -> WeeklyAvailability:
        row = {
            "day_of_week": day_of_week,
            "start_minute": start_minute,
            "end_minute": end_minute,
            "slot_minutes": slot_minutes or settings.DEFAULT_SLOT_MINUTES,
            "max_concurrent": max_concurrent,
        }
        validate_entry(**row)
        effective_from = effective_from or self.clock().date()
        async with unit_of_work(self.session):
            existing = await self.repo.list_for_provider(provider_id, day_of_week=day_of_week, start=effective_from)
            clash = next((e for e in existing if e.overlaps(start_minute, end_minute)), None)
            if clash is not None:
                raise ConfigurationError(
                    "entries for the same weekday must not overlap",
                    day_of_week=day_of_week,
                    conflicting_entry=clash.id,
                )
            obj = await self.repo.create(provider_id, effective_from=effective_from, **row)
            await self.session.commit()
        logger.info(f"Added availability for provider {provider_id}: day={day_of_week} {start_minute}-{end_minute}")
        return obj

    async def supersede_day(
        self,
        provider_id: uuid.UUID,
        day_of_week: int,
        entries: list[dict],
        effective_from: date,
    ) -> list[WeeklyAvailability]:
        """Replace a weekday's hours from ``effective_from`` onwards.

        Current rows are end-dated rather than removed so appointments booked
        against them keep their history. An empty ``entries`` list closes the day.
        """
        rows = []
        for raw in entries:
            row = {
                "day_of_week": raw.get("day_of_week", day_of_week),
                "start_minute": raw["start_minute"],
                "end_minute": raw["end_minute"],
                "slot_minutes": raw.get("slot_minutes") or settings.DEFAULT_SLOT_MINUTES,
                "max_concurrent": raw.get("max_concurrent", 1),
            }
            if row["day_of_week"] != day_of_week:
                raise ConfigurationError("entry weekday does not match the day being replaced", day_of_week=row["day_of_week"])
            validate_entry(**row)
            rows.append(row)
        _check_disjoint(rows)

        async with unit_of_work(self.session):
            current = await self.repo.list_for_provider(provider_id, day_of_week=day_of_week, start=effective_from)
            for entry in current:
                # rows that would only start after the cut-over never take effect
                entry.effective_until = max(entry.effective_from, effective_from)
            created = [
                await self.repo.create(provider_id, effective_from=effective_from, **row)
                for row in rows
            ]
            await self.session.commit()
        logger.info(f"Superseded {len(current)} entries for provider {provider_id} day={day_of_week} from {effective_from}")
        return created

    async def list_entries(self, provider_id: uuid.UUID, on: date | None = None) -> list[WeeklyAvailability]:
        if on is None:
            return list(await self.repo.list_for_provider(provider_id))
        return list(await self.repo.list_for_provider(provider_id, start=on, end=on + timedelta(days=1)))

    async def get_schedule(self, provider_id: uuid.UUID, start: date, end: date) -> ProviderSchedule:
        entries = await self.repo.list_for_provider(provider_id, start=start, end=end)
        if not entries and not await self.repo.exists_for_provider(provider_id):
            raise NotFoundError("provider has no schedule", provider_id=provider_id)
        return ProviderSchedule(provider_id=provider_id, entries=list(entries))


async def seed_default_schedule(
    session: AsyncSession,
    provider_id: uuid.UUID,
    effective_from: date | None = None,
    clock: Clock = local_now,
) -> list[WeeklyAvailability]:
    """Give a newly onboarded provider the default working week.

    Idempotent: a provider that already has any schedule row is left alone.
    """
    repo = ScheduleRepository(session)
    if await repo.exists_for_provider(provider_id):
        return []
    effective_from = effective_from or clock().date()
    async with unit_of_work(session):
        created = [
            await repo.create(
                provider_id,
                day_of_week=day,
                start_minute=DEFAULT_START_MINUTE,
                end_minute=DEFAULT_END_MINUTE,
                slot_minutes=settings.DEFAULT_SLOT_MINUTES,
                max_concurrent=1,
                effective_from=effective_from,
            )
            for day in DEFAULT_WORKING_DAYS
        ]
        await session.commit()
    logger.info(f"Seeded default schedule for provider {provider_id}")
    return created
