import uuid
from datetime import timedelta
import pytest
from carebook.core.config import settings
from carebook.core.errors import NotFoundError
from carebook.modules.availability.service import AvailabilityService
from tests.helpers import MONDAY, at


@pytest.mark.asyncio
async def test_defaults_start_today(session, clock, provider_id):
    service = AvailabilityService(session, clock=clock)
    slots = await service.get_availability(provider_id)
    # clock is Sunday morning, so the first open slot is Monday 09:00
    assert slots[0].datetime == at(MONDAY, 9)
    assert len(slots) == settings.MAX_SLOTS_PER_QUERY

@pytest.mark.asyncio
async def test_past_slots_are_hidden(session, clock, provider_id):
    clock.set(at(MONDAY, 12))
    slots = await AvailabilityService(session, clock=clock).get_availability(provider_id, from_date=MONDAY, horizon_days=1)
    assert [s.datetime.hour for s in slots] == [13, 14, 15, 16]

@pytest.mark.asyncio
async def test_slot_starting_now_is_hidden(session, clock, provider_id):
    clock.set(at(MONDAY, 9))
    slots = await AvailabilityService(session, clock=clock).get_availability(provider_id, from_date=MONDAY, horizon_days=1)
    assert slots[0].datetime == at(MONDAY, 10)

@pytest.mark.asyncio
async def test_limit(session, clock, provider_id):
    service = AvailabilityService(session, clock=clock)
    slots = await service.get_availability(provider_id, from_date=MONDAY, horizon_days=7, limit=3)
    assert [s.datetime for s in slots] == [at(MONDAY, 9), at(MONDAY, 10), at(MONDAY, 11)]
    assert await service.get_availability(provider_id, from_date=MONDAY, limit=0) == []

@pytest.mark.asyncio
async def test_horizon_is_clamped(session, clock, provider_id):
    service = AvailabilityService(session, clock=clock)
    slots = await service.get_availability(provider_id, from_date=MONDAY, horizon_days=365, limit=10_000)
    assert slots
    assert all(s.datetime.date() < MONDAY + timedelta(days=settings.MAX_HORIZON_DAYS) for s in slots)
    assert slots[-1].datetime.date() >= MONDAY + timedelta(days=settings.MAX_HORIZON_DAYS - 7)
    assert await service.get_availability(provider_id, from_date=MONDAY, horizon_days=0) == []

@pytest.mark.asyncio
async def test_unknown_provider(session, clock):
    with pytest.raises(NotFoundError):
        await AvailabilityService(session, clock=clock).get_availability(uuid.uuid4())

@pytest.mark.asyncio
async def test_next_available_skips_booked(session, clock, coordinator, provider_id):
    service = AvailabilityService(session, clock=clock)
    await coordinator.book(uuid.uuid4(), provider_id, at(MONDAY, 9))
    nxt = await service.next_available(provider_id)
    assert nxt.datetime == at(MONDAY, 10)
    assert nxt.ends_at == at(MONDAY, 11)

@pytest.mark.asyncio
async def test_next_available_none_when_fully_booked(session, clock, coordinator, provider_id):
    clock.set(at(MONDAY, 8))
    for hour in range(9, 17):
        await coordinator.book(uuid.uuid4(), provider_id, at(MONDAY, hour))
    service = AvailabilityService(session, clock=clock)
    assert await service.next_available(provider_id, horizon_days=1) is None
