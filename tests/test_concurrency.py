import asyncio
import uuid
from datetime import date
import pytest
from carebook.core.errors import ConflictError
from carebook.modules.appointments.service import BookingCoordinator
from carebook.modules.schedules.service import ScheduleStore
from tests.helpers import MONDAY, RecordingBus, at


async def attempt(sessionmaker, clock, provider_id, scheduled_at, duration_minutes=None):
    async with sessionmaker() as session:
        coordinator = BookingCoordinator(session, bus=RecordingBus(), clock=clock)
        try:
            appt = await coordinator.book(uuid.uuid4(), provider_id, scheduled_at, duration_minutes=duration_minutes)
            return appt.id
        except ConflictError as e:
            return e


@pytest.mark.asyncio
async def test_exactly_one_concurrent_booking_wins(sessionmaker, clock, provider_id):
    results = await asyncio.gather(*[
        attempt(sessionmaker, clock, provider_id, at(MONDAY, 10)) for _ in range(5)
    ])
    winners = [r for r in results if isinstance(r, uuid.UUID)]
    losers = [r for r in results if isinstance(r, ConflictError)]
    assert len(winners) == 1
    assert len(losers) == 4

    async with sessionmaker() as session:
        booked = await BookingCoordinator(session, bus=RecordingBus(), clock=clock).list(provider_id=provider_id)
    assert [a.id for a in booked] == winners

@pytest.mark.asyncio
async def test_concurrent_bookings_for_different_slots_all_succeed(sessionmaker, clock, provider_id):
    results = await asyncio.gather(*[
        attempt(sessionmaker, clock, provider_id, at(MONDAY, hour)) for hour in (9, 10, 11, 12)
    ])
    assert all(isinstance(r, uuid.UUID) for r in results)

@pytest.mark.asyncio
async def test_concurrent_reschedules_into_one_slot(sessionmaker, clock, provider_id):
    async with sessionmaker() as session:
        coordinator = BookingCoordinator(session, bus=RecordingBus(), clock=clock)
        ids = [(await coordinator.book(uuid.uuid4(), provider_id, at(MONDAY, hour))).id for hour in (9, 10, 11)]

    async def move(appt_id):
        async with sessionmaker() as session:
            coordinator = BookingCoordinator(session, bus=RecordingBus(), clock=clock)
            try:
                return (await coordinator.reschedule(appt_id, at(MONDAY, 15))).id
            except ConflictError as e:
                return e

    results = await asyncio.gather(*[move(i) for i in ids])
    assert len([r for r in results if isinstance(r, uuid.UUID)]) == 1

    async with sessionmaker() as session:
        coordinator = BookingCoordinator(session, bus=RecordingBus(), clock=clock)
        at_three = await coordinator.list(provider_id=provider_id, start=at(MONDAY, 15), end=at(MONDAY, 16))
        states = sorted(a.state for a in await coordinator.list(provider_id=provider_id))
    assert [a.state for a in at_three] == ["scheduled"]
    # two originals untouched, one cancelled, one replacement
    assert states == ["cancelled", "scheduled", "scheduled", "scheduled"]

@pytest.mark.asyncio
async def test_overlapping_bookings_with_different_starts_respect_capacity(session, sessionmaker, clock):
    provider_id = uuid.uuid4()
    await ScheduleStore(session, clock=clock).add_entry(
        provider_id, day_of_week=1, start_minute=9 * 60, end_minute=17 * 60,
        slot_minutes=30, max_concurrent=1, effective_from=date(2026, 1, 1),
    )
    # every pair of these overlaps, so only one may hold the provider
    requests = [(at(MONDAY, 10), 90), (at(MONDAY, 10, 30), 60), (at(MONDAY, 11), 60)]
    results = await asyncio.gather(*[
        attempt(sessionmaker, clock, provider_id, start, duration) for start, duration in requests
    ])
    assert len([r for r in results if isinstance(r, uuid.UUID)]) == 1
    assert len([r for r in results if isinstance(r, ConflictError)]) == 2

    async with sessionmaker() as s:
        booked = await BookingCoordinator(s, bus=RecordingBus(), clock=clock).list(provider_id=provider_id)
    assert len(booked) == 1
