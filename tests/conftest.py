import uuid
from datetime import date, datetime
import pytest
import pytest_asyncio
from carebook.core.db import build_engine, build_sessionmaker, init_models
from carebook.modules.appointments.service import BookingCoordinator
from carebook.modules.schedules.service import seed_default_schedule
from tests.helpers import FakeClock, RecordingBus


@pytest.fixture
def clock():
    # Sunday 2026-03-01, the day before the Monday most tests book on
    return FakeClock(datetime(2026, 3, 1, 8, 0))

@pytest.fixture
def bus():
    return RecordingBus()

@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'carebook.db'}")
    await init_models(engine)
    yield engine
    await engine.dispose()

@pytest.fixture
def sessionmaker(engine):
    return build_sessionmaker(engine)

@pytest_asyncio.fixture
async def session(sessionmaker):
    async with sessionmaker() as s:
        yield s

@pytest_asyncio.fixture
async def provider_id(session):
    pid = uuid.uuid4()
    await seed_default_schedule(session, pid, effective_from=date(2026, 1, 1))
    return pid

@pytest.fixture
def coordinator(session, bus, clock):
    return BookingCoordinator(session, bus=bus, clock=clock)
