import logging
from contextlib import asynccontextmanager
from fastapi import Request
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncEngine, AsyncSession
from .base import Base
from .errors import BookingError, ConflictError, StorageError

log = logging.getLogger(__name__)

def build_engine(url: str) -> AsyncEngine:
    if url.startswith("sqlite"):
        # sqlite serialises writers; give a losing writer time to wait for the lock
        engine = create_async_engine(url, connect_args={"timeout": 30})
        _begin_immediate(engine)
        return engine
    return create_async_engine(url, pool_pre_ping=True)

def _begin_immediate(engine: AsyncEngine) -> None:
    """Take sqlite's write lock when a transaction starts, not at its first write.

    sqlite ignores ``SELECT ... FOR UPDATE``, so without this two bookings can
    both pass the capacity check before either inserts.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _no_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

async def init_models(engine: AsyncEngine):
    # register every mapped table on Base.metadata before create_all
    from carebook.modules.schedules import models as _schedules  # noqa: F401
    from carebook.modules.appointments import models as _appointments  # noqa: F401
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

async def get_session(request: Request):
    async with request.app.state.sessionmaker() as session:
        yield session

@asynccontextmanager
async def unit_of_work(session: AsyncSession):
    """Commit-or-rollback scope translating driver failures into typed errors.

    Business errors and already-translated storage errors raised inside the
    block roll the session back and pass through untouched. A concurrent
    modification of a versioned row surfaces as ``ConflictError``; every other
    SQLAlchemy failure becomes ``StorageError``, which is not a ``BookingError``.
    """
    try:
        yield session
    except BookingError:
        await session.rollback()
        raise
    except StorageError:
        await session.rollback()
        log.error("Storage failure, transaction rolled back")
        raise
    except StaleDataError as e:
        await session.rollback()
        raise ConflictError("record was modified concurrently; reload and retry") from e
    except SQLAlchemyError as e:
        await session.rollback()
        log.exception("Storage failure")
        raise StorageError("storage layer failure") from e
