import asyncio
import os
import sys
import uuid

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from carebook.core.config import settings
from carebook.core.db import build_engine, build_sessionmaker, init_models
from carebook.modules.schedules.service import seed_default_schedule

async def main(provider_ids: list[uuid.UUID]):
    """
    Gives each provider the default Monday-Friday 09:00-17:00 schedule.
    Providers that already have a schedule are skipped.
    """
    print("Starting schedule seeding...")
    engine = build_engine(settings.DATABASE_URL)
    try:
        if settings.DB_MANAGE == "create_all":
            await init_models(engine)
        SessionLocal = build_sessionmaker(engine)
        async with SessionLocal() as db:
            for provider_id in provider_ids:
                created = await seed_default_schedule(db, provider_id)
                if created:
                    print(f"  - Provider {provider_id}: {len(created)} schedule entries created.")
                else:
                    print(f"  - Provider {provider_id}: schedule already present, skipped.")
    finally:
        await engine.dispose()
    print("Seeding finished.")

if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("usage: python scripts/seed_schedules.py <provider-uuid> [<provider-uuid> ...]")
        sys.exit(2)
    asyncio.run(main([uuid.UUID(arg) for arg in sys.argv[1:]]))
