import asyncio
from datetime import date, datetime, timedelta

# 2026-03-02 is a Monday
MONDAY = date(2026, 3, 2)
SATURDAY = date(2026, 3, 7)

def at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime):
        self.now = now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class RecordingBus:
    def __init__(self):
        self.events: list[dict] = []

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None:
        self.events.append({"topic": topic, "key": key, **value})

    async def close(self) -> None:
        pass


class FailingBus:
    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None:
        raise ConnectionError("notification service unreachable")

    async def close(self) -> None:
        pass


class HangingBus:
    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None:
        await asyncio.Event().wait()

    async def close(self) -> None:
        pass
