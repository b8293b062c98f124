import json
import logging
from datetime import datetime, timezone
import pytest
from sqlalchemy.exc import OperationalError
from carebook.core.clock import as_local, local_now
from carebook.core.config import settings
from carebook.core.db import unit_of_work
from carebook.core.errors import BookingError, ConflictError, InvalidSlotError, ServiceError, StorageError
from carebook.core.security import Principal
from carebook.platform.adapters.bus_noop import NoopEventBus
from carebook.platform.adapters.bus_redis import RedisEventBus
from carebook.platform.provider_registry import ProviderRegistry

NOTICE = {"event": "appointment.booked", "appointment_id": "a-1", "new_state": "scheduled", "recipient_id": "p-1"}


class FakeRedis:
    def __init__(self):
        self.added = []
        self.closed = False

    async def xadd(self, stream, fields, maxlen=None, approximate=True):
        self.added.append((stream, fields, maxlen))
        return "1-0"

    async def aclose(self):
        self.closed = True


@pytest.mark.asyncio
async def test_noop_bus_logs_and_keeps_recent(caplog):
    bus = NoopEventBus(keep=2)
    with caplog.at_level(logging.INFO, logger="bus.noop"):
        for i in range(3):
            await bus.publish("carebook.appointments", f"a-{i}", {**NOTICE, "appointment_id": f"a-{i}"})
    assert [m["key"] for m in bus.sent] == ["a-1", "a-2"]
    assert "appointment.booked -> recipient=p-1" in caplog.text
    await bus.close()
    assert not bus.sent

@pytest.mark.asyncio
async def test_redis_bus_flattens_routing_fields():
    client = FakeRedis()
    bus = RedisEventBus(client=client, stream="test.notifications")
    await bus.publish("carebook.appointments", "a-1", NOTICE)
    stream, fields, maxlen = client.added[0]
    assert stream == "test.notifications"
    assert fields["event"] == "appointment.booked"
    assert fields["recipient_id"] == "p-1"
    assert fields["appointment_id"] == "a-1"
    assert json.loads(fields["value"]) == NOTICE
    assert maxlen == settings.REDIS_STREAM_MAXLEN
    await bus.close()
    assert client.closed

def test_redis_bus_requires_url(monkeypatch):
    monkeypatch.setattr(settings, "REDIS_URL", None)
    with pytest.raises(RuntimeError):
        RedisEventBus()

@pytest.mark.asyncio
async def test_registry_defaults_to_noop(monkeypatch):
    monkeypatch.setattr(settings, "EVENT_BUS_PROVIDER", "noop")
    monkeypatch.setattr(ProviderRegistry, "_event_bus", None)
    bus = ProviderRegistry.event_bus()
    assert isinstance(bus, NoopEventBus)
    assert ProviderRegistry.event_bus() is bus
    await ProviderRegistry.close()
    assert ProviderRegistry._event_bus is None

def test_as_local_drops_timezone():
    naive = datetime(2026, 3, 2, 10, 0)
    assert as_local(naive) is naive
    assert as_local(None) is None
    aware = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)
    converted = as_local(aware)
    assert converted.tzinfo is None
    assert converted == aware.astimezone().replace(tzinfo=None)

def test_local_now_is_naive_whole_seconds():
    now = local_now()
    assert now.tzinfo is None and now.microsecond == 0

def test_error_payload_is_json_safe():
    err = ConflictError("requested slot is no longer available", scheduled_at=datetime(2026, 3, 2, 10))
    assert err.status_code == 409
    assert err.to_dict() == {
        "error": "slot_conflict",
        "message": "requested slot is no longer available",
        "context": {"scheduled_at": "2026-03-02 10:00:00"},
    }
    assert StorageError("down").to_dict() == {"error": "storage_unavailable", "message": "down"}

@pytest.mark.parametrize("roles,expected", [
    (["patient"], "patient"),
    (["caregiver", "patient"], "caregiver"),
    (["patient", "provider"], "provider"),
    (["provider", "admin"], "admin"),
    ([], "patient"),
])
def test_actor_role_precedence(roles, expected):
    assert Principal(user_id="7b0c1e36-3a55-4f64-a6a7-39a0f5e1c2d4", roles=roles).actor_role == expected

def test_storage_error_is_not_a_booking_error():
    assert not issubclass(StorageError, BookingError)
    assert issubclass(StorageError, ServiceError) and issubclass(BookingError, ServiceError)
    assert StorageError("down").status_code == 503

@pytest.mark.asyncio
async def test_unit_of_work_reports_driver_failure_as_storage_error(session):
    with pytest.raises(StorageError) as caught:
        try:
            async with unit_of_work(session):
                raise OperationalError("INSERT INTO appointment", {}, Exception("disk I/O error"))
        except BookingError:
            pytest.fail("storage failure surfaced as a business error")
    assert isinstance(caught.value.__cause__, OperationalError)

@pytest.mark.asyncio
async def test_unit_of_work_passes_typed_errors_through(session):
    with pytest.raises(StorageError):
        async with unit_of_work(session):
            raise StorageError("could not store appointment")
    with pytest.raises(InvalidSlotError):
        async with unit_of_work(session):
            raise InvalidSlotError("off grid")

def test_redis_bus_client_has_socket_timeouts(monkeypatch):
    seen = {}

    def fake_from_url(url, **kwargs):
        seen.update(kwargs, url=url)
        return FakeRedis()

    monkeypatch.setattr(settings, "REDIS_URL", "redis://localhost:6379/0")
    monkeypatch.setattr("carebook.platform.adapters.bus_redis.redis_from_url", fake_from_url)
    RedisEventBus()
    assert seen["url"] == "redis://localhost:6379/0"
    assert seen["socket_timeout"] == settings.REDIS_SOCKET_TIMEOUT
    assert seen["socket_connect_timeout"] == settings.REDIS_SOCKET_TIMEOUT
