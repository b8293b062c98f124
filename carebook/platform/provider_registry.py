from carebook.core.config import settings
from carebook.platform.ports.event_bus import EventBusPort
from carebook.platform.adapters.bus_noop import NoopEventBus
from carebook.platform.adapters.bus_redis import RedisEventBus

class ProviderRegistry:
    _event_bus: EventBusPort | None = None

    @classmethod
    def event_bus(cls) -> EventBusPort:
        if cls._event_bus is None:
            prov = (settings.EVENT_BUS_PROVIDER or "noop").lower()
            if prov == "redis":
                cls._event_bus = RedisEventBus()
            else:
                cls._event_bus = NoopEventBus()
        return cls._event_bus

    @classmethod
    async def close(cls) -> None:
        if cls._event_bus is not None:
            await cls._event_bus.close()
            cls._event_bus = None

registry = ProviderRegistry()

def get_event_bus() -> EventBusPort:
    return registry.event_bus()
