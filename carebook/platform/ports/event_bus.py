from typing import Protocol, runtime_checkable

@runtime_checkable
class EventBusPort(Protocol):
    """Outbound channel for appointment notifications.

    ``value`` carries ``event``, ``appointment_id``, ``new_state`` and
    ``recipient_id``. Delivery is best effort; callers log and move on.
    """

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None: ...

    async def close(self) -> None: ...
