import json
import logging
from collections import deque
from carebook.platform.ports.event_bus import EventBusPort

log = logging.getLogger("bus.noop")

class NoopEventBus(EventBusPort):
    """Logs notifications instead of delivering them; keeps the latest ones for inspection."""

    def __init__(self, keep: int = 100):
        self.sent: deque[dict] = deque(maxlen=keep)

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None:
        self.sent.append({"topic": topic, "key": key, **value})
        log.info(
            f"[NOOP BUS] {value.get('event', topic)} -> recipient={value.get('recipient_id', '-')} "
            f"appointment={key} value={json.dumps(value, default=str)}"
        )

    async def close(self) -> None:
        self.sent.clear()
