import json
import logging
from redis.asyncio import from_url as redis_from_url
from carebook.platform.ports.event_bus import EventBusPort
from carebook.core.config import settings

log = logging.getLogger("bus.redis")

class RedisEventBus(EventBusPort):
    """Appends notifications to a Redis stream for the delivery workers.

    ``recipient_id`` and ``event`` are lifted into top-level stream fields so
    consumers can route without decoding the JSON body.
    """

    def __init__(self, client=None, stream: str | None = None):
        if client is None:
            if not settings.REDIS_URL:
                raise RuntimeError("REDIS_URL not configured")
            client = redis_from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
                socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
            )
        self.redis = client
        self.stream = stream or settings.REDIS_STREAM or "carebook.notifications"

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None:
        fields = {
            "topic": topic,
            "appointment_id": key,
            "event": str(value.get("event", "")),
            "recipient_id": str(value.get("recipient_id", "")),
            "value": json.dumps(value, default=str),
            "headers": json.dumps(headers or {}),
        }
        await self.redis.xadd(self.stream, fields, maxlen=settings.REDIS_STREAM_MAXLEN, approximate=True)
        log.debug(f"[REDIS BUS] XADD stream={self.stream} event={fields['event']} appointment={key}")

    async def close(self) -> None:
        await self.redis.aclose()
