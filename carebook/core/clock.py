from datetime import datetime
from typing import Callable

# All scheduling happens in one implicit local timezone, so timestamps are naive.
Clock = Callable[[], datetime]

def local_now() -> datetime:
    return datetime.now().replace(microsecond=0)

def get_clock() -> Clock:
    return local_now

def as_local(dt: datetime | None) -> datetime | None:
    """Drop tz info, converting aware values into the implicit local timezone first."""
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone().replace(tzinfo=None)
