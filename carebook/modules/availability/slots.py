"""Slot generation.

Turns a provider's recurring weekly availability into concrete, bookable
start times and removes the ones already taken by blocking appointments:

    1. Walk every calendar day in ``[from_date, from_date + horizon_days)``.
    2. Skip days with no effective availability entry for that weekday.
    3. Step through each entry's window in ``slot_minutes`` increments,
       dropping a trailing partial slot.
    4. Drop slots that a blocking appointment starts at, and slots whose
       overlapping blocking appointments already reach ``max_concurrent``.

Everything here is pure: no I/O, no clock, no result limit.
"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Iterator
from carebook.modules.appointments.models import BLOCKING_STATES
from carebook.modules.schedules.models import ProviderSchedule, WeeklyAvailability, weekday_index


@dataclass(frozen=True)
class SlotOffer:
    provider_id: uuid.UUID
    datetime: datetime
    duration_minutes: int
    day_of_week: int
    is_available: bool = True

    @property
    def ends_at(self) -> datetime:
        return self.datetime + timedelta(minutes=self.duration_minutes)


def slot_starts(entry: WeeklyAvailability, day: date) -> Iterator[datetime]:
    midnight = datetime.combine(day, time.min)
    minute = entry.start_minute
    while minute + entry.slot_minutes <= entry.end_minute:
        yield midnight + timedelta(minutes=minute)
        minute += entry.slot_minutes


def entry_for_slot(entries: Iterable[WeeklyAvailability], moment: datetime) -> WeeklyAvailability | None:
    """The entry whose slot grid contains ``moment`` as a full slot start, if any."""
    if moment.second or moment.microsecond:
        return None
    day = moment.date()
    minute = moment.hour * 60 + moment.minute
    for entry in entries:
        if entry.day_of_week != weekday_index(day) or not entry.is_effective_on(day):
            continue
        offset = minute - entry.start_minute
        if offset >= 0 and offset % entry.slot_minutes == 0 and minute + entry.slot_minutes <= entry.end_minute:
            return entry
    return None


def overlapping(appointments: Iterable, start: datetime, end: datetime) -> list:
    return [
        a for a in appointments
        if a.scheduled_at < end and a.scheduled_at + timedelta(minutes=a.duration_minutes) > start
    ]


def generate_slots(
    schedule: ProviderSchedule,
    blocking_appointments: Iterable,
    from_date: date,
    horizon_days: int,
) -> list[SlotOffer]:
    blocking = [
        a for a in blocking_appointments
        if a.provider_id == schedule.provider_id and a.state in BLOCKING_STATES
    ]
    taken = {a.scheduled_at for a in blocking}

    offers: list[SlotOffer] = []
    for offset in range(max(horizon_days, 0)):
        day = from_date + timedelta(days=offset)
        for entry in schedule.entries_for(day):
            length = timedelta(minutes=entry.slot_minutes)
            capacity = entry.max_concurrent or 1
            for start in slot_starts(entry, day):
                if start in taken:
                    continue
                if len(overlapping(blocking, start, start + length)) >= capacity:
                    continue
                offers.append(SlotOffer(
                    provider_id=schedule.provider_id,
                    datetime=start,
                    duration_minutes=entry.slot_minutes,
                    day_of_week=weekday_index(day),
                ))
    offers.sort(key=lambda s: s.datetime)
    return offers
