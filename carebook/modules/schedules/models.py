import uuid
from dataclasses import dataclass, field
from datetime import date
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, Date
from carebook.core.base import Base, TimestampedMixin

def weekday_index(day: date) -> int:
    """Weekday number used by schedules: 0=Sunday .. 6=Saturday."""
    return (day.weekday() + 1) % 7

# Recurring weekly availability: day_of_week 0=Sun..6=Sat, minutes past midnight.
# Rows are never deleted; a change of hours end-dates the old row and adds a new one.
class WeeklyAvailability(Base, TimestampedMixin):
    __tablename__ = "weekly_availability"

    provider_id: Mapped[uuid.UUID] = mapped_column(index=True)
    day_of_week: Mapped[int] = mapped_column(Integer)  # 0..6
    start_minute: Mapped[int] = mapped_column(Integer)  # e.g., 9*60
    end_minute: Mapped[int] = mapped_column(Integer)    # e.g., 17*60
    slot_minutes: Mapped[int] = mapped_column(Integer, default=60)
    max_concurrent: Mapped[int] = mapped_column(Integer, default=1)
    effective_from: Mapped[date] = mapped_column(Date)
    effective_until: Mapped[date | None] = mapped_column(Date, nullable=True)  # exclusive

    def is_effective_on(self, day: date) -> bool:
        if self.effective_from is not None and day < self.effective_from:
            return False
        return self.effective_until is None or day < self.effective_until

    def overlaps(self, start_minute: int, end_minute: int) -> bool:
        return self.start_minute < end_minute and start_minute < self.end_minute


@dataclass
class ProviderSchedule:
    provider_id: uuid.UUID
    entries: list[WeeklyAvailability] = field(default_factory=list)

    def entries_for(self, day: date) -> list[WeeklyAvailability]:
        todays = [
            e for e in self.entries
            if e.day_of_week == weekday_index(day) and e.is_effective_on(day)
        ]
        return sorted(todays, key=lambda e: e.start_minute)
