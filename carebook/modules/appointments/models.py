import uuid
from datetime import datetime, timedelta
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, Integer, TIMESTAMP, ForeignKey, Index, text
from carebook.core.base import Base, TimestampedMixin
from carebook.core.clock import local_now

# Lifecycle states
SCHEDULED = "scheduled"
CONFIRMED = "confirmed"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
CANCELLED = "cancelled"
NO_SHOW = "no_show"

# States that occupy the provider's timeslot
BLOCKING_STATES = (SCHEDULED, CONFIRMED, IN_PROGRESS, COMPLETED)
TERMINAL_STATES = (COMPLETED, CANCELLED, NO_SHOW)

APPOINTMENT_TYPES = ("consultation", "evaluation", "follow_up", "procedure")
LOCATION_MODES = ("home", "clinic", "telehealth")

_BLOCKING_SQL = text("state IN ({})".format(", ".join(f"'{s}'" for s in BLOCKING_STATES)))

class Appointment(Base, TimestampedMixin):
    __tablename__ = "appointment"

    patient_id: Mapped[uuid.UUID] = mapped_column(index=True)
    provider_id: Mapped[uuid.UUID] = mapped_column(index=True)

    # Slot
    scheduled_at: Mapped[datetime] = mapped_column(TIMESTAMP)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=60)

    type: Mapped[str] = mapped_column(String(24), default="consultation")  # consultation, evaluation, follow_up, procedure
    location_mode: Mapped[str] = mapped_column(String(16), default="clinic")  # home, clinic, telehealth
    state: Mapped[str] = mapped_column(String(16), default=SCHEDULED, index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    confirmation_code: Mapped[str] = mapped_column(String(16), unique=True)

    cancelled_by: Mapped[str | None] = mapped_column(String(16), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Reschedule chain: the original is cancelled and points at its replacement
    rescheduled_from_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("appointment.id"), nullable=True)
    rescheduled_to_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("appointment.id"), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        # At most one blocking appointment per provider and start time, enforced at commit
        Index(
            "uq_appointment_blocking_slot",
            "provider_id",
            "scheduled_at",
            unique=True,
            postgresql_where=_BLOCKING_SQL,
            sqlite_where=_BLOCKING_SQL,
        ),
    )

    @property
    def ends_at(self) -> datetime:
        return self.scheduled_at + timedelta(minutes=self.duration_minutes)


class AppointmentHistory(Base):
    __tablename__ = "appointment_history"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    appointment_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("appointment.id"), index=True)
    from_state: Mapped[str | None] = mapped_column(String(16), nullable=True)
    to_state: Mapped[str] = mapped_column(String(16))
    actor_role: Mapped[str | None] = mapped_column(String(16), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(TIMESTAMP, default=local_now)
