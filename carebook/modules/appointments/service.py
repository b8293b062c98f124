import asyncio
import uuid
import logging
from datetime import datetime, timedelta
from typing import Sequence
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from carebook.core.clock import Clock, local_now
from carebook.core.config import settings
from carebook.core.db import unit_of_work
from carebook.core.errors import (
    CancellationWindowError, ConfirmationCodeError, ConflictError,
    InvalidSlotError, InvalidTransitionError, NotFoundError, StorageError,
)
from carebook.modules.appointments.models import (
    Appointment, AppointmentHistory,
    SCHEDULED, CONFIRMED, IN_PROGRESS, COMPLETED, CANCELLED, NO_SHOW,
    APPOINTMENT_TYPES, LOCATION_MODES, TERMINAL_STATES,
)
from carebook.modules.appointments.repository import AppointmentRepository, AppointmentHistoryRepository
from carebook.modules.availability.slots import entry_for_slot, overlapping
from carebook.modules.schedules.models import WeeklyAvailability
from carebook.modules.schedules.repository import ScheduleRepository
from carebook.platform.ports.event_bus import EventBusPort
from carebook.platform.provider_registry import registry

logger = logging.getLogger(__name__)

NOTIFICATION_TOPIC = "carebook.appointments"

VALID_NEXT = {
    SCHEDULED: {CONFIRMED, CANCELLED, NO_SHOW, COMPLETED},
    CONFIRMED: {IN_PROGRESS, CANCELLED, NO_SHOW, COMPLETED},
    IN_PROGRESS: {COMPLETED},
    **{s: set() for s in TERMINAL_STATES},
}

# Roles allowed to cancel inside the cutoff window
CUTOFF_EXEMPT_ROLES = {"provider", "admin"}

def _confirmation_code() -> str:
    return "CB" + uuid.uuid4().hex[:10].upper()

def _append_note(notes: str | None, line: str) -> str:
    return f"{notes}\n\n{line}" if notes else line

class BookingCoordinator:
    """Owns every write to appointments.

    ``book`` and ``reschedule`` are the only operations that claim a timeslot.
    Their final arbiter is the partial unique index on
    ``(provider_id, scheduled_at)`` over blocking states: the read-side checks
    here give friendly errors, the index decides races.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        bus: EventBusPort | None = None,
        clock: Clock = local_now,
        cancellation_cutoff: timedelta | None = None,
        notify_timeout: float | None = None,
    ):
        self.session = session
        self.appts = AppointmentRepository(session)
        self.history_repo = AppointmentHistoryRepository(session)
        self.schedules = ScheduleRepository(session)
        self.bus = bus or registry.event_bus()
        self.clock = clock
        if cancellation_cutoff is None:
            cancellation_cutoff = timedelta(minutes=settings.CANCELLATION_CUTOFF_MINUTES)
        self.cancellation_cutoff = cancellation_cutoff
        self.notify_timeout = settings.NOTIFY_TIMEOUT_SECONDS if notify_timeout is None else notify_timeout

    # ---- Booking ----
    async def book(
        self,
        patient_id: uuid.UUID,
        provider_id: uuid.UUID,
        scheduled_at: datetime,
        duration_minutes: int | None = None,
        type: str = "consultation",
        notes: str | None = None,
        location_mode: str = "clinic",
        actor_role: str | None = None,
    ) -> Appointment:
        if type not in APPOINTMENT_TYPES:
            raise InvalidSlotError(f"unknown appointment type '{type}'", type=type)
        if location_mode not in LOCATION_MODES:
            raise InvalidSlotError(f"unknown location mode '{location_mode}'", location_mode=location_mode)
        now = self.clock()
        async with unit_of_work(self.session):
            entry = await self._check_slot(provider_id, scheduled_at, duration_minutes, now)
            appt = await self._insert(
                patient_id=patient_id,
                provider_id=provider_id,
                scheduled_at=scheduled_at,
                duration_minutes=duration_minutes or entry.slot_minutes,
                type=type,
                location_mode=location_mode,
                notes=notes,
                now=now,
            )
            await self.history_repo.append(appt.id, from_state=None, to_state=SCHEDULED, actor_role=actor_role, reason=None, occurred_at=now)
            await self.session.commit()
        logger.info(f"Booked appointment {appt.id} provider={provider_id} at {scheduled_at.isoformat()}")
        await self._notify("appointment.booked", appt)
        return appt

    async def reschedule(
        self,
        appointment_id: uuid.UUID,
        new_datetime: datetime,
        reason: str | None = None,
        actor_role: str | None = None,
    ) -> Appointment:
        """Cancel the appointment and book its replacement in one transaction.

        Returns the new appointment. If the new slot cannot be claimed nothing
        is committed and the original keeps its state.
        """
        now = self.clock()
        async with unit_of_work(self.session):
            original = await self._load(appointment_id, for_update=True)
            if original.state not in (SCHEDULED, CONFIRMED):
                raise InvalidTransitionError(
                    f"cannot reschedule an appointment in state '{original.state}'",
                    appointment_id=appointment_id,
                )
            if new_datetime == original.scheduled_at:
                raise InvalidSlotError("appointment is already at that time", scheduled_at=new_datetime)
            await self._check_slot(original.provider_id, new_datetime, original.duration_minutes, now, exclude_id=original.id)

            await self._transition(original, CANCELLED, actor_role=actor_role, reason=f"rescheduled: {reason}" if reason else "rescheduled", now=now)
            original.cancelled_by = actor_role
            original.cancel_reason = reason
            original.notes = _append_note(original.notes, f"Rescheduled: {reason or ''}".rstrip())
            # free the old slot before claiming the new one
            await self.session.flush()

            replacement = await self._insert(
                patient_id=original.patient_id,
                provider_id=original.provider_id,
                scheduled_at=new_datetime,
                duration_minutes=original.duration_minutes,
                type=original.type,
                location_mode=original.location_mode,
                notes=original.notes,
                now=now,
                rescheduled_from_id=original.id,
            )
            original.rescheduled_to_id = replacement.id
            await self.history_repo.append(replacement.id, from_state=None, to_state=SCHEDULED, actor_role=actor_role, reason=f"rescheduled from {original.id}", occurred_at=now)
            await self.session.commit()
        logger.info(f"Rescheduled appointment {original.id} -> {replacement.id} at {new_datetime.isoformat()}")
        await self._notify("appointment.rescheduled", original, replacement)
        return replacement

    # ---- Lifecycle ----
    async def confirm(self, appointment_id: uuid.UUID, confirmation_code: str | None = None, actor_role: str | None = None) -> Appointment:
        now = self.clock()
        async with unit_of_work(self.session):
            appt = await self._load(appointment_id, for_update=True)
            if appt.state != SCHEDULED:
                raise InvalidTransitionError(f"cannot confirm an appointment in state '{appt.state}'", appointment_id=appointment_id)
            if confirmation_code is not None and confirmation_code.strip().upper() != appt.confirmation_code:
                raise ConfirmationCodeError("confirmation code does not match", appointment_id=appointment_id)
            await self._transition(appt, CONFIRMED, actor_role=actor_role, now=now)
            await self.session.commit()
        await self._notify("appointment.confirmed", appt)
        return appt

    async def cancel(
        self,
        appointment_id: uuid.UUID,
        reason: str | None = None,
        actor_role: str = "patient",
        override: bool = False,
    ) -> Appointment:
        now = self.clock()
        async with unit_of_work(self.session):
            appt = await self._load(appointment_id, for_update=True)
            if appt.state not in (SCHEDULED, CONFIRMED):
                raise InvalidTransitionError(f"cannot cancel an appointment in state '{appt.state}'", appointment_id=appointment_id)
            lead = appt.scheduled_at - now
            if lead < self.cancellation_cutoff and not override and actor_role not in CUTOFF_EXEMPT_ROLES:
                raise CancellationWindowError(
                    f"cancellation must be made at least {int(self.cancellation_cutoff.total_seconds() // 60)} minutes before the appointment",
                    appointment_id=appointment_id,
                    scheduled_at=appt.scheduled_at,
                )
            await self._transition(appt, CANCELLED, actor_role=actor_role, reason=reason, now=now)
            appt.cancelled_by = actor_role
            appt.cancel_reason = reason
            appt.notes = _append_note(appt.notes, f"Cancelled by {actor_role}: {reason or ''}".rstrip())
            await self.session.commit()
        logger.info(f"Cancelled appointment {appt.id} by {actor_role}")
        await self._notify("appointment.cancelled", appt)
        return appt

    async def start(self, appointment_id: uuid.UUID, actor_role: str | None = "provider") -> Appointment:
        now = self.clock()
        async with unit_of_work(self.session):
            appt = await self._load(appointment_id, for_update=True)
            if appt.state != CONFIRMED:
                raise InvalidTransitionError(f"cannot start an appointment in state '{appt.state}'", appointment_id=appointment_id)
            await self._transition(appt, IN_PROGRESS, actor_role=actor_role, now=now)
            await self.session.commit()
        await self._notify("appointment.started", appt)
        return appt

    async def mark_completed(self, appointment_id: uuid.UUID, provider_notes: str | None = None, actor_role: str | None = "provider") -> Appointment:
        now = self.clock()
        async with unit_of_work(self.session):
            appt = await self._load(appointment_id, for_update=True)
            self._require_elapsed(appt, now)
            await self._transition(appt, COMPLETED, actor_role=actor_role, now=now)
            if provider_notes:
                appt.notes = _append_note(appt.notes, f"Provider notes: {provider_notes}")
            await self.session.commit()
        await self._notify("appointment.completed", appt)
        return appt

    async def mark_no_show(self, appointment_id: uuid.UUID, actor_role: str | None = "provider") -> Appointment:
        now = self.clock()
        async with unit_of_work(self.session):
            appt = await self._load(appointment_id, for_update=True)
            self._require_elapsed(appt, now)
            await self._transition(appt, NO_SHOW, actor_role=actor_role, now=now)
            await self.session.commit()
        await self._notify("appointment.no_show", appt)
        return appt

    # ---- Reads ----
    async def get(self, appointment_id: uuid.UUID) -> Appointment:
        return await self._load(appointment_id)

    async def history(self, appointment_id: uuid.UUID) -> Sequence[AppointmentHistory]:
        await self._load(appointment_id)
        return await self.history_repo.for_appointment(appointment_id)

    async def list(
        self,
        *,
        patient_id: uuid.UUID | None = None,
        provider_id: uuid.UUID | None = None,
        state: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        sort: str = "date_asc",
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[Appointment]:
        return await self.appts.list(
            patient_id=patient_id,
            provider_id=provider_id,
            state=state,
            start=start,
            end=end,
            newest_first=(sort == "date_desc"),
            limit=limit,
            offset=offset,
        )

    # ---- Internals ----
    async def _load(self, appointment_id: uuid.UUID, *, for_update: bool = False) -> Appointment:
        appt = await self.appts.get(appointment_id, for_update=for_update)
        if appt is None:
            raise NotFoundError("appointment not found", appointment_id=appointment_id)
        return appt

    async def _check_slot(
        self,
        provider_id: uuid.UUID,
        scheduled_at: datetime,
        duration_minutes: int | None,
        now: datetime,
        exclude_id: uuid.UUID | None = None,
    ) -> WeeklyAvailability:
        day = scheduled_at.date()
        entries = await self.schedules.list_for_provider(provider_id, start=day, end=day + timedelta(days=1), for_update=True)
        if not entries and not await self.schedules.exists_for_provider(provider_id):
            raise NotFoundError("provider has no schedule", provider_id=provider_id)
        entry = entry_for_slot(entries, scheduled_at)
        if entry is None:
            raise InvalidSlotError("requested time is not on the provider's slot grid", provider_id=provider_id, scheduled_at=scheduled_at)
        if scheduled_at <= now:
            raise InvalidSlotError("requested time is in the past", scheduled_at=scheduled_at)
        duration = duration_minutes or entry.slot_minutes
        if duration <= 0:
            raise InvalidSlotError("duration must be positive", duration_minutes=duration)
        end = scheduled_at + timedelta(minutes=duration)
        window_end = datetime.combine(day, datetime.min.time()) + timedelta(minutes=entry.end_minute)
        if end > window_end:
            raise InvalidSlotError("appointment would run past the provider's availability", scheduled_at=scheduled_at, duration_minutes=duration)

        busy = [a for a in await self.appts.blocking_in_range(provider_id, scheduled_at, end) if a.id != exclude_id]
        if any(a.scheduled_at == scheduled_at for a in busy) or len(overlapping(busy, scheduled_at, end)) >= entry.max_concurrent:
            raise ConflictError("requested slot is no longer available", provider_id=provider_id, scheduled_at=scheduled_at)
        return entry

    async def _insert(self, *, now: datetime, **data) -> Appointment:
        try:
            return await self.appts.create(
                state=SCHEDULED,
                confirmation_code=_confirmation_code(),
                created_at=now,
                updated_at=now,
                **data,
            )
        except IntegrityError as e:
            # lost the race on the unique slot index; anything else is a storage fault
            await self.session.rollback()
            if await self.appts.blocking_at(data["provider_id"], data["scheduled_at"]) is not None:
                logger.info(f"Booking race lost for provider={data['provider_id']} at {data['scheduled_at'].isoformat()}")
                raise ConflictError(
                    "requested slot is no longer available",
                    provider_id=data["provider_id"],
                    scheduled_at=data["scheduled_at"],
                ) from e
            raise StorageError("could not store appointment") from e

    async def _transition(self, appt: Appointment, to_state: str, *, actor_role: str | None, now: datetime, reason: str | None = None) -> None:
        if to_state not in VALID_NEXT.get(appt.state, set()):
            raise InvalidTransitionError(
                f"cannot move appointment from '{appt.state}' to '{to_state}'",
                appointment_id=appt.id,
            )
        prev = appt.state
        appt.state = to_state
        appt.updated_at = now
        await self.history_repo.append(appt.id, from_state=prev, to_state=to_state, actor_role=actor_role, reason=reason, occurred_at=now)

    def _require_elapsed(self, appt: Appointment, now: datetime) -> None:
        if now < appt.scheduled_at:
            raise InvalidTransitionError(
                "appointment has not started yet",
                appointment_id=appt.id,
                scheduled_at=appt.scheduled_at,
            )

    async def _notify(self, event: str, *appts: Appointment) -> None:
        # fire-and-forget: the booking is already committed; each publish is bounded by notify_timeout
        for appt in appts:
            for recipient in (appt.patient_id, appt.provider_id):
                publish = self.bus.publish(
                    topic=NOTIFICATION_TOPIC,
                    key=str(appt.id),
                    value={
                        "event": event,
                        "appointment_id": str(appt.id),
                        "new_state": appt.state,
                        "recipient_id": str(recipient),
                    },
                )
                try:
                    await asyncio.wait_for(publish, timeout=self.notify_timeout)
                except asyncio.TimeoutError:
                    logger.warning(f"Notification for appointment {appt.id} timed out after {self.notify_timeout}s")
                except Exception:
                    logger.exception(f"Notification for appointment {appt.id} failed")
