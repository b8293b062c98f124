import uuid
from datetime import datetime, timedelta
from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from carebook.modules.appointments.models import Appointment, AppointmentHistory, BLOCKING_STATES

# Appointments never run past a day; used to catch ones that start before a window and spill into it
MAX_LOOKBACK = timedelta(days=1)

class AppointmentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **data) -> Appointment:
        obj = Appointment(**data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, appt_id: uuid.UUID, *, for_update: bool = False) -> Appointment | None:
        q = select(Appointment).where(Appointment.id == appt_id)
        if for_update:
            q = q.with_for_update()
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def blocking_at(self, provider_id: uuid.UUID, scheduled_at: datetime) -> Appointment | None:
        res = await self.session.execute(select(Appointment).where(
            Appointment.provider_id == provider_id,
            Appointment.scheduled_at == scheduled_at,
            Appointment.state.in_(BLOCKING_STATES),
        ))
        return res.scalars().first()

    async def blocking_in_range(self, provider_id: uuid.UUID, start: datetime, end: datetime) -> Sequence[Appointment]:
        """Blocking appointments that may overlap ``[start, end)``."""
        res = await self.session.execute(
            select(Appointment)
            .where(
                Appointment.provider_id == provider_id,
                Appointment.state.in_(BLOCKING_STATES),
                Appointment.scheduled_at >= start - MAX_LOOKBACK,
                Appointment.scheduled_at < end,
            )
            .order_by(Appointment.scheduled_at.asc())
        )
        return [a for a in res.scalars().all() if a.ends_at > start]

    async def list(
        self,
        *,
        patient_id: uuid.UUID | None = None,
        provider_id: uuid.UUID | None = None,
        state: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        newest_first: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[Appointment]:
        cond = []
        if patient_id:
            cond.append(Appointment.patient_id == patient_id)
        if provider_id:
            cond.append(Appointment.provider_id == provider_id)
        if state:
            cond.append(Appointment.state == state)
        if start:
            cond.append(Appointment.scheduled_at >= start)
        if end:
            cond.append(Appointment.scheduled_at < end)
        order = Appointment.scheduled_at.desc() if newest_first else Appointment.scheduled_at.asc()
        q = select(Appointment).where(*cond).order_by(order).limit(limit).offset(offset)
        res = await self.session.execute(q)
        return res.scalars().all()


class AppointmentHistoryRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, appointment_id: uuid.UUID, *, from_state: str | None, to_state: str, actor_role: str | None, reason: str | None, occurred_at: datetime) -> AppointmentHistory:
        obj = AppointmentHistory(
            appointment_id=appointment_id,
            from_state=from_state,
            to_state=to_state,
            actor_role=actor_role,
            reason=reason,
            occurred_at=occurred_at,
        )
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def for_appointment(self, appointment_id: uuid.UUID) -> Sequence[AppointmentHistory]:
        res = await self.session.execute(
            select(AppointmentHistory)
            .where(AppointmentHistory.appointment_id == appointment_id)
            .order_by(AppointmentHistory.id.asc())
        )
        return res.scalars().all()
