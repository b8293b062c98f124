import uuid
from datetime import datetime
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from carebook.core.clock import Clock, as_local, get_clock
from carebook.core.db import get_session
from carebook.core.security import get_principal, Principal, require_scopes
from carebook.modules.appointments.schemas import (
    BookRequest, ConfirmRequest, CancelRequest, RescheduleRequest, CompleteRequest,
    AppointmentOut, HistoryOut, AppointmentState,
)
from carebook.modules.appointments.service import BookingCoordinator
from carebook.platform.ports.event_bus import EventBusPort
from carebook.platform.provider_registry import get_event_bus

router = APIRouter()

def svc(
    session: AsyncSession = Depends(get_session),
    bus: EventBusPort = Depends(get_event_bus),
    clock: Clock = Depends(get_clock),
) -> BookingCoordinator:
    return BookingCoordinator(session, bus=bus, clock=clock)

# ---- Appointments ----

@router.post("/appointments", response_model=AppointmentOut, status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_scopes("appointments:write"))])
async def book_appointment(
    payload: BookRequest,
    principal: Principal = Depends(get_principal),
    coordinator: BookingCoordinator = Depends(svc),
):
    return await coordinator.book(
        payload.patient_id,
        payload.provider_id,
        payload.scheduled_at,
        duration_minutes=payload.duration_minutes,
        type=payload.type,
        notes=payload.notes,
        location_mode=payload.location_mode,
        actor_role=principal.actor_role,
    )

@router.get("/appointments", response_model=list[AppointmentOut], dependencies=[Depends(require_scopes("appointments:read"))])
async def list_appointments(
    patient_id: uuid.UUID | None = None,
    provider_id: uuid.UUID | None = None,
    state: AppointmentState | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    sort: str = Query(default="date_asc", pattern="^(date_asc|date_desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    coordinator: BookingCoordinator = Depends(svc),
):
    return await coordinator.list(
        patient_id=patient_id,
        provider_id=provider_id,
        state=state,
        start=as_local(start_date),
        end=as_local(end_date),
        sort=sort,
        limit=limit,
        offset=offset,
    )

@router.get("/appointments/{appointment_id}", response_model=AppointmentOut, dependencies=[Depends(require_scopes("appointments:read"))])
async def get_appointment(appointment_id: uuid.UUID, coordinator: BookingCoordinator = Depends(svc)):
    return await coordinator.get(appointment_id)

@router.get("/appointments/{appointment_id}/history", response_model=list[HistoryOut], dependencies=[Depends(require_scopes("appointments:read"))])
async def appointment_history(appointment_id: uuid.UUID, coordinator: BookingCoordinator = Depends(svc)):
    return await coordinator.history(appointment_id)

# ---- Lifecycle ----

@router.patch("/appointments/{appointment_id}/confirm", response_model=AppointmentOut, dependencies=[Depends(require_scopes("appointments:write"))])
async def confirm_appointment(
    appointment_id: uuid.UUID,
    payload: ConfirmRequest | None = None,
    principal: Principal = Depends(get_principal),
    coordinator: BookingCoordinator = Depends(svc),
):
    code = payload.confirmation_code if payload else None
    return await coordinator.confirm(appointment_id, confirmation_code=code, actor_role=principal.actor_role)

@router.patch("/appointments/{appointment_id}/cancel", response_model=AppointmentOut, dependencies=[Depends(require_scopes("appointments:write"))])
async def cancel_appointment(
    appointment_id: uuid.UUID,
    payload: CancelRequest,
    principal: Principal = Depends(get_principal),
    coordinator: BookingCoordinator = Depends(svc),
):
    # only administrators may assert the cutoff override
    override = payload.override and principal.is_admin
    return await coordinator.cancel(appointment_id, reason=payload.reason, actor_role=principal.actor_role, override=override)

@router.patch("/appointments/{appointment_id}/reschedule", response_model=AppointmentOut, dependencies=[Depends(require_scopes("appointments:write"))])
async def reschedule_appointment(
    appointment_id: uuid.UUID,
    payload: RescheduleRequest,
    principal: Principal = Depends(get_principal),
    coordinator: BookingCoordinator = Depends(svc),
):
    return await coordinator.reschedule(appointment_id, payload.scheduled_at, reason=payload.reason, actor_role=principal.actor_role)

@router.patch("/appointments/{appointment_id}/start", response_model=AppointmentOut, dependencies=[Depends(require_scopes("appointments:write"))])
async def start_appointment(
    appointment_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    coordinator: BookingCoordinator = Depends(svc),
):
    return await coordinator.start(appointment_id, actor_role=principal.actor_role)

@router.patch("/appointments/{appointment_id}/complete", response_model=AppointmentOut, dependencies=[Depends(require_scopes("appointments:write"))])
async def complete_appointment(
    appointment_id: uuid.UUID,
    payload: CompleteRequest,
    principal: Principal = Depends(get_principal),
    coordinator: BookingCoordinator = Depends(svc),
):
    return await coordinator.mark_completed(appointment_id, provider_notes=payload.provider_notes, actor_role=principal.actor_role)

@router.patch("/appointments/{appointment_id}/no-show", response_model=AppointmentOut, dependencies=[Depends(require_scopes("appointments:write"))])
async def no_show_appointment(
    appointment_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    coordinator: BookingCoordinator = Depends(svc),
):
    return await coordinator.mark_no_show(appointment_id, actor_role=principal.actor_role)
