from pydantic import BaseModel, Field, field_validator
from typing import Literal
import uuid
from datetime import datetime
from carebook.core.clock import as_local

AppointmentType = Literal["consultation", "evaluation", "follow_up", "procedure"]
LocationMode = Literal["home", "clinic", "telehealth"]
AppointmentState = Literal["scheduled", "confirmed", "in_progress", "completed", "cancelled", "no_show"]

# ---- Requests ----

class BookRequest(BaseModel):
    patient_id: uuid.UUID
    provider_id: uuid.UUID
    scheduled_at: datetime
    duration_minutes: int | None = Field(default=None, ge=5, le=480)
    type: AppointmentType = "consultation"
    location_mode: LocationMode = "clinic"
    notes: str | None = None

    @field_validator("scheduled_at")
    @classmethod
    def _local_time(cls, v: datetime) -> datetime:
        return as_local(v)

class ConfirmRequest(BaseModel):
    confirmation_code: str | None = None

class CancelRequest(BaseModel):
    reason: str | None = None
    override: bool = False  # administrative override of the cutoff window

class RescheduleRequest(BaseModel):
    scheduled_at: datetime
    reason: str | None = None

    @field_validator("scheduled_at")
    @classmethod
    def _local_time(cls, v: datetime) -> datetime:
        return as_local(v)

class CompleteRequest(BaseModel):
    provider_notes: str | None = None

# ---- Responses ----

class AppointmentOut(BaseModel):
    id: uuid.UUID
    patient_id: uuid.UUID
    provider_id: uuid.UUID
    scheduled_at: datetime
    duration_minutes: int
    type: str
    location_mode: str
    state: str
    notes: str | None = None
    confirmation_code: str
    cancelled_by: str | None = None
    cancel_reason: str | None = None
    rescheduled_from_id: uuid.UUID | None = None
    rescheduled_to_id: uuid.UUID | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

class HistoryOut(BaseModel):
    from_state: str | None = None
    to_state: str
    actor_role: str | None = None
    reason: str | None = None
    occurred_at: datetime

    class Config:
        from_attributes = True
