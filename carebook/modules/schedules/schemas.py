import uuid
from datetime import date, datetime
from pydantic import BaseModel, Field, model_validator

class ScheduleEntryIn(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    start_minute: int = Field(ge=0, le=24*60-1)
    end_minute: int = Field(ge=1, le=24*60)
    slot_minutes: int = Field(default=60, ge=5, le=240)
    max_concurrent: int = Field(default=1, ge=1, le=20)

class ScheduleEntryCreate(ScheduleEntryIn):
    effective_from: date | None = None

class DayScheduleReplace(BaseModel):
    effective_from: date
    entries: list[ScheduleEntryIn] = []

    @model_validator(mode="after")
    def _no_foreign_days(self):
        # entries travel under the weekday in the path; reject mismatched payloads early
        days = {e.day_of_week for e in self.entries}
        if len(days) > 1:
            raise ValueError("all entries must share one day_of_week")
        return self

class ScheduleEntryOut(BaseModel):
    id: uuid.UUID
    provider_id: uuid.UUID
    day_of_week: int
    start_minute: int
    end_minute: int
    slot_minutes: int
    max_concurrent: int
    effective_from: date
    effective_until: date | None = None
    created_at: datetime

    class Config:
        from_attributes = True
