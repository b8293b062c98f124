import uuid
from datetime import datetime
from pydantic import BaseModel

class SlotOut(BaseModel):
    provider_id: uuid.UUID
    datetime: datetime
    ends_at: datetime
    duration_minutes: int
    day_of_week: int
    is_available: bool

    class Config:
        from_attributes = True
