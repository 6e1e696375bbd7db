import uuid
from datetime import date, datetime, time
from typing import Literal
from pydantic import BaseModel, Field

BookingStatus = Literal["pending", "confirmed", "completed", "cancelled", "no-show"]

class BookingCreate(BaseModel):
    service_id: uuid.UUID
    staff_id: uuid.UUID
    outlet_id: uuid.UUID
    start_at: datetime
    customer_id: uuid.UUID | None = None
    notes: str | None = Field(default=None, max_length=2000)
    tenant_id: uuid.UUID | None = None  # optional echo of the caller's tenant

class BookingReschedule(BaseModel):
    new_date: date
    new_time: time

class BookingOut(BaseModel):
    id: uuid.UUID
    org_id: uuid.UUID
    staff_id: uuid.UUID
    service_id: uuid.UUID
    outlet_id: uuid.UUID
    customer_id: uuid.UUID | None = None
    start_at: datetime
    end_at: datetime
    status: BookingStatus
    reschedule_count: int = 0
    cancelled_at: datetime | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime
    class Config: from_attributes = True
