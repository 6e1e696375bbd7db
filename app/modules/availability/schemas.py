import uuid
from datetime import date, datetime, time
from typing import Literal
from pydantic import BaseModel, Field

RuleKind = Literal["working_hours", "break", "blocked", "vacation"]
Recurrence = Literal["none", "daily", "weekly", "monthly"]

# ---- Rules ----

class RuleFields(BaseModel):
    anchor_date: date = Field(alias="date")
    start_time: time
    end_time: time
    kind: RuleKind = Field(alias="availability_type")
    recurrence: Recurrence = Field(default="none", alias="recurrence_type")
    recurrence_end_date: date | None = None
    recurrence_weekdays: list[int] = Field(default_factory=list)  # 0=Mon..6=Sun
    service_scope: list[uuid.UUID] = Field(default_factory=list, alias="service_ids")
    notes: str | None = Field(default=None, max_length=2000)
    model_config = {"populate_by_name": True}

class RuleCreate(RuleFields):
    staff_id: uuid.UUID
    outlet_id: uuid.UUID
    tenant_id: uuid.UUID | None = None

class RuleUpdate(BaseModel):
    # partial update; omitted fields keep their stored value
    outlet_id: uuid.UUID | None = None
    anchor_date: date | None = Field(default=None, alias="date")
    start_time: time | None = None
    end_time: time | None = None
    kind: RuleKind | None = Field(default=None, alias="availability_type")
    recurrence: Recurrence | None = Field(default=None, alias="recurrence_type")
    recurrence_end_date: date | None = None
    recurrence_weekdays: list[int] | None = None
    service_scope: list[uuid.UUID] | None = Field(default=None, alias="service_ids")
    notes: str | None = None
    model_config = {"populate_by_name": True}

class RuleOut(BaseModel):
    id: uuid.UUID
    org_id: uuid.UUID
    staff_id: uuid.UUID
    outlet_id: uuid.UUID
    anchor_date: date
    start_time: time
    end_time: time
    kind: RuleKind
    is_available: bool
    recurrence: Recurrence
    recurrence_end_date: date | None = None
    recurrence_weekdays: list[int] = []
    service_scope: list[uuid.UUID] = []
    notes: str | None = None
    created_at: datetime
    updated_at: datetime
    class Config: from_attributes = True

class RulePage(BaseModel):
    items: list[RuleOut]
    total: int
    page: int
    size: int

class BulkRuleCreate(BaseModel):
    staff_id: uuid.UUID
    outlet_id: uuid.UUID
    tenant_id: uuid.UUID | None = None
    availability_entries: list[RuleFields]

class BulkDelete(BaseModel):
    ids: list[uuid.UUID] = Field(min_length=1)

class BulkDeleteFailure(BaseModel):
    id: uuid.UUID
    error: str

class BulkDeleteOut(BaseModel):
    deleted: list[uuid.UUID]
    failed: list[BulkDeleteFailure]

# ---- Grid ----

class GridSlotOut(BaseModel):
    time: str  # HH:MM
    start_at: datetime
    bookable: bool
    staff_ids: list[uuid.UUID] = []

class GridDayOut(BaseModel):
    date: date
    slots: list[GridSlotOut]

class GridOut(BaseModel):
    days: list[GridDayOut]

# ---- Check & schedule ----

class SlotCheckOut(BaseModel):
    available: bool
    reason: str | None = None  # outside_availability | fully_booked
    capacity: int
    occupied: int

class ScheduleEntryOut(BaseModel):
    date: date
    rule_id: uuid.UUID
    outlet_id: uuid.UUID
    kind: RuleKind
    start_time: time
    end_time: time
