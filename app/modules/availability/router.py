import uuid
from datetime import date, time
from fastapi import APIRouter, Depends, Query, Response, status
from app.core.security import get_principal, require_scopes, Principal
from app.modules.availability.service import AvailabilityService
from app.modules.availability.schemas import (
    RuleCreate, RuleUpdate, RuleOut, RulePage, RuleKind, BulkRuleCreate, BulkDelete, BulkDeleteOut,
    GridOut, SlotCheckOut, ScheduleEntryOut,
)
from app.platform.provider_registry import registry

router = APIRouter()

def svc() -> AvailabilityService:
    return AvailabilityService(registry.booking_store())

# Read path (advisory)
@router.get("/availability/grid", response_model=GridOut, dependencies=[Depends(require_scopes("availability:read"))])
async def availability_grid(
    service_id: uuid.UUID,
    outlet_id: uuid.UUID,
    start_date: date,
    staff_id: uuid.UUID | None = None,
    num_days: int = 7,
    slot_interval_minutes: int | None = None,
    principal: Principal = Depends(get_principal),
    service: AvailabilityService = Depends(svc),
):
    days = await service.grid(principal.org_id, service_id=service_id, outlet_id=outlet_id, start_date=start_date,
                              num_days=num_days, staff_id=staff_id, slot_interval_minutes=slot_interval_minutes)
    return {"days": [
        {"date": d.date, "slots": [{"time": s.time, "start_at": s.start_at, "bookable": s.bookable, "staff_ids": s.staff_ids} for s in d.slots]}
        for d in days
    ]}

@router.get("/availability/check", response_model=SlotCheckOut, dependencies=[Depends(require_scopes("availability:read"))])
async def check_availability(
    staff_id: uuid.UUID,
    date: date,
    start_time: time,
    end_time: time,
    service_id: uuid.UUID | None = None,
    outlet_id: uuid.UUID | None = None,
    principal: Principal = Depends(get_principal),
    service: AvailabilityService = Depends(svc),
):
    return await service.check_slot(principal.org_id, staff_id=staff_id, day=date, start_time=start_time,
                                    end_time=end_time, service_id=service_id, outlet_id=outlet_id)

@router.get("/availability/staff/{staff_id}", response_model=list[ScheduleEntryOut], dependencies=[Depends(require_scopes("availability:read"))])
async def staff_schedule(
    staff_id: uuid.UUID,
    start_date: date,
    end_date: date,
    include_breaks: bool = True,
    principal: Principal = Depends(get_principal),
    service: AvailabilityService = Depends(svc),
):
    return await service.staff_schedule(principal.org_id, staff_id, start_date=start_date, end_date=end_date, include_breaks=include_breaks)

# Rule management
@router.get("/availability", response_model=RulePage, dependencies=[Depends(require_scopes("availability:read"))])
async def list_rules(
    start_date: date | None = None,
    end_date: date | None = None,
    staff_id: uuid.UUID | None = None,
    outlet_id: uuid.UUID | None = None,
    availability_type: RuleKind | None = None,
    page: int = Query(default=1, ge=1),
    size: int = Query(default=50, ge=1, le=200),
    principal: Principal = Depends(get_principal),
    service: AvailabilityService = Depends(svc),
):
    return await service.list_rules(principal.org_id, staff_id=staff_id, outlet_id=outlet_id, kind=availability_type,
                                    start_date=start_date, end_date=end_date, page=page, size=size)

@router.post("/availability", response_model=RuleOut, status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_scopes("availability:write"))])
async def create_rule(payload: RuleCreate, principal: Principal = Depends(get_principal), service: AvailabilityService = Depends(svc)):
    return await service.create_rule(principal.org_id, payload)

@router.post("/availability/bulk", response_model=list[RuleOut], status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_scopes("availability:write"))])
async def bulk_create_rules(payload: BulkRuleCreate, principal: Principal = Depends(get_principal), service: AvailabilityService = Depends(svc)):
    return await service.bulk_create(principal.org_id, payload)

@router.post("/availability/bulk-delete", response_model=BulkDeleteOut, dependencies=[Depends(require_scopes("availability:write"))])
async def bulk_delete_rules(payload: BulkDelete, principal: Principal = Depends(get_principal), service: AvailabilityService = Depends(svc)):
    return await service.bulk_delete(principal.org_id, payload)

@router.get("/availability/{rule_id}", response_model=RuleOut, dependencies=[Depends(require_scopes("availability:read"))])
async def get_rule(rule_id: uuid.UUID, principal: Principal = Depends(get_principal), service: AvailabilityService = Depends(svc)):
    return await service.get_rule(principal.org_id, rule_id)

@router.put("/availability/{rule_id}", response_model=RuleOut, dependencies=[Depends(require_scopes("availability:write"))])
async def update_rule(rule_id: uuid.UUID, payload: RuleUpdate, principal: Principal = Depends(get_principal), service: AvailabilityService = Depends(svc)):
    return await service.update_rule(principal.org_id, rule_id, payload)

@router.delete("/availability/{rule_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[Depends(require_scopes("availability:write"))])
async def delete_rule(rule_id: uuid.UUID, principal: Principal = Depends(get_principal), service: AvailabilityService = Depends(svc)):
    await service.delete_rule(principal.org_id, rule_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
