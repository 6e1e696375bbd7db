import uuid
from datetime import datetime
from fastapi import APIRouter, Depends, status
from app.core.security import get_principal, require_scopes, Principal
from app.modules.bookings.schemas import BookingCreate, BookingReschedule, BookingOut, BookingStatus
from app.modules.bookings.service import BookingService
from app.platform.provider_registry import registry

router = APIRouter()

def svc() -> BookingService:
    return BookingService(registry.booking_store())

@router.post("/bookings", response_model=BookingOut, status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_scopes("bookings:write"))])
async def create_booking(payload: BookingCreate, principal: Principal = Depends(get_principal), service: BookingService = Depends(svc)):
    """Reserve a slot. Responds 409 SlotUnavailable when the slot was taken or closed since the grid was read."""
    return await service.create(principal.org_id, payload)

@router.get("/bookings", response_model=list[BookingOut], dependencies=[Depends(require_scopes("bookings:read"))])
async def list_bookings(
    staff_id: uuid.UUID | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    status: BookingStatus | None = None,
    principal: Principal = Depends(get_principal),
    service: BookingService = Depends(svc),
):
    return await service.list(principal.org_id, staff_id=staff_id, start=start, end=end, status=status)

@router.get("/bookings/{booking_id}", response_model=BookingOut, dependencies=[Depends(require_scopes("bookings:read"))])
async def get_booking(booking_id: uuid.UUID, principal: Principal = Depends(get_principal), service: BookingService = Depends(svc)):
    return await service.get(principal.org_id, booking_id)

@router.post("/bookings/{booking_id}/reschedule", response_model=BookingOut, dependencies=[Depends(require_scopes("bookings:write"))])
async def reschedule_booking(booking_id: uuid.UUID, payload: BookingReschedule, principal: Principal = Depends(get_principal), service: BookingService = Depends(svc)):
    return await service.reschedule(principal.org_id, booking_id, payload)

# ---- status transitions ----

@router.post("/bookings/{booking_id}/confirm", response_model=BookingOut, dependencies=[Depends(require_scopes("bookings:write"))])
async def confirm_booking(booking_id: uuid.UUID, principal: Principal = Depends(get_principal), service: BookingService = Depends(svc)):
    return await service.confirm(principal.org_id, booking_id)

@router.post("/bookings/{booking_id}/complete", response_model=BookingOut, dependencies=[Depends(require_scopes("bookings:write"))])
async def complete_booking(booking_id: uuid.UUID, principal: Principal = Depends(get_principal), service: BookingService = Depends(svc)):
    return await service.complete(principal.org_id, booking_id)

@router.post("/bookings/{booking_id}/cancel", response_model=BookingOut, dependencies=[Depends(require_scopes("bookings:write"))])
async def cancel_booking(booking_id: uuid.UUID, principal: Principal = Depends(get_principal), service: BookingService = Depends(svc)):
    return await service.cancel(principal.org_id, booking_id)

@router.post("/bookings/{booking_id}/no-show", response_model=BookingOut, dependencies=[Depends(require_scopes("bookings:write"))])
async def no_show_booking(booking_id: uuid.UUID, principal: Principal = Depends(get_principal), service: BookingService = Depends(svc)):
    return await service.no_show(principal.org_id, booking_id)
