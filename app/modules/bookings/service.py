import uuid
from datetime import datetime
from typing import Sequence

from app.core.errors import NotFound, TenantMismatch, ValidationError
from app.modules.bookings.guard import ConflictGuard, _aware
from app.modules.bookings.models import Booking
from app.modules.bookings.schemas import BookingCreate, BookingReschedule
from app.platform.ports.booking_store import BookingStorePort

def ensure_tenant(org_id: uuid.UUID, claimed: uuid.UUID | None) -> None:
    if claimed is not None and claimed != org_id:
        raise TenantMismatch("Payload tenant does not match the caller's tenant", tenant_id=claimed)

class BookingService:
    def __init__(self, store: BookingStorePort):
        self.store = store
        self.guard = ConflictGuard(store)

    async def create(self, org_id: uuid.UUID, payload: BookingCreate) -> Booking:
        ensure_tenant(org_id, payload.tenant_id)
        return await self.guard.reserve(
            org_id,
            staff_id=payload.staff_id,
            service_id=payload.service_id,
            outlet_id=payload.outlet_id,
            start_at=payload.start_at,
            customer_id=payload.customer_id,
            notes=payload.notes,
        )

    async def get(self, org_id: uuid.UUID, booking_id: uuid.UUID) -> Booking:
        booking = await self.store.get_booking(org_id, booking_id)
        if booking is None:
            raise NotFound("booking", booking_id)
        return booking

    async def list(self, org_id: uuid.UUID, *, staff_id: uuid.UUID | None = None, start: datetime | None = None,
                   end: datetime | None = None, status: str | None = None) -> Sequence[Booking]:
        start = _aware(start) if start else None
        end = _aware(end) if end else None
        if start and end and end <= start:
            raise ValidationError("end must be after start")
        return await self.store.list_bookings(org_id, staff_id=staff_id, start=start, end=end,
                                              statuses=(status,) if status else None)

    async def reschedule(self, org_id: uuid.UUID, booking_id: uuid.UUID, payload: BookingReschedule) -> Booking:
        # an offset on new_time is honoured; a bare time is UTC
        new_start = _aware(datetime.combine(payload.new_date, payload.new_time))
        return await self.guard.reschedule(org_id, booking_id, new_start)

    async def confirm(self, org_id: uuid.UUID, booking_id: uuid.UUID) -> Booking:
        return await self.guard.transition(org_id, booking_id, "confirmed")

    async def complete(self, org_id: uuid.UUID, booking_id: uuid.UUID) -> Booking:
        return await self.guard.transition(org_id, booking_id, "completed")

    async def cancel(self, org_id: uuid.UUID, booking_id: uuid.UUID) -> Booking:
        return await self.guard.release(org_id, booking_id, "cancelled")

    async def no_show(self, org_id: uuid.UUID, booking_id: uuid.UUID) -> Booking:
        return await self.guard.release(org_id, booking_id, "no-show")
