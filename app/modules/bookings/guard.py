"""
Write-path gatekeeper for bookings.

Every admission decision is re-checked against the store inside a per-staff
atomic unit, so the capacity invariant holds no matter how stale the grid a
client booked from was.
"""
import uuid
import logging
from datetime import datetime, timedelta, timezone

from app.core.base import utcnow
from app.core.errors import InvalidTransition, NotFound, SlotUnavailable, ValidationError
from app.modules.availability.intervals import Interval, peak_overlap
from app.modules.availability.resolver import resolve_open_intervals
from app.modules.bookings.models import Booking, OCCUPYING, TERMINAL, VALID_NEXT
from app.modules.directory.models import Service
from app.platform.ports.booking_store import BookingStorePort, StaffUnitPort

logger = logging.getLogger(__name__)

RELEASE_STATUSES = ("cancelled", "no-show")


def _aware(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class ConflictGuard:
    def __init__(self, store: BookingStorePort):
        self.store = store

    async def _service(self, org_id: uuid.UUID, service_id: uuid.UUID) -> Service:
        service = await self.store.get_service(org_id, service_id)
        if service is None:
            raise NotFound("service", service_id)
        return service

    async def _admit(self, org_id: uuid.UUID, unit: StaffUnitPort, service: Service, outlet_id: uuid.UUID,
                     candidate: Interval, exclude_id: uuid.UUID | None = None) -> None:
        """Raise SlotUnavailable unless the candidate fits an open interval and capacity."""
        staff = unit.staff
        if candidate.start.date() != (candidate.end - timedelta(microseconds=1)).date():
            raise SlotUnavailable("Booking would cross midnight", staff_id=staff.id)
        rules = await self.store.rules_for_staff(org_id, staff.id)
        open_ivs = resolve_open_intervals(rules, candidate.start.date(), service.id, outlet_id)
        if not any(iv.contains(candidate) for iv in open_ivs):
            logger.info(f"Rejected {candidate.start.isoformat()} for staff {staff.id}: outside availability")
            raise SlotUnavailable("Requested time is outside the staff member's availability",
                                  staff_id=staff.id, start_at=candidate.start.isoformat())
        existing = await unit.occupying_bookings(candidate.start, candidate.end, exclude_id=exclude_id)
        capacity = staff.seats
        occupied = peak_overlap(candidate, [Interval(b.start_at, b.end_at) for b in existing])
        if occupied + 1 > capacity:
            logger.info(f"Rejected {candidate.start.isoformat()} for staff {staff.id}: {occupied}/{capacity} occupied")
            raise SlotUnavailable("Staff member is fully booked at the requested time",
                                  staff_id=staff.id, start_at=candidate.start.isoformat(), capacity=capacity)

    async def reserve(
        self,
        org_id: uuid.UUID,
        *,
        staff_id: uuid.UUID,
        service_id: uuid.UUID,
        outlet_id: uuid.UUID,
        start_at: datetime,
        customer_id: uuid.UUID | None = None,
        notes: str | None = None,
    ) -> Booking:
        service = await self._service(org_id, service_id)
        if not service.active:
            raise ValidationError("Service is not active", service_id=service_id)
        if not service.is_assigned(staff_id):
            raise ValidationError("Staff is not qualified for this service", staff_id=staff_id, service_id=service_id)
        if await self.store.get_outlet(org_id, outlet_id) is None:
            raise NotFound("outlet", outlet_id)
        start = _aware(start_at)
        candidate = Interval(start, start + timedelta(minutes=service.span_minutes))

        async with self.store.staff_unit(org_id, staff_id) as unit:
            if not unit.staff.active:
                raise ValidationError("Staff member is not active", staff_id=staff_id)
            await self._admit(org_id, unit, service, outlet_id, candidate)
            booking = await unit.insert_booking(Booking(
                service_id=service_id, outlet_id=outlet_id, customer_id=customer_id,
                start_at=candidate.start, end_at=candidate.end, status="pending",
                reschedule_count=0, notes=notes,
            ))
            await unit.record_event("booking.reserved", "booking", booking.id, {
                "staff_id": str(staff_id), "service_id": str(service_id),
                "start_at": candidate.start.isoformat(), "end_at": candidate.end.isoformat(),
            })
        logger.info(f"Reserved booking {booking.id} for staff {staff_id} at {candidate.start.isoformat()}")
        return booking

    async def _locate(self, org_id: uuid.UUID, booking_id: uuid.UUID) -> Booking:
        booking = await self.store.get_booking(org_id, booking_id)
        if booking is None:
            raise NotFound("booking", booking_id)
        return booking

    async def reschedule(self, org_id: uuid.UUID, booking_id: uuid.UUID, new_start_at: datetime) -> Booking:
        """Move an occupying booking; the new interval is admitted and the old one freed in one unit."""
        located = await self._locate(org_id, booking_id)
        service = await self._service(org_id, located.service_id)
        start = _aware(new_start_at)
        candidate = Interval(start, start + timedelta(minutes=service.span_minutes))

        async with self.store.staff_unit(org_id, located.staff_id) as unit:
            booking = await unit.get_booking(booking_id)
            if booking is None:
                raise NotFound("booking", booking_id)
            if booking.status not in OCCUPYING:
                raise InvalidTransition(f"Cannot reschedule a {booking.status} booking", booking_id=booking_id)
            previous = booking.start_at
            await self._admit(org_id, unit, service, booking.outlet_id, candidate, exclude_id=booking.id)
            booking = await unit.update_booking(
                booking, start_at=candidate.start, end_at=candidate.end,
                reschedule_count=(booking.reschedule_count or 0) + 1,
            )
            await unit.record_event("booking.rescheduled", "booking", booking.id, {
                "from": previous.isoformat(), "to": candidate.start.isoformat(),
            })
        logger.info(f"Rescheduled booking {booking_id} to {candidate.start.isoformat()}")
        return booking

    async def release(self, org_id: uuid.UUID, booking_id: uuid.UUID, status: str = "cancelled") -> Booking:
        """Stop a booking from occupying capacity. Already-terminal bookings are returned unchanged."""
        if status not in RELEASE_STATUSES:
            raise ValidationError(f"release status must be one of {RELEASE_STATUSES}", status=status)
        located = await self._locate(org_id, booking_id)
        if located.status in TERMINAL:
            return located
        async with self.store.staff_unit(org_id, located.staff_id) as unit:
            booking = await unit.get_booking(booking_id)
            if booking is None:
                raise NotFound("booking", booking_id)
            if booking.status in TERMINAL:
                return booking
            previous = booking.status
            changes = {"status": status}
            if status == "cancelled":
                changes["cancelled_at"] = utcnow()
            booking = await unit.update_booking(booking, **changes)
            await unit.record_event("booking.status_changed", "booking", booking.id, {"from": previous, "to": status})
        logger.info(f"Released booking {booking_id} as {status}")
        return booking

    async def transition(self, org_id: uuid.UUID, booking_id: uuid.UUID, status: str) -> Booking:
        """Confirm or complete a booking, enforcing the status table."""
        if status in RELEASE_STATUSES:
            return await self.release(org_id, booking_id, status)
        located = await self._locate(org_id, booking_id)
        async with self.store.staff_unit(org_id, located.staff_id) as unit:
            booking = await unit.get_booking(booking_id)
            if booking is None:
                raise NotFound("booking", booking_id)
            if status not in VALID_NEXT.get(booking.status, set()):
                raise InvalidTransition(f"Cannot move booking from {booking.status} to {status}",
                                        booking_id=booking_id, status=booking.status)
            previous = booking.status
            booking = await unit.update_booking(booking, status=status)
            await unit.record_event("booking.status_changed", "booking", booking.id, {"from": previous, "to": status})
        return booking
