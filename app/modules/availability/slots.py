"""
Slot grid generation.

Walks each day's open intervals for a service and emits candidate start times,
flagging the ones a staff member still has capacity for. The grid is advisory:
it never writes, and final admission happens in the conflict guard.
"""
import uuid
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Sequence

from app.core.config import settings
from app.core.errors import NotFound, ValidationError
from app.modules.availability.intervals import Interval, peak_overlap
from app.modules.availability.resolver import resolve_open_intervals
from app.modules.bookings.models import Booking, OCCUPYING
from app.modules.directory.models import Service, Staff
from app.platform.ports.booking_store import BookingStorePort

logger = logging.getLogger(__name__)


@dataclass
class Slot:
    start_at: datetime
    bookable: bool
    staff_ids: list[uuid.UUID] = field(default_factory=list)

    @property
    def time(self) -> str:
        return self.start_at.strftime("%H:%M")


@dataclass
class DayGrid:
    date: date
    slots: list[Slot] = field(default_factory=list)


def horizon_days(service: Service, staff: Staff) -> int | None:
    """Tighter of the service-level and staff-level max advance booking days."""
    limits = [d for d in (service.max_advance_booking_days, staff.max_advance_booking_days) if d is not None]
    return min(limits) if limits else None


def candidate_starts(open_intervals: Sequence[Interval], span: timedelta, step: timedelta) -> list[datetime]:
    """Starts stepped from each interval's start such that start + span fits inside the interval."""
    out = []
    for iv in open_intervals:
        cur = iv.start
        while cur + span <= iv.end:
            out.append(cur)
            cur += step
    return out


def day_slots(
    day: date,
    open_intervals: Sequence[Interval],
    busy: Sequence[Interval],
    *,
    span: timedelta,
    step: timedelta,
    capacity: int,
    earliest: datetime,
    last_day: date | None,
) -> list[tuple[datetime, bool]]:
    """(start, bookable) pairs for one staff member on one day, after lead-time and horizon policy."""
    if last_day is not None and day > last_day:
        return []
    out = []
    for start in candidate_starts(open_intervals, span, step):
        if start < earliest:
            continue
        peak = peak_overlap(Interval(start, start + span), busy)
        out.append((start, peak < capacity))
    return out


class SlotGridGenerator:
    def __init__(self, store: BookingStorePort):
        self.store = store

    async def _staff_for(self, org_id: uuid.UUID, service: Service, staff_id: uuid.UUID | None) -> list[Staff]:
        if staff_id is not None:
            staff = await self.store.get_staff(org_id, staff_id)
            if staff is None:
                raise NotFound("staff", staff_id)
            if not staff.active:
                raise ValidationError("Staff member is not active", staff_id=staff_id)
            if not service.is_assigned(staff.id):
                raise ValidationError("Staff is not qualified for this service", staff_id=staff_id, service_id=service.id)
            return [staff]
        if not service.assigned_staff_ids:
            raise ValidationError("staff_id is required for a service without assigned staff", service_id=service.id)
        ids = [uuid.UUID(str(s)) for s in service.assigned_staff_ids]
        return [s for s in await self.store.list_staff(org_id, ids) if s.active]

    async def generate(
        self,
        org_id: uuid.UUID,
        *,
        service_id: uuid.UUID,
        outlet_id: uuid.UUID,
        start_date: date,
        num_days: int,
        staff_id: uuid.UUID | None = None,
        slot_step: int | None = None,
        now: datetime | None = None,
    ) -> list[DayGrid]:
        if num_days < 1 or num_days > settings.GRID_MAX_DAYS:
            raise ValidationError(f"num_days must be between 1 and {settings.GRID_MAX_DAYS}", num_days=num_days)
        if slot_step is not None and slot_step < 1:
            raise ValidationError("slot interval must be a positive number of minutes", slot_interval_minutes=slot_step)

        service = await self.store.get_service(org_id, service_id)
        if service is None:
            raise NotFound("service", service_id)
        if not service.active:
            raise ValidationError("Service is not active", service_id=service_id)
        if await self.store.get_outlet(org_id, outlet_id) is None:
            raise NotFound("outlet", outlet_id)
        staff_members = await self._staff_for(org_id, service, staff_id)

        now = now or datetime.now(timezone.utc)
        span = timedelta(minutes=service.span_minutes)
        step = timedelta(minutes=slot_step or service.duration_min)
        earliest = now + timedelta(hours=service.min_advance_booking_hours or 0)
        days = [start_date + timedelta(days=i) for i in range(num_days)]
        window = (datetime.combine(days[0], datetime.min.time(), tzinfo=timezone.utc),
                  datetime.combine(days[-1] + timedelta(days=1), datetime.min.time(), tzinfo=timezone.utc))

        # (day, start) -> ids of staff able to take it; an empty list means the slot is full
        merged: dict[date, dict[datetime, list[uuid.UUID]]] = {d: {} for d in days}
        for staff in staff_members:
            rules = await self.store.rules_for_staff(org_id, staff.id)
            bookings: Sequence[Booking] = await self.store.list_bookings(
                org_id, staff_id=staff.id, start=window[0], end=window[1], statuses=tuple(OCCUPYING)
            )
            busy = [Interval(b.start_at, b.end_at) for b in bookings]
            horizon = horizon_days(service, staff)
            last_day = now.date() + timedelta(days=horizon) if horizon is not None else None
            for day in days:
                open_ivs = resolve_open_intervals(rules, day, service.id, outlet_id)
                for start, ok in day_slots(day, open_ivs, busy, span=span, step=step,
                                           capacity=staff.seats, earliest=earliest, last_day=last_day):
                    takers = merged[day].setdefault(start, [])
                    if ok:
                        takers.append(staff.id)

        grid = [
            DayGrid(date=day, slots=[Slot(start_at=t, bookable=bool(ids), staff_ids=ids) for t, ids in sorted(merged[day].items())])
            for day in days
        ]
        logger.debug(f"Grid for service {service_id}: {sum(len(d.slots) for d in grid)} slots over {num_days} days")
        return grid
