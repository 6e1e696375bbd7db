import asyncio
import uuid
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Callable, Sequence

from app.core.base import utcnow
from app.core.errors import NotFound
from app.modules.availability.models import AvailabilityRule
from app.modules.bookings.models import Booking, OCCUPYING
from app.modules.directory.models import Outlet, Service, Staff
from app.platform.ports.booking_store import BookingStorePort, StaffUnitPort

log = logging.getLogger("store.memory")


def _stamp(obj):
    """Fill the column defaults a database would apply on insert."""
    now = utcnow()
    if obj.id is None:
        obj.id = uuid.uuid4()
    if obj.created_at is None:
        obj.created_at = now
    obj.updated_at = now
    if obj.version is None:
        obj.version = 1
    return obj


def _rule_window_hits(r: AvailabilityRule, start_date: date | None, end_date: date | None) -> bool:
    last = r.recurrence_end_date if r.recurrence != "none" and r.recurrence_end_date else r.anchor_date
    if start_date and last < start_date:
        return False
    if end_date and r.anchor_date > end_date:
        return False
    return True


class _MemoryStaffUnit(StaffUnitPort):
    def __init__(self, store: "InMemoryBookingStore", org_id: uuid.UUID, staff: Staff):
        self._store = store
        self._org_id = org_id
        self.staff = staff
        self._undo: list[Callable[[], None]] = []
        self._events: list[dict] = []

    async def occupying_bookings(self, start: datetime, end: datetime, exclude_id: uuid.UUID | None = None) -> Sequence[Booking]:
        return [
            b for b in self._store._bookings.values()
            if b.org_id == self._org_id and b.staff_id == self.staff.id and b.deleted_at is None
            and b.status in OCCUPYING and b.start_at < end and b.end_at > start and b.id != exclude_id
        ]

    async def get_booking(self, booking_id: uuid.UUID) -> Booking | None:
        b = self._store._bookings.get(booking_id)
        if b is None or b.org_id != self._org_id or b.staff_id != self.staff.id or b.deleted_at is not None:
            return None
        return b

    async def insert_booking(self, booking: Booking) -> Booking:
        booking.org_id = self._org_id
        booking.staff_id = self.staff.id
        _stamp(booking)
        self._store._bookings[booking.id] = booking
        self._undo.append(lambda: self._store._bookings.pop(booking.id, None))
        return booking

    async def update_booking(self, booking: Booking, **changes) -> Booking:
        previous = {k: getattr(booking, k) for k in changes}
        previous["updated_at"] = booking.updated_at
        previous["version"] = booking.version
        for k, v in changes.items():
            setattr(booking, k, v)
        booking.updated_at = utcnow()
        booking.version = (booking.version or 1) + 1

        def restore():
            for k, v in previous.items():
                setattr(booking, k, v)
        self._undo.append(restore)
        return booking

    async def record_event(self, event_type: str, subject_type: str, subject_id: uuid.UUID, payload: dict) -> None:
        self._events.append({
            "org_id": self._org_id, "event_type": event_type, "subject_type": subject_type,
            "subject_id": str(subject_id), "payload": payload, "occurred_at": utcnow(),
        })

    def rollback(self):
        for undo in reversed(self._undo):
            undo()
        self._undo.clear()
        self._events.clear()


class InMemoryBookingStore(BookingStorePort):
    """
    Single-process store. Writes for one staff member are serialized by an
    asyncio.Lock keyed on (org_id, staff_id); different staff never contend.
    """

    def __init__(self):
        self._staff: dict[uuid.UUID, Staff] = {}
        self._services: dict[uuid.UUID, Service] = {}
        self._outlets: dict[uuid.UUID, Outlet] = {}
        self._rules: dict[uuid.UUID, AvailabilityRule] = {}
        self._bookings: dict[uuid.UUID, Booking] = {}
        self._locks: dict[tuple[uuid.UUID, uuid.UUID], asyncio.Lock] = {}
        self.events: list[dict] = []

    def _event(self, org_id: uuid.UUID, event_type: str, subject_type: str, subject_id: uuid.UUID, payload: dict):
        self.events.append({
            "org_id": org_id, "event_type": event_type, "subject_type": subject_type,
            "subject_id": str(subject_id), "payload": payload, "occurred_at": utcnow(),
        })

    @staticmethod
    def _scoped(obj, org_id: uuid.UUID):
        if obj is None or obj.org_id != org_id or obj.deleted_at is not None:
            return None
        return obj

    # ---- directory ----
    async def get_staff(self, org_id: uuid.UUID, staff_id: uuid.UUID) -> Staff | None:
        return self._scoped(self._staff.get(staff_id), org_id)

    async def list_staff(self, org_id: uuid.UUID, staff_ids: Sequence[uuid.UUID]) -> Sequence[Staff]:
        out = [self._scoped(self._staff.get(sid), org_id) for sid in staff_ids]
        return [s for s in out if s is not None]

    async def get_service(self, org_id: uuid.UUID, service_id: uuid.UUID) -> Service | None:
        return self._scoped(self._services.get(service_id), org_id)

    async def get_outlet(self, org_id: uuid.UUID, outlet_id: uuid.UUID) -> Outlet | None:
        return self._scoped(self._outlets.get(outlet_id), org_id)

    async def add_staff(self, staff: Staff) -> Staff:
        if staff.capacity is None:
            staff.capacity = 1
        if staff.accepts_online_booking is None:
            staff.accepts_online_booking = True
        if staff.active is None:
            staff.active = True
        self._staff[_stamp(staff).id] = staff
        return staff

    async def add_service(self, service: Service) -> Service:
        service.preparation_min = service.preparation_min or 0
        service.cleanup_min = service.cleanup_min or 0
        service.min_advance_booking_hours = service.min_advance_booking_hours or 0
        service.assigned_staff_ids = [str(s) for s in (service.assigned_staff_ids or [])]
        if service.active is None:
            service.active = True
        self._services[_stamp(service).id] = service
        return service

    async def add_outlet(self, outlet: Outlet) -> Outlet:
        if outlet.active is None:
            outlet.active = True
        self._outlets[_stamp(outlet).id] = outlet
        return outlet

    # ---- availability rules ----
    async def add_rules(self, rules: Sequence[AvailabilityRule]) -> Sequence[AvailabilityRule]:
        for r in rules:
            _stamp(r)
            self._rules[r.id] = r
            self._event(r.org_id, "availability.rule_created", "availability_rule", r.id, {"staff_id": str(r.staff_id), "kind": r.kind})
        return list(rules)

    async def get_rule(self, org_id: uuid.UUID, rule_id: uuid.UUID) -> AvailabilityRule | None:
        return self._scoped(self._rules.get(rule_id), org_id)

    async def update_rule(self, org_id: uuid.UUID, rule_id: uuid.UUID, changes: dict) -> AvailabilityRule | None:
        r = await self.get_rule(org_id, rule_id)
        if r is None:
            return None
        for k, v in changes.items():
            setattr(r, k, v)
        r.updated_at = utcnow()
        r.version = (r.version or 1) + 1
        self._event(org_id, "availability.rule_updated", "availability_rule", r.id, {"fields": sorted(changes)})
        return r

    async def delete_rule(self, org_id: uuid.UUID, rule_id: uuid.UUID) -> bool:
        r = await self.get_rule(org_id, rule_id)
        if r is None:
            return False
        r.deleted_at = utcnow()
        self._event(org_id, "availability.rule_deleted", "availability_rule", r.id, {})
        return True

    async def rules_for_staff(self, org_id: uuid.UUID, staff_id: uuid.UUID) -> Sequence[AvailabilityRule]:
        return [r for r in self._rules.values() if r.org_id == org_id and r.staff_id == staff_id and r.deleted_at is None]

    async def list_rules(self, org_id, *, staff_id=None, outlet_id=None, kind=None, start_date=None, end_date=None, limit=50, offset=0):
        items = [
            r for r in self._rules.values()
            if r.org_id == org_id and r.deleted_at is None
            and (staff_id is None or r.staff_id == staff_id)
            and (outlet_id is None or r.outlet_id == outlet_id)
            and (kind is None or r.kind == kind)
            and _rule_window_hits(r, start_date, end_date)
        ]
        items.sort(key=lambda r: (r.anchor_date, r.start_time, r.created_at))
        return items[offset:offset + limit], len(items)

    # ---- bookings ----
    async def get_booking(self, org_id: uuid.UUID, booking_id: uuid.UUID) -> Booking | None:
        return self._scoped(self._bookings.get(booking_id), org_id)

    async def list_bookings(self, org_id, *, staff_id=None, start=None, end=None, statuses=None):
        items = [
            b for b in self._bookings.values()
            if b.org_id == org_id and b.deleted_at is None
            and (staff_id is None or b.staff_id == staff_id)
            and (start is None or b.end_at > start)
            and (end is None or b.start_at < end)
            and (statuses is None or b.status in statuses)
        ]
        return sorted(items, key=lambda b: b.start_at)

    @asynccontextmanager
    async def staff_unit(self, org_id: uuid.UUID, staff_id: uuid.UUID):
        lock = self._locks.setdefault((org_id, staff_id), asyncio.Lock())
        async with lock:
            staff = await self.get_staff(org_id, staff_id)
            if staff is None:
                raise NotFound("staff", staff_id)
            unit = _MemoryStaffUnit(self, org_id, staff)
            try:
                yield unit
            except BaseException:
                unit.rollback()
                raise
            self.events.extend(unit._events)
