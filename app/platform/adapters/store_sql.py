import uuid
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Sequence

from sqlalchemy import select, and_, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.base import utcnow
from app.core.errors import NotFound
from app.modules.availability.models import AvailabilityRule
from app.modules.bookings.models import Booking, OCCUPYING
from app.modules.directory.models import Outlet, Service, Staff
from app.modules.events.outbox import OutboxRepository
from app.platform.ports.booking_store import BookingStorePort, StaffUnitPort

log = logging.getLogger("store.sql")


class _SqlStaffUnit(StaffUnitPort):
    def __init__(self, s: AsyncSession, org_id: uuid.UUID, staff: Staff):
        self.s = s
        self.org_id = org_id
        self.staff = staff
        self.outbox = OutboxRepository(s)

    async def occupying_bookings(self, start: datetime, end: datetime, exclude_id: uuid.UUID | None = None) -> Sequence[Booking]:
        cond = [
            Booking.org_id == self.org_id,
            Booking.staff_id == self.staff.id,
            Booking.deleted_at.is_(None),
            Booking.status.in_(tuple(OCCUPYING)),
            Booking.start_at < end,
            Booking.end_at > start,
        ]
        if exclude_id is not None:
            cond.append(Booking.id != exclude_id)
        res = await self.s.execute(select(Booking).where(and_(*cond)))
        return res.scalars().all()

    async def get_booking(self, booking_id: uuid.UUID) -> Booking | None:
        res = await self.s.execute(select(Booking).where(
            Booking.id == booking_id, Booking.org_id == self.org_id,
            Booking.staff_id == self.staff.id, Booking.deleted_at.is_(None),
        ))
        return res.scalar_one_or_none()

    async def insert_booking(self, booking: Booking) -> Booking:
        booking.org_id = self.org_id
        booking.staff_id = self.staff.id
        self.s.add(booking)
        await self.s.flush()
        return booking

    async def update_booking(self, booking: Booking, **changes) -> Booking:
        for k, v in changes.items():
            setattr(booking, k, v)
        booking.version = (booking.version or 1) + 1
        await self.s.flush()
        return booking

    async def record_event(self, event_type: str, subject_type: str, subject_id: uuid.UUID, payload: dict) -> None:
        await self.outbox.enqueue(self.org_id, event_type=event_type, subject_type=subject_type, subject_id=str(subject_id), payload=payload)


class SqlBookingStore(BookingStorePort):
    """
    Postgres-backed store. The per-staff atomic unit is a transaction that
    locks the staff row (SELECT ... FOR UPDATE) before reading bookings.
    """

    def __init__(self, sessions: async_sessionmaker):
        self.sessions = sessions

    async def _get(self, model, org_id: uuid.UUID, obj_id: uuid.UUID):
        async with self.sessions() as s:
            res = await s.execute(select(model).where(model.id == obj_id, model.org_id == org_id, model.deleted_at.is_(None)))
            return res.scalar_one_or_none()

    async def _add(self, obj):
        async with self.sessions() as s:
            s.add(obj); await s.commit()
            return obj

    # ---- directory ----
    async def get_staff(self, org_id, staff_id): return await self._get(Staff, org_id, staff_id)
    async def get_service(self, org_id, service_id): return await self._get(Service, org_id, service_id)
    async def get_outlet(self, org_id, outlet_id): return await self._get(Outlet, org_id, outlet_id)
    async def add_staff(self, staff): return await self._add(staff)
    async def add_service(self, service): return await self._add(service)
    async def add_outlet(self, outlet): return await self._add(outlet)

    async def list_staff(self, org_id: uuid.UUID, staff_ids: Sequence[uuid.UUID]) -> Sequence[Staff]:
        if not staff_ids:
            return []
        async with self.sessions() as s:
            res = await s.execute(select(Staff).where(Staff.org_id == org_id, Staff.id.in_(list(staff_ids)), Staff.deleted_at.is_(None)))
            return res.scalars().all()

    # ---- availability rules ----
    async def add_rules(self, rules: Sequence[AvailabilityRule]) -> Sequence[AvailabilityRule]:
        async with self.sessions() as s:
            outbox = OutboxRepository(s)
            s.add_all(rules)
            await s.flush()
            for r in rules:
                await outbox.enqueue(r.org_id, event_type="availability.rule_created", subject_type="availability_rule",
                                     subject_id=str(r.id), payload={"staff_id": str(r.staff_id), "kind": r.kind})
            await s.commit()
            return list(rules)

    async def get_rule(self, org_id, rule_id): return await self._get(AvailabilityRule, org_id, rule_id)

    async def update_rule(self, org_id: uuid.UUID, rule_id: uuid.UUID, changes: dict) -> AvailabilityRule | None:
        async with self.sessions() as s:
            res = await s.execute(select(AvailabilityRule).where(
                AvailabilityRule.id == rule_id, AvailabilityRule.org_id == org_id, AvailabilityRule.deleted_at.is_(None)
            ).with_for_update())
            r = res.scalar_one_or_none()
            if r is None:
                return None
            for k, v in changes.items():
                setattr(r, k, v)
            r.version = (r.version or 1) + 1
            await OutboxRepository(s).enqueue(org_id, event_type="availability.rule_updated", subject_type="availability_rule",
                                              subject_id=str(r.id), payload={"fields": sorted(changes)})
            await s.commit()
            return r

    async def delete_rule(self, org_id: uuid.UUID, rule_id: uuid.UUID) -> bool:
        async with self.sessions() as s:
            res = await s.execute(select(AvailabilityRule).where(
                AvailabilityRule.id == rule_id, AvailabilityRule.org_id == org_id, AvailabilityRule.deleted_at.is_(None)
            ))
            r = res.scalar_one_or_none()
            if r is None:
                return False
            r.deleted_at = utcnow()
            await OutboxRepository(s).enqueue(org_id, event_type="availability.rule_deleted", subject_type="availability_rule",
                                              subject_id=str(r.id), payload={})
            await s.commit()
            return True

    async def rules_for_staff(self, org_id: uuid.UUID, staff_id: uuid.UUID) -> Sequence[AvailabilityRule]:
        async with self.sessions() as s:
            res = await s.execute(select(AvailabilityRule).where(
                AvailabilityRule.org_id == org_id,
                AvailabilityRule.staff_id == staff_id,
                AvailabilityRule.deleted_at.is_(None),
            ))
            return res.scalars().all()

    async def list_rules(self, org_id, *, staff_id=None, outlet_id=None, kind=None, start_date: date | None = None, end_date: date | None = None, limit=50, offset=0):
        cond = [AvailabilityRule.org_id == org_id, AvailabilityRule.deleted_at.is_(None)]
        if staff_id:
            cond.append(AvailabilityRule.staff_id == staff_id)
        if outlet_id:
            cond.append(AvailabilityRule.outlet_id == outlet_id)
        if kind:
            cond.append(AvailabilityRule.kind == kind)
        if end_date:
            cond.append(AvailabilityRule.anchor_date <= end_date)
        if start_date:
            cond.append(func.coalesce(AvailabilityRule.recurrence_end_date, AvailabilityRule.anchor_date) >= start_date)
        async with self.sessions() as s:
            total = (await s.execute(select(func.count()).select_from(AvailabilityRule).where(and_(*cond)))).scalar_one()
            q = (select(AvailabilityRule).where(and_(*cond))
                 .order_by(AvailabilityRule.anchor_date.asc(), AvailabilityRule.start_time.asc(), AvailabilityRule.created_at.asc())
                 .limit(limit).offset(offset))
            res = await s.execute(q)
            return res.scalars().all(), total

    # ---- bookings ----
    async def get_booking(self, org_id, booking_id): return await self._get(Booking, org_id, booking_id)

    async def list_bookings(self, org_id, *, staff_id=None, start=None, end=None, statuses=None):
        cond = [Booking.org_id == org_id, Booking.deleted_at.is_(None)]
        if staff_id:
            cond.append(Booking.staff_id == staff_id)
        if start:
            cond.append(Booking.end_at > start)
        if end:
            cond.append(Booking.start_at < end)
        if statuses:
            cond.append(Booking.status.in_(list(statuses)))
        async with self.sessions() as s:
            res = await s.execute(select(Booking).where(and_(*cond)).order_by(Booking.start_at.asc()))
            return res.scalars().all()

    @asynccontextmanager
    async def staff_unit(self, org_id: uuid.UUID, staff_id: uuid.UUID):
        async with self.sessions() as s:
            async with s.begin():
                res = await s.execute(select(Staff).where(
                    Staff.id == staff_id, Staff.org_id == org_id, Staff.deleted_at.is_(None)
                ).with_for_update())
                staff = res.scalar_one_or_none()
                if staff is None:
                    raise NotFound("staff", staff_id)
                yield _SqlStaffUnit(s, org_id, staff)
