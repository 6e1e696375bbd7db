"""
Tests for bookings/guard.py

Write-time admission: availability containment, capacity, concurrency,
reschedule and status transitions.
"""
import asyncio
import unittest
import uuid
from datetime import datetime, time, timedelta, timezone

from app.core.errors import InvalidTransition, NotFound, SlotUnavailable, ValidationError
from app.modules.bookings.guard import ConflictGuard
from app.modules.bookings.models import Booking
from app.modules.directory.models import Staff
from app.platform.adapters.store_memory import InMemoryBookingStore
from tests.factories import MONDAY, ORG, OTHER_ORG, open_hours, seed_salon


def at(h, m=0, day=MONDAY):
    return datetime(day.year, day.month, day.day, h, m, tzinfo=timezone.utc)


class GuardTestCase(unittest.IsolatedAsyncioTestCase):
    capacity = 1

    async def asyncSetUp(self):
        self.store = InMemoryBookingStore()
        self.guard = ConflictGuard(self.store)
        self.salon = await seed_salon(self.store, capacity=self.capacity)
        await open_hours(self.store, self.salon, time(9), time(17))
        await open_hours(self.store, self.salon, time(12), time(13), "break")

    async def reserve(self, start_at, **kw):
        kw.setdefault("staff_id", self.salon.staff.id)
        kw.setdefault("service_id", self.salon.service.id)
        kw.setdefault("outlet_id", self.salon.outlet.id)
        return await self.guard.reserve(ORG, start_at=start_at, **kw)

    def event_types(self):
        return [e["event_type"] for e in self.store.events]


class TestReserve(GuardTestCase):

    async def test_reserve_creates_pending_booking(self):
        booking = await self.reserve(at(10), notes="first visit")
        self.assertEqual(booking.status, "pending")
        self.assertEqual((booking.start_at, booking.end_at), (at(10), at(11)))
        self.assertEqual(booking.org_id, ORG)
        self.assertEqual(booking.reschedule_count, 0)
        self.assertIn("booking.reserved", self.event_types())

    async def test_overlap_rejected_touching_allowed(self):
        first = await self.reserve(at(10))
        await self.guard.transition(ORG, first.id, "confirmed")
        with self.assertRaises(SlotUnavailable):
            await self.reserve(at(10, 30))
        second = await self.reserve(at(11))
        self.assertEqual(second.start_at, at(11))

    async def test_outside_availability_rejected(self):
        with self.assertRaises(SlotUnavailable):
            await self.reserve(at(16, 30))
        with self.assertRaises(SlotUnavailable):
            await self.reserve(at(8))
        # runs into the lunch break
        with self.assertRaises(SlotUnavailable):
            await self.reserve(at(11, 30))

    async def test_no_rules_means_closed(self):
        with self.assertRaises(SlotUnavailable):
            await self.reserve(at(10, day=MONDAY + timedelta(days=1)))

    async def test_crossing_midnight_rejected(self):
        with self.assertRaises(SlotUnavailable):
            await self.reserve(at(23, 30))

    async def test_naive_start_is_treated_as_utc(self):
        booking = await self.reserve(datetime(MONDAY.year, MONDAY.month, MONDAY.day, 9, 0))
        self.assertEqual(booking.start_at, at(9))

    async def test_failed_reserve_leaves_no_trace(self):
        await self.reserve(at(10))
        bookings_before = len(await self.store.list_bookings(ORG))
        events_before = len(self.store.events)
        with self.assertRaises(SlotUnavailable):
            await self.reserve(at(10))
        self.assertEqual(len(await self.store.list_bookings(ORG)), bookings_before)
        self.assertEqual(len(self.store.events), events_before)

    async def test_unqualified_staff_rejected(self):
        stranger = await self.store.add_staff(Staff(org_id=ORG, name="Dewi"))
        with self.assertRaises(ValidationError):
            await self.reserve(at(10), staff_id=stranger.id)

    async def test_unknown_outlet_and_service(self):
        with self.assertRaises(NotFound):
            await self.reserve(at(10), outlet_id=uuid.uuid4())
        with self.assertRaises(NotFound):
            await self.reserve(at(10), service_id=uuid.uuid4())

    async def test_concurrent_reserves_single_capacity(self):
        """Many simultaneous attempts at the same slot admit exactly one."""
        results = await asyncio.gather(*[self.reserve(at(10)) for _ in range(5)], return_exceptions=True)
        admitted = [r for r in results if isinstance(r, Booking)]
        rejected = [r for r in results if isinstance(r, SlotUnavailable)]
        self.assertEqual(len(admitted), 1)
        self.assertEqual(len(rejected), 4)

    async def test_other_tenant_cannot_touch_booking(self):
        booking = await self.reserve(at(10))
        self.assertIsNone(await self.store.get_booking(OTHER_ORG, booking.id))
        with self.assertRaises(NotFound):
            await self.guard.release(OTHER_ORG, booking.id)
        with self.assertRaises(NotFound):
            await self.guard.reserve(OTHER_ORG, staff_id=self.salon.staff.id, service_id=self.salon.service.id,
                                     outlet_id=self.salon.outlet.id, start_at=at(14))


class TestCapacity(GuardTestCase):
    capacity = 2

    async def test_concurrent_reserves_double_capacity(self):
        results = await asyncio.gather(*[self.reserve(at(10)) for _ in range(5)], return_exceptions=True)
        self.assertEqual(len([r for r in results if isinstance(r, Booking)]), 2)

    async def test_peak_concurrency_not_overlap_count(self):
        """Two back-to-back bookings never run together, so a third straddling them still fits."""
        await self.reserve(at(9))
        await self.reserve(at(10))
        straddling = await self.reserve(at(9, 30))
        self.assertEqual(straddling.start_at, at(9, 30))
        with self.assertRaises(SlotUnavailable):
            await self.reserve(at(9, 45))


class TestZeroCapacity(GuardTestCase):
    capacity = 0

    async def test_zero_capacity_admits_nothing(self):
        with self.assertRaises(SlotUnavailable):
            await self.reserve(at(10))
        self.assertEqual(await self.store.list_bookings(ORG), [])


class TestInactive(GuardTestCase):

    async def test_inactive_service_rejected(self):
        self.salon.service.active = False
        with self.assertRaises(ValidationError):
            await self.reserve(at(10))

    async def test_inactive_staff_rejected(self):
        self.salon.staff.active = False
        with self.assertRaises(ValidationError):
            await self.reserve(at(10))
        self.assertEqual(await self.store.list_bookings(ORG), [])


class TestRelease(GuardTestCase):

    async def test_cancel_frees_the_slot(self):
        booking = await self.reserve(at(10))
        cancelled = await self.guard.release(ORG, booking.id)
        self.assertEqual(cancelled.status, "cancelled")
        self.assertIsNotNone(cancelled.cancelled_at)
        again = await self.reserve(at(10))
        self.assertNotEqual(again.id, booking.id)

    async def test_release_is_idempotent(self):
        booking = await self.reserve(at(10))
        await self.guard.release(ORG, booking.id)
        stamp = booking.cancelled_at
        second = await self.guard.release(ORG, booking.id)
        self.assertEqual(second.status, "cancelled")
        self.assertEqual(second.cancelled_at, stamp)
        self.assertEqual(self.event_types().count("booking.status_changed"), 1)

    async def test_no_show_frees_the_slot(self):
        booking = await self.reserve(at(10))
        released = await self.guard.release(ORG, booking.id, "no-show")
        self.assertEqual(released.status, "no-show")
        self.assertIsNone(released.cancelled_at)
        await self.reserve(at(10))

    async def test_release_rejects_non_release_status(self):
        booking = await self.reserve(at(10))
        with self.assertRaises(ValidationError):
            await self.guard.release(ORG, booking.id, "completed")

    async def test_release_of_completed_booking_is_a_no_op(self):
        booking = await self.reserve(at(10))
        await self.guard.transition(ORG, booking.id, "confirmed")
        await self.guard.transition(ORG, booking.id, "completed")
        unchanged = await self.guard.release(ORG, booking.id)
        self.assertEqual(unchanged.status, "completed")


class TestTransition(GuardTestCase):

    async def test_confirm_then_complete(self):
        booking = await self.reserve(at(10))
        self.assertEqual((await self.guard.transition(ORG, booking.id, "confirmed")).status, "confirmed")
        self.assertEqual((await self.guard.transition(ORG, booking.id, "completed")).status, "completed")

    async def test_complete_straight_from_pending(self):
        booking = await self.reserve(at(10))
        completed = await self.guard.transition(ORG, booking.id, "completed")
        self.assertEqual(completed.status, "completed")
        with self.assertRaises(InvalidTransition):
            await self.guard.transition(ORG, booking.id, "completed")

    async def test_terminal_bookings_cannot_move(self):
        booking = await self.reserve(at(10))
        await self.guard.release(ORG, booking.id)
        with self.assertRaises(InvalidTransition):
            await self.guard.transition(ORG, booking.id, "confirmed")

    async def test_transition_routes_release_statuses(self):
        booking = await self.reserve(at(10))
        self.assertEqual((await self.guard.transition(ORG, booking.id, "no-show")).status, "no-show")


class TestReschedule(GuardTestCase):

    async def test_reschedule_moves_booking_in_place(self):
        booking = await self.reserve(at(10))
        moved = await self.guard.reschedule(ORG, booking.id, at(14))
        self.assertEqual(moved.id, booking.id)
        self.assertEqual((moved.start_at, moved.end_at), (at(14), at(15)))
        self.assertEqual(moved.reschedule_count, 1)
        self.assertIn("booking.rescheduled", self.event_types())
        # the old slot is free again
        await self.reserve(at(10))

    async def test_reschedule_may_overlap_its_own_old_interval(self):
        booking = await self.reserve(at(10))
        moved = await self.guard.reschedule(ORG, booking.id, at(10, 30))
        self.assertEqual(moved.start_at, at(10, 30))

    async def test_reschedule_into_taken_slot_keeps_original(self):
        booking = await self.reserve(at(10))
        await self.reserve(at(14))
        with self.assertRaises(SlotUnavailable):
            await self.guard.reschedule(ORG, booking.id, at(14, 30))
        current = await self.store.get_booking(ORG, booking.id)
        self.assertEqual(current.start_at, at(10))
        self.assertEqual(current.reschedule_count, 0)

    async def test_reschedule_outside_availability(self):
        booking = await self.reserve(at(10))
        with self.assertRaises(SlotUnavailable):
            await self.guard.reschedule(ORG, booking.id, at(12))

    async def test_cancelled_booking_cannot_be_rescheduled(self):
        booking = await self.reserve(at(10))
        await self.guard.release(ORG, booking.id)
        with self.assertRaises(InvalidTransition):
            await self.guard.reschedule(ORG, booking.id, at(14))


class TestStaffUnit(GuardTestCase):

    async def test_error_inside_unit_rolls_back(self):
        booking = await self.reserve(at(10))
        events_before = len(self.store.events)
        with self.assertRaises(RuntimeError):
            async with self.store.staff_unit(ORG, self.salon.staff.id) as unit:
                await unit.insert_booking(Booking(service_id=self.salon.service.id, outlet_id=self.salon.outlet.id,
                                                  start_at=at(14), end_at=at(15), status="pending"))
                await unit.update_booking(booking, status="confirmed")
                await unit.record_event("booking.reserved", "booking", booking.id, {})
                raise RuntimeError("boom")
        self.assertEqual(len(await self.store.list_bookings(ORG)), 1)
        self.assertEqual(booking.status, "pending")
        self.assertEqual(len(self.store.events), events_before)

    async def test_unknown_staff(self):
        with self.assertRaises(NotFound):
            async with self.store.staff_unit(ORG, uuid.uuid4()):
                pass


if __name__ == "__main__":
    unittest.main()
