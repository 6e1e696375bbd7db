"""
Tests for availability/slots.py

Slot grid generation: stepping, span fitting, lead time, horizon and capacity flags.
"""
import unittest
import uuid
from datetime import datetime, time, timedelta, timezone

from app.core.errors import NotFound, ValidationError
from app.modules.availability.intervals import Interval
from app.modules.availability.slots import SlotGridGenerator, candidate_starts, horizon_days
from app.modules.bookings.guard import ConflictGuard
from app.modules.directory.models import Outlet, Service, Staff
from app.platform.adapters.store_memory import InMemoryBookingStore
from tests.factories import MONDAY, ORG, add_staff, open_hours, seed_salon

NOW = datetime(2030, 1, 1, 8, 0, tzinfo=timezone.utc)


def at(h, m=0, day=MONDAY):
    return datetime(day.year, day.month, day.day, h, m, tzinfo=timezone.utc)


class TestCandidateStarts(unittest.TestCase):

    def test_step_smaller_than_span(self):
        """With 30 minute steps a 60 minute span only fits at 09:00 inside 09:00-10:00."""
        starts = candidate_starts([Interval(at(9), at(10))], timedelta(minutes=60), timedelta(minutes=30))
        self.assertEqual(starts, [at(9)])

    def test_each_interval_steps_from_its_own_start(self):
        ivs = [Interval(at(9), at(10)), Interval(at(13, 15), at(14, 45))]
        starts = candidate_starts(ivs, timedelta(minutes=30), timedelta(minutes=30))
        self.assertEqual(starts, [at(9), at(9, 30), at(13, 15), at(13, 45), at(14, 15)])

    def test_interval_shorter_than_span(self):
        self.assertEqual(candidate_starts([Interval(at(9), at(9, 45))], timedelta(minutes=60), timedelta(minutes=15)), [])

    def test_horizon_takes_the_tighter_limit(self):
        self.assertEqual(horizon_days(Service(max_advance_booking_days=30), Staff(max_advance_booking_days=7)), 7)
        self.assertEqual(horizon_days(Service(max_advance_booking_days=30), Staff()), 30)
        self.assertIsNone(horizon_days(Service(), Staff()))


class TestSlotGridGenerator(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.store = InMemoryBookingStore()
        self.grid = SlotGridGenerator(self.store)

    async def generate(self, salon, **kw):
        kw.setdefault("start_date", MONDAY)
        kw.setdefault("num_days", 1)
        kw.setdefault("now", NOW)
        return await self.grid.generate(ORG, service_id=salon.service.id, outlet_id=salon.outlet.id, **kw)

    async def test_basic_grid_steps_by_duration(self):
        salon = await seed_salon(self.store)
        await open_hours(self.store, salon, time(9), time(12))
        (day,) = await self.generate(salon)
        self.assertEqual(day.date, MONDAY)
        self.assertEqual([s.time for s in day.slots], ["09:00", "10:00", "11:00"])
        self.assertTrue(all(s.bookable for s in day.slots))
        self.assertEqual(day.slots[0].staff_ids, [salon.staff.id])

    async def test_break_is_respected(self):
        salon = await seed_salon(self.store)
        await open_hours(self.store, salon, time(9), time(13))
        await open_hours(self.store, salon, time(10, 30), time(11, 30), "break")
        (day,) = await self.generate(salon, slot_step=30)
        self.assertEqual([s.time for s in day.slots], ["09:00", "09:30", "11:30", "12:00"])

    async def test_span_includes_preparation_and_cleanup(self):
        salon = await seed_salon(self.store, duration=45, cleanup=15)
        await open_hours(self.store, salon, time(9), time(10))
        (day,) = await self.generate(salon)
        self.assertEqual([s.time for s in day.slots], ["09:00"])

    async def test_explicit_step_with_longer_span(self):
        salon = await seed_salon(self.store)
        await open_hours(self.store, salon, time(9), time(10))
        (day,) = await self.generate(salon, slot_step=30)
        self.assertEqual([s.time for s in day.slots], ["09:00"])

    async def test_lead_time_hides_early_slots(self):
        salon = await seed_salon(self.store, min_advance_hours=1)
        await open_hours(self.store, salon, time(9), time(12))
        (day,) = await self.generate(salon, now=at(9, 30))
        self.assertEqual([s.time for s in day.slots], ["11:00"])

    async def test_horizon_stops_generation(self):
        salon = await seed_salon(self.store, max_advance_days=3)
        await open_hours(self.store, salon, time(9), time(10), recurrence="daily", until=MONDAY + timedelta(days=30))
        days = await self.generate(salon, num_days=7, now=at(8))
        self.assertEqual([len(d.slots) for d in days], [1, 1, 1, 1, 0, 0, 0])

    async def test_staff_horizon_can_be_tighter(self):
        salon = await seed_salon(self.store, max_advance_days=30, staff_max_advance_days=1)
        await open_hours(self.store, salon, time(9), time(10), recurrence="daily", until=MONDAY + timedelta(days=30))
        days = await self.generate(salon, num_days=3, now=at(8))
        self.assertEqual([len(d.slots) for d in days], [1, 1, 0])

    async def test_booked_slot_is_flagged_not_removed(self):
        salon = await seed_salon(self.store)
        await open_hours(self.store, salon, time(9), time(12))
        await ConflictGuard(self.store).reserve(ORG, staff_id=salon.staff.id, service_id=salon.service.id,
                                                outlet_id=salon.outlet.id, start_at=at(10))
        (day,) = await self.generate(salon)
        flags = {s.time: s.bookable for s in day.slots}
        self.assertEqual(flags, {"09:00": True, "10:00": False, "11:00": True})
        self.assertEqual(day.slots[1].staff_ids, [])

    async def test_capacity_two_stays_bookable(self):
        salon = await seed_salon(self.store, capacity=2)
        await open_hours(self.store, salon, time(9), time(12))
        await ConflictGuard(self.store).reserve(ORG, staff_id=salon.staff.id, service_id=salon.service.id,
                                                outlet_id=salon.outlet.id, start_at=at(10))
        (day,) = await self.generate(salon)
        self.assertTrue(all(s.bookable for s in day.slots))

    async def test_cancelled_bookings_do_not_occupy(self):
        salon = await seed_salon(self.store)
        await open_hours(self.store, salon, time(9), time(12))
        guard = ConflictGuard(self.store)
        booking = await guard.reserve(ORG, staff_id=salon.staff.id, service_id=salon.service.id,
                                      outlet_id=salon.outlet.id, start_at=at(10))
        await guard.release(ORG, booking.id)
        (day,) = await self.generate(salon)
        self.assertTrue(all(s.bookable for s in day.slots))

    async def test_aggregates_over_assigned_staff(self):
        salon = await seed_salon(self.store)
        budi = await add_staff(self.store, salon, "Budi")
        await open_hours(self.store, salon, time(9), time(11))
        await open_hours(self.store, salon, time(10), time(12), staff=budi)
        await ConflictGuard(self.store).reserve(ORG, staff_id=salon.staff.id, service_id=salon.service.id,
                                                outlet_id=salon.outlet.id, start_at=at(10))
        (day,) = await self.generate(salon)
        by_time = {s.time: s for s in day.slots}
        self.assertEqual(sorted(by_time), ["09:00", "10:00", "11:00"])
        self.assertEqual(by_time["09:00"].staff_ids, [salon.staff.id])
        self.assertEqual(by_time["10:00"].staff_ids, [budi.id])
        self.assertEqual(by_time["11:00"].staff_ids, [budi.id])

    async def test_single_staff_grid(self):
        salon = await seed_salon(self.store)
        budi = await add_staff(self.store, salon, "Budi")
        await open_hours(self.store, salon, time(9), time(10))
        await open_hours(self.store, salon, time(14), time(15), staff=budi)
        (day,) = await self.generate(salon, staff_id=budi.id)
        self.assertEqual([s.time for s in day.slots], ["14:00"])

    async def test_rules_at_another_outlet_do_not_count(self):
        salon = await seed_salon(self.store)
        await open_hours(self.store, salon, time(9), time(10))
        salon.outlet = await self.store.add_outlet(Outlet(org_id=ORG, name="Branch"))
        (day,) = await self.generate(salon)
        self.assertEqual(day.slots, [])

    async def test_zero_capacity_lists_nothing_bookable(self):
        salon = await seed_salon(self.store, capacity=0)
        await open_hours(self.store, salon, time(9), time(17))
        (day,) = await self.generate(salon)
        self.assertEqual(len(day.slots), 8)
        self.assertFalse(any(s.bookable for s in day.slots))

    async def test_inactive_service_rejected(self):
        salon = await seed_salon(self.store)
        salon.service.active = False
        with self.assertRaises(ValidationError):
            await self.generate(salon)

    async def test_inactive_staff(self):
        salon = await seed_salon(self.store)
        budi = await add_staff(self.store, salon, "Budi")
        await open_hours(self.store, salon, time(9), time(10))
        await open_hours(self.store, salon, time(9), time(10), staff=budi)
        budi.active = False
        with self.assertRaises(ValidationError):
            await self.generate(salon, staff_id=budi.id)
        (day,) = await self.generate(salon)
        self.assertEqual(day.slots[0].staff_ids, [salon.staff.id])

    async def test_num_days_bounds(self):
        salon = await seed_salon(self.store)
        with self.assertRaises(ValidationError):
            await self.generate(salon, num_days=0)
        with self.assertRaises(ValidationError):
            await self.generate(salon, num_days=63)

    async def test_non_positive_step_rejected(self):
        salon = await seed_salon(self.store)
        with self.assertRaises(ValidationError):
            await self.generate(salon, slot_step=0)

    async def test_unknown_service(self):
        salon = await seed_salon(self.store)
        with self.assertRaises(NotFound):
            await self.grid.generate(ORG, service_id=uuid.uuid4(), outlet_id=salon.outlet.id,
                                     start_date=MONDAY, num_days=1, now=NOW)

    async def test_unqualified_staff_rejected(self):
        salon = await seed_salon(self.store)
        stranger = await self.store.add_staff(Staff(org_id=ORG, name="Dewi"))
        with self.assertRaises(ValidationError):
            await self.generate(salon, staff_id=stranger.id)

    async def test_unassigned_service_needs_staff_id(self):
        salon = await seed_salon(self.store, assign=False)
        await open_hours(self.store, salon, time(9), time(10))
        with self.assertRaises(ValidationError):
            await self.generate(salon)
        (day,) = await self.generate(salon, staff_id=salon.staff.id)
        self.assertEqual(len(day.slots), 1)


if __name__ == "__main__":
    unittest.main()
