
import asyncio
import os
import sys
import uuid
from datetime import date, time, timedelta

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from app.core.config import settings
from app.core.db import init_models
from app.modules.availability.models import AvailabilityRule
from app.modules.directory.models import Outlet, Service, Staff
from app.platform.provider_registry import registry

STAFF = [
    {"name": "Ayu", "capacity": 1},
    {"name": "Budi", "capacity": 1},
    {"name": "Citra", "capacity": 2},  # runs two chairs in parallel
]

SERVICES = [
    {"name": "Facial", "duration_min": 60, "preparation_min": 0, "cleanup_min": 15, "min_advance_booking_hours": 2, "max_advance_booking_days": 60},
    {"name": "Haircut", "duration_min": 30, "preparation_min": 0, "cleanup_min": 0, "min_advance_booking_hours": 1, "max_advance_booking_days": 30},
]

def weekly_rules(org_id, staff_id, outlet_id, anchor: date):
    """
    Monday to Saturday working hours with a lunch break, repeating for 12 weeks.
    """
    end = anchor + timedelta(weeks=12)
    working_days = [0, 1, 2, 3, 4, 5]
    return [
        AvailabilityRule(org_id=org_id, staff_id=staff_id, outlet_id=outlet_id, anchor_date=anchor,
                         start_time=time(9, 0), end_time=time(17, 0), kind="working_hours",
                         recurrence="weekly", recurrence_end_date=end, recurrence_weekdays=working_days, service_scope=[]),
        AvailabilityRule(org_id=org_id, staff_id=staff_id, outlet_id=outlet_id, anchor_date=anchor,
                         start_time=time(12, 0), end_time=time(13, 0), kind="break",
                         recurrence="daily", recurrence_end_date=end, recurrence_weekdays=[], service_scope=[]),
    ]

async def main():
    """
    Seed one outlet with staff, services and a weekly schedule for the default org.
    """
    print("Starting demo data seeding...")
    if settings.BOOKING_STORE_PROVIDER == "sql":
        await init_models()
    store = registry.booking_store()
    org_id = uuid.UUID(settings.DEFAULT_ORG_ID)

    outlet = await store.add_outlet(Outlet(org_id=org_id, name="Main Outlet", address="Jl. Sudirman 1"))
    print(f"  - Created outlet {outlet.name} ({outlet.id})")

    anchor = date.today()
    staff_ids = []
    for s in STAFF:
        staff = await store.add_staff(Staff(org_id=org_id, name=s["name"], capacity=s["capacity"], accepts_online_booking=True))
        staff_ids.append(str(staff.id))
        await store.add_rules(weekly_rules(org_id, staff.id, outlet.id, anchor))
        print(f"  - Created staff {staff.name} (capacity {staff.capacity}) with weekly schedule")

    for s in SERVICES:
        service = await store.add_service(Service(org_id=org_id, assigned_staff_ids=staff_ids, **s))
        print(f"  - Created service {service.name} ({service.id}), span {service.span_minutes} min")

    print("Seeding complete.")

if __name__ == "__main__":
    asyncio.run(main())
