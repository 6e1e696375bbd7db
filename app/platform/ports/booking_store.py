import uuid
from datetime import date, datetime
from typing import AsyncContextManager, Protocol, Sequence, runtime_checkable

from app.modules.availability.models import AvailabilityRule
from app.modules.bookings.models import Booking
from app.modules.directory.models import Outlet, Service, Staff


@runtime_checkable
class StaffUnitPort(Protocol):
    """
    Operations available while holding one staff member's write lock.

    Everything done through a unit commits together when the `staff_unit`
    block exits normally and is discarded when it raises.
    """
    staff: Staff

    async def occupying_bookings(self, start: datetime, end: datetime, exclude_id: uuid.UUID | None = None) -> Sequence[Booking]: ...
    async def get_booking(self, booking_id: uuid.UUID) -> Booking | None: ...
    async def insert_booking(self, booking: Booking) -> Booking: ...
    async def update_booking(self, booking: Booking, **changes) -> Booking: ...
    async def record_event(self, event_type: str, subject_type: str, subject_id: uuid.UUID, payload: dict) -> None: ...


@runtime_checkable
class BookingStorePort(Protocol):
    # directory
    async def get_staff(self, org_id: uuid.UUID, staff_id: uuid.UUID) -> Staff | None: ...
    async def list_staff(self, org_id: uuid.UUID, staff_ids: Sequence[uuid.UUID]) -> Sequence[Staff]: ...
    async def get_service(self, org_id: uuid.UUID, service_id: uuid.UUID) -> Service | None: ...
    async def get_outlet(self, org_id: uuid.UUID, outlet_id: uuid.UUID) -> Outlet | None: ...
    async def add_staff(self, staff: Staff) -> Staff: ...
    async def add_service(self, service: Service) -> Service: ...
    async def add_outlet(self, outlet: Outlet) -> Outlet: ...

    # availability rules
    async def add_rules(self, rules: Sequence[AvailabilityRule]) -> Sequence[AvailabilityRule]: ...
    async def get_rule(self, org_id: uuid.UUID, rule_id: uuid.UUID) -> AvailabilityRule | None: ...
    async def update_rule(self, org_id: uuid.UUID, rule_id: uuid.UUID, changes: dict) -> AvailabilityRule | None: ...
    async def delete_rule(self, org_id: uuid.UUID, rule_id: uuid.UUID) -> bool: ...
    async def rules_for_staff(self, org_id: uuid.UUID, staff_id: uuid.UUID) -> Sequence[AvailabilityRule]: ...
    async def list_rules(
        self,
        org_id: uuid.UUID,
        *,
        staff_id: uuid.UUID | None = None,
        outlet_id: uuid.UUID | None = None,
        kind: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[Sequence[AvailabilityRule], int]: ...

    # bookings (read path, unlocked)
    async def get_booking(self, org_id: uuid.UUID, booking_id: uuid.UUID) -> Booking | None: ...
    async def list_bookings(
        self,
        org_id: uuid.UUID,
        *,
        staff_id: uuid.UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        statuses: Sequence[str] | None = None,
    ) -> Sequence[Booking]: ...

    # write path: one atomic unit per staff member
    def staff_unit(self, org_id: uuid.UUID, staff_id: uuid.UUID) -> AsyncContextManager[StaffUnitPort]: ...
