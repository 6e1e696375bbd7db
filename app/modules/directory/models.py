import uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, JSON
from app.core.base import Base, TimestampedTenantMixin

class Outlet(Base, TimestampedTenantMixin):
    __tablename__ = "outlet"
    name: Mapped[str] = mapped_column(String(160), index=True)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    active: Mapped[bool] = mapped_column(default=True)

class Staff(Base, TimestampedTenantMixin):
    __tablename__ = "staff"
    name: Mapped[str] = mapped_column(String(160), index=True)
    # max concurrent occupying bookings
    capacity: Mapped[int] = mapped_column(Integer, default=1)
    accepts_online_booking: Mapped[bool] = mapped_column(default=True)
    max_advance_booking_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    active: Mapped[bool] = mapped_column(default=True)

    @property
    def seats(self) -> int:
        # an explicit 0 means the staff member takes no bookings
        return 1 if self.capacity is None else self.capacity

class Service(Base, TimestampedTenantMixin):
    """A bookable treatment. Occupied span = preparation + duration + cleanup."""
    __tablename__ = "service"
    name: Mapped[str] = mapped_column(String(160), index=True)
    duration_min: Mapped[int] = mapped_column(Integer)
    preparation_min: Mapped[int] = mapped_column(Integer, default=0)
    cleanup_min: Mapped[int] = mapped_column(Integer, default=0)
    min_advance_booking_hours: Mapped[int] = mapped_column(Integer, default=0)
    max_advance_booking_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # staff ids (as strings) qualified to perform it; empty = any staff
    assigned_staff_ids: Mapped[list] = mapped_column(JSON, default=list)
    active: Mapped[bool] = mapped_column(default=True)

    @property
    def span_minutes(self) -> int:
        return (self.duration_min or 0) + (self.preparation_min or 0) + (self.cleanup_min or 0)

    def is_assigned(self, staff_id: uuid.UUID) -> bool:
        if not self.assigned_staff_ids:
            return True
        return str(staff_id) in {str(s) for s in self.assigned_staff_ids}
