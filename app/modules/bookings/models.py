import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, TIMESTAMP, Text, ForeignKey, Index
from app.core.base import Base, TimestampedTenantMixin

OCCUPYING = frozenset({"pending", "confirmed"})
TERMINAL = frozenset({"completed", "cancelled", "no-show"})

VALID_NEXT = {
    "pending": {"confirmed", "completed", "cancelled", "no-show"},
    "confirmed": {"completed", "cancelled", "no-show"},
    "completed": set(),
    "cancelled": set(),
    "no-show": set(),
}

class Booking(Base, TimestampedTenantMixin):
    __table_args__ = (Index("ix_booking_staff_window", "org_id", "staff_id", "start_at", "end_at"),)

    staff_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("staff.id"))
    service_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("service.id"))
    outlet_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("outlet.id"))
    customer_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)

    # [start_at, end_at) covers preparation + duration + cleanup
    start_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))
    end_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))

    status: Mapped[str] = mapped_column(String(16), default="pending")  # pending, confirmed, completed, cancelled, no-show
    reschedule_count: Mapped[int] = mapped_column(default=0)
    cancelled_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def is_occupying(self) -> bool:
        return self.status in OCCUPYING
