import uuid
from datetime import date, time
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Date, Time, Text, JSON, ForeignKey
from app.core.base import Base, TimestampedTenantMixin

RULE_KINDS = ("working_hours", "break", "blocked", "vacation")
SUBTRACTIVE_KINDS = ("break", "blocked")
RECURRENCES = ("none", "daily", "weekly", "monthly")

# One stored row per rule; recurring dates are expanded on read, never stored.
# recurrence_weekdays: 0=Mon..6=Sun
class AvailabilityRule(Base, TimestampedTenantMixin):
    staff_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("staff.id"), index=True)
    outlet_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("outlet.id"), index=True)
    anchor_date: Mapped[date] = mapped_column(Date)
    start_time: Mapped[time] = mapped_column(Time)
    end_time: Mapped[time] = mapped_column(Time)
    kind: Mapped[str] = mapped_column(String(24))  # working_hours | break | blocked | vacation
    recurrence: Mapped[str] = mapped_column(String(16), default="none")  # none | daily | weekly | monthly
    recurrence_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    recurrence_weekdays: Mapped[list] = mapped_column(JSON, default=list)
    service_scope: Mapped[list] = mapped_column(JSON, default=list)  # service ids as strings; empty = all
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def is_available(self) -> bool:
        return self.kind == "working_hours"

    def covers_service(self, service_id: uuid.UUID | None) -> bool:
        if not self.service_scope or service_id is None:
            return True
        return str(service_id) in {str(s) for s in self.service_scope}
