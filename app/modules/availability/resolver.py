import uuid
import logging
from datetime import date
from typing import Iterable, Sequence

from app.core.errors import ValidationError
from app.modules.availability.intervals import Interval, at, merge, subtract
from app.modules.availability.models import AvailabilityRule, SUBTRACTIVE_KINDS
from app.modules.availability.recurrence import applies_on
from app.platform.ports.booking_store import BookingStorePort

logger = logging.getLogger(__name__)


def rules_on(
    rules: Iterable[AvailabilityRule],
    day: date,
    service_id: uuid.UUID | None = None,
    outlet_id: uuid.UUID | None = None,
) -> list[AvailabilityRule]:
    """Rules active on `day` for the service/outlet. Vacations apply at every outlet."""
    out = []
    for r in rules:
        if r.deleted_at is not None or not r.covers_service(service_id):
            continue
        if outlet_id is not None and r.kind != "vacation" and r.outlet_id != outlet_id:
            continue
        try:
            active = applies_on(r, day)
        except ValidationError:
            # a stored rule that no longer validates must not take the read path down
            logger.warning(f"Skipping invalid availability rule {r.id} for {day}")
            continue
        if active:
            out.append(r)
    return out


def resolve_open_intervals(
    rules: Iterable[AvailabilityRule],
    day: date,
    service_id: uuid.UUID | None = None,
    outlet_id: uuid.UUID | None = None,
) -> list[Interval]:
    """
    Net open intervals for one staff member on one date.

    working_hours are unioned into a base set; a vacation empties the day;
    breaks and blocks are subtracted. The result is sorted and disjoint.
    """
    todays = rules_on(rules, day, service_id, outlet_id)
    if any(r.kind == "vacation" for r in todays):
        return []
    base = merge(Interval(at(day, r.start_time), at(day, r.end_time)) for r in todays if r.kind == "working_hours")
    if not base:
        return []
    holes = [Interval(at(day, r.start_time), at(day, r.end_time)) for r in todays if r.kind in SUBTRACTIVE_KINDS]
    return subtract(base, holes)


class AvailabilityResolver:
    def __init__(self, store: BookingStorePort):
        self.store = store

    async def for_date(
        self,
        org_id: uuid.UUID,
        staff_id: uuid.UUID,
        day: date,
        service_id: uuid.UUID | None = None,
        outlet_id: uuid.UUID | None = None,
    ) -> list[Interval]:
        rules: Sequence[AvailabilityRule] = await self.store.rules_for_staff(org_id, staff_id)
        return resolve_open_intervals(rules, day, service_id, outlet_id)
