import uuid
import logging
from datetime import date, datetime, time, timezone
from typing import Sequence

from app.core.config import settings
from app.core.errors import NotFound, ValidationError
from app.modules.availability.intervals import Interval, at, peak_overlap
from app.modules.availability.models import AvailabilityRule
from app.modules.availability.recurrence import check_recurrence, expand_rule
from app.modules.availability.resolver import resolve_open_intervals
from app.modules.availability.schemas import BulkDelete, BulkRuleCreate, RuleCreate, RuleFields, RuleUpdate
from app.modules.availability.slots import DayGrid, SlotGridGenerator
from app.modules.bookings.models import OCCUPYING
from app.modules.bookings.service import ensure_tenant
from app.platform.ports.booking_store import BookingStorePort

logger = logging.getLogger(__name__)

RULE_FIELDS = (
    "outlet_id", "anchor_date", "start_time", "end_time", "kind", "recurrence",
    "recurrence_end_date", "recurrence_weekdays", "service_scope", "notes",
)
REQUIRED_FIELDS = ("outlet_id", "anchor_date", "start_time", "end_time", "kind", "recurrence")

def _now() -> datetime:
    return datetime.now(timezone.utc)

def _minute(t: time, name: str) -> time:
    if t.second or t.microsecond:
        raise ValidationError(f"{name} must be a whole minute", **{name: t.isoformat()})
    return t.replace(tzinfo=None)

def normalize_rule(data: dict) -> dict:
    """Validate and normalize rule fields. Raises ValidationError; nothing invalid is ever persisted."""
    data = dict(data)
    data["start_time"] = _minute(data["start_time"], "start_time")
    data["end_time"] = _minute(data["end_time"], "end_time")
    if data["end_time"] <= data["start_time"]:
        raise ValidationError("end_time must be after start_time",
                              start_time=data["start_time"].isoformat(), end_time=data["end_time"].isoformat())

    weekdays = sorted(set(data.get("recurrence_weekdays") or []))
    if any(d < 0 or d > 6 for d in weekdays):
        raise ValidationError("recurrence_weekdays must be between 0 (Mon) and 6 (Sun)", recurrence_weekdays=weekdays)
    if weekdays and data["recurrence"] != "weekly":
        raise ValidationError("recurrence_weekdays only applies to weekly rules", recurrence=data["recurrence"])
    data["recurrence_weekdays"] = weekdays
    if data["recurrence"] == "none":
        data["recurrence_end_date"] = None

    data["service_scope"] = [str(s) for s in (data.get("service_scope") or [])]
    check_recurrence(AvailabilityRule(**{k: data.get(k) for k in ("anchor_date", "recurrence", "recurrence_end_date")}))
    return data

class AvailabilityService:
    def __init__(self, store: BookingStorePort):
        self.store = store
        self.grid_generator = SlotGridGenerator(store)

    async def _require_staff(self, org: uuid.UUID, staff_id: uuid.UUID):
        staff = await self.store.get_staff(org, staff_id)
        if staff is None:
            raise NotFound("staff", staff_id)
        return staff

    async def _require_outlet(self, org: uuid.UUID, outlet_id: uuid.UUID):
        if await self.store.get_outlet(org, outlet_id) is None:
            raise NotFound("outlet", outlet_id)

    def _build(self, org: uuid.UUID, staff_id: uuid.UUID, outlet_id: uuid.UUID, fields: RuleFields) -> AvailabilityRule:
        data = normalize_rule(fields.model_dump(include=set(RULE_FIELDS) - {"outlet_id"}))
        return AvailabilityRule(org_id=org, staff_id=staff_id, outlet_id=outlet_id, **data)

    # ---- rule management ----
    async def create_rule(self, org: uuid.UUID, payload: RuleCreate) -> AvailabilityRule:
        ensure_tenant(org, payload.tenant_id)
        rule = self._build(org, payload.staff_id, payload.outlet_id, payload)
        await self._require_staff(org, payload.staff_id)
        await self._require_outlet(org, payload.outlet_id)
        (created,) = await self.store.add_rules([rule])
        logger.info(f"Created {created.kind} rule {created.id} for staff {created.staff_id}")
        return created

    async def bulk_create(self, org: uuid.UUID, payload: BulkRuleCreate) -> Sequence[AvailabilityRule]:
        ensure_tenant(org, payload.tenant_id)
        n = len(payload.availability_entries)
        if n == 0 or n > settings.BULK_AVAILABILITY_MAX:
            raise ValidationError(f"availability_entries must hold 1 to {settings.BULK_AVAILABILITY_MAX} entries", count=n)
        await self._require_staff(org, payload.staff_id)
        await self._require_outlet(org, payload.outlet_id)
        # validate everything before writing anything
        rules = []
        for i, entry in enumerate(payload.availability_entries):
            try:
                rules.append(self._build(org, payload.staff_id, payload.outlet_id, entry))
            except ValidationError as e:
                raise ValidationError(f"entry {i}: {e.message}", index=i, **e.context) from e
        created = await self.store.add_rules(rules)
        logger.info(f"Bulk created {len(created)} rules for staff {payload.staff_id}")
        return created

    async def get_rule(self, org: uuid.UUID, rule_id: uuid.UUID) -> AvailabilityRule:
        rule = await self.store.get_rule(org, rule_id)
        if rule is None:
            raise NotFound("availability_rule", rule_id)
        return rule

    async def update_rule(self, org: uuid.UUID, rule_id: uuid.UUID, payload: RuleUpdate) -> AvailabilityRule:
        current = await self.get_rule(org, rule_id)
        changes = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if k in RULE_FIELDS}
        nulled = [k for k in REQUIRED_FIELDS if k in changes and changes[k] is None]
        if nulled:
            raise ValidationError(f"{', '.join(nulled)} cannot be null")
        if changes.get("outlet_id"):
            await self._require_outlet(org, changes["outlet_id"])
        merged = {k: getattr(current, k) for k in RULE_FIELDS}
        merged.update(changes)
        # switching a weekly rule to another pattern drops its weekdays unless new ones are sent
        if "recurrence" in changes and "recurrence_weekdays" not in changes and merged["recurrence"] != "weekly":
            merged["recurrence_weekdays"] = []
        normalized = normalize_rule(merged)
        updated = await self.store.update_rule(org, rule_id, {k: normalized[k] for k in RULE_FIELDS})
        if updated is None:
            raise NotFound("availability_rule", rule_id)
        return updated

    async def delete_rule(self, org: uuid.UUID, rule_id: uuid.UUID) -> None:
        if not await self.store.delete_rule(org, rule_id):
            raise NotFound("availability_rule", rule_id)

    async def bulk_delete(self, org: uuid.UUID, payload: BulkDelete) -> dict:
        deleted, failed = [], []
        for rule_id in payload.ids:
            if await self.store.delete_rule(org, rule_id):
                deleted.append(rule_id)
            else:
                failed.append({"id": rule_id, "error": "not found"})
        logger.info(f"Bulk delete completed: {len(deleted)} succeeded, {len(failed)} failed")
        return {"deleted": deleted, "failed": failed}

    async def list_rules(self, org: uuid.UUID, *, staff_id=None, outlet_id=None, kind=None,
                         start_date: date | None = None, end_date: date | None = None, page: int = 1, size: int = 50) -> dict:
        if start_date and end_date and end_date < start_date:
            raise ValidationError("end_date must not be before start_date")
        items, total = await self.store.list_rules(
            org, staff_id=staff_id, outlet_id=outlet_id, kind=kind, start_date=start_date, end_date=end_date,
            limit=size, offset=(page - 1) * size,
        )
        return {"items": items, "total": total, "page": page, "size": size}

    # ---- read path ----
    async def grid(self, org: uuid.UUID, *, service_id: uuid.UUID, outlet_id: uuid.UUID, start_date: date, num_days: int,
                   staff_id: uuid.UUID | None = None, slot_interval_minutes: int | None = None) -> list[DayGrid]:
        return await self.grid_generator.generate(
            org, service_id=service_id, staff_id=staff_id, outlet_id=outlet_id,
            start_date=start_date, num_days=num_days, slot_step=slot_interval_minutes, now=_now(),
        )

    async def check_slot(self, org: uuid.UUID, *, staff_id: uuid.UUID, day: date, start_time: time, end_time: time,
                         service_id: uuid.UUID | None = None, outlet_id: uuid.UUID | None = None) -> dict:
        """Advisory check of one explicit interval; the same rules the guard applies at write time."""
        if end_time <= start_time:
            raise ValidationError("end_time must be after start_time")
        staff = await self._require_staff(org, staff_id)
        capacity = staff.seats
        candidate = Interval(at(day, start_time), at(day, end_time))
        rules = await self.store.rules_for_staff(org, staff_id)
        open_ivs = resolve_open_intervals(rules, day, service_id, outlet_id)
        bookings = await self.store.list_bookings(org, staff_id=staff_id, start=candidate.start, end=candidate.end, statuses=tuple(OCCUPYING))
        occupied = peak_overlap(candidate, [Interval(b.start_at, b.end_at) for b in bookings])
        if not any(iv.contains(candidate) for iv in open_ivs):
            return {"available": False, "reason": "outside_availability", "capacity": capacity, "occupied": occupied}
        if occupied >= capacity:
            return {"available": False, "reason": "fully_booked", "capacity": capacity, "occupied": occupied}
        return {"available": True, "reason": None, "capacity": capacity, "occupied": occupied}

    async def staff_schedule(self, org: uuid.UUID, staff_id: uuid.UUID, *, start_date: date, end_date: date,
                             include_breaks: bool = True) -> list[dict]:
        """Expanded rule occurrences per date, for calendar views."""
        if end_date < start_date:
            raise ValidationError("end_date must not be before start_date")
        if (end_date - start_date).days + 1 > settings.GRID_MAX_DAYS:
            raise ValidationError(f"range must not exceed {settings.GRID_MAX_DAYS} days")
        await self._require_staff(org, staff_id)
        entries = []
        for rule in await self.store.rules_for_staff(org, staff_id):
            if not include_breaks and rule.kind in ("break", "blocked"):
                continue
            try:
                dates = expand_rule(rule, start_date, end_date)
            except ValidationError:
                logger.warning(f"Skipping invalid availability rule {rule.id} in schedule for staff {staff_id}")
                continue
            for d in dates:
                entries.append({
                    "date": d, "rule_id": rule.id, "outlet_id": rule.outlet_id, "kind": rule.kind,
                    "start_time": rule.start_time, "end_time": rule.end_time,
                })
        entries.sort(key=lambda e: (e["date"], e["start_time"], e["kind"]))
        return entries
