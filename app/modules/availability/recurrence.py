"""
Recurrence expansion for availability rules.

A rule is stored once with an anchor date and a pattern; the concrete dates it
applies to are derived on demand for a query window.
"""
import calendar
from datetime import date, timedelta

from app.core.errors import ValidationError
from app.modules.availability.models import AvailabilityRule, RECURRENCES


def check_recurrence(rule: AvailabilityRule) -> None:
    if rule.recurrence not in RECURRENCES:
        raise ValidationError(f"Unknown recurrence '{rule.recurrence}'", rule_id=rule.id)
    if rule.recurrence == "none":
        return
    if rule.recurrence_end_date is None:
        raise ValidationError("recurrence_end_date is required for recurring rules", rule_id=rule.id)
    if rule.recurrence_end_date < rule.anchor_date:
        raise ValidationError("recurrence_end_date must not be before anchor_date", rule_id=rule.id)


def _month_day(year: int, month: int, day: int) -> date:
    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last))


def _monthly(anchor: date, lo: date, hi: date) -> list[date]:
    out = []
    year, month = lo.year, lo.month
    while True:
        d = _month_day(year, month, anchor.day)
        if d > hi:
            break
        if d >= lo:
            out.append(d)
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return out


def expand_rule(rule: AvailabilityRule, window_start: date, window_end: date) -> list[date]:
    """
    Dates within [window_start, window_end] on which the rule is active, ascending.

    Raises ValidationError for a rule whose recurrence end precedes its anchor.
    """
    check_recurrence(rule)
    if window_end < window_start:
        return []

    if rule.recurrence == "none":
        return [rule.anchor_date] if window_start <= rule.anchor_date <= window_end else []

    lo = max(rule.anchor_date, window_start)
    hi = min(rule.recurrence_end_date, window_end)
    if hi < lo:
        return []

    if rule.recurrence == "monthly":
        return _monthly(rule.anchor_date, lo, hi)

    weekdays = None
    if rule.recurrence == "weekly":
        weekdays = set(rule.recurrence_weekdays or []) or {rule.anchor_date.weekday()}

    out = []
    d = lo
    while d <= hi:
        if weekdays is None or d.weekday() in weekdays:
            out.append(d)
        d += timedelta(days=1)
    return out


def applies_on(rule: AvailabilityRule, day: date) -> bool:
    return bool(expand_rule(rule, day, day))
