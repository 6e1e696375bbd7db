"""
Half-open interval arithmetic used by the resolver, the slot grid and the conflict guard.

All intervals are `[start, end)`: touching intervals do not overlap.
"""
from datetime import date, datetime, time, timezone
from typing import Iterable, NamedTuple


class Interval(NamedTuple):
    start: datetime
    end: datetime

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, other: "Interval") -> bool:
        return self.start <= other.start and other.end <= self.end

    @property
    def minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


def at(day: date, t: time) -> datetime:
    """Combine a date and a time-of-day into an aware UTC datetime."""
    return datetime.combine(day, t, tzinfo=timezone.utc)


def merge(intervals: Iterable[Interval]) -> list[Interval]:
    """Sort and merge overlapping or adjacent intervals into a minimal disjoint cover."""
    out: list[Interval] = []
    for iv in sorted(i for i in intervals if i.end > i.start):
        if out and iv.start <= out[-1].end:
            if iv.end > out[-1].end:
                out[-1] = Interval(out[-1].start, iv.end)
        else:
            out.append(iv)
    return out


def subtract(base: Iterable[Interval], holes: Iterable[Interval]) -> list[Interval]:
    """Remove every hole from the base set. A base interval may split into two pieces."""
    result = merge(base)
    for hole in merge(holes):
        nxt: list[Interval] = []
        for iv in result:
            if not iv.overlaps(hole):
                nxt.append(iv)
                continue
            if iv.start < hole.start:
                nxt.append(Interval(iv.start, hole.start))
            if hole.end < iv.end:
                nxt.append(Interval(hole.end, iv.end))
        result = nxt
    return result


def peak_overlap(window: Interval, busy: Iterable[Interval]) -> int:
    """
    Highest number of busy intervals simultaneously active at any instant inside `window`.

    Sweep over start/end events clipped to the window; ends sort before starts at the
    same instant, so back-to-back intervals never count as concurrent.
    """
    events: list[tuple[datetime, int]] = []
    for b in busy:
        if not b.overlaps(window):
            continue
        events.append((max(b.start, window.start), 1))
        events.append((min(b.end, window.end), -1))
    events.sort(key=lambda e: (e[0], e[1]))
    peak = cur = 0
    for _, delta in events:
        cur += delta
        peak = max(peak, cur)
    return peak
