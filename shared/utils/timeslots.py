"""
shared/utils/timeslots.py
Minute-of-day interval math shared by the availability ledger and the booking engine.

Intervals are half-open [start, end): touching endpoints do not overlap, so
back-to-back slots and bookings are allowed.
"""

from datetime import time
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Tuple

Interval = Tuple[int, int]

CENTS = Decimal("0.01")


def to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def from_minutes(minutes: int) -> time:
    return time(hour=minutes // 60, minute=minutes % 60)


def overlaps(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    return a_start < b_end and a_end > b_start


def contains(outer_start: int, outer_end: int, inner_start: int, inner_end: int) -> bool:
    return outer_start <= inner_start and inner_end <= outer_end


def duration_hours(start: time, end: time) -> Decimal:
    minutes = to_minutes(end) - to_minutes(start)
    return (Decimal(minutes) / Decimal(60)).quantize(CENTS, rounding=ROUND_HALF_UP)


def money(value) -> Decimal:
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def subtract(window: Interval, taken: Iterable[Interval]) -> List[Interval]:
    """Return the parts of `window` not covered by any interval in `taken`."""
    free: List[Interval] = []
    cursor, end = window
    for t_start, t_end in sorted(taken):
        if t_end <= cursor or t_start >= end:
            continue
        if t_start > cursor:
            free.append((cursor, t_start))
        cursor = max(cursor, t_end)
        if cursor >= end:
            break
    if cursor < end:
        free.append((cursor, end))
    return free


def find_overlap(candidate: Interval, others: Iterable[Tuple[object, int, int]]):
    """Return the first (key, start, end) in `others` that overlaps `candidate`, or None."""
    c_start, c_end = candidate
    for key, o_start, o_end in others:
        if overlaps(c_start, c_end, o_start, o_end):
            return key, o_start, o_end
    return None
