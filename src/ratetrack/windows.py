"""
Calendar windows for the weekly / monthly / yearly reporting cycles.

Everything here works on local calendar dates (`datetime.date`) supplied by the
caller. Nothing reads the clock.

  - weekly:  Monday..Sunday, boundary on Sunday
  - monthly: 1st..last day of the month, boundary on the last day
  - yearly:  Jan 1..Dec 31, boundary on Dec 31

A weekly window is purely Monday-based, so it can straddle a month or year
(2025-12-29..2026-01-04 is one week).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterator

WEEKLY = "weekly"
MONTHLY = "monthly"
YEARLY = "yearly"

# evaluation / report order
PERIODS = (WEEKLY, MONTHLY, YEARLY)


def _check_period(period: str) -> None:
    if period not in PERIODS:
        raise ValueError(f"unknown period {period!r} (expected one of {', '.join(PERIODS)})")


def days_in_month(year: int, month: int) -> int:
    # "day 0 of next month" == last day of this month
    if month == 12:
        first_of_next = date(year + 1, 1, 1)
    else:
        first_of_next = date(year, month + 1, 1)
    return (first_of_next - timedelta(days=1)).day


def _weekday_sun0(d: date) -> int:
    # Sunday=0 .. Saturday=6
    return d.isoweekday() % 7


@dataclass(frozen=True)
class PeriodWindow:
    type: str
    start: date
    end: date

    @property
    def period_id(self) -> str:
        return period_id(self)

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def __contains__(self, d: object) -> bool:
        return isinstance(d, date) and self.start <= d <= self.end


def is_period_boundary(now: date, period: str) -> bool:
    _check_period(period)
    if period == WEEKLY:
        return now.isoweekday() == 7
    if period == MONTHLY:
        return now.day == days_in_month(now.year, now.month)
    return now.month == 12 and now.day == 31


def window_for(now: date, period: str) -> PeriodWindow:
    _check_period(period)
    if period == WEEKLY:
        start = now - timedelta(days=(_weekday_sun0(now) + 6) % 7)
        return PeriodWindow(WEEKLY, start, start + timedelta(days=6))
    if period == MONTHLY:
        start = now.replace(day=1)
        return PeriodWindow(MONTHLY, start, now.replace(day=days_in_month(now.year, now.month)))
    return PeriodWindow(YEARLY, date(now.year, 1, 1), date(now.year, 12, 31))


def period_id(window: PeriodWindow) -> str:
    """
    Canonical, sortable id:
      weekly  -> "2024-01-01_2024-01-07"
      monthly -> "2024-01"
      yearly  -> "2024"
    """
    _check_period(window.type)
    if window.type == WEEKLY:
        return f"{window.start.isoformat()}_{window.end.isoformat()}"
    if window.type == MONTHLY:
        return f"{window.start.year:04d}-{window.start.month:02d}"
    return f"{window.start.year:04d}"


def iter_dates(start: date, end: date) -> Iterator[date]:
    cur = start
    while cur <= end:
        yield cur
        cur += timedelta(days=1)
