"""Billing cycle scheduling.

Each account is billed monthly on the day of the month it was created. When
that day does not exist in a month (the 29th-31st), the anchor falls on the
last day of that month instead: an account created on the 31st is billed on
Feb 28 (Feb 29 in leap years), Apr 30, and so on.

Periods are half-open `[start, end)` between consecutive anchors.
"""

import calendar
from dataclasses import dataclass
from datetime import date, datetime


@dataclass(frozen=True)
class BillingPeriod:
    """Half-open billing period `[start, end)`."""
    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day < self.end

    @property
    def days(self) -> int:
        return (self.end - self.start).days


def billing_day(created_at: datetime | date) -> int:
    """Day of month (1-31) fixed at account creation."""
    return created_at.day


def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def anchor_date(day: int, year: int, month: int) -> date:
    """Billing anchor for `day` in the given month, clamped to the month end."""
    if not 1 <= day <= 31:
        raise ValueError(f"billing day must be between 1 and 31, got {day}")
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last_day))


def next_billing_date(day: int, today: date) -> date:
    """The first anchor strictly after `today`.

    This month's anchor if today is before it, otherwise next month's.
    """
    this_anchor = anchor_date(day, today.year, today.month)
    if today < this_anchor:
        return this_anchor
    year, month = _shift_month(today.year, today.month, 1)
    return anchor_date(day, year, month)


def billing_period(day: int, today: date) -> BillingPeriod:
    """The billing period containing `today`.

    On or after this month's anchor the period runs to next month's anchor;
    before it, the period started at last month's anchor.
    """
    this_anchor = anchor_date(day, today.year, today.month)
    if today >= this_anchor:
        year, month = _shift_month(today.year, today.month, 1)
        return BillingPeriod(start=this_anchor, end=anchor_date(day, year, month))

    year, month = _shift_month(today.year, today.month, -1)
    return BillingPeriod(start=anchor_date(day, year, month), end=this_anchor)


def is_billing_day(day: int, today: date) -> bool:
    """True when `today` is this month's (clamped) anchor."""
    return today == anchor_date(day, today.year, today.month)


class CycleScheduler:
    """Billing cycle calculations for one account's billing day."""

    def __init__(self, day: int):
        if not 1 <= day <= 31:
            raise ValueError(f"billing day must be between 1 and 31, got {day}")
        self.day = day

    @classmethod
    def for_created_at(cls, created_at: datetime | date) -> "CycleScheduler":
        return cls(billing_day(created_at))

    def next_billing_date(self, today: date) -> date:
        return next_billing_date(self.day, today)

    def billing_period(self, today: date) -> BillingPeriod:
        return billing_period(self.day, today)

    def is_billing_day(self, today: date) -> bool:
        return is_billing_day(self.day, today)
