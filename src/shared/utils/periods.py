"""Calendar helpers for monthly billing periods."""

import calendar
from dataclasses import dataclass
from datetime import date


def days_in_month(year: int, month: int) -> int:
    """Calendar days in the month, leap years included."""
    return calendar.monthrange(year, month)[1]


@dataclass(frozen=True, order=True)
class BillingPeriod:
    """One calendar month. Ordered chronologically."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be between 1 and 12, got {self.month}")
        if self.year < 1900:
            raise ValueError(f"year out of range: {self.year}")

    @classmethod
    def of(cls, day: date) -> "BillingPeriod":
        return cls(day.year, day.month)

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        return date(self.year, self.month, self.days)

    @property
    def days(self) -> int:
        return days_in_month(self.year, self.month)

    @property
    def label(self) -> str:
        """E.g. 'March 2025'."""
        return f"{calendar.month_name[self.month]} {self.year}"

    def contains(self, day: date) -> bool:
        return day.year == self.year and day.month == self.month

    def next(self) -> "BillingPeriod":
        if self.month == 12:
            return BillingPeriod(self.year + 1, 1)
        return BillingPeriod(self.year, self.month + 1)

    def due_date(self, due_day: int) -> date:
        """Due date inside this period, clamped to the month length."""
        return date(self.year, self.month, min(due_day, self.days))
