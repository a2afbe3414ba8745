"""
Prorated billing calculator.

Partial-month amounts at the enrollment and checkout boundaries. Regular
monthly invoices are never prorated.

The daily rate is kept unrounded; rounding is applied once, to the final
amount (ROUND_HALF_UP).
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import StrEnum

from src.shared.utils.money import ZERO, round_money
from src.shared.utils.periods import days_in_month


class ProrationMode(StrEnum):
    ENROLLMENT = "enrollment"  # charge from the join day to month end
    CHECKOUT = "checkout"  # charge up to and including the exit day


@dataclass(frozen=True)
class ProrationResult:
    mode: ProrationMode
    monthly_fee: Decimal
    reference_date: date
    days_in_month: int
    days: int  # remaining days (enrollment) or used days (checkout)
    daily_rate: Decimal  # unrounded
    amount: Decimal
    refund: Decimal = ZERO
    message: str | None = None


def _amount_for_days(monthly_fee: Decimal, days: int, month_days: int) -> Decimal:
    return round_money(Decimal(monthly_fee) * days / month_days)


def prorate(
    monthly_fee: Decimal,
    reference_date: date,
    mode: ProrationMode,
    already_paid: bool = True,
) -> ProrationResult:
    """
    Prorate a monthly fee around `reference_date`.

    Enrollment: days remaining including the join day. Day 1 charges the full fee.

    Checkout: days used including the exit day. When the month was paid in full
    the refund is the fee minus the usage charge; the last day refunds nothing.

    Examples (31-day month, fee 15000):
        enrollment on the 15th -> 17 days, 8225.81
        checkout on the 25th   -> 25 days, 12096.77, refund 2903.23
    """
    monthly_fee = Decimal(monthly_fee)
    if monthly_fee < 0:
        raise ValueError(f"monthly_fee must not be negative, got {monthly_fee}")

    month_days = days_in_month(reference_date.year, reference_date.month)
    daily_rate = monthly_fee / month_days

    if mode == ProrationMode.ENROLLMENT:
        days = month_days - reference_date.day + 1
        return ProrationResult(
            mode=mode,
            monthly_fee=monthly_fee,
            reference_date=reference_date,
            days_in_month=month_days,
            days=days,
            daily_rate=daily_rate,
            amount=_amount_for_days(monthly_fee, days, month_days),
        )

    days = reference_date.day
    amount = _amount_for_days(monthly_fee, days, month_days)
    refund = round_money(monthly_fee - amount) if already_paid else ZERO

    message = None
    if not already_paid:
        message = "No refund: the checkout month has not been paid in advance"
    elif refund <= 0:
        refund = ZERO
        message = "No refund: the full month was used"

    return ProrationResult(
        mode=mode,
        monthly_fee=monthly_fee,
        reference_date=reference_date,
        days_in_month=month_days,
        days=days,
        daily_rate=daily_rate,
        amount=amount,
        refund=refund,
        message=message,
    )


def prorate_stay(monthly_fee: Decimal, start: date, end: date) -> Decimal:
    """
    Price an inclusive day range inside one month.

    Used when a student leaves in the same month they joined, so usage starts
    at the join day rather than the 1st.
    """
    if (start.year, start.month) != (end.year, end.month):
        raise ValueError("start and end must fall in the same month")
    if end < start:
        raise ValueError("end must not be before start")
    month_days = days_in_month(start.year, start.month)
    return _amount_for_days(Decimal(monthly_fee), end.day - start.day + 1, month_days)
