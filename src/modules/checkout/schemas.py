"""Pydantic schemas for Checkout module."""

from datetime import date
from decimal import Decimal
from enum import StrEnum

from pydantic import Field

from src.shared.schemas.base import BaseSchema
from src.modules.ledger.models import BalanceType
from src.modules.ledger.schemas import AdvanceItem, LedgerEntryResponse, OutstandingItem


class SettlementStatus(StrEnum):
    """Sign of the final amount."""

    AMOUNT_DUE = "AMOUNT_DUE"  # student pays the hostel
    REFUND_DUE = "REFUND_DUE"  # hostel pays the student
    SETTLED = "SETTLED"


class CheckoutStatus(StrEnum):
    CHECKED_OUT = "checked_out"
    ALREADY_CHECKED_OUT = "already_checked_out"


class CheckoutProration(BaseSchema):
    """Usage of the checkout month."""

    period_label: str
    month_billed: bool
    billed_amount: Decimal
    billed_from_day: int
    days_in_month: int
    days_used: int
    usage_amount: Decimal
    prorated_charge: Decimal
    prorated_refund: Decimal
    message: str | None = None


class CheckoutSettlement(BaseSchema):
    student_id: str
    student_name: str
    checkout_date: date
    monthly_fee: Decimal
    current_balance: Decimal
    balance_type: BalanceType
    outstanding_invoices: list[OutstandingItem]
    total_dues: Decimal
    advance_payments: list[AdvanceItem]
    total_advance: Decimal
    proration: CheckoutProration | None
    prorated_charge: Decimal
    prorated_refund: Decimal
    final_amount: Decimal  # > 0 due from student, < 0 refund to student
    status: SettlementStatus
    summary: str


class CheckoutRequest(BaseSchema):
    checkout_date: date | None = None  # defaults to today
    allow_with_dues: bool | None = None  # None: server default
    release_bed: bool = True
    notes: str | None = None
    processed_by: str | None = Field(None, max_length=100)


class CheckoutResult(BaseSchema):
    student_id: str
    status: CheckoutStatus
    checkout_date: date | None
    settlement: CheckoutSettlement | None = None
    entries: list[LedgerEntryResponse] = []
    final_balance: Decimal
    balance_type: BalanceType
    bed_released: bool = False
    message: str


# --- History ---


class CheckoutFilters(BaseSchema):
    date_from: date | None = None
    date_to: date | None = None
    search: str | None = None
    page: int = Field(1, ge=1)
    limit: int = Field(50, ge=1, le=100)


class CheckoutHistoryItem(BaseSchema):
    """A checked-out student with the settlement booked at checkout."""

    student_id: str
    student_name: str
    room_number: str | None = None
    bed_number: str | None = None
    configuration_date: date | None = None
    checkout_date: date
    stay_days: int | None = None
    settlement_status: SettlementStatus | None = None
    final_amount: Decimal | None = None
    current_balance: Decimal
    balance_type: BalanceType
    processed_by: str | None = None
    notes: str | None = None


class CheckoutStats(BaseSchema):
    total_checkouts: int
    current_period: str
    this_month_checkouts: int
    refund_checkouts: int  # settlement was REFUND_DUE
    checkouts_with_dues: int  # still owing on the inactive account
    outstanding_after_checkout: Decimal
    average_stay_days: Decimal
