"""Pydantic schemas for Ledger module."""

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import Field

from src.shared.schemas.base import BaseSchema
from src.modules.ledger.models import BalanceType, EntrySide, EntryType


# --- Entry Schemas ---


class LedgerEntryResponse(BaseSchema):
    """Single ledger entry."""

    id: int
    entry_number: str
    student_id: str
    entry_date: date
    entry_type: str
    description: str
    reference_id: str | None
    debit: Decimal
    credit: Decimal
    balance: Decimal
    balance_type: str
    reversal_of_id: int | None = None
    notes: str | None = None
    recorded_by: str | None = None
    created_at: datetime | None = None


class LedgerFilters(BaseSchema):
    """Filters for listing ledger entries."""

    student_id: str | None = None
    entry_type: EntryType | None = None
    date_from: date | None = None
    date_to: date | None = None
    search: str | None = None
    page: int = Field(1, ge=1)
    limit: int = Field(50, ge=1, le=100)


class StudentLedgerResponse(BaseSchema):
    """A student's ledger with running balances recomputed in ledger order."""

    student_id: str
    student_name: str
    opening_balance: Decimal
    closing_balance: Decimal
    balance_type: BalanceType
    total_debits: Decimal
    total_credits: Decimal
    entries: list[LedgerEntryResponse]


# --- Balance Schemas ---


class StudentBalance(BaseSchema):
    """Authoritative balance: signed sum over every entry of the student."""

    student_id: str
    current_balance: Decimal  # absolute value
    signed_balance: Decimal  # debit - credit
    balance_type: BalanceType
    total_debits: Decimal
    total_credits: Decimal
    total_entries: int


class OutstandingItem(BaseSchema):
    """Debit entry with an unpaid remainder."""

    entry_id: int
    entry_number: str
    entry_type: str
    entry_date: date
    description: str
    original_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    due_date: date | None = None
    period_label: str | None = None


class AdvanceItem(BaseSchema):
    """Credit entry not yet applied to any debit."""

    entry_id: int
    entry_number: str
    entry_type: str
    entry_date: date
    original_amount: Decimal
    unapplied_amount: Decimal


class OpenItemsResponse(BaseSchema):
    student_id: str
    outstanding: list[OutstandingItem]
    total_outstanding: Decimal
    advances: list[AdvanceItem]
    total_advance: Decimal


class InitialAdvance(BaseSchema):
    """First payment recorded on the configuration date."""

    amount: Decimal
    payment_date: date | None
    entry_id: int | None
    status: str  # recorded | not_recorded
    note: str


class StudentFinancialSummary(BaseSchema):
    student_id: str
    student_name: str
    monthly_fee: Decimal
    current_balance: Decimal
    balance_type: BalanceType
    total_invoiced: Decimal
    total_payments: Decimal
    total_discounts: Decimal
    amount_due: Decimal
    advance_available: Decimal
    initial_advance: InitialAdvance
    total_entries: int
    last_entry_date: date | None


class EntryTypeStats(BaseSchema):
    count: int
    total_debits: Decimal
    total_credits: Decimal


class LedgerStats(BaseSchema):
    total_entries: int
    total_debits: Decimal
    total_credits: Decimal
    net_balance: Decimal
    active_students: int
    entry_type_breakdown: dict[str, EntryTypeStats]


# --- Mutation Schemas ---


class AdjustmentCreate(BaseSchema):
    """Manual correction, either side."""

    student_id: str
    amount: Decimal = Field(gt=0, description="Adjustment amount (must be positive)")
    direction: EntrySide
    description: str = Field(..., min_length=1, max_length=255)
    entry_date: date | None = None
    notes: str | None = None
    recorded_by: str | None = Field(None, max_length=100)


class DiscountCreate(BaseSchema):
    """Discount credited to the student account."""

    student_id: str
    amount: Decimal = Field(gt=0)
    reason: str = Field(..., min_length=1, max_length=200)
    entry_date: date | None = None
    notes: str | None = None
    recorded_by: str | None = Field(None, max_length=100)


class ChargeType(StrEnum):
    """Ad-hoc charges raised by staff."""

    PENALTY = "penalty"
    INVOICE = "invoice"


class ChargeCreate(BaseSchema):
    """Admin charge or penalty debited to the student account."""

    student_id: str
    amount: Decimal = Field(gt=0)
    description: str = Field(..., min_length=1, max_length=255)
    charge_type: ChargeType = ChargeType.PENALTY
    entry_date: date | None = None
    reference_id: str | None = Field(None, max_length=100)
    notes: str | None = None
    recorded_by: str | None = Field(None, max_length=100)


class ReverseEntryRequest(BaseSchema):
    reason: str = Field("Manual reversal", min_length=1, max_length=200)
    recorded_by: str | None = Field(None, max_length=100)


class ReversalResult(BaseSchema):
    original_entry: LedgerEntryResponse
    reversal_entry: LedgerEntryResponse
