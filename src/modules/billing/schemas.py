"""Pydantic schemas for Billing module."""

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import Field

from src.shared.schemas.base import BaseSchema
from src.modules.billing.models import MonthlyInvoiceStatus
from src.modules.billing.proration import ProrationMode


class StudentOutcome(StrEnum):
    GENERATED = "generated"
    SKIPPED = "skipped"
    FAILED = "failed"


# --- Generation ---


class GenerateMonthlyRequest(BaseSchema):
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000, le=2100)
    due_date: date | None = None
    student_ids: list[str] | None = None  # restrict the run to these students
    generated_by: str | None = Field(None, max_length=100)


class GenerateStudentRequest(BaseSchema):
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000, le=2100)
    due_date: date | None = None
    generated_by: str | None = Field(None, max_length=100)


class GeneratedInvoice(BaseSchema):
    student_id: str
    student_name: str
    invoice_number: str
    ledger_entry_number: str
    amount: Decimal
    due_date: date


class SkippedStudent(BaseSchema):
    student_id: str
    student_name: str
    reason: str


class BillingError(BaseSchema):
    """Per-student failure; the rest of the batch continues."""

    student_id: str
    student_name: str
    error: str


class StudentGenerationResult(BaseSchema):
    student_id: str
    student_name: str
    status: StudentOutcome
    reason: str | None = None
    invoice: GeneratedInvoice | None = None


class GenerationResult(BaseSchema):
    """Manifest of one batch run."""

    month: int
    year: int
    period_label: str
    due_date: date
    generated: int = 0
    skipped: int = 0
    failed: int = 0
    total_amount: Decimal = Decimal("0.00")
    invoices: list[GeneratedInvoice] = []
    skipped_students: list[SkippedStudent] = []
    errors: list[BillingError] = []


class BillingPreviewItem(BaseSchema):
    student_id: str
    student_name: str
    monthly_fee: Decimal
    will_bill: bool
    reason: str | None = None


class BillingPreview(BaseSchema):
    month: int
    year: int
    period_label: str
    due_date: date
    students_to_bill: int
    students_to_skip: int
    total_amount: Decimal
    items: list[BillingPreviewItem]


# --- Invoices ---


class MonthlyInvoiceResponse(BaseSchema):
    id: int
    invoice_number: str
    student_id: str
    period_year: int
    period_month: int
    amount: Decimal
    due_date: date
    is_prorated: bool
    billed_from_day: int
    status: str
    ledger_entry_id: int | None
    generated_by: str | None = None
    generated_at: datetime | None = None
    voided_at: datetime | None = None


class MonthlyInvoiceFilters(BaseSchema):
    student_id: str | None = None
    year: int | None = None
    month: int | None = Field(None, ge=1, le=12)
    status: MonthlyInvoiceStatus | None = None
    page: int = Field(1, ge=1)
    limit: int = Field(50, ge=1, le=100)


class OverdueInvoice(BaseSchema):
    """Issued invoice past its due date with an unpaid remainder."""

    invoice_id: int
    invoice_number: str
    student_id: str
    student_name: str
    room_number: str | None = None
    period_label: str
    due_date: date
    amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    days_overdue: int


class BillingRun(BaseSchema):
    """One monthly batch, from its audit row."""

    id: int
    period: str  # YYYY-MM
    period_label: str | None
    generated: int
    skipped: int
    failed: int
    total_amount: Decimal
    generated_by: str | None = None
    run_at: datetime


class BillingStats(BaseSchema):
    configured_students: int
    active_students: int
    current_period: str
    current_month_invoices: int
    current_month_amount: Decimal
    paid_invoices: int
    unpaid_invoices: int
    outstanding_amount: Decimal


# --- Proration ---


class ProrationResponse(BaseSchema):
    mode: ProrationMode
    monthly_fee: Decimal
    reference_date: date
    days_in_month: int
    days: int
    daily_rate: Decimal
    amount: Decimal
    refund: Decimal
    message: str | None = None
