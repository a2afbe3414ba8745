"""Pydantic schemas for Payments module."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import Field, model_validator

from src.shared.schemas.base import BaseSchema
from src.modules.ledger.models import BalanceType
from src.modules.payments.models import PaymentMethod, REFERENCE_REQUIRED_METHODS


# --- Payment Schemas ---


class PaymentCreate(BaseSchema):
    """Schema for recording a payment. Non-cash methods need a reference."""

    student_id: str
    amount: Decimal = Field(gt=0, description="Payment amount (must be positive)")
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_date: date | None = None  # defaults to today
    reference: str | None = Field(None, max_length=100)
    notes: str | None = None
    recorded_by: str | None = Field(None, max_length=100)

    @model_validator(mode="after")
    def require_reference(self):
        if self.payment_method in REFERENCE_REQUIRED_METHODS and not (
            self.reference and self.reference.strip()
        ):
            raise ValueError(
                f"Reference is required for {self.payment_method.value} payments"
            )
        return self


class PaymentResponse(BaseSchema):
    """Schema for payment response."""

    id: int
    payment_number: str
    receipt_number: str
    student_id: str
    amount: Decimal
    payment_method: str
    payment_date: date
    reference: str | None
    notes: str | None
    ledger_entry_id: int
    recorded_by: str | None
    created_at: datetime | None = None


class PaymentRecorded(BaseSchema):
    """Payment plus the account position right after it."""

    payment: PaymentResponse
    ledger_entry_number: str
    current_balance: Decimal
    balance_type: BalanceType


class PaymentFilters(BaseSchema):
    """Filters for listing payments."""

    student_id: str | None = None
    payment_method: PaymentMethod | None = None
    date_from: date | None = None
    date_to: date | None = None
    page: int = Field(1, ge=1)
    limit: int = Field(50, ge=1, le=100)
