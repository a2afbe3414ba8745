"""Schemas for Students module."""

import re
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator, model_validator

from src.modules.ledger.models import BalanceType
from src.modules.payments.models import PaymentMethod, REFERENCE_REQUIRED_METHODS


# Nepali mobile regex: +977 followed by 10 digits starting with 9
NEPALI_PHONE_REGEX = re.compile(r"^\+9779[0-9]{9}$")


def normalize_phone(v: str) -> str:
    # Normalize: remove spaces and dashes
    normalized = v.replace(" ", "").replace("-", "")

    # Local mobile number, add country code
    if normalized.startswith("9") and len(normalized) == 10:
        normalized = "+977" + normalized

    # If starts with 977, add +
    if normalized.startswith("977") and len(normalized) == 13:
        normalized = "+" + normalized

    if not NEPALI_PHONE_REGEX.match(normalized):
        raise ValueError(
            "Phone must be a Nepali mobile number: +9779XXXXXXXXX (e.g., +9779812345678)"
        )
    return normalized


# --- Student Schemas ---


class StudentRegister(BaseModel):
    """Billing profile for a student admitted by the student records service."""

    student_id: str = Field(..., min_length=1, max_length=50)
    student_name: str = Field(..., min_length=1, max_length=200)
    phone: str | None = Field(None, max_length=20)
    room_number: str | None = Field(None, max_length=50)
    bed_number: str | None = Field(None, max_length=50)
    notes: str | None = None
    registered_by: str | None = Field(None, max_length=100)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return normalize_phone(v)


class StudentConfigure(BaseModel):
    """
    Activate billing.

    The configuration date is the day the enrollment advance is paid; the
    enrollment month is billed prorated from that day.
    """

    base_monthly_fee: Decimal = Field(..., gt=0)
    laundry_fee: Decimal = Field(Decimal("0.00"), ge=0)
    food_fee: Decimal = Field(Decimal("0.00"), ge=0)
    configuration_date: date | None = None  # defaults to today
    initial_advance: Decimal | None = Field(None, gt=0)
    payment_method: PaymentMethod = PaymentMethod.CASH
    reference: str | None = Field(None, max_length=100)
    configured_by: str | None = Field(None, max_length=100)

    @model_validator(mode="after")
    def require_reference(self):
        if (
            self.initial_advance
            and self.payment_method in REFERENCE_REQUIRED_METHODS
            and not self.reference
        ):
            raise ValueError(
                f"Reference is required for {self.payment_method.value} payments"
            )
        return self


class FeeUpdate(BaseModel):
    """New fees apply to invoices generated from now on."""

    base_monthly_fee: Decimal | None = Field(None, gt=0)
    laundry_fee: Decimal | None = Field(None, ge=0)
    food_fee: Decimal | None = Field(None, ge=0)
    updated_by: str | None = Field(None, max_length=100)


class StudentResponse(BaseModel):
    """Schema for student billing profile response."""

    student_id: str
    student_name: str
    phone: str | None
    room_number: str | None
    bed_number: str | None
    base_monthly_fee: Decimal | None
    laundry_fee: Decimal
    food_fee: Decimal
    monthly_fee: Decimal
    configuration_date: date | None
    status: str
    is_checked_out: bool
    checkout_date: date | None
    notes: str | None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class ConfigurationResult(BaseModel):
    """Outcome of billing activation."""

    student: StudentResponse
    enrollment_invoice_number: str
    prorated_days: int
    prorated_amount: Decimal
    advance_payment_number: str | None = None
    current_balance: Decimal
    balance_type: BalanceType
