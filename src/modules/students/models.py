"""Student billing profile model."""

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import Boolean, Date, DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base, MoneyColumn


class StudentStatus(StrEnum):
    """Billing status. Moves active -> inactive exactly once, at checkout."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class StudentBillingProfile(Base):
    """
    Billing side of a hostel student.

    Identity lives in the external student records service; `student_id` is the
    identifier it issues. Room/bed numbers are kept so checkout can tell Room/Bed
    Management which bed to release.
    """

    __tablename__ = "student_billing_profiles"
    __mapper_args__ = {"eager_defaults": True}

    student_id: Mapped[str] = mapped_column(String(50), primary_key=True)
    student_name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    room_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    bed_number: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Fee components; monthly_fee is their sum
    base_monthly_fee: Mapped[Decimal | None] = mapped_column(MoneyColumn, nullable=True)
    laundry_fee: Mapped[Decimal] = mapped_column(
        MoneyColumn, nullable=False, default=Decimal("0.00"), server_default="0.00"
    )
    food_fee: Mapped[Decimal] = mapped_column(
        MoneyColumn, nullable=False, default=Decimal("0.00"), server_default="0.00"
    )

    # Billing activated on this date (date of the first advance payment)
    configuration_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=StudentStatus.ACTIVE.value, index=True
    )
    is_checked_out: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    checkout_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    @property
    def monthly_fee(self) -> Decimal:
        """base + laundry + food. Zero when the base fee is not configured."""
        if self.base_monthly_fee is None:
            return Decimal("0.00")
        return (
            self.base_monthly_fee
            + (self.laundry_fee or Decimal("0.00"))
            + (self.food_fee or Decimal("0.00"))
        )

    @property
    def is_active(self) -> bool:
        return self.status == StudentStatus.ACTIVE.value

    @property
    def is_configured(self) -> bool:
        """Billing has been activated for this student."""
        return self.configuration_date is not None

    @property
    def is_billable(self) -> bool:
        return self.is_active and self.is_configured and not self.is_checked_out
