"""MonthlyInvoice model."""

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base, BigIntPK, MoneyColumn
from src.shared.utils.periods import BillingPeriod


class MonthlyInvoiceStatus(StrEnum):
    ISSUED = "issued"
    VOID = "void"  # its ledger entry was reversed


class MonthlyInvoice(Base):
    """
    Invoice record for one student and one billing period.

    The debit itself lives in the ledger (`ledger_entry_id`). The unique
    (student, year, month) constraint is what makes generation idempotent:
    a void invoice still occupies its period.
    """

    __tablename__ = "monthly_invoices"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    invoice_number: Mapped[str] = mapped_column(
        String(50), nullable=False, unique=True, index=True
    )
    student_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("student_billing_profiles.student_id"), nullable=False, index=True
    )
    period_year: Mapped[int] = mapped_column(Integer, nullable=False)
    period_month: Mapped[int] = mapped_column(Integer, nullable=False)

    amount: Mapped[Decimal] = mapped_column(MoneyColumn, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Prorated enrollment invoice: billed from this day of the month
    is_prorated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    billed_from_day: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=MonthlyInvoiceStatus.ISSUED.value
    )
    ledger_entry_id: Mapped[int | None] = mapped_column(
        BigIntPK, ForeignKey("ledger_entries.id"), nullable=True, index=True
    )
    generated_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    generated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "student_id", "period_year", "period_month",
            name="uq_monthly_invoice_student_period",
        ),
    )

    @property
    def period(self) -> BillingPeriod:
        return BillingPeriod(self.period_year, self.period_month)
