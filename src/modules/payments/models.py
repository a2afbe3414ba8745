"""Payment model."""

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import Date, DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base, BigIntPK, MoneyColumn


class PaymentMethod(StrEnum):
    """Payment method options."""

    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    CARD = "card"
    ONLINE = "online"
    CHEQUE = "cheque"
    UPI = "upi"
    MOBILE_WALLET = "mobile_wallet"  # eSewa, Khalti


# Methods that must carry a transaction/cheque reference
REFERENCE_REQUIRED_METHODS = frozenset(
    {
        PaymentMethod.BANK_TRANSFER,
        PaymentMethod.ONLINE,
        PaymentMethod.MOBILE_WALLET,
        PaymentMethod.CHEQUE,
    }
)


class Payment(Base):
    """
    Payment received from a student.

    Recording a payment appends a Payment credit to the ledger
    (`ledger_entry_id`); the ledger applies it to the oldest open debits and
    keeps any excess as advance.
    """

    __tablename__ = "payments"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    payment_number: Mapped[str] = mapped_column(
        String(50), nullable=False, unique=True, index=True
    )
    receipt_number: Mapped[str] = mapped_column(
        String(50), nullable=False, unique=True, index=True
    )

    student_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("student_billing_profiles.student_id"), nullable=False, index=True
    )

    amount: Mapped[Decimal] = mapped_column(MoneyColumn, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)

    reference: Mapped[str | None] = mapped_column(
        String(100), nullable=True
    )  # bank reference, cheque number, wallet transaction ID

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    ledger_entry_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("ledger_entries.id"), nullable=False
    )
    recorded_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
