"""LedgerEntry and LedgerAllocation models."""

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base, BigIntPK, MoneyColumn


class EntryType(StrEnum):
    """Kinds of financial events on a student account."""

    INVOICE = "invoice"
    PAYMENT = "payment"
    DISCOUNT = "discount"
    ADJUSTMENT = "adjustment"
    REFUND = "refund"
    PENALTY = "penalty"


class EntrySide(StrEnum):
    DEBIT = "debit"
    CREDIT = "credit"


# Which side each type may carry; adjustments go either way
ENTRY_SIDES: dict[EntryType, frozenset[EntrySide]] = {
    EntryType.INVOICE: frozenset({EntrySide.DEBIT}),
    EntryType.PENALTY: frozenset({EntrySide.DEBIT}),
    EntryType.PAYMENT: frozenset({EntrySide.CREDIT}),
    EntryType.DISCOUNT: frozenset({EntrySide.CREDIT}),
    EntryType.REFUND: frozenset({EntrySide.CREDIT}),
    EntryType.ADJUSTMENT: frozenset({EntrySide.DEBIT, EntrySide.CREDIT}),
}


class BalanceType(StrEnum):
    """Classification of a signed balance."""

    OUTSTANDING = "outstanding"  # student owes the hostel
    ADVANCE = "advance"  # pre-paid, hostel owes the student
    NIL = "nil"


class LedgerEntry(Base):
    """
    One immutable financial event on a student account.

    Rows are only ever inserted. Corrections are new adjustment/refund entries;
    a reversal points back at the entry it cancels through `reversal_of_id`.
    """

    __tablename__ = "ledger_entries"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    entry_number: Mapped[str] = mapped_column(
        String(50), nullable=False, unique=True, index=True
    )

    student_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("student_billing_profiles.student_id"), nullable=False
    )
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    entry_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)

    description: Mapped[str] = mapped_column(String(255), nullable=False)
    reference_id: Mapped[str | None] = mapped_column(
        String(100), nullable=True
    )  # transaction ID, cheque number, receipt number

    debit: Mapped[Decimal] = mapped_column(
        MoneyColumn, nullable=False, default=Decimal("0.00")
    )
    credit: Mapped[Decimal] = mapped_column(
        MoneyColumn, nullable=False, default=Decimal("0.00")
    )

    # Account total right after this entry was appended (absolute value + type)
    balance: Mapped[Decimal] = mapped_column(MoneyColumn, nullable=False)
    balance_type: Mapped[str] = mapped_column(String(20), nullable=False)

    reversal_of_id: Mapped[int | None] = mapped_column(
        BigIntPK, ForeignKey("ledger_entries.id"), nullable=True, unique=True
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    recorded_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        CheckConstraint("debit >= 0 AND credit >= 0", name="ck_ledger_entries_non_negative"),
        CheckConstraint(
            "(debit > 0 AND credit = 0) OR (credit > 0 AND debit = 0)",
            name="ck_ledger_entries_single_side",
        ),
        Index("ix_ledger_entries_student_date_id", "student_id", "entry_date", "id"),
    )

    @property
    def side(self) -> EntrySide:
        return EntrySide.DEBIT if self.debit > 0 else EntrySide.CREDIT

    @property
    def amount(self) -> Decimal:
        return self.debit if self.debit > 0 else self.credit


class LedgerAllocation(Base):
    """
    Sub-ledger match: part of a credit entry applied to a debit entry.

    Open debits are cleared oldest first; whatever credit stays unmatched is the
    student's advance balance.
    """

    __tablename__ = "ledger_allocations"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    student_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("student_billing_profiles.student_id"), nullable=False, index=True
    )
    credit_entry_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("ledger_entries.id"), nullable=False, index=True
    )
    debit_entry_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("ledger_entries.id"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(MoneyColumn, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ledger_allocations_positive"),
    )
