from enum import StrEnum

from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base


class DocumentPrefix(StrEnum):
    """
    Prefixes of numbered documents, in lock order.

    A transaction that needs numbers of several prefixes takes them in this
    order, so ledger entry numbers always come last.
    """

    PAYMENT = "PAY"
    RECEIPT = "RCP"
    INVOICE = "INV"
    LEDGER_ENTRY = "LED"


class DocumentSequence(Base):
    """Last issued number per prefix and year."""

    __tablename__ = "document_sequences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    prefix: Mapped[str] = mapped_column(String(20), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    last_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("prefix", "year", name="uq_document_sequence_prefix_year"),
    )
