"""Service for Payments module."""

import logging
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit import AuditAction, AuditService
from src.core.documents import DocumentNumberGenerator, DocumentPrefix
from src.core.exceptions import NotFoundError
from src.modules.ledger.models import EntrySide, EntryType, LedgerEntry
from src.modules.ledger.service import LedgerService
from src.modules.payments.models import Payment
from src.modules.payments.schemas import PaymentCreate, PaymentFilters

logger = logging.getLogger(__name__)

_METHOD_LABELS = {
    "cash": "Cash",
    "bank_transfer": "Bank transfer",
    "card": "Card",
    "online": "Online",
    "cheque": "Cheque",
    "upi": "UPI",
    "mobile_wallet": "Mobile wallet",
}


class PaymentService:
    """Service for recording payments against the ledger."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)
        self.ledger = LedgerService(db)

    async def record_payment(self, data: PaymentCreate) -> tuple[Payment, LedgerEntry]:
        """Lock the student, append the Payment credit and commit."""
        await self.ledger.lock_student(data.student_id)
        payment, entry = await self.add_payment(data)
        await self.db.commit()
        return payment, entry

    async def allocate_numbers(self, payment_date: date) -> tuple[str, str]:
        """Payment and receipt numbers for a payment on `payment_date`."""
        number_gen = DocumentNumberGenerator(self.db)
        payment_number = await number_gen.next_number(DocumentPrefix.PAYMENT, on_date=payment_date)
        receipt_number = await number_gen.next_number(DocumentPrefix.RECEIPT, on_date=payment_date)
        return payment_number, receipt_number

    async def add_payment(
        self, data: PaymentCreate, numbers: tuple[str, str] | None = None
    ) -> tuple[Payment, LedgerEntry]:
        """
        Append a payment inside the caller's transaction.

        The student must already be locked. Callers that take other document
        numbers first pass (payment, receipt) numbers allocated up front.
        """
        payment_date = data.payment_date or date.today()
        payment_number, receipt_number = numbers or await self.allocate_numbers(payment_date)

        entry = await self.ledger.append_entry(
            student_id=data.student_id,
            entry_type=EntryType.PAYMENT,
            side=EntrySide.CREDIT,
            amount=data.amount,
            entry_date=payment_date,
            description=f"Payment received - {_METHOD_LABELS[data.payment_method.value]}",
            reference_id=data.reference or receipt_number,
            notes=data.notes,
            recorded_by=data.recorded_by,
        )

        payment = Payment(
            payment_number=payment_number,
            receipt_number=receipt_number,
            student_id=data.student_id,
            amount=entry.credit,
            payment_method=data.payment_method.value,
            payment_date=payment_date,
            reference=data.reference,
            notes=data.notes,
            ledger_entry_id=entry.id,
            recorded_by=data.recorded_by,
        )
        self.db.add(payment)
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.RECORD_PAYMENT,
            entity_type="Payment",
            entity_id=payment.id,
            entity_identifier=payment_number,
            performed_by=data.recorded_by,
            new_values={
                "student_id": data.student_id,
                "amount": str(payment.amount),
                "payment_method": data.payment_method.value,
                "receipt_number": receipt_number,
            },
        )
        logger.info(
            "Payment %s of %s recorded for %s", payment_number, payment.amount, data.student_id
        )
        return payment, entry

    async def get_payment_by_id(self, payment_id: int) -> Payment:
        result = await self.db.execute(select(Payment).where(Payment.id == payment_id))
        payment = result.scalar_one_or_none()
        if not payment:
            raise NotFoundError("Payment", payment_id)
        return payment

    async def list_payments(
        self, filters: PaymentFilters
    ) -> tuple[list[Payment], int]:
        """List payments with filters."""
        query = select(Payment)

        if filters.student_id:
            query = query.where(Payment.student_id == filters.student_id)
        if filters.payment_method:
            query = query.where(Payment.payment_method == filters.payment_method.value)
        if filters.date_from:
            query = query.where(Payment.payment_date >= filters.date_from)
        if filters.date_to:
            query = query.where(Payment.payment_date <= filters.date_to)

        # Count total
        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        # Paginate
        query = query.order_by(Payment.payment_date.desc(), Payment.id.desc())
        query = query.offset((filters.page - 1) * filters.limit).limit(filters.limit)

        result = await self.db.execute(query)
        return list(result.scalars().all()), total
