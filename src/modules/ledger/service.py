"""Service for Ledger module."""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit import AuditAction, AuditService
from src.core.documents import DocumentNumberGenerator, DocumentPrefix
from src.core.exceptions import ConflictError, NotFoundError, ValidationError
from src.shared.utils.money import ZERO, round_money, sum_money, to_money
from src.modules.billing.models import MonthlyInvoice, MonthlyInvoiceStatus
from src.modules.ledger.balance import (
    classify_balance,
    compute_balance,
    match_open_items,
    open_items,
    running_balances,
)
from src.modules.ledger.models import (
    ENTRY_SIDES,
    EntrySide,
    EntryType,
    LedgerAllocation,
    LedgerEntry,
)
from src.modules.ledger.schemas import (
    AdjustmentCreate,
    AdvanceItem,
    ChargeCreate,
    DiscountCreate,
    EntryTypeStats,
    InitialAdvance,
    LedgerEntryResponse,
    LedgerFilters,
    LedgerStats,
    OpenItemsResponse,
    OutstandingItem,
    ReverseEntryRequest,
    StudentBalance,
    StudentFinancialSummary,
    StudentLedgerResponse,
)
from src.modules.students.models import StudentBillingProfile, StudentStatus

logger = logging.getLogger(__name__)


class LedgerService:
    """
    Append-only ledger of student accounts.

    `append_entry` is the only place rows are written to `ledger_entries`.
    It does not commit: callers lock the student first (`lock_student`),
    append, and commit their own transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    # --- Students ---

    async def get_student(self, student_id: str) -> StudentBillingProfile:
        result = await self.db.execute(
            select(StudentBillingProfile).where(
                StudentBillingProfile.student_id == student_id
            )
        )
        profile = result.scalar_one_or_none()
        if not profile:
            raise NotFoundError("Student", student_id)
        return profile

    async def lock_student(self, student_id: str) -> StudentBillingProfile:
        """Row-lock the billing profile for the rest of the transaction."""
        result = await self.db.execute(
            select(StudentBillingProfile)
            .where(StudentBillingProfile.student_id == student_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        profile = result.scalar_one_or_none()
        if not profile:
            raise NotFoundError("Student", student_id)
        return profile

    # --- Entry Store ---

    async def append_entry(
        self,
        student_id: str,
        entry_type: EntryType,
        side: EntrySide,
        amount: Decimal,
        entry_date: date,
        description: str,
        reference_id: str | None = None,
        notes: str | None = None,
        recorded_by: str | None = None,
        reversal_of_id: int | None = None,
    ) -> LedgerEntry:
        """
        Append one entry and re-match open items.

        Entries are only ever appended at the end of the ledger: `entry_date`
        may not be earlier than the student's latest entry. The new entry is
        therefore last in (entry_date, id) order and its stored balance is the
        running balance at that position.
        """
        amount = round_money(amount)
        if amount <= 0:
            raise ValidationError("Ledger amount must be positive", field="amount")
        if side not in ENTRY_SIDES[entry_type]:
            raise ValidationError(
                f"{entry_type.value} entries cannot be posted as {side.value}",
                field="entry_type",
            )
        latest = await self.last_entry_date(student_id)
        if latest and entry_date < latest:
            raise ValidationError(
                f"Entry date {entry_date.isoformat()} is before the latest ledger entry "
                f"of student {student_id} ({latest.isoformat()})",
                field="entry_date",
            )

        rows = await self.db.execute(
            select(LedgerEntry.debit, LedgerEntry.credit).where(
                LedgerEntry.student_id == student_id
            )
        )
        previous = sum_money(debit - credit for debit, credit in rows.all())

        debit = amount if side == EntrySide.DEBIT else ZERO
        credit = amount if side == EntrySide.CREDIT else ZERO
        signed = round_money(previous + debit - credit)
        balance_type = classify_balance(signed)

        entry_number = await DocumentNumberGenerator(self.db).next_number(
            DocumentPrefix.LEDGER_ENTRY, on_date=entry_date
        )
        entry = LedgerEntry(
            entry_number=entry_number,
            student_id=student_id,
            entry_date=entry_date,
            entry_type=entry_type.value,
            description=description,
            reference_id=reference_id,
            debit=debit,
            credit=credit,
            balance=abs(signed),
            balance_type=balance_type.value,
            reversal_of_id=reversal_of_id,
            notes=notes,
            recorded_by=recorded_by,
        )
        self.db.add(entry)
        await self.db.flush()

        await self._allocate_open_items(student_id)

        logger.info(
            "Ledger %s %s: %s %s %s, balance %s (%s)",
            student_id, entry_number, entry_type.value, side.value, amount,
            entry.balance, entry.balance_type,
        )
        return entry

    async def last_entry_date(self, student_id: str) -> date | None:
        result = await self.db.execute(
            select(func.max(LedgerEntry.entry_date)).where(LedgerEntry.student_id == student_id)
        )
        return result.scalar()

    async def posting_date(self, student_id: str, on_date: date) -> date:
        """`on_date`, moved up to the latest entry date when it is earlier."""
        latest = await self.last_entry_date(student_id)
        if latest and latest > on_date:
            return latest
        return on_date

    async def _allocate_open_items(self, student_id: str) -> list[LedgerAllocation]:
        """Match open credits against open debits, oldest first."""
        entries = await self.get_entries(student_id)
        allocations = await self.get_allocations(student_id)
        debits, credits = open_items(entries, allocations)

        created = []
        for match in match_open_items(debits, credits):
            allocation = LedgerAllocation(
                student_id=student_id,
                debit_entry_id=match.debit_entry_id,
                credit_entry_id=match.credit_entry_id,
                amount=match.amount,
            )
            self.db.add(allocation)
            created.append(allocation)
        if created:
            await self.db.flush()
        return created

    async def get_entries(self, student_id: str) -> list[LedgerEntry]:
        """All entries of a student in ledger order."""
        result = await self.db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.student_id == student_id)
            .order_by(LedgerEntry.entry_date, LedgerEntry.id)
        )
        return list(result.scalars().all())

    async def get_allocations(self, student_id: str) -> list[LedgerAllocation]:
        result = await self.db.execute(
            select(LedgerAllocation)
            .where(LedgerAllocation.student_id == student_id)
            .order_by(LedgerAllocation.id)
        )
        return list(result.scalars().all())

    async def get_entry_by_id(self, entry_id: int) -> LedgerEntry:
        result = await self.db.execute(
            select(LedgerEntry).where(LedgerEntry.id == entry_id)
        )
        entry = result.scalar_one_or_none()
        if not entry:
            raise NotFoundError("Ledger entry", entry_id)
        return entry

    # --- Balances ---

    async def get_student_balance(self, student_id: str) -> StudentBalance:
        """Balance summed over the full history; cached entry balances are ignored."""
        await self.get_student(student_id)
        entries = await self.get_entries(student_id)
        signed, balance_type = compute_balance(entries)
        return StudentBalance(
            student_id=student_id,
            current_balance=abs(signed),
            signed_balance=signed,
            balance_type=balance_type,
            total_debits=sum_money(e.debit for e in entries),
            total_credits=sum_money(e.credit for e in entries),
            total_entries=len(entries),
        )

    async def get_open_items(self, student_id: str) -> OpenItemsResponse:
        """Unpaid debits (with due dates) and unapplied credits."""
        await self.get_student(student_id)
        entries = await self.get_entries(student_id)
        allocations = await self.get_allocations(student_id)
        debits, credits = open_items(entries, allocations)
        by_id = {entry.id: entry for entry in entries}

        invoices: dict[int, MonthlyInvoice] = {}
        debit_ids = [item.entry_id for item in debits]
        if debit_ids:
            result = await self.db.execute(
                select(MonthlyInvoice).where(MonthlyInvoice.ledger_entry_id.in_(debit_ids))
            )
            invoices = {inv.ledger_entry_id: inv for inv in result.scalars().all()}

        outstanding = []
        for item in debits:
            entry = by_id[item.entry_id]
            invoice = invoices.get(entry.id)
            outstanding.append(
                OutstandingItem(
                    entry_id=entry.id,
                    entry_number=entry.entry_number,
                    entry_type=entry.entry_type,
                    entry_date=entry.entry_date,
                    description=entry.description,
                    original_amount=entry.debit,
                    paid_amount=round_money(entry.debit - item.open_amount),
                    remaining_amount=item.open_amount,
                    due_date=invoice.due_date if invoice else None,
                    period_label=invoice.period.label if invoice else None,
                )
            )

        advances = [
            AdvanceItem(
                entry_id=item.entry_id,
                entry_number=by_id[item.entry_id].entry_number,
                entry_type=by_id[item.entry_id].entry_type,
                entry_date=item.entry_date,
                original_amount=by_id[item.entry_id].credit,
                unapplied_amount=item.open_amount,
            )
            for item in credits
        ]

        return OpenItemsResponse(
            student_id=student_id,
            outstanding=outstanding,
            total_outstanding=sum_money(i.remaining_amount for i in outstanding),
            advances=advances,
            total_advance=sum_money(a.unapplied_amount for a in advances),
        )

    # --- Statements ---

    async def get_student_ledger(
        self,
        student_id: str,
        date_from: date | None = None,
        date_to: date | None = None,
        entry_type: EntryType | None = None,
    ) -> StudentLedgerResponse:
        """
        Per-student statement.

        Running balances are recomputed over the whole history so the
        opening balance of a filtered window is correct.
        """
        profile = await self.get_student(student_id)
        rows = running_balances(await self.get_entries(student_id))

        opening = ZERO
        lines = []
        for row in rows:
            entry = row.entry
            if date_from and entry.entry_date < date_from:
                opening = row.signed_balance
                continue
            if date_to and entry.entry_date > date_to:
                continue
            if entry_type and entry.entry_type != entry_type.value:
                continue
            lines.append(
                LedgerEntryResponse.model_validate(entry).model_copy(
                    update={"balance": row.balance, "balance_type": row.balance_type.value}
                )
            )

        closing, balance_type = compute_balance(r.entry for r in rows)
        return StudentLedgerResponse(
            student_id=student_id,
            student_name=profile.student_name,
            opening_balance=opening,
            closing_balance=closing,
            balance_type=balance_type,
            total_debits=sum_money(line.debit for line in lines),
            total_credits=sum_money(line.credit for line in lines),
            entries=lines,
        )

    async def list_entries(
        self, filters: LedgerFilters
    ) -> tuple[list[LedgerEntry], int]:
        """List ledger entries across students with filters."""
        query = select(LedgerEntry)

        if filters.student_id:
            query = query.where(LedgerEntry.student_id == filters.student_id)
        if filters.entry_type:
            query = query.where(LedgerEntry.entry_type == filters.entry_type.value)
        if filters.date_from:
            query = query.where(LedgerEntry.entry_date >= filters.date_from)
        if filters.date_to:
            query = query.where(LedgerEntry.entry_date <= filters.date_to)
        if filters.search:
            pattern = f"%{filters.search}%"
            query = query.where(
                or_(
                    LedgerEntry.description.ilike(pattern),
                    LedgerEntry.entry_number.ilike(pattern),
                    LedgerEntry.reference_id.ilike(pattern),
                )
            )

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(LedgerEntry.entry_date.desc(), LedgerEntry.id.desc())
        query = query.offset((filters.page - 1) * filters.limit).limit(filters.limit)

        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def get_stats(self) -> LedgerStats:
        result = await self.db.execute(
            select(
                LedgerEntry.entry_type,
                func.count(LedgerEntry.id),
                func.coalesce(func.sum(LedgerEntry.debit), 0),
                func.coalesce(func.sum(LedgerEntry.credit), 0),
            ).group_by(LedgerEntry.entry_type)
        )
        breakdown = {
            entry_type: EntryTypeStats(
                count=count,
                total_debits=to_money(debits),
                total_credits=to_money(credits),
            )
            for entry_type, count, debits, credits in result.all()
        }
        total_debits = sum_money(s.total_debits for s in breakdown.values())
        total_credits = sum_money(s.total_credits for s in breakdown.values())

        active_students = (
            await self.db.execute(
                select(func.count(StudentBillingProfile.student_id)).where(
                    StudentBillingProfile.status == StudentStatus.ACTIVE.value
                )
            )
        ).scalar() or 0

        return LedgerStats(
            total_entries=sum(s.count for s in breakdown.values()),
            total_debits=total_debits,
            total_credits=total_credits,
            net_balance=round_money(total_debits - total_credits),
            active_students=active_students,
            entry_type_breakdown=breakdown,
        )

    async def get_financial_summary(self, student_id: str) -> StudentFinancialSummary:
        profile = await self.get_student(student_id)
        entries = await self.get_entries(student_id)
        signed, balance_type = compute_balance(entries)

        def total(entry_type: EntryType, column: str) -> Decimal:
            return sum_money(
                getattr(e, column) for e in entries if e.entry_type == entry_type.value
            )

        initial = next(
            (
                e for e in entries
                if e.entry_type == EntryType.PAYMENT.value
                and e.entry_date == profile.configuration_date
            ),
            None,
        )
        if initial:
            initial_advance = InitialAdvance(
                amount=initial.credit,
                payment_date=initial.entry_date,
                entry_id=initial.id,
                status="recorded",
                note="Advance paid on the billing configuration date",
            )
        else:
            initial_advance = InitialAdvance(
                amount=ZERO,
                payment_date=None,
                entry_id=None,
                status="not_recorded",
                note="No payment recorded on the billing configuration date",
            )

        return StudentFinancialSummary(
            student_id=student_id,
            student_name=profile.student_name,
            monthly_fee=profile.monthly_fee,
            current_balance=abs(signed),
            balance_type=balance_type,
            total_invoiced=total(EntryType.INVOICE, "debit"),
            total_payments=total(EntryType.PAYMENT, "credit"),
            total_discounts=total(EntryType.DISCOUNT, "credit"),
            amount_due=signed if signed > 0 else ZERO,
            advance_available=-signed if signed < 0 else ZERO,
            initial_advance=initial_advance,
            total_entries=len(entries),
            last_entry_date=max((e.entry_date for e in entries), default=None),
        )

    # --- Corrections ---

    async def create_adjustment(self, data: AdjustmentCreate) -> LedgerEntry:
        """Manual correction, debit or credit."""
        await self.lock_student(data.student_id)
        entry = await self.append_entry(
            student_id=data.student_id,
            entry_type=EntryType.ADJUSTMENT,
            side=data.direction,
            amount=data.amount,
            entry_date=data.entry_date or date.today(),
            description=data.description,
            notes=data.notes,
            recorded_by=data.recorded_by,
        )
        await self.audit.log(
            action=AuditAction.CREATE_ADJUSTMENT,
            entity_type="LedgerEntry",
            entity_id=entry.id,
            entity_identifier=entry.entry_number,
            performed_by=data.recorded_by,
            new_values={
                "student_id": data.student_id,
                "direction": data.direction.value,
                "amount": str(entry.amount),
            },
            comment=data.description,
        )
        await self.db.commit()
        return entry

    async def apply_discount(self, data: DiscountCreate) -> LedgerEntry:
        await self.lock_student(data.student_id)
        entry = await self.append_entry(
            student_id=data.student_id,
            entry_type=EntryType.DISCOUNT,
            side=EntrySide.CREDIT,
            amount=data.amount,
            entry_date=data.entry_date or date.today(),
            description=f"Discount: {data.reason}",
            notes=data.notes,
            recorded_by=data.recorded_by,
        )
        await self.audit.log(
            action=AuditAction.APPLY_DISCOUNT,
            entity_type="LedgerEntry",
            entity_id=entry.id,
            entity_identifier=entry.entry_number,
            performed_by=data.recorded_by,
            new_values={"student_id": data.student_id, "amount": str(entry.credit)},
            comment=data.reason,
        )
        await self.db.commit()
        return entry

    async def add_charge(self, data: ChargeCreate) -> LedgerEntry:
        """Admin charge or penalty."""
        profile = await self.lock_student(data.student_id)
        if profile.is_checked_out:
            raise ValidationError("Cannot charge a checked-out student")

        entry = await self.append_entry(
            student_id=data.student_id,
            entry_type=EntryType(data.charge_type.value),
            side=EntrySide.DEBIT,
            amount=data.amount,
            entry_date=data.entry_date or date.today(),
            description=data.description,
            reference_id=data.reference_id,
            notes=data.notes,
            recorded_by=data.recorded_by,
        )
        await self.audit.log(
            action=AuditAction.ADD_CHARGE,
            entity_type="LedgerEntry",
            entity_id=entry.id,
            entity_identifier=entry.entry_number,
            performed_by=data.recorded_by,
            new_values={
                "student_id": data.student_id,
                "charge_type": data.charge_type.value,
                "amount": str(entry.debit),
            },
        )
        await self.db.commit()
        return entry

    async def reverse_entry(
        self, entry_id: int, data: ReverseEntryRequest
    ) -> tuple[LedgerEntry, LedgerEntry]:
        """
        Cancel an entry with an opposite-side adjustment.

        An entry is reversed at most once and reversals are final. Reversing a
        monthly invoice's entry voids the invoice; its period stays taken.
        """
        original = await self.get_entry_by_id(entry_id)
        if original.reversal_of_id is not None:
            raise ValidationError("Reversal entries cannot be reversed")

        await self.lock_student(original.student_id)
        existing = await self.db.execute(
            select(LedgerEntry.entry_number).where(LedgerEntry.reversal_of_id == entry_id)
        )
        reversed_by = existing.scalar_one_or_none()
        if reversed_by:
            raise ConflictError(
                f"Entry {original.entry_number} was already reversed by {reversed_by}",
                details={"entry_id": entry_id},
            )

        opposite = EntrySide.CREDIT if original.side == EntrySide.DEBIT else EntrySide.DEBIT
        reversal = await self.append_entry(
            student_id=original.student_id,
            entry_type=EntryType.ADJUSTMENT,
            side=opposite,
            amount=original.amount,
            entry_date=await self.posting_date(original.student_id, date.today()),
            description=f"Reversal of {original.entry_number}: {data.reason}",
            reference_id=original.entry_number,
            recorded_by=data.recorded_by,
            reversal_of_id=original.id,
        )

        result = await self.db.execute(
            select(MonthlyInvoice).where(
                MonthlyInvoice.ledger_entry_id == original.id,
                MonthlyInvoice.status == MonthlyInvoiceStatus.ISSUED.value,
            )
        )
        invoice = result.scalar_one_or_none()
        if invoice:
            invoice.status = MonthlyInvoiceStatus.VOID.value
            invoice.voided_at = datetime.now(timezone.utc)
            logger.info("Monthly invoice %s voided by reversal", invoice.invoice_number)

        await self.audit.log(
            action=AuditAction.REVERSE_ENTRY,
            entity_type="LedgerEntry",
            entity_id=original.id,
            entity_identifier=original.entry_number,
            performed_by=data.recorded_by,
            new_values={
                "reversal_entry": reversal.entry_number,
                "amount": str(reversal.amount),
                "voided_invoice": invoice.invoice_number if invoice else None,
            },
            comment=data.reason,
        )
        await self.db.commit()
        return original, reversal

