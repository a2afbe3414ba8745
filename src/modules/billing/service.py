"""Service for Billing module: monthly invoice generation and invoice queries."""

import asyncio
import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.audit import AuditAction, AuditService
from src.core.config import settings
from src.core.documents import DocumentNumberGenerator, DocumentPrefix
from src.core.exceptions import AppException, NotFoundError, ValidationError
from src.shared.utils.money import ZERO, round_money, sum_money, to_money
from src.shared.utils.periods import BillingPeriod
from src.modules.billing.models import MonthlyInvoice, MonthlyInvoiceStatus
from src.modules.billing.schemas import (
    BillingError,
    BillingPreview,
    BillingPreviewItem,
    BillingRun,
    BillingStats,
    GeneratedInvoice,
    GenerationResult,
    MonthlyInvoiceFilters,
    OverdueInvoice,
    SkippedStudent,
    StudentGenerationResult,
    StudentOutcome,
)
from src.modules.ledger.models import EntrySide, EntryType, LedgerAllocation, LedgerEntry
from src.modules.ledger.service import LedgerService
from src.modules.students.models import StudentBillingProfile, StudentStatus

logger = logging.getLogger(__name__)


def make_period(month: int, year: int) -> BillingPeriod:
    try:
        return BillingPeriod(year, month)
    except ValueError as exc:
        raise ValidationError(str(exc), field="month") from exc


def skip_reason(profile: StudentBillingProfile, period: BillingPeriod) -> str | None:
    """
    Why a configured student is not billed for `period`, or None.

    The advance paid on the configuration date covers the configuration month,
    so that month is never billed here. Months before it are not billed either.
    """
    configured = profile.configuration_date
    if configured is None:
        return "Billing not configured"
    if period.contains(configured):
        return f"Advance payment covers {period.label}"
    if configured > period.end:
        return f"Not enrolled until {configured.isoformat()}"
    return None


class BillingService:
    """Invoice records and billing statistics over one session."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)
        self.ledger = LedgerService(db)

    async def find_invoice(
        self, student_id: str, period: BillingPeriod
    ) -> MonthlyInvoice | None:
        """Invoice for (student, period), void ones included."""
        result = await self.db.execute(
            select(MonthlyInvoice).where(
                MonthlyInvoice.student_id == student_id,
                MonthlyInvoice.period_year == period.year,
                MonthlyInvoice.period_month == period.month,
            )
        )
        return result.scalar_one_or_none()

    async def issue_invoice(
        self,
        profile: StudentBillingProfile,
        period: BillingPeriod,
        amount: Decimal,
        due_date: date,
        description: str,
        is_prorated: bool = False,
        billed_from_day: int = 1,
        generated_by: str | None = None,
    ) -> tuple[MonthlyInvoice, LedgerEntry]:
        """
        Debit the ledger and record the invoice for the period.

        The entry is dated on the first billed day, or on the student's latest
        entry date when that is later. The student must already be locked.
        Does not commit.
        """
        invoice_number = await DocumentNumberGenerator(self.db).next_number(
            DocumentPrefix.INVOICE, on_date=period.start
        )
        entry_date = await self.ledger.posting_date(
            profile.student_id, date(period.year, period.month, billed_from_day)
        )
        entry = await self.ledger.append_entry(
            student_id=profile.student_id,
            entry_type=EntryType.INVOICE,
            side=EntrySide.DEBIT,
            amount=amount,
            entry_date=entry_date,
            description=description,
            reference_id=invoice_number,
            recorded_by=generated_by,
        )
        invoice = MonthlyInvoice(
            invoice_number=invoice_number,
            student_id=profile.student_id,
            period_year=period.year,
            period_month=period.month,
            amount=entry.debit,
            due_date=due_date,
            is_prorated=is_prorated,
            billed_from_day=billed_from_day,
            status=MonthlyInvoiceStatus.ISSUED.value,
            ledger_entry_id=entry.id,
            generated_by=generated_by,
        )
        self.db.add(invoice)
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.GENERATE_INVOICE,
            entity_type="MonthlyInvoice",
            entity_id=invoice.id,
            entity_identifier=invoice_number,
            performed_by=generated_by,
            new_values={
                "student_id": profile.student_id,
                "period": period.label,
                "amount": str(invoice.amount),
                "is_prorated": is_prorated,
            },
        )
        return invoice, entry

    async def get_invoice_by_id(self, invoice_id: int) -> MonthlyInvoice:
        result = await self.db.execute(
            select(MonthlyInvoice).where(MonthlyInvoice.id == invoice_id)
        )
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise NotFoundError("Monthly invoice", invoice_id)
        return invoice

    async def list_invoices(
        self, filters: MonthlyInvoiceFilters
    ) -> tuple[list[MonthlyInvoice], int]:
        query = select(MonthlyInvoice)

        if filters.student_id:
            query = query.where(MonthlyInvoice.student_id == filters.student_id)
        if filters.year:
            query = query.where(MonthlyInvoice.period_year == filters.year)
        if filters.month:
            query = query.where(MonthlyInvoice.period_month == filters.month)
        if filters.status:
            query = query.where(MonthlyInvoice.status == filters.status.value)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(
            MonthlyInvoice.period_year.desc(),
            MonthlyInvoice.period_month.desc(),
            MonthlyInvoice.id.desc(),
        )
        query = query.offset((filters.page - 1) * filters.limit).limit(filters.limit)

        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def get_stats(self, today: date | None = None) -> BillingStats:
        """Configured students, current-month invoicing and paid/unpaid counts."""
        current = BillingPeriod.of(today or date.today())

        configured_students = (
            await self.db.execute(
                select(func.count(StudentBillingProfile.student_id)).where(
                    StudentBillingProfile.configuration_date.is_not(None)
                )
            )
        ).scalar() or 0
        active_students = (
            await self.db.execute(
                select(func.count(StudentBillingProfile.student_id)).where(
                    StudentBillingProfile.status == StudentStatus.ACTIVE.value
                )
            )
        ).scalar() or 0

        invoices = list(
            (
                await self.db.execute(
                    select(MonthlyInvoice).where(
                        MonthlyInvoice.status == MonthlyInvoiceStatus.ISSUED.value
                    )
                )
            ).scalars().all()
        )

        allocated = await self._allocated_amounts(invoices)

        current_invoices = [inv for inv in invoices if inv.period == current]
        paid = [
            inv for inv in invoices
            if allocated.get(inv.ledger_entry_id, ZERO) >= inv.amount
        ]

        return BillingStats(
            configured_students=configured_students,
            active_students=active_students,
            current_period=current.label,
            current_month_invoices=len(current_invoices),
            current_month_amount=sum_money(inv.amount for inv in current_invoices),
            paid_invoices=len(paid),
            unpaid_invoices=len(invoices) - len(paid),
            outstanding_amount=sum_money(
                max(inv.amount - allocated.get(inv.ledger_entry_id, ZERO), ZERO)
                for inv in invoices
            ),
        )

    async def list_overdue(self, today: date | None = None) -> list[OverdueInvoice]:
        """Issued invoices due before `today` whose ledger debit is not fully paid."""
        today = today or date.today()
        result = await self.db.execute(
            select(MonthlyInvoice, StudentBillingProfile)
            .join(
                StudentBillingProfile,
                StudentBillingProfile.student_id == MonthlyInvoice.student_id,
            )
            .where(
                MonthlyInvoice.status == MonthlyInvoiceStatus.ISSUED.value,
                MonthlyInvoice.due_date < today,
            )
            .order_by(MonthlyInvoice.due_date, MonthlyInvoice.student_id)
        )
        rows = result.all()
        allocated = await self._allocated_amounts([invoice for invoice, _ in rows])

        overdue = []
        for invoice, profile in rows:
            paid = allocated.get(invoice.ledger_entry_id, ZERO)
            remaining = round_money(invoice.amount - paid)
            if remaining <= 0:
                continue
            overdue.append(
                OverdueInvoice(
                    invoice_id=invoice.id,
                    invoice_number=invoice.invoice_number,
                    student_id=invoice.student_id,
                    student_name=profile.student_name,
                    room_number=profile.room_number,
                    period_label=invoice.period.label,
                    due_date=invoice.due_date,
                    amount=invoice.amount,
                    paid_amount=paid,
                    remaining_amount=remaining,
                    days_overdue=(today - invoice.due_date).days,
                )
            )
        return overdue

    async def list_runs(self, page: int = 1, limit: int = 20) -> tuple[list[BillingRun], int]:
        """Monthly batch history, newest first."""
        logs, total = await self.audit.list_by_action(
            AuditAction.GENERATE_MONTHLY, page=page, limit=limit
        )
        runs = [
            BillingRun(
                id=log.id,
                period=log.entity_id,
                period_label=log.entity_identifier,
                generated=log.new_values.get("generated", 0),
                skipped=log.new_values.get("skipped", 0),
                failed=log.new_values.get("failed", 0),
                total_amount=to_money(log.new_values.get("total_amount")),
                generated_by=log.performed_by,
                run_at=log.created_at,
            )
            for log in logs
        ]
        return runs, total

    async def _allocated_amounts(self, invoices: list[MonthlyInvoice]) -> dict[int, Decimal]:
        """Paid part of each invoice's ledger debit, by ledger entry id."""
        entry_ids = [inv.ledger_entry_id for inv in invoices if inv.ledger_entry_id]
        if not entry_ids:
            return {}
        rows = await self.db.execute(
            select(
                LedgerAllocation.debit_entry_id,
                func.coalesce(func.sum(LedgerAllocation.amount), 0),
            )
            .where(LedgerAllocation.debit_entry_id.in_(entry_ids))
            .group_by(LedgerAllocation.debit_entry_id)
        )
        return {entry_id: to_money(total) for entry_id, total in rows.all()}


class MonthlyInvoiceGenerator:
    """
    Monthly invoice batch.

    Each student is billed in its own session and transaction under a row lock,
    at most `max_workers` at a time. A failure is recorded in the manifest and
    rolled back for that student only. Re-running a period skips students that
    already have an invoice for it.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_workers: int | None = None,
        due_day: int | None = None,
    ):
        self.session_factory = session_factory
        self.max_workers = max_workers or settings.billing_max_workers
        self.due_day = due_day or settings.invoice_due_day

    async def generate_monthly_invoices(
        self,
        month: int,
        year: int,
        due_date: date | None = None,
        student_ids: list[str] | None = None,
        generated_by: str | None = None,
    ) -> GenerationResult:
        period = make_period(month, year)
        due = due_date or period.due_date(self.due_day)
        candidates = await self._list_candidates(student_ids)

        logger.info(
            "Generating %s invoices for %d students (workers=%d)",
            period.label, len(candidates), self.max_workers,
        )

        semaphore = asyncio.Semaphore(self.max_workers)

        async def run(student_id: str, student_name: str) -> StudentGenerationResult:
            async with semaphore:
                return await self._bill_student(
                    student_id, student_name, period, due, generated_by
                )

        outcomes = await asyncio.gather(
            *(run(student_id, name) for student_id, name in candidates)
        )

        result = GenerationResult(
            month=period.month,
            year=period.year,
            period_label=period.label,
            due_date=due,
        )
        for outcome in outcomes:
            if outcome.status == StudentOutcome.GENERATED:
                result.generated += 1
                result.invoices.append(outcome.invoice)
            elif outcome.status == StudentOutcome.SKIPPED:
                result.skipped += 1
                result.skipped_students.append(
                    SkippedStudent(
                        student_id=outcome.student_id,
                        student_name=outcome.student_name,
                        reason=outcome.reason or "",
                    )
                )
            else:
                result.failed += 1
                result.errors.append(
                    BillingError(
                        student_id=outcome.student_id,
                        student_name=outcome.student_name,
                        error=outcome.reason or "Unknown error",
                    )
                )
        result.total_amount = sum_money(inv.amount for inv in result.invoices)

        logger.info(
            "%s billing done: generated=%d skipped=%d failed=%d total=%s",
            period.label, result.generated, result.skipped, result.failed,
            result.total_amount,
        )
        await self._audit_batch(result, generated_by)
        return result

    async def generate_for_student(
        self,
        student_id: str,
        month: int,
        year: int,
        due_date: date | None = None,
        generated_by: str | None = None,
    ) -> StudentGenerationResult:
        """Bill one student. Skips and failures come back as the result status."""
        period = make_period(month, year)
        due = due_date or period.due_date(self.due_day)

        async with self.session_factory() as session:
            profile = await LedgerService(session).get_student(student_id)
            student_name = profile.student_name

        return await self._bill_student(student_id, student_name, period, due, generated_by)

    async def preview_billing(self, month: int, year: int) -> BillingPreview:
        """What a run for the period would bill. Writes nothing."""
        period = make_period(month, year)
        items: list[BillingPreviewItem] = []

        async with self.session_factory() as session:
            billing = BillingService(session)
            profiles = await self._query_candidates(session, None)
            for profile in profiles:
                reason = skip_reason(profile, period)
                if reason is None and profile.base_monthly_fee is None:
                    reason = "Monthly fee is not configured"
                if reason is None:
                    existing = await billing.find_invoice(profile.student_id, period)
                    if existing:
                        reason = f"Already billed ({existing.invoice_number})"
                items.append(
                    BillingPreviewItem(
                        student_id=profile.student_id,
                        student_name=profile.student_name,
                        monthly_fee=profile.monthly_fee,
                        will_bill=reason is None,
                        reason=reason,
                    )
                )

        to_bill = [item for item in items if item.will_bill]
        return BillingPreview(
            month=period.month,
            year=period.year,
            period_label=period.label,
            due_date=period.due_date(self.due_day),
            students_to_bill=len(to_bill),
            students_to_skip=len(items) - len(to_bill),
            total_amount=sum_money(item.monthly_fee for item in to_bill),
            items=items,
        )

    # --- Internals ---

    @staticmethod
    async def _query_candidates(
        session: AsyncSession, student_ids: list[str] | None
    ) -> list[StudentBillingProfile]:
        """Active, billing-configured, not checked-out students."""
        query = select(StudentBillingProfile).where(
            StudentBillingProfile.status == StudentStatus.ACTIVE.value,
            StudentBillingProfile.configuration_date.is_not(None),
            StudentBillingProfile.is_checked_out.is_(False),
        )
        if student_ids is not None:
            query = query.where(StudentBillingProfile.student_id.in_(student_ids))
        result = await session.execute(query.order_by(StudentBillingProfile.student_id))
        return list(result.scalars().all())

    async def _list_candidates(self, student_ids: list[str] | None) -> list[tuple[str, str]]:
        async with self.session_factory() as session:
            profiles = await self._query_candidates(session, student_ids)
            return [(p.student_id, p.student_name) for p in profiles]

    async def _bill_student(
        self,
        student_id: str,
        student_name: str,
        period: BillingPeriod,
        due_date: date,
        generated_by: str | None,
    ) -> StudentGenerationResult:
        async with self.session_factory() as session:
            try:
                return await self._bill_in_session(
                    session, student_id, student_name, period, due_date, generated_by
                )
            except IntegrityError as exc:
                await session.rollback()
                existing = await BillingService(session).find_invoice(student_id, period)
                if existing:
                    # Another run billed the period between our check and insert
                    logger.info("%s already billed for %s", student_id, period.label)
                    return StudentGenerationResult(
                        student_id=student_id,
                        student_name=student_name,
                        status=StudentOutcome.SKIPPED,
                        reason=f"Already billed ({existing.invoice_number})",
                    )
                logger.exception("Billing %s for %s failed", student_id, period.label)
                return StudentGenerationResult(
                    student_id=student_id,
                    student_name=student_name,
                    status=StudentOutcome.FAILED,
                    reason=f"Could not save invoice: {exc.orig or exc}",
                )
            except Exception as exc:
                await session.rollback()
                logger.exception("Billing %s for %s failed", student_id, period.label)
                return StudentGenerationResult(
                    student_id=student_id,
                    student_name=student_name,
                    status=StudentOutcome.FAILED,
                    reason=exc.message if isinstance(exc, AppException) else str(exc),
                )

    async def _bill_in_session(
        self,
        session: AsyncSession,
        student_id: str,
        student_name: str,
        period: BillingPeriod,
        due_date: date,
        generated_by: str | None,
    ) -> StudentGenerationResult:
        billing = BillingService(session)
        profile = await billing.ledger.lock_student(student_id)

        def skipped(reason: str) -> StudentGenerationResult:
            return StudentGenerationResult(
                student_id=student_id,
                student_name=student_name,
                status=StudentOutcome.SKIPPED,
                reason=reason,
            )

        if not profile.is_active or profile.is_checked_out:
            return skipped("Student is not active")
        reason = skip_reason(profile, period)
        if reason:
            return skipped(reason)

        amount = round_money(profile.monthly_fee)
        if profile.base_monthly_fee is None or amount <= 0:
            raise ValidationError("Monthly fee is not configured", field="base_monthly_fee")

        existing = await billing.find_invoice(student_id, period)
        if existing:
            return skipped(f"Already billed ({existing.invoice_number})")

        invoice, entry = await billing.issue_invoice(
            profile,
            period,
            amount,
            due_date,
            description=f"Monthly fee - {period.label}",
            generated_by=generated_by,
        )
        await session.commit()

        return StudentGenerationResult(
            student_id=student_id,
            student_name=student_name,
            status=StudentOutcome.GENERATED,
            invoice=GeneratedInvoice(
                student_id=student_id,
                student_name=student_name,
                invoice_number=invoice.invoice_number,
                ledger_entry_number=entry.entry_number,
                amount=invoice.amount,
                due_date=invoice.due_date,
            ),
        )

    async def _audit_batch(self, result: GenerationResult, generated_by: str | None) -> None:
        async with self.session_factory() as session:
            await AuditService(session).log(
                action=AuditAction.GENERATE_MONTHLY,
                entity_type="BillingPeriod",
                entity_id=f"{result.year}-{result.month:02d}",
                entity_identifier=result.period_label,
                performed_by=generated_by,
                new_values={
                    "generated": result.generated,
                    "skipped": result.skipped,
                    "failed": result.failed,
                    "total_amount": str(result.total_amount),
                },
            )
            await session.commit()
