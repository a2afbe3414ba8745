"""Service for Checkout module: settlement preview and checkout."""

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit import AuditAction, AuditLog, AuditService
from src.core.config import settings
from src.core.exceptions import (
    AppException,
    CheckoutFailedError,
    ConflictError,
    ValidationError,
)
from src.shared.utils.money import ZERO, format_money, round_money, sum_money, to_money
from src.shared.utils.periods import BillingPeriod
from src.modules.billing.models import MonthlyInvoice, MonthlyInvoiceStatus
from src.modules.billing.proration import ProrationMode, prorate, prorate_stay
from src.modules.checkout.bed_release import BedReleaseHandler, LoggingBedReleaseHandler
from src.modules.checkout.schemas import (
    CheckoutFilters,
    CheckoutHistoryItem,
    CheckoutProration,
    CheckoutRequest,
    CheckoutResult,
    CheckoutSettlement,
    CheckoutStats,
    CheckoutStatus,
    SettlementStatus,
)
from src.modules.ledger.balance import classify_balance, compute_balance
from src.modules.ledger.models import EntrySide, EntryType, LedgerEntry
from src.modules.ledger.schemas import LedgerEntryResponse
from src.modules.ledger.service import LedgerService
from src.modules.students.models import StudentBillingProfile, StudentStatus

logger = logging.getLogger(__name__)


def settlement_status(final_amount: Decimal) -> SettlementStatus:
    if final_amount > 0:
        return SettlementStatus.AMOUNT_DUE
    if final_amount < 0:
        return SettlementStatus.REFUND_DUE
    return SettlementStatus.SETTLED


def _stay_days(profile: StudentBillingProfile) -> int | None:
    """Days from the configuration date through the checkout date, both included."""
    if profile.configuration_date is None or profile.checkout_date is None:
        return None
    return (profile.checkout_date - profile.configuration_date).days + 1


class CheckoutService:
    """
    Checkout settlement.

    final_amount = total_dues - total_advance + prorated_charge - prorated_refund

    `process_checkout` books the settlement, deactivates the student and
    releases the bed in one transaction; nothing is kept if any step fails.
    """

    def __init__(self, db: AsyncSession, bed_release: BedReleaseHandler | None = None):
        self.db = db
        self.audit = AuditService(db)
        self.ledger = LedgerService(db)
        self.bed_release = bed_release or LoggingBedReleaseHandler()

    async def compute_checkout_preview(
        self, student_id: str, checkout_date: date | None = None
    ) -> CheckoutSettlement:
        profile = await self.ledger.get_student(student_id)
        if profile.is_checked_out:
            raise ValidationError(f"Student {student_id} is already checked out")
        return await self._settle(profile, checkout_date or date.today())

    async def process_checkout(
        self, student_id: str, request: CheckoutRequest | None = None
    ) -> CheckoutResult:
        request = request or CheckoutRequest()
        try:
            return await self._process(student_id, request)
        except AppException:
            await self.db.rollback()
            raise
        except Exception as exc:
            await self.db.rollback()
            logger.exception("Checkout of %s failed, rolled back", student_id)
            raise CheckoutFailedError(student_id, str(exc)) from exc

    # --- History ---

    async def list_checkouts(
        self, filters: CheckoutFilters
    ) -> tuple[list[CheckoutHistoryItem], int]:
        """Checked-out students, latest checkout first."""
        query = select(StudentBillingProfile).where(
            StudentBillingProfile.is_checked_out.is_(True)
        )
        if filters.date_from:
            query = query.where(StudentBillingProfile.checkout_date >= filters.date_from)
        if filters.date_to:
            query = query.where(StudentBillingProfile.checkout_date <= filters.date_to)
        if filters.search:
            pattern = f"%{filters.search}%"
            query = query.where(
                or_(
                    StudentBillingProfile.student_id.ilike(pattern),
                    StudentBillingProfile.student_name.ilike(pattern),
                    StudentBillingProfile.room_number.ilike(pattern),
                )
            )

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(
            StudentBillingProfile.checkout_date.desc(), StudentBillingProfile.student_id
        )
        query = query.offset((filters.page - 1) * filters.limit).limit(filters.limit)
        profiles = list((await self.db.execute(query)).scalars().all())

        student_ids = [p.student_id for p in profiles]
        audits = await self._checkout_audits(student_ids)
        balances = await self._signed_balances(student_ids)

        items = []
        for profile in profiles:
            log = audits.get(profile.student_id)
            values = (log.new_values or {}) if log else {}
            signed = balances.get(profile.student_id, ZERO)
            items.append(
                CheckoutHistoryItem(
                    student_id=profile.student_id,
                    student_name=profile.student_name,
                    room_number=profile.room_number,
                    bed_number=profile.bed_number,
                    configuration_date=profile.configuration_date,
                    checkout_date=profile.checkout_date,
                    stay_days=_stay_days(profile),
                    settlement_status=values.get("settlement_status"),
                    final_amount=values.get("final_amount"),
                    current_balance=abs(signed),
                    balance_type=classify_balance(signed),
                    processed_by=log.performed_by if log else None,
                    notes=log.comment if log else None,
                )
            )
        return items, total

    async def get_stats(self, today: date | None = None) -> CheckoutStats:
        current = BillingPeriod.of(today or date.today())
        result = await self.db.execute(
            select(StudentBillingProfile).where(StudentBillingProfile.is_checked_out.is_(True))
        )
        profiles = list(result.scalars().all())
        student_ids = [p.student_id for p in profiles]
        audits = await self._checkout_audits(student_ids)
        balances = await self._signed_balances(student_ids)

        stays = [days for days in (_stay_days(p) for p in profiles) if days is not None]
        owing = [signed for signed in balances.values() if signed > 0]

        return CheckoutStats(
            total_checkouts=len(profiles),
            current_period=current.label,
            this_month_checkouts=sum(
                1 for p in profiles if p.checkout_date and current.contains(p.checkout_date)
            ),
            refund_checkouts=sum(
                1 for log in audits.values()
                if (log.new_values or {}).get("settlement_status")
                == SettlementStatus.REFUND_DUE.value
            ),
            checkouts_with_dues=len(owing),
            outstanding_after_checkout=sum_money(owing),
            average_stay_days=round_money(Decimal(sum(stays)) / len(stays)) if stays else ZERO,
        )

    # --- Internals ---

    async def _checkout_audits(self, student_ids: list[str]) -> dict[str, AuditLog]:
        """Latest checkout audit row per student."""
        if not student_ids:
            return {}
        result = await self.db.execute(
            select(AuditLog)
            .where(
                AuditLog.action == AuditAction.CHECKOUT.value,
                AuditLog.entity_type == "StudentBillingProfile",
                AuditLog.entity_id.in_(student_ids),
            )
            .order_by(AuditLog.id)
        )
        return {log.entity_id: log for log in result.scalars().all()}

    async def _signed_balances(self, student_ids: list[str]) -> dict[str, Decimal]:
        if not student_ids:
            return {}
        result = await self.db.execute(
            select(
                LedgerEntry.student_id,
                func.coalesce(func.sum(LedgerEntry.debit), 0),
                func.coalesce(func.sum(LedgerEntry.credit), 0),
            )
            .where(LedgerEntry.student_id.in_(student_ids))
            .group_by(LedgerEntry.student_id)
        )
        return {
            student_id: round_money(to_money(debits) - to_money(credits))
            for student_id, debits, credits in result.all()
        }

    async def _process(self, student_id: str, request: CheckoutRequest) -> CheckoutResult:
        profile = await self.ledger.lock_student(student_id)

        if profile.is_checked_out:
            signed, balance_type = compute_balance(await self.ledger.get_entries(student_id))
            return CheckoutResult(
                student_id=student_id,
                status=CheckoutStatus.ALREADY_CHECKED_OUT,
                checkout_date=profile.checkout_date,
                final_balance=abs(signed),
                balance_type=balance_type,
                message=f"Student {student_id} was already checked out",
            )

        checkout_date = request.checkout_date or date.today()
        settlement = await self._settle(profile, checkout_date)
        await self._ensure_no_later_invoices(student_id, BillingPeriod.of(checkout_date))
        latest = await self.ledger.last_entry_date(student_id)
        if latest and checkout_date < latest:
            raise ValidationError(
                f"Checkout date cannot be before the latest ledger entry ({latest.isoformat()})",
                field="checkout_date",
            )

        allow_with_dues = (
            settings.allow_checkout_with_dues
            if request.allow_with_dues is None
            else request.allow_with_dues
        )
        if settlement.status == SettlementStatus.AMOUNT_DUE and not allow_with_dues:
            raise ValidationError(
                f"Outstanding dues of {format_money(settlement.final_amount, settings.currency)} "
                "must be paid before checkout"
            )

        entries: list[LedgerEntry] = []
        period_label = settlement.proration.period_label if settlement.proration else ""
        if settlement.prorated_charge > 0:
            entries.append(
                await self.ledger.append_entry(
                    student_id=student_id,
                    entry_type=EntryType.INVOICE,
                    side=EntrySide.DEBIT,
                    amount=settlement.prorated_charge,
                    entry_date=checkout_date,
                    description=(
                        f"Prorated charge at checkout - {period_label} "
                        f"({settlement.proration.days_used} days)"
                    ),
                    recorded_by=request.processed_by,
                )
            )
        if settlement.prorated_refund > 0:
            entries.append(
                await self.ledger.append_entry(
                    student_id=student_id,
                    entry_type=EntryType.REFUND,
                    side=EntrySide.CREDIT,
                    amount=settlement.prorated_refund,
                    entry_date=checkout_date,
                    description=f"Refund for unused days - {period_label}",
                    recorded_by=request.processed_by,
                )
            )

        signed, _ = compute_balance(await self.ledger.get_entries(student_id))
        if signed < 0:
            # Remaining advance is paid back to the student
            entries.append(
                await self.ledger.append_entry(
                    student_id=student_id,
                    entry_type=EntryType.ADJUSTMENT,
                    side=EntrySide.DEBIT,
                    amount=-signed,
                    entry_date=checkout_date,
                    description="Advance balance refunded at checkout",
                    notes=request.notes,
                    recorded_by=request.processed_by,
                )
            )

        profile.status = StudentStatus.INACTIVE.value
        profile.is_checked_out = True
        profile.checkout_date = checkout_date
        await self.db.flush()

        if request.release_bed:
            await self.bed_release.release_bed(
                student_id, profile.room_number, profile.bed_number, checkout_date
            )

        final_signed, final_type = compute_balance(await self.ledger.get_entries(student_id))

        await self.audit.log(
            action=AuditAction.CHECKOUT,
            entity_type="StudentBillingProfile",
            entity_id=student_id,
            entity_identifier=profile.student_name,
            performed_by=request.processed_by,
            old_values={"status": StudentStatus.ACTIVE.value},
            new_values={
                "status": StudentStatus.INACTIVE.value,
                "checkout_date": checkout_date.isoformat(),
                "settlement_status": settlement.status.value,
                "final_amount": str(settlement.final_amount),
                "remaining_balance": str(final_signed),
            },
            comment=request.notes,
        )

        await self.db.commit()
        logger.info(
            "Checked out %s on %s: %s, remaining balance %s",
            student_id, checkout_date, settlement.summary, final_signed,
        )

        return CheckoutResult(
            student_id=student_id,
            status=CheckoutStatus.CHECKED_OUT,
            checkout_date=checkout_date,
            settlement=settlement,
            entries=[LedgerEntryResponse.model_validate(e) for e in entries],
            final_balance=abs(final_signed),
            balance_type=final_type,
            bed_released=request.release_bed,
            message=settlement.summary,
        )

    async def _settle(
        self, profile: StudentBillingProfile, checkout_date: date
    ) -> CheckoutSettlement:
        if profile.configuration_date and checkout_date < profile.configuration_date:
            raise ValidationError(
                "Checkout date cannot be before the billing configuration date",
                field="checkout_date",
            )

        open_items = await self.ledger.get_open_items(profile.student_id)
        signed, balance_type = compute_balance(await self.ledger.get_entries(profile.student_id))

        proration = None
        if profile.is_configured and profile.base_monthly_fee is not None:
            proration = await self._prorate_checkout_month(profile, checkout_date)

        charge = proration.prorated_charge if proration else ZERO
        refund = proration.prorated_refund if proration else ZERO
        final_amount = round_money(
            open_items.total_outstanding - open_items.total_advance + charge - refund
        )
        status = settlement_status(final_amount)

        currency = settings.currency
        if status == SettlementStatus.AMOUNT_DUE:
            summary = f"Amount due from student: {format_money(final_amount, currency)}"
        elif status == SettlementStatus.REFUND_DUE:
            summary = f"Refund due to student: {format_money(-final_amount, currency)}"
        else:
            summary = "Account settled, nothing due"

        return CheckoutSettlement(
            student_id=profile.student_id,
            student_name=profile.student_name,
            checkout_date=checkout_date,
            monthly_fee=profile.monthly_fee,
            current_balance=abs(signed),
            balance_type=balance_type,
            outstanding_invoices=open_items.outstanding,
            total_dues=open_items.total_outstanding,
            advance_payments=open_items.advances,
            total_advance=open_items.total_advance,
            proration=proration,
            prorated_charge=charge,
            prorated_refund=refund,
            final_amount=final_amount,
            status=status,
            summary=summary,
        )

    async def _prorate_checkout_month(
        self, profile: StudentBillingProfile, checkout_date: date
    ) -> CheckoutProration:
        """
        Billed month: refund the unused days. Unbilled month: charge the used days.

        Usage runs from the first billed day (the join day in the enrollment
        month) through the checkout day.
        """
        period = BillingPeriod.of(checkout_date)
        invoice = await self._issued_invoice(profile.student_id, period)
        fee = profile.monthly_fee

        if invoice:
            start_day = invoice.billed_from_day
        elif period.contains(profile.configuration_date):
            start_day = profile.configuration_date.day
        else:
            start_day = 1

        message = None
        if start_day == 1:
            result = prorate(fee, checkout_date, ProrationMode.CHECKOUT, already_paid=invoice is not None)
            usage = result.amount
            message = result.message
        else:
            usage = prorate_stay(fee, date(period.year, period.month, start_day), checkout_date)
        days_used = checkout_date.day - start_day + 1

        if invoice:
            refund = max(round_money(invoice.amount - usage), ZERO)
            charge = ZERO
            if refund == 0 and message is None:
                message = "No refund: the billed days were used"
        else:
            refund = ZERO
            charge = usage
            message = f"{period.label} is not billed yet; {days_used} days used are charged"

        return CheckoutProration(
            period_label=period.label,
            month_billed=invoice is not None,
            billed_amount=invoice.amount if invoice else ZERO,
            billed_from_day=start_day,
            days_in_month=period.days,
            days_used=days_used,
            usage_amount=usage,
            prorated_charge=charge,
            prorated_refund=refund,
            message=message,
        )

    async def _issued_invoice(
        self, student_id: str, period: BillingPeriod
    ) -> MonthlyInvoice | None:
        result = await self.db.execute(
            select(MonthlyInvoice).where(
                MonthlyInvoice.student_id == student_id,
                MonthlyInvoice.period_year == period.year,
                MonthlyInvoice.period_month == period.month,
                MonthlyInvoice.status == MonthlyInvoiceStatus.ISSUED.value,
            )
        )
        return result.scalar_one_or_none()

    async def _ensure_no_later_invoices(self, student_id: str, period: BillingPeriod) -> None:
        result = await self.db.execute(
            select(MonthlyInvoice.invoice_number).where(
                MonthlyInvoice.student_id == student_id,
                MonthlyInvoice.status == MonthlyInvoiceStatus.ISSUED.value,
                or_(
                    MonthlyInvoice.period_year > period.year,
                    and_(
                        MonthlyInvoice.period_year == period.year,
                        MonthlyInvoice.period_month > period.month,
                    ),
                ),
            )
        )
        later = list(result.scalars().all())
        if later:
            raise ConflictError(
                "Invoices exist for periods after the checkout month; reverse them first",
                details={"invoice_numbers": later},
            )
