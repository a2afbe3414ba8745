"""Service for Students module."""

import logging
from datetime import date

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit import AuditAction, AuditService
from src.core.exceptions import ConflictError, DuplicateError, ValidationError
from src.shared.utils.money import round_money
from src.shared.utils.periods import BillingPeriod
from src.modules.billing.proration import ProrationMode, ProrationResult, prorate
from src.modules.billing.models import MonthlyInvoice
from src.modules.billing.service import BillingService
from src.modules.ledger.service import LedgerService
from src.modules.payments.models import Payment
from src.modules.payments.schemas import PaymentCreate
from src.modules.payments.service import PaymentService
from src.modules.students.models import StudentBillingProfile, StudentStatus
from src.modules.students.schemas import FeeUpdate, StudentConfigure, StudentRegister

logger = logging.getLogger(__name__)


class StudentService:
    """Service for student billing profiles."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)
        self.ledger = LedgerService(db)

    async def register_student(self, data: StudentRegister) -> StudentBillingProfile:
        """Create the billing profile. Billing starts at configuration."""
        existing = await self.db.execute(
            select(StudentBillingProfile.student_id).where(
                StudentBillingProfile.student_id == data.student_id
            )
        )
        if existing.scalar_one_or_none():
            raise DuplicateError("Student", "student_id", data.student_id)

        profile = StudentBillingProfile(
            student_id=data.student_id,
            student_name=data.student_name,
            phone=data.phone,
            room_number=data.room_number,
            bed_number=data.bed_number,
            notes=data.notes,
            status=StudentStatus.ACTIVE.value,
            is_checked_out=False,
        )
        self.db.add(profile)
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.REGISTER_STUDENT,
            entity_type="StudentBillingProfile",
            entity_id=profile.student_id,
            entity_identifier=data.student_name,
            performed_by=data.registered_by,
            new_values={
                "room_number": data.room_number,
                "bed_number": data.bed_number,
            },
        )

        await self.db.commit()
        await self.db.refresh(profile)
        return profile

    async def get_student(self, student_id: str) -> StudentBillingProfile:
        return await self.ledger.get_student(student_id)

    async def list_students(
        self,
        status: StudentStatus | None = None,
        configured: bool | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 100,
    ) -> tuple[list[StudentBillingProfile], int]:
        """List students with optional filters."""
        query = select(StudentBillingProfile).order_by(StudentBillingProfile.student_name)

        if status is not None:
            query = query.where(StudentBillingProfile.status == status.value)
        if configured is True:
            query = query.where(StudentBillingProfile.configuration_date.is_not(None))
        elif configured is False:
            query = query.where(StudentBillingProfile.configuration_date.is_(None))
        if search:
            search_term = f"%{search}%"
            query = query.where(
                or_(
                    StudentBillingProfile.student_id.ilike(search_term),
                    StudentBillingProfile.student_name.ilike(search_term),
                    StudentBillingProfile.room_number.ilike(search_term),
                    StudentBillingProfile.phone.ilike(search_term),
                )
            )

        # Count total
        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        # Apply pagination
        query = query.offset((page - 1) * limit).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def configure_student(
        self, student_id: str, data: StudentConfigure
    ) -> tuple[StudentBillingProfile, MonthlyInvoice, ProrationResult, Payment | None]:
        """
        Activate billing for a student.

        Sets the fees and configuration date, bills the enrollment month from
        the configuration day, and records the advance if one was paid. The
        monthly generator never bills the configuration month again.
        """
        profile = await self.ledger.lock_student(student_id)
        if profile.is_checked_out:
            raise ValidationError("Cannot configure billing for a checked-out student")
        if profile.is_configured:
            raise ConflictError(
                f"Billing for student {student_id} was already configured on "
                f"{profile.configuration_date.isoformat()}",
                details={"student_id": student_id},
            )

        configuration_date = data.configuration_date or date.today()
        profile.base_monthly_fee = round_money(data.base_monthly_fee)
        profile.laundry_fee = round_money(data.laundry_fee)
        profile.food_fee = round_money(data.food_fee)
        profile.configuration_date = configuration_date
        await self.db.flush()

        payments = PaymentService(self.db)
        advance_numbers = None
        if data.initial_advance:
            # Document numbers are locked in DocumentPrefix order: PAY, RCP, INV, LED
            advance_numbers = await payments.allocate_numbers(configuration_date)

        period = BillingPeriod.of(configuration_date)
        proration = prorate(profile.monthly_fee, configuration_date, ProrationMode.ENROLLMENT)
        invoice, _ = await BillingService(self.db).issue_invoice(
            profile,
            period,
            proration.amount,
            due_date=configuration_date,
            description=(
                f"Prorated fee - {period.label} ({proration.days} of "
                f"{proration.days_in_month} days)"
            ),
            is_prorated=True,
            billed_from_day=configuration_date.day,
            generated_by=data.configured_by,
        )

        payment = None
        if data.initial_advance:
            payment, _ = await payments.add_payment(
                PaymentCreate(
                    student_id=student_id,
                    amount=data.initial_advance,
                    payment_method=data.payment_method,
                    payment_date=configuration_date,
                    reference=data.reference,
                    notes="Enrollment advance",
                    recorded_by=data.configured_by,
                ),
                numbers=advance_numbers,
            )

        await self.audit.log(
            action=AuditAction.CONFIGURE_BILLING,
            entity_type="StudentBillingProfile",
            entity_id=student_id,
            entity_identifier=profile.student_name,
            performed_by=data.configured_by,
            new_values={
                "monthly_fee": str(profile.monthly_fee),
                "configuration_date": configuration_date.isoformat(),
                "prorated_amount": str(proration.amount),
                "initial_advance": str(data.initial_advance) if data.initial_advance else None,
            },
        )

        await self.db.commit()
        await self.db.refresh(profile)
        logger.info(
            "Billing configured for %s from %s, enrollment charge %s",
            student_id, configuration_date, proration.amount,
        )
        return profile, invoice, proration, payment

    async def update_fees(self, student_id: str, data: FeeUpdate) -> StudentBillingProfile:
        """Change fee components. Already issued invoices are not touched."""
        profile = await self.ledger.lock_student(student_id)
        if profile.is_checked_out:
            raise ValidationError("Cannot change fees of a checked-out student")

        old_values = {
            "base_monthly_fee": str(profile.base_monthly_fee),
            "laundry_fee": str(profile.laundry_fee),
            "food_fee": str(profile.food_fee),
        }
        update_data = data.model_dump(exclude_unset=True, exclude={"updated_by"})
        for field, value in update_data.items():
            if value is None:
                continue
            setattr(profile, field, round_money(value))

        if profile.is_configured and profile.base_monthly_fee is None:
            raise ValidationError("Base monthly fee is required", field="base_monthly_fee")

        await self.audit.log(
            action=AuditAction.UPDATE_FEES,
            entity_type="StudentBillingProfile",
            entity_id=student_id,
            entity_identifier=profile.student_name,
            performed_by=data.updated_by,
            old_values=old_values,
            new_values={
                "base_monthly_fee": str(profile.base_monthly_fee),
                "laundry_fee": str(profile.laundry_fee),
                "food_fee": str(profile.food_fee),
            },
        )

        await self.db.commit()
        await self.db.refresh(profile)
        return profile
