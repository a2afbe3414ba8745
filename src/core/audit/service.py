from enum import StrEnum
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit.models import AuditLog


class AuditAction(StrEnum):
    """Audited ledger and billing actions."""

    REGISTER_STUDENT = "student.register"
    CONFIGURE_BILLING = "student.configure_billing"
    UPDATE_FEES = "student.update_fees"
    RECORD_PAYMENT = "payment.record"
    CREATE_ADJUSTMENT = "ledger.adjustment"
    APPLY_DISCOUNT = "ledger.discount"
    ADD_CHARGE = "ledger.charge"
    REVERSE_ENTRY = "ledger.reverse"
    GENERATE_INVOICE = "billing.generate_invoice"
    GENERATE_MONTHLY = "billing.generate_monthly"
    CHECKOUT = "checkout.process"


class AuditService:
    """Writes audit rows inside the caller's transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: str | AuditAction,
        entity_type: str,
        entity_id: Any,
        performed_by: str | None = None,
        entity_identifier: str | None = None,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        comment: str | None = None,
    ) -> AuditLog:
        """Create an audit log entry. Flushed, committed by the caller."""
        audit_log = AuditLog(
            action=str(action),
            entity_type=entity_type,
            entity_id=str(entity_id),
            entity_identifier=entity_identifier,
            old_values=old_values,
            new_values=new_values,
            comment=comment,
            performed_by=performed_by,
        )

        self.db.add(audit_log)
        await self.db.flush()

        return audit_log

    async def list_for_entity(
        self, entity_type: str, entity_id: Any, limit: int = 50
    ) -> list[AuditLog]:
        """Most recent audit rows for one entity."""
        result = await self.db.execute(
            select(AuditLog)
            .where(
                AuditLog.entity_type == entity_type,
                AuditLog.entity_id == str(entity_id),
            )
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_by_action(
        self, action: str | AuditAction, page: int = 1, limit: int = 50
    ) -> tuple[list[AuditLog], int]:
        """Audit rows of one action, newest first."""
        total = await self.count_actions(action)
        result = await self.db.execute(
            select(AuditLog)
            .where(AuditLog.action == str(action))
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def count_actions(self, action: str | AuditAction) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(AuditLog).where(AuditLog.action == str(action))
        )
        return result.scalar_one()
