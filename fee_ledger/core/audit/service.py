from enum import StrEnum
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fee_ledger.core.audit.models import AuditLog


class AuditAction(StrEnum):
    """Standard audit actions."""

    INVOICE_CREATE = "invoice.create"
    INVOICE_UPDATE = "invoice.update"
    INVOICE_DELETE = "invoice.delete"
    INVOICE_FINALIZE = "invoice.finalize"
    INVOICE_CANCEL = "invoice.cancel"
    INVOICE_ADD_ITEM = "invoice.add_item"
    INVOICE_RECALCULATE = "invoice.recalculate"
    PAYMENT_RECORD = "payment.record"
    PAYMENT_UPDATE = "payment.update"
    PAYMENT_DELETE = "payment.delete"
    GENERATE_FEES = "fees.generate"


class AuditService:
    """Service for creating audit logs."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: str | AuditAction,
        entity_type: str,
        entity_id: int,
        school_id: int,
        user_id: int | None = None,
        entity_identifier: str | None = None,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        comment: str | None = None,
    ) -> AuditLog:
        """Create an audit log entry in the current transaction."""
        audit_log = AuditLog(
            school_id=school_id,
            user_id=user_id,
            action=str(action),
            entity_type=entity_type,
            entity_id=entity_id,
            entity_identifier=entity_identifier,
            old_values=old_values,
            new_values=new_values,
            comment=comment,
        )

        self.db.add(audit_log)
        await self.db.flush()

        return audit_log

    async def list_for_entity(
        self, school_id: int, entity_type: str, entity_id: int
    ) -> list[AuditLog]:
        result = await self.db.execute(
            select(AuditLog)
            .where(
                AuditLog.school_id == school_id,
                AuditLog.entity_type == entity_type,
                AuditLog.entity_id == entity_id,
            )
            .order_by(AuditLog.created_at, AuditLog.id)
        )
        return list(result.scalars().all())

    async def count_actions(self, school_id: int, action: str | AuditAction) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(AuditLog)
            .where(AuditLog.school_id == school_id, AuditLog.action == str(action))
        )
        return result.scalar_one()
