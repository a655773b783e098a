"""Service for Invoices module."""

import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import Select, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from fee_ledger.core.audit.service import AuditAction, AuditService
from fee_ledger.core.config import settings
from fee_ledger.core.documents.number_generator import DocumentNumberGenerator
from fee_ledger.core.exceptions import (
    AccountingError,
    AppException,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from fee_ledger.shared.utils.dates import end_of_month, end_of_quarter, quarter_of
from fee_ledger.shared.utils.money import ZERO, round_money, sum_money
from fee_ledger.modules.academics.models import AcademicYear
from fee_ledger.modules.accounting.models import JournalEntryType
from fee_ledger.modules.accounting.service import AccountingService
from fee_ledger.modules.fee_structures.models import FeeStructure, StructureStatus
from fee_ledger.modules.invoices.models import (
    Invoice,
    InvoiceItem,
    InvoiceSourceType,
    InvoiceStatus,
    InvoiceType,
)
from fee_ledger.modules.invoices.schemas import (
    AddItemRequest,
    GenerateInvoiceRequest,
    InvoiceCreate,
    InvoiceFilters,
    InvoiceUpdate,
)
from fee_ledger.modules.payments.models import Payment, PaymentStatus
from fee_ledger.modules.students.models import (
    RoutePlan,
    RoutePlanStatus,
    Student,
    StudentAcademicRecord,
)

logger = logging.getLogger(__name__)


def locked_invoice_query(invoice_id: int, school_id: int) -> Select:
    """
    Invoice row lock taken before finalize, item attach or payment.

    Items are not joined here: PostgreSQL rejects FOR UPDATE on the nullable
    side of an outer join. populate_existing refreshes an invoice already in
    the session with the values read under the lock.
    """
    return (
        select(Invoice)
        .where(Invoice.id == invoice_id, Invoice.school_id == school_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


class InvoiceService:
    """Service for managing invoices."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)
        self.accounting = AccountingService(db)

    # --- Helper Methods ---

    async def _get_student(self, student_id: int, school_id: int) -> Student:
        result = await self.db.execute(
            select(Student).where(Student.id == student_id, Student.school_id == school_id)
        )
        student = result.scalar_one_or_none()
        if not student:
            raise NotFoundError("Student", student_id)
        return student

    async def _get_academic_year(self, academic_year_id: int, school_id: int) -> AcademicYear:
        result = await self.db.execute(
            select(AcademicYear).where(
                AcademicYear.id == academic_year_id, AcademicYear.school_id == school_id
            )
        )
        academic_year = result.scalar_one_or_none()
        if not academic_year:
            raise NotFoundError("Academic year", academic_year_id)
        return academic_year

    async def _get_academic_record(
        self, student_id: int, academic_year_id: int, school_id: int
    ) -> StudentAcademicRecord | None:
        result = await self.db.execute(
            select(StudentAcademicRecord)
            .where(
                StudentAcademicRecord.student_id == student_id,
                StudentAcademicRecord.academic_year_id == academic_year_id,
                StudentAcademicRecord.school_id == school_id,
            )
            .order_by(StudentAcademicRecord.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _get_locked_invoice(self, invoice_id: int, school_id: int) -> Invoice:
        """Lock the invoice row, then load its items in a separate SELECT."""
        result = await self.db.execute(
            locked_invoice_query(invoice_id, school_id).options(selectinload(Invoice.items))
        )
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    async def _generate_invoice_number(self, school_id: int, issue_date: date) -> str:
        number_gen = DocumentNumberGenerator(self.db)
        return await number_gen.generate_yearly(
            school_id, settings.invoice_number_prefix, issue_date.year
        )

    def _recalculate_invoice(self, invoice: Invoice) -> None:
        """Recalculate invoice totals from items. balance = total - discount - paid."""
        invoice.total_amount = sum_money(item.amount for item in invoice.items)
        invoice.discount_amount = sum_money(item.discount_amount for item in invoice.items)
        invoice.balance_amount = round_money(
            invoice.total_amount - invoice.discount_amount - invoice.paid_amount
        )

    def _status_for_balance(self, invoice: Invoice) -> str:
        """Payment status of a finalized invoice from its current balance."""
        if invoice.balance_amount <= settings.paid_tolerance:
            invoice.balance_amount = ZERO
            return InvoiceStatus.PAID.value
        if invoice.paid_amount > 0:
            return InvoiceStatus.PARTIALLY_PAID.value
        return InvoiceStatus.ISSUED.value

    def _snapshot_values(self, invoice: Invoice) -> dict:
        return {
            "status": invoice.status,
            "total_amount": str(invoice.total_amount),
            "discount_amount": str(invoice.discount_amount),
            "paid_amount": str(invoice.paid_amount),
            "balance_amount": str(invoice.balance_amount),
        }

    async def _check_existing_invoice(
        self,
        school_id: int,
        student_id: int,
        academic_year_id: int,
        invoice_type: InvoiceType,
        period_year: int,
        period_month: int | None = None,
        period_quarter: int | None = None,
    ) -> None:
        """Reject a second non-cancelled invoice for the same billing period."""
        query = select(Invoice.invoice_number).where(
            Invoice.school_id == school_id,
            Invoice.student_id == student_id,
            Invoice.academic_year_id == academic_year_id,
            Invoice.invoice_type == invoice_type.value,
            Invoice.period_year == period_year,
            Invoice.status != InvoiceStatus.CANCELLED.value,
        )
        if period_month is not None:
            query = query.where(Invoice.period_month == period_month)
        if period_quarter is not None:
            query = query.where(Invoice.period_quarter == period_quarter)

        result = await self.db.execute(query.limit(1))
        existing = result.scalar_one_or_none()
        if existing:
            raise StateConflictError(
                f"Invoice {existing} already exists for this student and period",
                details={"invoice_number": existing},
            )

    @staticmethod
    def _default_due_date(
        invoice_type: InvoiceType,
        issue_date: date,
        period_year: int,
        period_month: int | None,
        period_quarter: int | None,
    ) -> date:
        if invoice_type == InvoiceType.MONTHLY and period_month:
            return end_of_month(date(period_year, period_month, 1))
        if invoice_type == InvoiceType.QUARTERLY and period_quarter:
            return end_of_quarter(period_year, period_quarter)
        if invoice_type == InvoiceType.YEARLY:
            return date(period_year, 12, 31)
        return issue_date + timedelta(days=settings.invoice_due_days)

    async def _commit_or_rollback(self, invoice: Invoice, action: str) -> None:
        """Commit the current unit of work; roll everything back on failure."""
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            logger.exception("Failed to %s invoice %s", action, invoice.invoice_number)
            raise

    # --- CRUD ---

    async def create_invoice(
        self, school_id: int, data: InvoiceCreate, user_id: int | None = None
    ) -> Invoice:
        """Create a DRAFT invoice with its items in a single transaction."""
        if not data.items:
            raise ValidationError("Invoice must have at least one item", field="items")

        issue_date = data.issue_date or date.today()
        due_date = data.due_date or issue_date + timedelta(days=settings.invoice_due_days)
        if due_date < issue_date:
            raise ValidationError("Due date cannot be before issue date", field="due_date")

        for item in data.items:
            if item.discount_amount > item.amount:
                raise ValidationError(
                    f"Discount exceeds amount for item '{item.description}'",
                    field="items",
                )

        student = await self._get_student(data.student_id, school_id)
        await self._get_academic_year(data.academic_year_id, school_id)
        snapshots = [
            await self._item_snapshot(school_id, item.source_type, item.source_id)
            for item in data.items
        ]

        try:
            invoice = Invoice(
                school_id=school_id,
                invoice_number=await self._generate_invoice_number(school_id, issue_date),
                student_id=student.id,
                academic_year_id=data.academic_year_id,
                invoice_type=data.invoice_type.value,
                status=InvoiceStatus.DRAFT.value,
                issue_date=issue_date,
                due_date=due_date,
                paid_amount=ZERO,
                notes=data.notes,
                created_by_id=user_id,
            )
            invoice.items = [
                InvoiceItem(
                    source_type=item.source_type.value,
                    source_id=item.source_id,
                    source_metadata=snapshot,
                    description=item.description,
                    amount=round_money(item.amount),
                    discount_amount=round_money(item.discount_amount),
                    due_date=item.due_date,
                    notes=item.notes,
                )
                for item, snapshot in zip(data.items, snapshots)
            ]
            self._recalculate_invoice(invoice)
            self.db.add(invoice)
            await self.db.flush()

            await self.audit.log(
                action=AuditAction.INVOICE_CREATE,
                entity_type="Invoice",
                entity_id=invoice.id,
                school_id=school_id,
                user_id=user_id,
                entity_identifier=invoice.invoice_number,
                new_values=self._snapshot_values(invoice),
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Created invoice %s for student %s, total %s",
            invoice.invoice_number,
            student.id,
            invoice.total_amount,
        )
        return await self.get_invoice(invoice.id, school_id)

    async def get_invoice(self, invoice_id: int, school_id: int) -> Invoice:
        """Get invoice by ID with items, student and academic year."""
        result = await self.db.execute(
            select(Invoice)
            .where(Invoice.id == invoice_id, Invoice.school_id == school_id)
            .options(
                selectinload(Invoice.items),
                selectinload(Invoice.student),
                selectinload(Invoice.academic_year),
            )
        )
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    async def list_invoices(
        self, school_id: int, filters: InvoiceFilters
    ) -> tuple[list[Invoice], int]:
        """List invoices with filters and pagination."""
        query = (
            select(Invoice)
            .where(Invoice.school_id == school_id)
            .options(selectinload(Invoice.student))
        )

        if filters.student_id:
            query = query.where(Invoice.student_id == filters.student_id)
        if filters.academic_year_id:
            query = query.where(Invoice.academic_year_id == filters.academic_year_id)
        if filters.invoice_type:
            query = query.where(Invoice.invoice_type == filters.invoice_type.value)
        if filters.status:
            query = query.where(Invoice.status == filters.status.value)

        # Count total
        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        # Apply pagination
        query = query.order_by(Invoice.issue_date.desc(), Invoice.id.desc())
        query = query.offset((filters.page - 1) * filters.limit).limit(filters.limit)

        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def update_invoice(
        self, invoice_id: int, school_id: int, data: InvoiceUpdate, user_id: int | None = None
    ) -> Invoice:
        """Update header fields of a DRAFT invoice."""
        invoice = await self.get_invoice(invoice_id, school_id)
        if not invoice.is_editable:
            raise StateConflictError(
                f"Only draft invoices can be updated (invoice is {invoice.status})"
            )

        updates = data.model_dump(exclude_unset=True)
        issue_date = updates.get("issue_date") or invoice.issue_date
        due_date = updates.get("due_date") or invoice.due_date
        if due_date < issue_date:
            raise ValidationError("Due date cannot be before issue date", field="due_date")

        old_values = {}
        new_values = {}
        for field, value in updates.items():
            if value is None and field != "notes":
                continue
            old = getattr(invoice, field)
            if old != value:
                old_values[field] = str(old) if old is not None else None
                new_values[field] = str(value) if value is not None else None
                setattr(invoice, field, value)

        if new_values:
            await self.audit.log(
                action=AuditAction.INVOICE_UPDATE,
                entity_type="Invoice",
                entity_id=invoice.id,
                school_id=school_id,
                user_id=user_id,
                entity_identifier=invoice.invoice_number,
                old_values=old_values,
                new_values=new_values,
            )
        await self._commit_or_rollback(invoice, "update")
        return await self.get_invoice(invoice.id, school_id)

    async def delete_invoice(
        self, invoice_id: int, school_id: int, user_id: int | None = None
    ) -> None:
        """Delete a DRAFT invoice and its items."""
        invoice = await self.get_invoice(invoice_id, school_id)
        if not invoice.is_editable:
            raise StateConflictError(
                f"Only draft invoices can be deleted (invoice is {invoice.status})"
            )

        await self.audit.log(
            action=AuditAction.INVOICE_DELETE,
            entity_type="Invoice",
            entity_id=invoice.id,
            school_id=school_id,
            user_id=user_id,
            entity_identifier=invoice.invoice_number,
            old_values=self._snapshot_values(invoice),
        )
        await self.db.delete(invoice)
        await self._commit_or_rollback(invoice, "delete")
        logger.info("Deleted draft invoice %s", invoice.invoice_number)

    # --- Lifecycle ---

    async def finalize_invoice(
        self, invoice_id: int, school_id: int, user_id: int | None = None
    ) -> Invoice:
        """
        Lock a DRAFT invoice and post its receivable to the ledger.

        Idempotent: an invoice that is already past DRAFT or already linked to a
        journal entry is returned unchanged. The invoice row stays locked until
        commit, so concurrent finalize calls post at most one journal entry.
        """
        invoice = await self._get_locked_invoice(invoice_id, school_id)

        if invoice.status == InvoiceStatus.CANCELLED.value:
            raise StateConflictError("Cannot finalize a cancelled invoice")
        if invoice.status != InvoiceStatus.DRAFT.value or invoice.journal_entry_id is not None:
            logger.info(
                "Invoice %s already finalized (status=%s, journal_entry_id=%s)",
                invoice.invoice_number,
                invoice.status,
                invoice.journal_entry_id,
            )
            # Release the lock
            await self.db.commit()
            return await self.get_invoice(invoice_id, school_id)

        if not invoice.items:
            raise ValidationError("Cannot finalize an invoice without items")
        if invoice.balance_amount <= 0:
            raise ValidationError("Cannot finalize an invoice with zero total")

        try:
            entry = await self.accounting.find_entry_for_reference(
                school_id, JournalEntryType.INVOICE, invoice.id
            )
            if entry is not None:
                logger.info(
                    "Reusing journal entry %s for invoice %s",
                    entry.entry_number,
                    invoice.invoice_number,
                )
            else:
                entry = await self.accounting.post_invoice_entry(invoice)

            invoice.journal_entry_id = entry.id
            invoice.status = InvoiceStatus.ISSUED.value
            if invoice.issue_date is None:
                invoice.issue_date = date.today()

            await self.audit.log(
                action=AuditAction.INVOICE_FINALIZE,
                entity_type="Invoice",
                entity_id=invoice.id,
                school_id=school_id,
                user_id=user_id,
                entity_identifier=invoice.invoice_number,
                old_values={"status": InvoiceStatus.DRAFT.value},
                new_values={
                    "status": InvoiceStatus.ISSUED.value,
                    "journal_entry_id": entry.id,
                },
            )
            await self.db.commit()
        except AppException:
            await self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise AccountingError(
                f"Failed to post journal entry for invoice {invoice_id}"
            ) from exc

        return await self.get_invoice(invoice_id, school_id)

    async def cancel_invoice(
        self,
        invoice_id: int,
        school_id: int,
        user_id: int | None = None,
        reason: str | None = None,
    ) -> Invoice:
        """Cancel an invoice that has not received any payment."""
        invoice = await self.get_invoice(invoice_id, school_id)

        if invoice.status == InvoiceStatus.CANCELLED.value:
            raise StateConflictError("Invoice is already cancelled")
        if invoice.paid_amount > 0:
            raise StateConflictError("Cannot cancel an invoice with payments")
        if not invoice.can_be_cancelled:
            raise StateConflictError(f"Cannot cancel invoice with status {invoice.status}")

        old_status = invoice.status
        invoice.status = InvoiceStatus.CANCELLED.value

        await self.audit.log(
            action=AuditAction.INVOICE_CANCEL,
            entity_type="Invoice",
            entity_id=invoice.id,
            school_id=school_id,
            user_id=user_id,
            entity_identifier=invoice.invoice_number,
            old_values={"status": old_status},
            new_values={"status": InvoiceStatus.CANCELLED.value},
            comment=reason,
        )
        await self._commit_or_rollback(invoice, "cancel")
        return await self.get_invoice(invoice.id, school_id)

    # --- Generation ---

    async def generate_from_fee_structures(
        self, school_id: int, data: GenerateInvoiceRequest, user_id: int | None = None
    ) -> Invoice:
        """Build a DRAFT invoice from the active fee structures of the student's class."""
        student = await self._get_student(data.student_id, school_id)
        await self._get_academic_year(data.academic_year_id, school_id)

        record = await self._get_academic_record(student.id, data.academic_year_id, school_id)
        if not record or record.class_id is None:
            raise ValidationError(
                f"Student {student.full_name} has no class assigned for this academic year"
            )

        issue_date = data.issue_date or date.today()
        period_year = data.year or issue_date.year
        period_month = None
        period_quarter = None
        if data.invoice_type == InvoiceType.MONTHLY:
            period_month = data.month or issue_date.month
        elif data.invoice_type == InvoiceType.QUARTERLY:
            period_quarter = data.quarter or quarter_of(issue_date)

        if data.invoice_type != InvoiceType.ADHOC:
            await self._check_existing_invoice(
                school_id,
                student.id,
                data.academic_year_id,
                data.invoice_type,
                period_year,
                period_month=period_month,
                period_quarter=period_quarter,
            )

        result = await self.db.execute(
            select(FeeStructure)
            .where(
                FeeStructure.school_id == school_id,
                FeeStructure.status == StructureStatus.ACTIVE.value,
                (FeeStructure.class_id == record.class_id) | (FeeStructure.class_id.is_(None)),
            )
            .order_by(FeeStructure.id)
        )
        structures = list(result.scalars().all())
        if not structures:
            raise ValidationError("No active fee structures found for the student's class")

        due_date = data.due_date or self._default_due_date(
            data.invoice_type, issue_date, period_year, period_month, period_quarter
        )
        if due_date < issue_date:
            raise ValidationError("Due date cannot be before issue date", field="due_date")

        captured_at = datetime.now(timezone.utc).isoformat()
        try:
            invoice = Invoice(
                school_id=school_id,
                invoice_number=await self._generate_invoice_number(school_id, issue_date),
                student_id=student.id,
                academic_year_id=data.academic_year_id,
                invoice_type=data.invoice_type.value,
                status=InvoiceStatus.DRAFT.value,
                issue_date=issue_date,
                due_date=due_date,
                period_month=period_month,
                period_quarter=period_quarter,
                period_year=period_year,
                paid_amount=ZERO,
                notes=data.notes,
                created_by_id=user_id,
            )
            invoice.items = [
                InvoiceItem(
                    source_type=InvoiceSourceType.FEE.value,
                    source_id=structure.id,
                    source_metadata={
                        "fee_structure_id": structure.id,
                        "name": structure.name,
                        "category": structure.category,
                        "amount": str(structure.amount),
                        "class_id": structure.class_id,
                        "captured_at": captured_at,
                    },
                    description=structure.name,
                    amount=round_money(structure.amount),
                    discount_amount=ZERO,
                    due_date=due_date,
                )
                for structure in structures
            ]
            self._recalculate_invoice(invoice)
            self.db.add(invoice)
            await self.db.flush()

            await self.audit.log(
                action=AuditAction.INVOICE_CREATE,
                entity_type="Invoice",
                entity_id=invoice.id,
                school_id=school_id,
                user_id=user_id,
                entity_identifier=invoice.invoice_number,
                new_values=self._snapshot_values(invoice),
                comment=f"Generated from {len(structures)} fee structure(s)",
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Generated %s invoice %s for student %s from %s fee structures",
            data.invoice_type.value,
            invoice.invoice_number,
            student.id,
            len(structures),
        )
        return await self.get_invoice(invoice.id, school_id)

    # --- Items ---

    async def _get_route_plan(self, route_plan_id: int, school_id: int) -> RoutePlan:
        result = await self.db.execute(
            select(RoutePlan).where(RoutePlan.id == route_plan_id, RoutePlan.school_id == school_id)
        )
        plan = result.scalar_one_or_none()
        if not plan:
            raise NotFoundError("Route plan", route_plan_id)
        if plan.status != RoutePlanStatus.ACTIVE.value:
            raise ValidationError(f"Route plan '{plan.name}' is not active", field="source_id")
        return plan

    async def _get_fee_structure(self, fee_structure_id: int, school_id: int) -> FeeStructure:
        result = await self.db.execute(
            select(FeeStructure).where(
                FeeStructure.id == fee_structure_id, FeeStructure.school_id == school_id
            )
        )
        structure = result.scalar_one_or_none()
        if not structure:
            raise NotFoundError("Fee structure", fee_structure_id)
        return structure

    async def _resolve_source(
        self, school_id: int, source_type: InvoiceSourceType, source_id: int
    ) -> tuple[dict, Decimal, str] | None:
        """
        Look up a FEE or TRANSPORT source within the school.

        Returns (snapshot, default amount, default description), or None for
        hostel / fine / misc sources, which belong to the caller's domain.
        """
        if source_type == InvoiceSourceType.TRANSPORT:
            plan = await self._get_route_plan(source_id, school_id)
            snapshot = {
                "route_plan_id": plan.id,
                "name": plan.name,
                "route_name": plan.route_name,
                "amount": str(plan.amount),
            }
            return snapshot, plan.amount, f"Transport - {plan.name}"
        if source_type == InvoiceSourceType.FEE:
            structure = await self._get_fee_structure(source_id, school_id)
            snapshot = {
                "fee_structure_id": structure.id,
                "name": structure.name,
                "category": structure.category,
                "amount": str(structure.amount),
            }
            return snapshot, structure.amount, structure.name
        return None

    async def _item_snapshot(
        self, school_id: int, source_type: InvoiceSourceType, source_id: int | None
    ) -> dict:
        """Frozen source_metadata for an item created with the invoice."""
        snapshot = {}
        if source_id is not None:
            resolved = await self._resolve_source(school_id, source_type, source_id)
            if resolved is not None:
                snapshot.update(resolved[0])
        snapshot["captured_at"] = datetime.now(timezone.utc).isoformat()
        return snapshot

    async def _build_item(self, school_id: int, data: AddItemRequest) -> InvoiceItem:
        """Resolve the source of a new item and freeze a snapshot of it."""
        metadata = dict(data.metadata or {})

        if data.source_type in (InvoiceSourceType.TRANSPORT, InvoiceSourceType.FEE):
            if data.source_id is None:
                if data.source_type == InvoiceSourceType.TRANSPORT:
                    raise ValidationError(
                        "Transport items require a route plan id", field="source_id"
                    )
                raise ValidationError("Fee items require a fee structure id", field="source_id")
            snapshot, default_amount, default_description = await self._resolve_source(
                school_id, data.source_type, data.source_id
            )
            amount = data.amount if data.amount is not None else default_amount
            description = data.description or default_description
            metadata.update(snapshot)
        else:
            # hostel / fine / misc: the caller owns those domains
            if not data.description or data.amount is None:
                raise ValidationError(
                    f"Description and amount are required for {data.source_type.value} items"
                )
            amount = data.amount
            description = data.description

        metadata["captured_at"] = datetime.now(timezone.utc).isoformat()
        amount = round_money(amount)
        discount = round_money(data.discount_amount)
        if amount <= 0:
            raise ValidationError("Item amount must be greater than zero", field="amount")
        if discount > amount:
            raise ValidationError("Discount cannot exceed item amount", field="discount_amount")

        return InvoiceItem(
            source_type=data.source_type.value,
            source_id=data.source_id,
            source_metadata=metadata,
            description=description,
            amount=amount,
            discount_amount=discount,
            due_date=data.due_date,
            notes=data.notes,
        )

    async def add_item(
        self, invoice_id: int, school_id: int, data: AddItemRequest, user_id: int | None = None
    ) -> Invoice:
        """
        Attach a charge to a DRAFT or ISSUED invoice and recompute its totals.

        The balance is rebuilt from paid_amount, so the row is locked first to
        keep a concurrent payment from being overwritten.
        """
        invoice = await self._get_locked_invoice(invoice_id, school_id)
        if not invoice.can_add_items:
            raise StateConflictError(f"Cannot add items to a {invoice.status} invoice")

        item = await self._build_item(school_id, data)
        old_values = self._snapshot_values(invoice)

        try:
            invoice.items.append(item)
            self._recalculate_invoice(invoice)
            await self.db.flush()

            if (
                invoice.status == InvoiceStatus.ISSUED.value
                and invoice.journal_entry_id is not None
                and item.net_amount > 0
            ):
                # Keep the receivable in step with the issued invoice
                await self.accounting.post_invoice_entry(
                    invoice,
                    amount=item.net_amount,
                    entry_type=JournalEntryType.ADJUSTMENT,
                    description=f"Invoice {invoice.invoice_number} - added {item.description}",
                )

            await self.audit.log(
                action=AuditAction.INVOICE_ADD_ITEM,
                entity_type="Invoice",
                entity_id=invoice.id,
                school_id=school_id,
                user_id=user_id,
                entity_identifier=invoice.invoice_number,
                old_values=old_values,
                new_values={
                    **self._snapshot_values(invoice),
                    "item_id": item.id,
                    "source_type": item.source_type,
                },
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return await self.get_invoice(invoice_id, school_id)

    async def recalculate_balance(
        self, invoice_id: int, school_id: int, user_id: int | None = None
    ) -> Invoice:
        """
        Rebuild paid/balance/status from completed payments and items.

        Administrative repair path, e.g. after a payment was deleted.
        """
        invoice = await self.get_invoice(invoice_id, school_id)
        old_values = self._snapshot_values(invoice)

        result = await self.db.execute(
            select(func.coalesce(func.sum(Payment.amount), 0)).where(
                Payment.invoice_id == invoice.id,
                Payment.status == PaymentStatus.COMPLETED.value,
            )
        )
        invoice.paid_amount = round_money(Decimal(str(result.scalar())))
        self._recalculate_invoice(invoice)
        if invoice.status not in (InvoiceStatus.DRAFT.value, InvoiceStatus.CANCELLED.value):
            invoice.status = self._status_for_balance(invoice)

        new_values = self._snapshot_values(invoice)
        if new_values != old_values:
            logger.info(
                "Recalculated invoice %s: paid %s -> %s, balance %s -> %s",
                invoice.invoice_number,
                old_values["paid_amount"],
                new_values["paid_amount"],
                old_values["balance_amount"],
                new_values["balance_amount"],
            )
            await self.audit.log(
                action=AuditAction.INVOICE_RECALCULATE,
                entity_type="Invoice",
                entity_id=invoice.id,
                school_id=school_id,
                user_id=user_id,
                entity_identifier=invoice.invoice_number,
                old_values=old_values,
                new_values=new_values,
            )
        await self._commit_or_rollback(invoice, "recalculate")
        return await self.get_invoice(invoice.id, school_id)
