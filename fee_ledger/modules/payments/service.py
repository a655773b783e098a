"""Service for Payments module."""

import logging
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from fee_ledger.core.audit.service import AuditAction, AuditService
from fee_ledger.core.config import settings
from fee_ledger.core.documents.number_generator import DocumentNumberGenerator
from fee_ledger.core.exceptions import (
    DuplicateError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from fee_ledger.shared.utils.money import ZERO, round_money
from fee_ledger.modules.accounting.service import AccountingService
from fee_ledger.modules.invoices.models import Invoice, InvoiceItem, InvoiceStatus
from fee_ledger.modules.invoices.service import locked_invoice_query
from fee_ledger.modules.payments.models import Payment, PaymentStatus
from fee_ledger.modules.payments.schemas import (
    PaymentCreate,
    PaymentFilters,
    PaymentUpdate,
    ReceiptData,
    ReceiptInvoice,
    ReceiptStudent,
)

logger = logging.getLogger(__name__)


class PaymentService:
    """Records payments against invoices and keeps invoice balances in step."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)
        self.accounting = AccountingService(db)

    # --- Helper Methods ---

    async def _get_locked_invoice(self, invoice_id: int, school_id: int) -> Invoice:
        result = await self.db.execute(locked_invoice_query(invoice_id, school_id))
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    async def _get_invoice_items(self, invoice_id: int) -> list[InvoiceItem]:
        result = await self.db.execute(
            select(InvoiceItem).where(InvoiceItem.invoice_id == invoice_id).order_by(InvoiceItem.id)
        )
        return list(result.scalars().all())

    async def _check_transaction_id(self, transaction_id: str) -> None:
        result = await self.db.execute(
            select(Payment.id).where(Payment.transaction_id == transaction_id)
        )
        if result.scalar_one_or_none() is not None:
            raise DuplicateError("Payment", "transaction_id", transaction_id)

    async def _check_receipt_number(self, school_id: int, receipt_number: str) -> None:
        result = await self.db.execute(
            select(Payment.id).where(
                Payment.school_id == school_id,
                Payment.receipt_number == receipt_number,
            )
        )
        if result.scalar_one_or_none() is not None:
            raise DuplicateError("Payment", "receipt_number", receipt_number)

    def _apply_payment(self, invoice: Invoice, amount) -> None:
        """Increase paid, decrease balance and move the invoice status on."""
        invoice.paid_amount = round_money(invoice.paid_amount + amount)
        invoice.balance_amount = round_money(invoice.balance_amount - amount)
        if invoice.balance_amount <= settings.paid_tolerance:
            invoice.balance_amount = ZERO
            invoice.status = InvoiceStatus.PAID.value
        else:
            invoice.status = InvoiceStatus.PARTIALLY_PAID.value

    # --- Recording ---

    async def record_payment(
        self, school_id: int, data: PaymentCreate, user_id: int | None = None
    ) -> Payment:
        """
        Record a payment against an issued invoice.

        The invoice row is locked for the whole transaction, so concurrent
        payments against the same invoice are validated one after another.
        The journal entry is posted after commit through the ledger outbox; a
        ledger failure never undoes the payment.
        """
        invoice = await self._get_locked_invoice(data.invoice_id, school_id)

        if invoice.student_id != data.student_id:
            raise ValidationError("Invoice does not belong to this student", field="student_id")
        if invoice.status == InvoiceStatus.DRAFT.value:
            raise StateConflictError("Invoice must be finalized before accepting payments")
        if invoice.status == InvoiceStatus.CANCELLED.value:
            raise StateConflictError("Cannot record a payment for a cancelled invoice")
        if invoice.status == InvoiceStatus.PAID.value:
            raise StateConflictError("Invoice is already fully paid")

        amount = round_money(data.amount)
        if amount <= 0:
            raise ValidationError("Payment amount must be greater than zero", field="amount")
        if amount > invoice.balance_amount:
            raise StateConflictError(
                "Payment amount exceeds remaining balance",
                details={"amount": str(amount), "balance": str(invoice.balance_amount)},
            )

        if data.transaction_id:
            await self._check_transaction_id(data.transaction_id)

        receipt_number = data.receipt_number
        if receipt_number:
            await self._check_receipt_number(school_id, receipt_number)
        else:
            number_gen = DocumentNumberGenerator(self.db)
            receipt_number = await number_gen.generate_daily(
                school_id, settings.receipt_number_prefix
            )

        items = await self._get_invoice_items(invoice.id)

        try:
            payment = Payment(
                school_id=school_id,
                invoice_id=invoice.id,
                student_id=invoice.student_id,
                amount=amount,
                payment_date=data.payment_date or date.today(),
                payment_method=data.payment_method.value,
                transaction_id=data.transaction_id,
                receipt_number=receipt_number,
                status=PaymentStatus.COMPLETED.value,
                notes=data.notes,
                received_by_id=user_id,
            )
            self.db.add(payment)
            await self.db.flush()

            old_values = {
                "status": invoice.status,
                "paid_amount": str(invoice.paid_amount),
                "balance_amount": str(invoice.balance_amount),
            }
            self._apply_payment(invoice, amount)

            posting = await self.accounting.enqueue_payment_posting(payment)

            await self.audit.log(
                action=AuditAction.PAYMENT_RECORD,
                entity_type="Payment",
                entity_id=payment.id,
                school_id=school_id,
                user_id=user_id,
                entity_identifier=receipt_number,
                old_values=old_values,
                new_values={
                    "invoice_number": invoice.invoice_number,
                    "amount": str(amount),
                    "status": invoice.status,
                    "paid_amount": str(invoice.paid_amount),
                    "balance_amount": str(invoice.balance_amount),
                },
                comment="Payment for: " + ", ".join(item.description for item in items),
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Recorded payment %s of %s against invoice %s (balance %s)",
            receipt_number,
            amount,
            invoice.invoice_number,
            invoice.balance_amount,
        )

        posting_id = posting.id
        payment_id = payment.id
        try:
            await self.accounting.process_posting(posting_id)
        except Exception as exc:
            logger.error(
                "Payment %s is committed but its journal entry could not be posted; "
                "ledger posting %s stays queued for retry: %s",
                receipt_number,
                posting_id,
                exc,
            )

        return await self.get_payment(payment_id, school_id)

    # --- Maintenance ---

    async def update_payment(
        self, payment_id: int, school_id: int, data: PaymentUpdate, user_id: int | None = None
    ) -> Payment:
        """Edit descriptive fields of a payment. Amount changes are rejected."""
        payment = await self.get_payment(payment_id, school_id)

        if data.amount is not None and round_money(data.amount) != payment.amount:
            raise StateConflictError(
                "Payment amount cannot be changed once recorded; "
                "delete and recreate the payment instead"
            )

        updates = data.model_dump(exclude_unset=True, exclude={"amount"})
        new_transaction_id = updates.get("transaction_id")
        if new_transaction_id and new_transaction_id != payment.transaction_id:
            await self._check_transaction_id(new_transaction_id)

        old_values = {}
        new_values = {}
        for field, value in updates.items():
            if value is None and field not in ("notes", "transaction_id"):
                continue
            if field == "payment_method":
                value = value.value
            old = getattr(payment, field)
            if old != value:
                old_values[field] = str(old) if old is not None else None
                new_values[field] = str(value) if value is not None else None
                setattr(payment, field, value)

        if new_values:
            await self.audit.log(
                action=AuditAction.PAYMENT_UPDATE,
                entity_type="Payment",
                entity_id=payment.id,
                school_id=school_id,
                user_id=user_id,
                entity_identifier=payment.receipt_number,
                old_values=old_values,
                new_values=new_values,
            )
        await self.db.commit()
        return await self.get_payment(payment.id, school_id)

    async def delete_payment(
        self, payment_id: int, school_id: int, user_id: int | None = None
    ) -> None:
        """
        Delete a payment record.

        Invoice paid/balance amounts are left as they are; the operator runs
        the invoice balance recalculation afterwards.
        """
        payment = await self.get_payment(payment_id, school_id)
        invoice_id = payment.invoice_id
        receipt_number = payment.receipt_number

        await self.audit.log(
            action=AuditAction.PAYMENT_DELETE,
            entity_type="Payment",
            entity_id=payment.id,
            school_id=school_id,
            user_id=user_id,
            entity_identifier=receipt_number,
            old_values={
                "invoice_id": invoice_id,
                "amount": str(payment.amount),
                "status": payment.status,
            },
        )
        await self.db.delete(payment)
        await self.db.commit()

        logger.warning(
            "Payment %s deleted; balances of invoice id=%s were NOT updated. "
            "Run balance recalculation for that invoice.",
            receipt_number,
            invoice_id,
        )

    # --- Queries ---

    async def get_payment(self, payment_id: int, school_id: int) -> Payment:
        """Get payment by ID."""
        result = await self.db.execute(
            select(Payment)
            .where(Payment.id == payment_id, Payment.school_id == school_id)
            .options(
                selectinload(Payment.invoice),
                selectinload(Payment.student),
                selectinload(Payment.ledger_posting),
            )
        )
        payment = result.scalar_one_or_none()
        if not payment:
            raise NotFoundError("Payment", payment_id)
        return payment

    async def list_payments(
        self, school_id: int, filters: PaymentFilters
    ) -> tuple[list[Payment], int]:
        """List payments with filters and pagination."""
        query = (
            select(Payment)
            .where(Payment.school_id == school_id)
            .options(
                selectinload(Payment.invoice),
                selectinload(Payment.student),
                selectinload(Payment.ledger_posting),
            )
        )

        if filters.student_id:
            query = query.where(Payment.student_id == filters.student_id)
        if filters.invoice_id:
            query = query.where(Payment.invoice_id == filters.invoice_id)
        if filters.status:
            query = query.where(Payment.status == filters.status.value)
        if filters.payment_method:
            query = query.where(Payment.payment_method == filters.payment_method.value)
        if filters.date_from:
            query = query.where(Payment.payment_date >= filters.date_from)
        if filters.date_to:
            query = query.where(Payment.payment_date <= filters.date_to)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(Payment.payment_date.desc(), Payment.id.desc())
        query = query.offset((filters.page - 1) * filters.limit).limit(filters.limit)

        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def get_receipt_data(self, payment_id: int, school_id: int) -> ReceiptData:
        """Collect what a receipt shows; rendering happens downstream."""
        payment = await self.get_payment(payment_id, school_id)
        invoice = payment.invoice
        return ReceiptData(
            school_id=payment.school_id,
            receipt_number=payment.receipt_number,
            payment_date=payment.payment_date,
            amount=payment.amount,
            payment_method=payment.payment_method,
            transaction_id=payment.transaction_id,
            notes=payment.notes,
            invoice=ReceiptInvoice(
                id=invoice.id,
                invoice_number=invoice.invoice_number,
                issue_date=invoice.issue_date,
                due_date=invoice.due_date,
                total_amount=invoice.total_amount,
                discount_amount=invoice.discount_amount,
                paid_amount=invoice.paid_amount,
                balance_amount=invoice.balance_amount,
                status=invoice.status,
            ),
            student=ReceiptStudent(id=payment.student.id, full_name=payment.student.full_name),
        )
