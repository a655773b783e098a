"""Accounting bridge: turns invoice and payment events into journal entries."""

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from fee_ledger.core.config import settings
from fee_ledger.core.documents.number_generator import DocumentNumberGenerator
from fee_ledger.core.exceptions import (
    AccountingError,
    AppException,
    ConfigurationError,
    NotFoundError,
)
from fee_ledger.shared.utils.money import ZERO, round_money
from fee_ledger.modules.accounting.models import (
    Account,
    AccountSubtype,
    AccountType,
    JournalEntry,
    JournalEntryLine,
    JournalEntryType,
    LedgerPosting,
    LedgerPostingStatus,
)
from fee_ledger.modules.accounting.schemas import JournalLineInput, PostingRunResult
from fee_ledger.modules.invoices.models import Invoice
from fee_ledger.modules.payments.models import Payment

logger = logging.getLogger(__name__)


class AccountingService:
    """
    Posts balanced journal entries against a school's chart of accounts.

    Methods that post entries only flush; the caller owns the transaction so
    an entry is committed together with the state change it records.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # --- Chart of accounts ---

    async def get_account_by_role(
        self, school_id: int, account_type: AccountType, subtype: AccountSubtype, label: str
    ) -> Account:
        result = await self.db.execute(
            select(Account)
            .where(
                Account.school_id == school_id,
                Account.account_type == account_type.value,
                Account.subtype == subtype.value,
                Account.is_active == True,  # noqa: E712
            )
            .order_by(Account.code)
            .limit(1)
        )
        account = result.scalar_one_or_none()
        if not account:
            raise ConfigurationError(
                f"{label} account not found. Please initialize chart of accounts."
            )
        return account

    # --- Journal entries ---

    async def post_journal_entry(
        self,
        school_id: int,
        entry_type: JournalEntryType,
        lines: list[JournalLineInput],
        *,
        entry_date: date | None = None,
        reference: str | None = None,
        reference_id: int | None = None,
        description: str | None = None,
    ) -> JournalEntry:
        """Validate and record a journal entry. Debits must equal credits."""
        if len(lines) < 2:
            raise AccountingError("Journal entry needs at least two lines")

        total_debit = ZERO
        total_credit = ZERO
        for line in lines:
            debit = round_money(line.debit_amount)
            credit = round_money(line.credit_amount)
            if debit < 0 or credit < 0:
                raise AccountingError("Journal line amounts cannot be negative")
            if (debit > 0) == (credit > 0):
                raise AccountingError(
                    "Each journal line must have exactly one of debit or credit"
                )
            total_debit += debit
            total_credit += credit

        if total_debit != total_credit:
            raise AccountingError(
                f"Journal entry is not balanced: debit {total_debit}, credit {total_credit}",
                details={"debit": str(total_debit), "credit": str(total_credit)},
            )

        account_ids = {line.account_id for line in lines}
        result = await self.db.execute(
            select(Account.id).where(Account.school_id == school_id, Account.id.in_(account_ids))
        )
        found = set(result.scalars().all())
        missing = account_ids - found
        if missing:
            raise AccountingError(f"Unknown accounts: {sorted(missing)}")

        entry_date = entry_date or date.today()
        number_gen = DocumentNumberGenerator(self.db)
        entry_number = await number_gen.generate_yearly(
            school_id, settings.journal_entry_prefix, entry_date.year
        )

        entry = JournalEntry(
            school_id=school_id,
            entry_number=entry_number,
            entry_date=entry_date,
            entry_type=entry_type.value,
            description=description,
            reference=reference,
            reference_id=reference_id,
            total_amount=total_debit,
        )
        entry.lines = [
            JournalEntryLine(
                account_id=line.account_id,
                debit_amount=round_money(line.debit_amount),
                credit_amount=round_money(line.credit_amount),
                description=line.description,
            )
            for line in lines
        ]
        self.db.add(entry)
        await self.db.flush()

        logger.info(
            "Posted journal entry %s (%s) for %s, amount %s",
            entry_number,
            entry_type.value,
            reference,
            total_debit,
        )
        return entry

    async def find_entry_for_reference(
        self, school_id: int, entry_type: JournalEntryType, reference_id: int
    ) -> JournalEntry | None:
        result = await self.db.execute(
            select(JournalEntry)
            .where(
                JournalEntry.school_id == school_id,
                JournalEntry.entry_type == entry_type.value,
                JournalEntry.reference_id == reference_id,
            )
            .order_by(JournalEntry.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_entry(self, entry_id: int, school_id: int) -> JournalEntry:
        result = await self.db.execute(
            select(JournalEntry)
            .where(JournalEntry.id == entry_id, JournalEntry.school_id == school_id)
            .options(selectinload(JournalEntry.lines))
        )
        entry = result.scalar_one_or_none()
        if not entry:
            raise NotFoundError("Journal entry", entry_id)
        return entry

    async def post_invoice_entry(
        self,
        invoice: Invoice,
        amount: Decimal | None = None,
        entry_type: JournalEntryType = JournalEntryType.INVOICE,
        description: str | None = None,
    ) -> JournalEntry:
        """Debit Fees Receivable / Credit Fee Income for the invoice's balance."""
        amount = round_money(invoice.balance_amount if amount is None else amount)
        receivable = await self.get_account_by_role(
            invoice.school_id, AccountType.ASSET, AccountSubtype.RECEIVABLE, "Fees Receivable"
        )
        income = await self.get_account_by_role(
            invoice.school_id, AccountType.INCOME, AccountSubtype.OPERATING_INCOME, "Fee Income"
        )
        if description is None:
            item_names = ", ".join(item.description for item in invoice.items)
            description = f"Invoice {invoice.invoice_number} - {item_names}"

        return await self.post_journal_entry(
            invoice.school_id,
            entry_type,
            [
                JournalLineInput(
                    account_id=receivable.id,
                    debit_amount=amount,
                    description=f"Fees Receivable - Invoice {invoice.invoice_number}",
                ),
                JournalLineInput(
                    account_id=income.id,
                    credit_amount=amount,
                    description=f"Fee Income - Invoice {invoice.invoice_number}",
                ),
            ],
            entry_date=invoice.issue_date,
            reference=invoice.invoice_number,
            reference_id=invoice.id,
            description=description,
        )

    async def post_payment_entry(self, payment: Payment, invoice_number: str) -> JournalEntry:
        """Debit Cash / Credit Fees Receivable for a payment."""
        cash = await self.get_account_by_role(
            payment.school_id, AccountType.ASSET, AccountSubtype.CASH, "Cash"
        )
        receivable = await self.get_account_by_role(
            payment.school_id, AccountType.ASSET, AccountSubtype.RECEIVABLE, "Fees Receivable"
        )
        return await self.post_journal_entry(
            payment.school_id,
            JournalEntryType.PAYMENT,
            [
                JournalLineInput(
                    account_id=cash.id,
                    debit_amount=payment.amount,
                    description=f"Receipt {payment.receipt_number}",
                ),
                JournalLineInput(
                    account_id=receivable.id,
                    credit_amount=payment.amount,
                    description=f"Fees Receivable - Invoice {invoice_number}",
                ),
            ],
            entry_date=payment.payment_date,
            reference=payment.receipt_number,
            reference_id=payment.id,
            description=f"Payment {payment.receipt_number} against invoice {invoice_number}",
        )

    # --- Payment outbox ---

    async def enqueue_payment_posting(self, payment: Payment) -> LedgerPosting:
        """Record that a payment still needs its journal entry (same transaction)."""
        posting = LedgerPosting(
            school_id=payment.school_id,
            payment_id=payment.id,
            status=LedgerPostingStatus.PENDING.value,
            attempts=0,
        )
        self.db.add(posting)
        await self.db.flush()
        return posting

    async def process_posting(self, posting_id: int) -> LedgerPosting:
        """
        Post the journal entry for one outbox row and commit.

        On failure the partial work is rolled back, the attempt is recorded on
        the posting and the error is re-raised.
        """
        posting = await self._get_posting(posting_id)
        if posting.status == LedgerPostingStatus.POSTED.value:
            return posting

        try:
            payment, invoice_number = await self._get_payment_for_posting(posting.payment_id)
            entry = await self.find_entry_for_reference(
                posting.school_id, JournalEntryType.PAYMENT, payment.id
            )
            if entry is None:
                entry = await self.post_payment_entry(payment, invoice_number)
            else:
                logger.info(
                    "Payment %s already has journal entry %s, linking it",
                    payment.receipt_number,
                    entry.entry_number,
                )
            payment.journal_entry_id = entry.id
            posting.journal_entry_id = entry.id
            posting.status = LedgerPostingStatus.POSTED.value
            posting.attempts += 1
            posting.last_error = None
            await self.db.commit()
        except Exception as exc:
            message = exc.message if isinstance(exc, AppException) else str(exc)
            await self._record_posting_failure(posting_id, message)
            raise

        return posting

    async def process_pending_postings(
        self, school_id: int, limit: int = 100, include_failed: bool = False
    ) -> PostingRunResult:
        """Retry queued postings. Parked FAILED postings are retried only on request."""
        statuses = [LedgerPostingStatus.PENDING.value]
        if include_failed:
            statuses.append(LedgerPostingStatus.FAILED.value)
        result = await self.db.execute(
            select(LedgerPosting.id)
            .where(
                LedgerPosting.school_id == school_id,
                LedgerPosting.status.in_(statuses),
            )
            .order_by(LedgerPosting.id)
            .limit(limit)
        )
        posting_ids = list(result.scalars().all())

        posted = 0
        failed = 0
        for posting_id in posting_ids:
            try:
                await self.process_posting(posting_id)
                posted += 1
            except Exception:
                # Already recorded on the posting and logged
                failed += 1

        return PostingRunResult(processed=len(posting_ids), posted=posted, failed=failed)

    async def _get_posting(self, posting_id: int) -> LedgerPosting:
        result = await self.db.execute(
            select(LedgerPosting).where(LedgerPosting.id == posting_id)
        )
        posting = result.scalar_one_or_none()
        if not posting:
            raise NotFoundError("Ledger posting", posting_id)
        return posting

    async def _get_payment_for_posting(self, payment_id: int) -> tuple[Payment, str]:
        result = await self.db.execute(
            select(Payment, Invoice.invoice_number)
            .join(Invoice, Payment.invoice_id == Invoice.id)
            .where(Payment.id == payment_id)
        )
        row = result.one_or_none()
        if not row:
            raise NotFoundError("Payment", payment_id)
        return row[0], row[1]

    async def _record_posting_failure(self, posting_id: int, error: str) -> None:
        await self.db.rollback()
        posting = await self._get_posting(posting_id)
        posting.attempts += 1
        if posting.attempts >= settings.ledger_posting_max_attempts:
            posting.status = LedgerPostingStatus.FAILED.value
        else:
            posting.status = LedgerPostingStatus.PENDING.value
        posting.last_error = error[:2000]
        await self.db.commit()
        logger.error(
            "Ledger posting %s for payment %s failed (attempt %s): %s",
            posting.id,
            posting.payment_id,
            posting.attempts,
            error,
        )
