"""Tests for the accounting bridge."""

from datetime import date
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from fee_ledger.core.exceptions import AccountingError, ConfigurationError, NotFoundError
from fee_ledger.modules.accounting.models import AccountSubtype, AccountType, JournalEntryType
from fee_ledger.modules.accounting.schemas import JournalLineInput
from fee_ledger.modules.accounting.service import AccountingService

SCHOOL_ID = 1


class TestJournalEntries:
    """Tests for AccountingService.post_journal_entry."""

    async def test_balanced_entry(self, db_session: AsyncSession, chart_of_accounts: dict):
        service = AccountingService(db_session)

        entry = await service.post_journal_entry(
            SCHOOL_ID,
            JournalEntryType.ADJUSTMENT,
            [
                JournalLineInput(account_id=chart_of_accounts["cash"].id, debit_amount=Decimal("150.00")),
                JournalLineInput(account_id=chart_of_accounts["receivable"].id, credit_amount=Decimal("150.00")),
            ],
            entry_date=date(2026, 10, 19),
            reference="MANUAL",
        )

        assert entry.entry_number == "JE-2026-0001"
        assert entry.total_amount == Decimal("150.00")
        assert len(entry.lines) == 2

    async def test_unbalanced_entry_rejected(self, db_session: AsyncSession, chart_of_accounts: dict):
        service = AccountingService(db_session)

        with pytest.raises(AccountingError) as exc_info:
            await service.post_journal_entry(
                SCHOOL_ID,
                JournalEntryType.ADJUSTMENT,
                [
                    JournalLineInput(account_id=chart_of_accounts["cash"].id, debit_amount=Decimal("150.00")),
                    JournalLineInput(account_id=chart_of_accounts["income"].id, credit_amount=Decimal("149.99")),
                ],
            )
        assert "not balanced" in exc_info.value.message

    async def test_single_line_rejected(self, db_session: AsyncSession, chart_of_accounts: dict):
        service = AccountingService(db_session)

        with pytest.raises(AccountingError):
            await service.post_journal_entry(
                SCHOOL_ID,
                JournalEntryType.ADJUSTMENT,
                [JournalLineInput(account_id=chart_of_accounts["cash"].id, debit_amount=Decimal("1.00"))],
            )

    async def test_line_with_both_sides_rejected(self, db_session: AsyncSession, chart_of_accounts: dict):
        service = AccountingService(db_session)

        with pytest.raises(AccountingError):
            await service.post_journal_entry(
                SCHOOL_ID,
                JournalEntryType.ADJUSTMENT,
                [
                    JournalLineInput(
                        account_id=chart_of_accounts["cash"].id,
                        debit_amount=Decimal("10.00"),
                        credit_amount=Decimal("10.00"),
                    ),
                    JournalLineInput(account_id=chart_of_accounts["income"].id),
                ],
            )

    async def test_other_school_accounts_rejected(self, db_session: AsyncSession, chart_of_accounts: dict):
        service = AccountingService(db_session)

        with pytest.raises(AccountingError) as exc_info:
            await service.post_journal_entry(
                2,
                JournalEntryType.ADJUSTMENT,
                [
                    JournalLineInput(account_id=chart_of_accounts["cash"].id, debit_amount=Decimal("5.00")),
                    JournalLineInput(account_id=chart_of_accounts["income"].id, credit_amount=Decimal("5.00")),
                ],
            )
        assert "Unknown accounts" in exc_info.value.message

    async def test_account_lookup_by_role(self, db_session: AsyncSession, chart_of_accounts: dict):
        service = AccountingService(db_session)

        account = await service.get_account_by_role(
            SCHOOL_ID, AccountType.ASSET, AccountSubtype.RECEIVABLE, "Fees Receivable"
        )
        assert account.id == chart_of_accounts["receivable"].id

        with pytest.raises(ConfigurationError) as exc_info:
            await service.get_account_by_role(
                SCHOOL_ID, AccountType.ASSET, AccountSubtype.BANK, "Bank"
            )
        assert exc_info.value.message == "Bank account not found. Please initialize chart of accounts."

    async def test_entry_lookup_is_school_scoped(self, db_session: AsyncSession, chart_of_accounts: dict):
        service = AccountingService(db_session)
        entry = await service.post_journal_entry(
            SCHOOL_ID,
            JournalEntryType.ADJUSTMENT,
            [
                JournalLineInput(account_id=chart_of_accounts["cash"].id, debit_amount=Decimal("5.00")),
                JournalLineInput(account_id=chart_of_accounts["income"].id, credit_amount=Decimal("5.00")),
            ],
            reference_id=77,
        )
        await db_session.commit()

        found = await service.find_entry_for_reference(SCHOOL_ID, JournalEntryType.ADJUSTMENT, 77)
        assert found.id == entry.id
        assert await service.find_entry_for_reference(2, JournalEntryType.ADJUSTMENT, 77) is None
        with pytest.raises(NotFoundError):
            await service.get_entry(entry.id, 2)


class TestAccountingAPI:
    async def test_process_postings_with_empty_queue(self, client: AsyncClient):
        response = await client.post("/api/v1/accounting/postings/process")
        assert response.status_code == 200
        assert response.json()["data"] == {"processed": 0, "posted": 0, "failed": 0}
