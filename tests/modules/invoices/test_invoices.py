"""Tests for Invoices module."""

from datetime import date
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fee_ledger.core.audit.service import AuditAction, AuditService
from fee_ledger.core.exceptions import (
    ConfigurationError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from fee_ledger.modules.accounting.models import (
    AccountSubtype,
    JournalEntry,
    JournalEntryType,
)
from fee_ledger.modules.accounting.service import AccountingService
from fee_ledger.modules.fee_structures.models import FeeStructure, StructureStatus
from fee_ledger.modules.invoices.models import Invoice, InvoiceSourceType, InvoiceStatus, InvoiceType
from fee_ledger.modules.invoices.schemas import (
    AddItemRequest,
    GenerateInvoiceRequest,
    InvoiceCreate,
    InvoiceFilters,
    InvoiceItemCreate,
    InvoiceUpdate,
)
from fee_ledger.modules.invoices.service import InvoiceService
from fee_ledger.modules.payments.schemas import PaymentCreate
from fee_ledger.modules.payments.service import PaymentService
from fee_ledger.modules.students.models import RoutePlan, RoutePlanStatus

SCHOOL_ID = 1
ISSUE_DATE = date(2026, 10, 19)


async def _count_entries(db_session: AsyncSession, entry_type: JournalEntryType | None = None) -> int:
    query = select(func.count()).select_from(JournalEntry)
    if entry_type is not None:
        query = query.where(JournalEntry.entry_type == entry_type.value)
    return (await db_session.execute(query)).scalar()


class TestInvoiceService:
    """Tests for InvoiceService CRUD and lifecycle."""

    async def _create_invoice(self, db_session: AsyncSession, school_data: dict, items=None):
        service = InvoiceService(db_session)
        if items is None:
            items = [
                InvoiceItemCreate(description="Tuition Fee", amount=Decimal("3000.00")),
                InvoiceItemCreate(
                    description="Library Fee",
                    amount=Decimal("500.00"),
                    discount_amount=Decimal("50.00"),
                ),
            ]
        return await service.create_invoice(
            SCHOOL_ID,
            InvoiceCreate(
                student_id=school_data["student"].id,
                academic_year_id=school_data["academic_year"].id,
                issue_date=ISSUE_DATE,
                items=items,
            ),
            user_id=9,
        )

    async def test_create_invoice_totals(self, db_session: AsyncSession, school_data: dict):
        invoice = await self._create_invoice(db_session, school_data)

        assert invoice.invoice_number == "INV-2026-0001"
        assert invoice.status == InvoiceStatus.DRAFT.value
        assert invoice.invoice_type == InvoiceType.ADHOC.value
        assert invoice.total_amount == Decimal("3500.00")
        assert invoice.discount_amount == Decimal("50.00")
        assert invoice.paid_amount == Decimal("0.00")
        assert invoice.balance_amount == Decimal("3450.00")
        assert invoice.due_date == date(2026, 11, 18)
        assert len(invoice.items) == 2
        assert invoice.items[1].net_amount == Decimal("450.00")
        assert invoice.student.full_name == "Asha Rao"

        audit = AuditService(db_session)
        logs = await audit.list_for_entity(SCHOOL_ID, "Invoice", invoice.id)
        assert [log.action for log in logs] == [AuditAction.INVOICE_CREATE.value]
        assert logs[0].user_id == 9

    async def test_invoice_numbers_are_sequential(self, db_session: AsyncSession, school_data: dict):
        first = await self._create_invoice(db_session, school_data)
        second = await self._create_invoice(db_session, school_data)
        assert first.invoice_number == "INV-2026-0001"
        assert second.invoice_number == "INV-2026-0002"

    async def test_create_invoice_without_items(self, db_session: AsyncSession, school_data: dict):
        with pytest.raises(ValidationError) as exc_info:
            await self._create_invoice(db_session, school_data, items=[])
        assert exc_info.value.message == "Invoice must have at least one item"

    async def test_item_discount_cannot_exceed_amount(self, db_session: AsyncSession, school_data: dict):
        with pytest.raises(ValidationError):
            await self._create_invoice(
                db_session,
                school_data,
                items=[
                    InvoiceItemCreate(
                        description="Uniform", amount=Decimal("100.00"), discount_amount=Decimal("150.00")
                    )
                ],
            )

    async def test_due_date_before_issue_date(self, db_session: AsyncSession, school_data: dict):
        service = InvoiceService(db_session)
        with pytest.raises(ValidationError):
            await service.create_invoice(
                SCHOOL_ID,
                InvoiceCreate(
                    student_id=school_data["student"].id,
                    academic_year_id=school_data["academic_year"].id,
                    issue_date=ISSUE_DATE,
                    due_date=date(2026, 10, 1),
                    items=[InvoiceItemCreate(description="Exam Fee", amount=Decimal("400.00"))],
                ),
            )

    async def test_invoice_is_scoped_to_school(self, db_session: AsyncSession, school_data: dict):
        invoice = await self._create_invoice(db_session, school_data)
        service = InvoiceService(db_session)

        with pytest.raises(NotFoundError):
            await service.get_invoice(invoice.id, 2)

    async def test_create_invoice_snapshots_item_sources(
        self, db_session: AsyncSession, school_data: dict
    ):
        structure = FeeStructure(
            school_id=SCHOOL_ID, name="Tuition Fee", category="tuition", amount=Decimal("3000.00")
        )
        plan = RoutePlan(
            school_id=SCHOOL_ID, name="Route A", route_name="North Loop", amount=Decimal("800.00")
        )
        db_session.add_all([structure, plan])
        await db_session.commit()

        invoice = await self._create_invoice(
            db_session,
            school_data,
            items=[
                InvoiceItemCreate(
                    description="Tuition Fee", amount=Decimal("3000.00"), source_id=structure.id
                ),
                InvoiceItemCreate(
                    description="Bus",
                    amount=Decimal("800.00"),
                    source_type=InvoiceSourceType.TRANSPORT,
                    source_id=plan.id,
                ),
                InvoiceItemCreate(description="Exam Fee", amount=Decimal("200.00")),
            ],
        )

        fee, transport, exam = invoice.items
        assert fee.source_metadata["fee_structure_id"] == structure.id
        assert fee.source_metadata["category"] == "tuition"
        assert transport.source_metadata["route_name"] == "North Loop"
        assert transport.source_metadata["amount"] == "800.00"
        assert set(exam.source_metadata) == {"captured_at"}
        assert all("captured_at" in item.source_metadata for item in invoice.items)

    @pytest.mark.parametrize(
        "source_type",
        [InvoiceSourceType.FEE, InvoiceSourceType.TRANSPORT],
    )
    async def test_create_invoice_rejects_unresolvable_source(
        self, db_session: AsyncSession, school_data: dict, source_type: InvoiceSourceType
    ):
        other_school_plan = RoutePlan(school_id=2, name="Route Z", amount=Decimal("900.00"))
        other_school_fee = FeeStructure(school_id=2, name="Lab Fee", amount=Decimal("700.00"))
        db_session.add_all([other_school_plan, other_school_fee])
        await db_session.commit()
        foreign_id = (
            other_school_plan.id if source_type == InvoiceSourceType.TRANSPORT else other_school_fee.id
        )

        for source_id in (99999, foreign_id):
            with pytest.raises(NotFoundError):
                await self._create_invoice(
                    db_session,
                    school_data,
                    items=[
                        InvoiceItemCreate(
                            description="Charge",
                            amount=Decimal("100.00"),
                            source_type=source_type,
                            source_id=source_id,
                        )
                    ],
                )

        count = (await db_session.execute(select(func.count()).select_from(Invoice))).scalar()
        assert count == 0
        # No invoice number was consumed
        invoice = await self._create_invoice(db_session, school_data)
        assert invoice.invoice_number == "INV-2026-0001"

    async def test_finalize_posts_receivable(
        self, db_session: AsyncSession, school_data: dict, chart_of_accounts: dict
    ):
        invoice = await self._create_invoice(db_session, school_data)
        service = InvoiceService(db_session)

        invoice = await service.finalize_invoice(invoice.id, SCHOOL_ID)

        assert invoice.status == InvoiceStatus.ISSUED.value
        assert invoice.journal_entry_id is not None

        entry = await AccountingService(db_session).get_entry(invoice.journal_entry_id, SCHOOL_ID)
        assert entry.entry_number == "JE-2026-0001"
        assert entry.entry_type == JournalEntryType.INVOICE.value
        assert entry.reference == invoice.invoice_number
        assert entry.reference_id == invoice.id
        assert entry.total_amount == Decimal("3450.00")
        debits = {line.account_id: line.debit_amount for line in entry.lines if line.debit_amount > 0}
        credits = {line.account_id: line.credit_amount for line in entry.lines if line.credit_amount > 0}
        assert debits == {chart_of_accounts["receivable"].id: Decimal("3450.00")}
        assert credits == {chart_of_accounts["income"].id: Decimal("3450.00")}

    async def test_finalize_is_idempotent(
        self, db_session: AsyncSession, school_data: dict, chart_of_accounts: dict
    ):
        invoice = await self._create_invoice(db_session, school_data)
        service = InvoiceService(db_session)

        first = await service.finalize_invoice(invoice.id, SCHOOL_ID)
        first_entry_id = first.journal_entry_id
        second = await service.finalize_invoice(invoice.id, SCHOOL_ID)

        assert second.journal_entry_id == first_entry_id
        assert second.status == InvoiceStatus.ISSUED.value
        assert await _count_entries(db_session) == 1

        audit = AuditService(db_session)
        assert await audit.count_actions(SCHOOL_ID, AuditAction.INVOICE_FINALIZE) == 1

    async def test_finalize_reuses_existing_entry(
        self, db_session: AsyncSession, school_data: dict, chart_of_accounts: dict
    ):
        """An entry left behind by an interrupted finalize is linked, not duplicated."""
        invoice = await self._create_invoice(db_session, school_data)
        service = InvoiceService(db_session)
        orphan = await AccountingService(db_session).post_invoice_entry(invoice)
        orphan_id = orphan.id
        await db_session.commit()

        invoice = await service.finalize_invoice(invoice.id, SCHOOL_ID)

        assert invoice.journal_entry_id == orphan_id
        assert await _count_entries(db_session) == 1

    async def test_finalize_rereads_invoice_under_lock(
        self, db_session: AsyncSession, school_data: dict, chart_of_accounts: dict
    ):
        """A copy loaded before another request finalized the invoice is not trusted."""
        invoice = await self._create_invoice(db_session, school_data)
        invoice_id = invoice.id
        entry = await AccountingService(db_session).post_invoice_entry(invoice)
        entry_id = entry.id
        # Finalized behind this session's back; the loaded invoice still says draft
        await db_session.execute(
            update(Invoice)
            .where(Invoice.id == invoice_id)
            .values(status=InvoiceStatus.ISSUED.value, journal_entry_id=entry_id)
            .execution_options(synchronize_session=False)
        )
        await db_session.commit()
        assert invoice.status == InvoiceStatus.DRAFT.value
        service = InvoiceService(db_session)

        invoice = await service.finalize_invoice(invoice_id, SCHOOL_ID)

        assert invoice.status == InvoiceStatus.ISSUED.value
        assert invoice.journal_entry_id == entry_id
        assert await _count_entries(db_session) == 1
        audit = AuditService(db_session)
        assert await audit.count_actions(SCHOOL_ID, AuditAction.INVOICE_FINALIZE) == 0

    async def test_finalize_without_chart_of_accounts_rolls_back(
        self, db_session: AsyncSession, school_data: dict
    ):
        invoice = await self._create_invoice(db_session, school_data)
        invoice_id = invoice.id
        service = InvoiceService(db_session)

        with pytest.raises(ConfigurationError) as exc_info:
            await service.finalize_invoice(invoice_id, SCHOOL_ID)
        assert "Please initialize chart of accounts" in exc_info.value.message

        # The rollback expired every loaded instance
        invoice = await service.get_invoice(invoice_id, SCHOOL_ID)
        assert invoice.status == InvoiceStatus.DRAFT.value
        assert invoice.journal_entry_id is None
        assert await _count_entries(db_session) == 0

    async def test_finalize_zero_total_rejected(
        self, db_session: AsyncSession, school_data: dict, chart_of_accounts: dict
    ):
        invoice = await self._create_invoice(
            db_session,
            school_data,
            items=[InvoiceItemCreate(description="Waived Fee", amount=Decimal("0.00"))],
        )
        service = InvoiceService(db_session)

        with pytest.raises(ValidationError) as exc_info:
            await service.finalize_invoice(invoice.id, SCHOOL_ID)
        assert exc_info.value.message == "Cannot finalize an invoice with zero total"

    async def test_update_only_drafts(
        self, db_session: AsyncSession, school_data: dict, chart_of_accounts: dict
    ):
        invoice = await self._create_invoice(db_session, school_data)
        service = InvoiceService(db_session)

        updated = await service.update_invoice(
            invoice.id, SCHOOL_ID, InvoiceUpdate(due_date=date(2026, 12, 31), notes="Term 2")
        )
        assert updated.due_date == date(2026, 12, 31)
        assert updated.notes == "Term 2"

        await service.finalize_invoice(invoice.id, SCHOOL_ID)
        with pytest.raises(StateConflictError):
            await service.update_invoice(invoice.id, SCHOOL_ID, InvoiceUpdate(notes="Too late"))

    async def test_delete_only_drafts(
        self, db_session: AsyncSession, school_data: dict, chart_of_accounts: dict
    ):
        service = InvoiceService(db_session)
        draft = await self._create_invoice(db_session, school_data)
        issued = await self._create_invoice(db_session, school_data)
        await service.finalize_invoice(issued.id, SCHOOL_ID)

        await service.delete_invoice(draft.id, SCHOOL_ID)
        with pytest.raises(NotFoundError):
            await service.get_invoice(draft.id, SCHOOL_ID)

        with pytest.raises(StateConflictError):
            await service.delete_invoice(issued.id, SCHOOL_ID)

    async def test_cancel_invoice(
        self, db_session: AsyncSession, school_data: dict, chart_of_accounts: dict
    ):
        invoice = await self._create_invoice(db_session, school_data)
        service = InvoiceService(db_session)
        await service.finalize_invoice(invoice.id, SCHOOL_ID)

        cancelled = await service.cancel_invoice(invoice.id, SCHOOL_ID, reason="Duplicate billing")
        assert cancelled.status == InvoiceStatus.CANCELLED.value

        with pytest.raises(StateConflictError) as exc_info:
            await service.cancel_invoice(invoice.id, SCHOOL_ID)
        assert exc_info.value.message == "Invoice is already cancelled"

        with pytest.raises(StateConflictError):
            await service.finalize_invoice(invoice.id, SCHOOL_ID)

        logs = await AuditService(db_session).list_for_entity(SCHOOL_ID, "Invoice", invoice.id)
        assert logs[-1].comment == "Duplicate billing"

    async def test_cannot_cancel_invoice_with_payments(
        self, db_session: AsyncSession, school_data: dict, chart_of_accounts: dict
    ):
        invoice = await self._create_invoice(db_session, school_data)
        service = InvoiceService(db_session)
        await service.finalize_invoice(invoice.id, SCHOOL_ID)
        await PaymentService(db_session).record_payment(
            SCHOOL_ID,
            PaymentCreate(
                invoice_id=invoice.id,
                student_id=school_data["student"].id,
                amount=Decimal("1000.00"),
            ),
        )

        with pytest.raises(StateConflictError) as exc_info:
            await service.cancel_invoice(invoice.id, SCHOOL_ID)
        assert exc_info.value.message == "Cannot cancel an invoice with payments"

    async def test_list_invoices_filters(
        self, db_session: AsyncSession, school_data: dict, chart_of_accounts: dict
    ):
        service = InvoiceService(db_session)
        draft = await self._create_invoice(db_session, school_data)
        issued = await self._create_invoice(db_session, school_data)
        await service.finalize_invoice(issued.id, SCHOOL_ID)

        invoices, total = await service.list_invoices(
            SCHOOL_ID, InvoiceFilters(status=InvoiceStatus.DRAFT)
        )
        assert total == 1
        assert [inv.id for inv in invoices] == [draft.id]

        invoices, total = await service.list_invoices(2, InvoiceFilters())
        assert total == 0


class TestInvoiceGeneration:
    """Tests for building invoices from fee structures."""

    async def _setup_structures(self, db_session: AsyncSession, school_data: dict) -> dict:
        tuition = FeeStructure(
            school_id=SCHOOL_ID,
            name="Tuition Fee",
            category="tuition",
            amount=Decimal("3000.00"),
            class_id=school_data["school_class"].id,
        )
        library = FeeStructure(school_id=SCHOOL_ID, name="Library Fee", amount=Decimal("500.00"))
        retired = FeeStructure(
            school_id=SCHOOL_ID,
            name="Old Fee",
            amount=Decimal("999.00"),
            status=StructureStatus.INACTIVE.value,
        )
        db_session.add_all([tuition, library, retired])
        await db_session.commit()
        return {"tuition": tuition, "library": library, "retired": retired}

    def _request(self, school_data: dict, **overrides) -> GenerateInvoiceRequest:
        payload = {
            "student_id": school_data["student"].id,
            "academic_year_id": school_data["academic_year"].id,
            "invoice_type": InvoiceType.MONTHLY,
            "issue_date": date(2026, 10, 1),
        }
        payload.update(overrides)
        return GenerateInvoiceRequest(**payload)

    async def test_generate_monthly_invoice(self, db_session: AsyncSession, school_data: dict):
        structures = await self._setup_structures(db_session, school_data)
        service = InvoiceService(db_session)

        invoice = await service.generate_from_fee_structures(SCHOOL_ID, self._request(school_data))

        assert invoice.status == InvoiceStatus.DRAFT.value
        assert invoice.period_month == 10
        assert invoice.period_year == 2026
        assert invoice.due_date == date(2026, 10, 31)
        assert invoice.total_amount == Decimal("3500.00")
        assert [item.description for item in invoice.items] == ["Tuition Fee", "Library Fee"]
        assert all(item.source_type == InvoiceSourceType.FEE.value for item in invoice.items)

        snapshot = invoice.items[0].source_metadata
        assert snapshot["fee_structure_id"] == structures["tuition"].id
        assert snapshot["amount"] == "3000.00"
        assert "captured_at" in snapshot

    async def test_item_snapshot_survives_structure_change(
        self, db_session: AsyncSession, school_data: dict
    ):
        structures = await self._setup_structures(db_session, school_data)
        service = InvoiceService(db_session)
        invoice = await service.generate_from_fee_structures(SCHOOL_ID, self._request(school_data))

        structures["tuition"].amount = Decimal("4000.00")
        await db_session.commit()

        invoice = await service.get_invoice(invoice.id, SCHOOL_ID)
        assert invoice.items[0].amount == Decimal("3000.00")
        assert invoice.items[0].source_metadata["amount"] == "3000.00"

    async def test_duplicate_period_rejected(self, db_session: AsyncSession, school_data: dict):
        await self._setup_structures(db_session, school_data)
        service = InvoiceService(db_session)
        first = await service.generate_from_fee_structures(SCHOOL_ID, self._request(school_data))

        with pytest.raises(StateConflictError) as exc_info:
            await service.generate_from_fee_structures(
                SCHOOL_ID, self._request(school_data, issue_date=date(2026, 10, 15))
            )
        assert first.invoice_number in exc_info.value.message

        # Another month is fine
        november = await service.generate_from_fee_structures(
            SCHOOL_ID, self._request(school_data, issue_date=date(2026, 11, 1))
        )
        assert november.period_month == 11

    async def test_cancelled_invoice_frees_the_period(
        self, db_session: AsyncSession, school_data: dict
    ):
        await self._setup_structures(db_session, school_data)
        service = InvoiceService(db_session)
        first = await service.generate_from_fee_structures(SCHOOL_ID, self._request(school_data))
        await service.cancel_invoice(first.id, SCHOOL_ID)

        replacement = await service.generate_from_fee_structures(
            SCHOOL_ID, self._request(school_data)
        )
        assert replacement.id != first.id

    async def test_quarterly_and_yearly_due_dates(self, db_session: AsyncSession, school_data: dict):
        await self._setup_structures(db_session, school_data)
        service = InvoiceService(db_session)

        quarterly = await service.generate_from_fee_structures(
            SCHOOL_ID, self._request(school_data, invoice_type=InvoiceType.QUARTERLY)
        )
        yearly = await service.generate_from_fee_structures(
            SCHOOL_ID, self._request(school_data, invoice_type=InvoiceType.YEARLY)
        )

        assert quarterly.period_quarter == 4
        assert quarterly.due_date == date(2026, 12, 31)
        assert yearly.period_month is None
        assert yearly.due_date == date(2026, 12, 31)

    async def test_adhoc_generation_has_no_period_guard(
        self, db_session: AsyncSession, school_data: dict
    ):
        await self._setup_structures(db_session, school_data)
        service = InvoiceService(db_session)

        first = await service.generate_from_fee_structures(
            SCHOOL_ID, self._request(school_data, invoice_type=InvoiceType.ADHOC)
        )
        second = await service.generate_from_fee_structures(
            SCHOOL_ID, self._request(school_data, invoice_type=InvoiceType.ADHOC)
        )
        assert first.id != second.id
        assert second.due_date == date(2026, 10, 31)

    async def test_student_without_class(self, db_session: AsyncSession, school_data: dict):
        await self._setup_structures(db_session, school_data)
        school_data["record"].class_id = None
        await db_session.commit()
        service = InvoiceService(db_session)

        with pytest.raises(ValidationError):
            await service.generate_from_fee_structures(SCHOOL_ID, self._request(school_data))


class TestInvoiceItems:
    """Tests for attaching charges from other domains."""

    async def _setup_invoice(self, db_session: AsyncSession, school_data: dict):
        service = InvoiceService(db_session)
        return await service.create_invoice(
            SCHOOL_ID,
            InvoiceCreate(
                student_id=school_data["student"].id,
                academic_year_id=school_data["academic_year"].id,
                issue_date=ISSUE_DATE,
                items=[InvoiceItemCreate(description="Tuition Fee", amount=Decimal("3000.00"))],
            ),
        )

    async def _route_plan(self, db_session: AsyncSession, **overrides) -> RoutePlan:
        fields = {
            "school_id": SCHOOL_ID,
            "name": "Route A",
            "route_name": "North Loop",
            "amount": Decimal("800.00"),
        }
        fields.update(overrides)
        plan = RoutePlan(**fields)
        db_session.add(plan)
        await db_session.commit()
        return plan

    async def test_add_transport_item(self, db_session: AsyncSession, school_data: dict):
        invoice = await self._setup_invoice(db_session, school_data)
        plan = await self._route_plan(db_session)
        service = InvoiceService(db_session)

        invoice = await service.add_item(
            invoice.id,
            SCHOOL_ID,
            AddItemRequest(source_type=InvoiceSourceType.TRANSPORT, source_id=plan.id),
        )

        item = invoice.items[-1]
        assert item.description == "Transport - Route A"
        assert item.amount == Decimal("800.00")
        assert item.source_id == plan.id
        assert item.source_metadata["route_name"] == "North Loop"
        assert invoice.total_amount == Decimal("3800.00")
        assert invoice.balance_amount == Decimal("3800.00")

    async def test_inactive_route_plan_rejected(self, db_session: AsyncSession, school_data: dict):
        invoice = await self._setup_invoice(db_session, school_data)
        plan = await self._route_plan(db_session, status=RoutePlanStatus.INACTIVE.value)
        service = InvoiceService(db_session)

        with pytest.raises(ValidationError):
            await service.add_item(
                invoice.id,
                SCHOOL_ID,
                AddItemRequest(source_type=InvoiceSourceType.TRANSPORT, source_id=plan.id),
            )

    async def test_add_misc_and_fine_items(self, db_session: AsyncSession, school_data: dict):
        invoice = await self._setup_invoice(db_session, school_data)
        service = InvoiceService(db_session)

        invoice = await service.add_item(
            invoice.id,
            SCHOOL_ID,
            AddItemRequest(
                source_type=InvoiceSourceType.FINE,
                description="Late library return",
                amount=Decimal("50.00"),
                metadata={"days_late": 5},
            ),
        )
        invoice = await service.add_item(
            invoice.id,
            SCHOOL_ID,
            AddItemRequest(
                source_type=InvoiceSourceType.MISC,
                description="Field trip",
                amount=Decimal("600.00"),
                discount_amount=Decimal("100.00"),
            ),
        )

        assert invoice.total_amount == Decimal("3650.00")
        assert invoice.discount_amount == Decimal("100.00")
        assert invoice.balance_amount == Decimal("3550.00")
        assert invoice.items[1].source_metadata["days_late"] == 5

    async def test_misc_item_needs_description_and_amount(
        self, db_session: AsyncSession, school_data: dict
    ):
        invoice = await self._setup_invoice(db_session, school_data)
        service = InvoiceService(db_session)

        with pytest.raises(ValidationError):
            await service.add_item(
                invoice.id, SCHOOL_ID, AddItemRequest(source_type=InvoiceSourceType.HOSTEL)
            )

    async def test_item_added_to_issued_invoice_posts_adjustment(
        self, db_session: AsyncSession, school_data: dict, chart_of_accounts: dict
    ):
        invoice = await self._setup_invoice(db_session, school_data)
        service = InvoiceService(db_session)
        await service.finalize_invoice(invoice.id, SCHOOL_ID)

        invoice = await service.add_item(
            invoice.id,
            SCHOOL_ID,
            AddItemRequest(
                source_type=InvoiceSourceType.HOSTEL, description="Hostel - October", amount=Decimal("2000.00")
            ),
        )

        assert invoice.status == InvoiceStatus.ISSUED.value
        assert invoice.balance_amount == Decimal("5000.00")
        assert await _count_entries(db_session, JournalEntryType.INVOICE) == 1
        assert await _count_entries(db_session, JournalEntryType.ADJUSTMENT) == 1

        adjustment = (
            await db_session.execute(
                select(JournalEntry).where(
                    JournalEntry.entry_type == JournalEntryType.ADJUSTMENT.value
                )
            )
        ).scalar_one()
        assert adjustment.total_amount == Decimal("2000.00")
        assert adjustment.reference_id == invoice.id

    async def test_add_item_sees_payment_committed_meanwhile(
        self, db_session: AsyncSession, school_data: dict, chart_of_accounts: dict
    ):
        """Totals are rebuilt from the paid amount read under the row lock."""
        invoice = await self._setup_invoice(db_session, school_data)
        service = InvoiceService(db_session)
        invoice = await service.finalize_invoice(invoice.id, SCHOOL_ID)
        invoice_id = invoice.id
        # A payment committed by another request; this session still holds the issued copy
        await db_session.execute(
            update(Invoice)
            .where(Invoice.id == invoice_id)
            .values(
                paid_amount=Decimal("1000.00"),
                balance_amount=Decimal("2000.00"),
                status=InvoiceStatus.PARTIALLY_PAID.value,
            )
            .execution_options(synchronize_session=False)
        )
        await db_session.commit()
        assert invoice.paid_amount == Decimal("0.00")

        with pytest.raises(StateConflictError):
            await service.add_item(
                invoice_id,
                SCHOOL_ID,
                AddItemRequest(
                    source_type=InvoiceSourceType.HOSTEL,
                    description="Hostel - October",
                    amount=Decimal("2000.00"),
                ),
            )

        invoice = await service.get_invoice(invoice_id, SCHOOL_ID)
        assert len(invoice.items) == 1
        assert invoice.paid_amount == Decimal("1000.00")
        assert invoice.balance_amount == (
            invoice.total_amount - invoice.discount_amount - invoice.paid_amount
        )
        assert await _count_entries(db_session, JournalEntryType.ADJUSTMENT) == 0

    async def test_cannot_add_items_to_cancelled_invoice(
        self, db_session: AsyncSession, school_data: dict
    ):
        invoice = await self._setup_invoice(db_session, school_data)
        service = InvoiceService(db_session)
        await service.cancel_invoice(invoice.id, SCHOOL_ID)

        with pytest.raises(StateConflictError):
            await service.add_item(
                invoice.id,
                SCHOOL_ID,
                AddItemRequest(
                    source_type=InvoiceSourceType.MISC, description="Books", amount=Decimal("10.00")
                ),
            )


class TestInvoiceAPI:
    """API-level tests for invoice endpoints."""

    async def test_create_finalize_and_get(
        self, client: AsyncClient, school_data: dict, chart_of_accounts: dict
    ):
        response = await client.post(
            "/api/v1/invoices",
            headers={"X-User-ID": "3"},
            json={
                "student_id": school_data["student"].id,
                "academic_year_id": school_data["academic_year"].id,
                "issue_date": "2026-10-19",
                "items": [
                    {"description": "Tuition Fee", "amount": "3000.00"},
                    {"description": "Library Fee", "amount": "500.00", "discount_amount": "50.00"},
                ],
            },
        )
        assert response.status_code == 201
        data = response.json()["data"]
        assert data["status"] == "draft"
        assert data["total_amount"] == 3500.0
        assert data["balance_amount"] == 3450.0
        invoice_id = data["id"]

        response = await client.post(f"/api/v1/invoices/{invoice_id}/finalize")
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "issued"
        assert data["journal_entry_id"] is not None

        response = await client.get(f"/api/v1/accounting/journal-entries/{data['journal_entry_id']}")
        assert response.status_code == 200
        assert len(response.json()["data"]["lines"]) == 2

        response = await client.get("/api/v1/invoices", params={"status": "issued"})
        assert response.status_code == 200
        assert response.json()["data"]["total"] == 1

    async def test_finalize_without_accounts_returns_error(
        self, client: AsyncClient, school_data: dict
    ):
        response = await client.post(
            "/api/v1/invoices",
            json={
                "student_id": school_data["student"].id,
                "academic_year_id": school_data["academic_year"].id,
                "items": [{"description": "Tuition Fee", "amount": "3000.00"}],
            },
        )
        invoice_id = response.json()["data"]["id"]

        response = await client.post(f"/api/v1/invoices/{invoice_id}/finalize")
        assert response.status_code == 422
        assert "chart of accounts" in response.json()["message"]

    async def test_unknown_invoice(self, client: AsyncClient):
        response = await client.get("/api/v1/invoices/999")
        assert response.status_code == 404
        assert response.json()["success"] is False
