"""Invoice and InvoiceItem models."""

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fee_ledger.core.database.base import Base, BigIntPK


class InvoiceType(StrEnum):
    """Invoice type enumeration."""

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    ADHOC = "adhoc"


class InvoiceStatus(StrEnum):
    """Invoice status enumeration."""

    DRAFT = "draft"
    ISSUED = "issued"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    CANCELLED = "cancelled"


class InvoiceSourceType(StrEnum):
    """Domain an invoice item was charged from."""

    FEE = "fee"
    TRANSPORT = "transport"
    HOSTEL = "hostel"
    FINE = "fine"
    MISC = "misc"


class Invoice(Base):
    """Invoice for a student."""

    __tablename__ = "invoices"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    school_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # Relations
    student_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("students.id"), nullable=False, index=True
    )
    academic_year_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("academic_years.id"), nullable=False, index=True
    )

    # Type and status
    invoice_type: Mapped[str] = mapped_column(
        String(20), nullable=False, index=True
    )  # monthly | quarterly | yearly | adhoc
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvoiceStatus.DRAFT.value, index=True
    )

    # Dates
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Billing period, used to detect duplicate generation
    period_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    period_quarter: Mapped[int | None] = mapped_column(Integer, nullable=True)
    period_year: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Amounts: balance_amount = total_amount - discount_amount - paid_amount
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    paid_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    balance_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )

    # Set once on finalization
    journal_entry_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("journal_entries.id"), nullable=True
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    student: Mapped["Student"] = relationship("Student")
    academic_year: Mapped["AcademicYear"] = relationship("AcademicYear")
    items: Mapped[list["InvoiceItem"]] = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.id",
    )

    __table_args__ = (
        UniqueConstraint("school_id", "invoice_number", name="uq_invoice_school_number"),
    )

    @property
    def net_amount(self) -> Decimal:
        return self.total_amount - self.discount_amount

    @property
    def is_editable(self) -> bool:
        """Header fields and deletion are only allowed on drafts."""
        return self.status == InvoiceStatus.DRAFT.value

    @property
    def can_add_items(self) -> bool:
        return self.status in (InvoiceStatus.DRAFT.value, InvoiceStatus.ISSUED.value)

    @property
    def can_receive_payment(self) -> bool:
        return self.status in (
            InvoiceStatus.ISSUED.value,
            InvoiceStatus.PARTIALLY_PAID.value,
        )

    @property
    def can_be_cancelled(self) -> bool:
        """Check if invoice can be cancelled (no payments received)."""
        return self.status in (
            InvoiceStatus.DRAFT.value,
            InvoiceStatus.ISSUED.value,
        ) and self.paid_amount == Decimal("0.00")


class InvoiceItem(Base):
    """Charge line of an invoice, tagged with the domain it came from."""

    __tablename__ = "invoice_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    invoice_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )

    source_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    source_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    # Snapshot of the source taken when the item was attached; never re-resolved
    source_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    description: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="items")

    @property
    def net_amount(self) -> Decimal:
        return self.amount - self.discount_amount


# Import at the end to avoid circular imports
from fee_ledger.modules.students.models import Student
from fee_ledger.modules.academics.models import AcademicYear
