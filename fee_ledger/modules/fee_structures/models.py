"""FeeStructure template and StudentFeeStructure obligation models."""

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import (
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


class StructureStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class FeeObligationStatus(StrEnum):
    """Status of a generated StudentFeeStructure row."""

    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


class FeeStructure(Base):
    """
    Fee template: an amount, optionally scoped to one class.

    Editing a structure never changes obligations already generated from it.
    """

    __tablename__ = "fee_structures"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    school_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    # NULL = applies to every class
    class_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("school_classes.id"), nullable=True, index=True
    )
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=StructureStatus.ACTIVE.value, index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def applies_to_class(self, class_id: int | None) -> bool:
        return self.class_id is None or self.class_id == class_id


class StudentFeeStructure(Base):
    """
    Direct per-student fee obligation produced by fee generation.

    One row per (student, structure, academic year); with installments there is
    one row per installment_number. Payments never modify these rows.
    """

    __tablename__ = "student_fee_structures"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    student_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("students.id"), nullable=False, index=True
    )
    fee_structure_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("fee_structures.id"), nullable=False, index=True
    )
    academic_year_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("academic_years.id"), nullable=False, index=True
    )
    academic_record_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("student_academic_records.id"), nullable=True
    )

    # Post-discount amount (per installment when split)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    original_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    discount_percentage: Mapped[Decimal | None] = mapped_column(Numeric(7, 4), nullable=True)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=FeeObligationStatus.PENDING.value, index=True
    )

    installment_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    installment_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    installment_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    installment_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    fee_structure: Mapped["FeeStructure"] = relationship("FeeStructure")

    __table_args__ = (
        UniqueConstraint(
            "student_id",
            "fee_structure_id",
            "academic_year_id",
            "installment_number",
            name="uq_student_fee_structure_installment",
        ),
    )

    @property
    def is_installment(self) -> bool:
        return bool(self.installment_count and self.installment_number)
