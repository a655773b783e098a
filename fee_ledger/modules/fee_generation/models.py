"""Fee generation run history."""

from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from fee_ledger.core.database.base import Base, BigIntPK


class GenerationType(StrEnum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"


class GenerationStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class FeeGenerationHistory(Base):
    """
    Audit record of one fee generation run.

    Written before processing starts; only status and result fields are
    updated when the run ends. Never deleted.
    """

    __tablename__ = "fee_generation_history"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    school_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    academic_year_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("academic_years.id"), nullable=False
    )

    generation_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=GenerationStatus.PENDING.value, index=True
    )

    total_students: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    fees_generated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    fees_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_amount_generated: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)

    # First few errors joined with "; "
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    # [{"student_id": 1, "student_name": "...", "error": "..."}]
    failed_student_details: Mapped[list[dict[str, Any]] | None] = mapped_column(
        JSON, nullable=True
    )

    fee_structure_ids: Mapped[list[int] | None] = mapped_column(JSON, nullable=True)
    class_ids: Mapped[list[int] | None] = mapped_column(JSON, nullable=True)
    student_ids: Mapped[list[int] | None] = mapped_column(JSON, nullable=True)

    generated_by_user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    generated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
