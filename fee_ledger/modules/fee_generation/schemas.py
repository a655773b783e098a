"""Schemas for Fee Generation module."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, model_validator


class DiscountInput(BaseModel):
    """Discount applied to every generated fee. A percentage wins over a fixed amount."""

    percentage: Decimal | None = Field(None, ge=0, le=100)
    fixed_amount: Decimal | None = Field(None, ge=0)


class InstallmentInput(BaseModel):
    enabled: bool = False
    count: int | None = Field(None, ge=1, le=60)
    start_date: date | None = None

    @model_validator(mode="after")
    def require_count_when_enabled(self):
        if self.enabled and not self.count:
            raise ValueError("Installment count is required when installments are enabled")
        return self


class GenerateFeesRequest(BaseModel):
    """Manual fee generation for a cohort of students."""

    academic_year_id: int
    fee_structure_ids: list[int] = Field(..., min_length=1)
    student_ids: list[int] | None = None
    class_ids: list[int] | None = None
    due_date: date
    discount: DiscountInput | None = None
    installment: InstallmentInput | None = None
    regenerate_existing: bool = False


class MonthlyGenerationRequest(BaseModel):
    academic_year_id: int
    run_date: date | None = None


class FailedStudent(BaseModel):
    student_id: int
    student_name: str
    error: str


class GenerateFeesResult(BaseModel):
    """Outcome of a generation run."""

    success: bool
    generated: int
    failed: int
    history_id: int
    total_amount: Decimal = Decimal("0.00")
    errors: list[str] = Field(default_factory=list)


class FeeStructureBrief(BaseModel):
    id: int
    name: str
    amount: Decimal

    model_config = {"from_attributes": True}


class GenerationHistoryResponse(BaseModel):
    id: int
    academic_year_id: int
    generation_type: str
    status: str
    total_students: int
    fees_generated: int
    fees_failed: int
    total_amount_generated: Decimal | None
    error_message: str | None
    generated_by: str | None
    created_at: datetime
    completed_at: datetime | None

    model_config = {"from_attributes": True}


class GenerationHistoryDetail(GenerationHistoryResponse):
    failed_student_details: list[dict[str, Any]] | None = None
    fee_structure_ids: list[int] | None = None
    class_ids: list[int] | None = None
    student_ids: list[int] | None = None
    generated_by_user_id: int | None = None
    fee_structures: list[FeeStructureBrief] = Field(default_factory=list)
