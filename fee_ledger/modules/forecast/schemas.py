"""Schemas for Forecast module."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field


class ForecastRequest(BaseModel):
    student_id: int
    academic_year_id: int
    # Defaults to today
    forecast_up_to: date | None = None
    include_bus_fees: bool = True
    include_previous_balance: bool = True


class ClassFeeLine(BaseModel):
    fee_structure_id: int
    fee_structure_name: str
    amount: Decimal
    due_date: date
    status: str
    installment_number: int | None = None
    projected: bool = False


class BusFeeLine(BaseModel):
    month: str
    amount: Decimal
    due_date: date


class OtherFeeLine(BaseModel):
    invoice_id: int
    invoice_number: str
    item_id: int
    source_type: str
    description: str
    amount: Decimal
    due_date: date


class ClassFeesBreakdown(BaseModel):
    total: Decimal = Decimal("0.00")
    fees: list[ClassFeeLine] = Field(default_factory=list)


class BusFeesBreakdown(BaseModel):
    total: Decimal = Decimal("0.00")
    monthly_amount: Decimal = Decimal("0.00")
    months: int = 0
    fees: list[BusFeeLine] = Field(default_factory=list)


class PreviousBalance(BaseModel):
    # Positive = owed, negative = credit
    amount: Decimal = Decimal("0.00")


class OtherFeesBreakdown(BaseModel):
    total: Decimal = Decimal("0.00")
    fees: list[OtherFeeLine] = Field(default_factory=list)


class ForecastBreakdown(BaseModel):
    class_fees: ClassFeesBreakdown
    bus_fees: BusFeesBreakdown
    previous_balance: PreviousBalance
    other_fees: OtherFeesBreakdown


class ForecastSummary(BaseModel):
    total_due: Decimal
    total_paid: Decimal
    total_pending: Decimal
    total_overdue: Decimal


class ForecastResult(BaseModel):
    student_id: int
    student_name: str
    academic_year_id: int
    academic_year_name: str
    class_name: str
    forecast_up_to: date
    total_amount: Decimal
    breakdown: ForecastBreakdown
    summary: ForecastSummary
