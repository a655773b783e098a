"""Schemas for Invoices module."""

from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from fee_ledger.modules.invoices.models import InvoiceSourceType, InvoiceStatus, InvoiceType


# --- Invoice Item Schemas ---


class InvoiceItemCreate(BaseModel):
    """Schema for an item supplied when creating an invoice."""

    description: str = Field(..., min_length=1, max_length=255)
    amount: Decimal = Field(..., ge=0)
    discount_amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    source_type: InvoiceSourceType = InvoiceSourceType.FEE
    source_id: int | None = None
    due_date: date | None = None
    notes: str | None = None


class InvoiceItemResponse(BaseModel):
    """Schema for invoice item response."""

    id: int
    invoice_id: int
    source_type: str
    source_id: int | None
    source_metadata: dict[str, Any] | None
    description: str
    amount: float
    discount_amount: float
    net_amount: float
    due_date: date | None
    notes: str | None

    model_config = {"from_attributes": True}


class AddItemRequest(BaseModel):
    """
    Attach a charge from another domain to an invoice.

    TRANSPORT resolves `source_id` as a route plan; the other types use the
    caller-supplied description, amount and metadata.
    """

    source_type: InvoiceSourceType
    source_id: int | None = None
    description: str | None = Field(None, max_length=255)
    amount: Decimal | None = Field(None, ge=0)
    discount_amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    due_date: date | None = None
    notes: str | None = None
    metadata: dict[str, Any] | None = None


# --- Invoice Schemas ---


class InvoiceCreate(BaseModel):
    """Schema for creating an invoice (draft)."""

    student_id: int
    academic_year_id: int
    invoice_type: InvoiceType = InvoiceType.ADHOC
    issue_date: date | None = None
    due_date: date | None = None
    notes: str | None = None
    items: list[InvoiceItemCreate] = Field(default_factory=list)


class InvoiceUpdate(BaseModel):
    """Schema for updating an invoice (draft only)."""

    issue_date: date | None = None
    due_date: date | None = None
    notes: str | None = None


class InvoiceResponse(BaseModel):
    """Schema for invoice response."""

    id: int
    invoice_number: str
    student_id: int
    student_name: str | None = None
    academic_year_id: int
    academic_year_name: str | None = None
    invoice_type: str
    status: str
    issue_date: date
    due_date: date
    period_month: int | None
    period_quarter: int | None
    period_year: int | None
    total_amount: float
    discount_amount: float
    paid_amount: float
    balance_amount: float
    journal_entry_id: int | None
    notes: str | None
    items: list[InvoiceItemResponse] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class InvoiceSummary(BaseModel):
    """Brief invoice summary for lists."""

    id: int
    invoice_number: str
    student_id: int
    student_name: str | None = None
    invoice_type: str
    status: str
    total_amount: float
    paid_amount: float
    balance_amount: float
    issue_date: date
    due_date: date

    model_config = {"from_attributes": True}


# --- Generation from fee structures ---


class GenerateInvoiceRequest(BaseModel):
    """Build one invoice for a student from the fee structures of their class."""

    student_id: int
    academic_year_id: int
    invoice_type: InvoiceType = InvoiceType.MONTHLY
    issue_date: date | None = None
    due_date: date | None = None
    # Period markers; default to the issue date's month / quarter / year
    month: int | None = Field(None, ge=1, le=12)
    quarter: int | None = Field(None, ge=1, le=4)
    year: int | None = None
    notes: str | None = None


# --- Filters ---


class InvoiceFilters(BaseModel):
    """Filters for listing invoices."""

    student_id: int | None = None
    academic_year_id: int | None = None
    invoice_type: InvoiceType | None = None
    status: InvoiceStatus | None = None
    page: int = Field(1, ge=1)
    limit: int = Field(100, ge=1, le=500)
