"""Pydantic schemas for Payments module."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import Field, field_validator

from fee_ledger.shared.schemas.base import BaseSchema
from fee_ledger.modules.payments.models import PaymentMethod, PaymentStatus


# --- Payment Schemas ---


class PaymentCreate(BaseSchema):
    """Schema for recording a payment against an issued invoice."""

    invoice_id: int
    student_id: int
    amount: Decimal = Field(description="Payment amount (must be positive)")
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_date: date | None = None
    transaction_id: str | None = Field(None, max_length=255)
    # Generated when omitted
    receipt_number: str | None = Field(None, max_length=100)
    notes: str | None = None

    @field_validator("transaction_id", "receipt_number", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        """Empty strings are stored as NULL."""
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v


class PaymentUpdate(BaseSchema):
    """Schema for updating a payment. The amount itself cannot change."""

    amount: Decimal | None = None
    payment_method: PaymentMethod | None = None
    payment_date: date | None = None
    transaction_id: str | None = Field(None, max_length=255)
    notes: str | None = None

    @field_validator("transaction_id", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class PaymentResponse(BaseSchema):
    """Schema for payment response."""

    id: int
    receipt_number: str
    invoice_id: int
    invoice_number: str | None = None
    student_id: int
    student_name: str | None = None
    amount: Decimal
    payment_method: str
    payment_date: date
    transaction_id: str | None
    status: str
    notes: str | None
    journal_entry_id: int | None
    ledger_status: str | None = None
    created_at: datetime
    updated_at: datetime


class PaymentFilters(BaseSchema):
    """Filters for listing payments."""

    student_id: int | None = None
    invoice_id: int | None = None
    status: PaymentStatus | None = None
    payment_method: PaymentMethod | None = None
    date_from: date | None = None
    date_to: date | None = None
    page: int = Field(1, ge=1)
    limit: int = Field(50, ge=1, le=100)


# --- Receipt ---


class ReceiptInvoice(BaseSchema):
    id: int
    invoice_number: str
    issue_date: date
    due_date: date
    total_amount: Decimal
    discount_amount: Decimal
    paid_amount: Decimal
    balance_amount: Decimal
    status: str


class ReceiptStudent(BaseSchema):
    id: int
    full_name: str


class ReceiptData(BaseSchema):
    """Read-only projection handed to a receipt formatter."""

    school_id: int
    receipt_number: str
    payment_date: date
    amount: Decimal
    payment_method: str
    transaction_id: str | None
    notes: str | None
    invoice: ReceiptInvoice
    student: ReceiptStudent
