"""Schemas for Accounting module."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field


class JournalLineInput(BaseModel):
    """One side of a journal entry. Exactly one of debit/credit is non-zero."""

    account_id: int
    debit_amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    credit_amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    description: str | None = None


class JournalLineResponse(BaseModel):
    id: int
    account_id: int
    debit_amount: Decimal
    credit_amount: Decimal
    description: str | None

    model_config = {"from_attributes": True}


class JournalEntryResponse(BaseModel):
    id: int
    entry_number: str
    entry_date: date
    entry_type: str
    description: str | None
    reference: str | None
    reference_id: int | None
    total_amount: Decimal
    lines: list[JournalLineResponse] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class PostingRunResult(BaseModel):
    """Result of retrying pending ledger postings."""

    processed: int
    posted: int
    failed: int
