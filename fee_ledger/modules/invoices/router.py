"""API endpoints for Invoices module."""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from fee_ledger.core.database.session import get_db
from fee_ledger.core.tenancy import get_school_id, get_user_id
from fee_ledger.modules.invoices.models import InvoiceStatus, InvoiceType
from fee_ledger.modules.invoices.schemas import (
    AddItemRequest,
    GenerateInvoiceRequest,
    InvoiceCreate,
    InvoiceFilters,
    InvoiceResponse,
    InvoiceSummary,
    InvoiceUpdate,
)
from fee_ledger.modules.invoices.service import InvoiceService
from fee_ledger.shared.schemas.base import ApiResponse, PaginatedResponse

router = APIRouter(prefix="/invoices", tags=["Invoices"])


def _invoice_to_response(invoice) -> InvoiceResponse:
    """Convert Invoice model to response schema."""
    return InvoiceResponse(
        id=invoice.id,
        invoice_number=invoice.invoice_number,
        student_id=invoice.student_id,
        student_name=invoice.student.full_name if invoice.student else None,
        academic_year_id=invoice.academic_year_id,
        academic_year_name=invoice.academic_year.name if invoice.academic_year else None,
        invoice_type=invoice.invoice_type,
        status=invoice.status,
        issue_date=invoice.issue_date,
        due_date=invoice.due_date,
        period_month=invoice.period_month,
        period_quarter=invoice.period_quarter,
        period_year=invoice.period_year,
        total_amount=float(invoice.total_amount),
        discount_amount=float(invoice.discount_amount),
        paid_amount=float(invoice.paid_amount),
        balance_amount=float(invoice.balance_amount),
        journal_entry_id=invoice.journal_entry_id,
        notes=invoice.notes,
        items=[
            {
                "id": item.id,
                "invoice_id": item.invoice_id,
                "source_type": item.source_type,
                "source_id": item.source_id,
                "source_metadata": item.source_metadata,
                "description": item.description,
                "amount": float(item.amount),
                "discount_amount": float(item.discount_amount),
                "net_amount": float(item.net_amount),
                "due_date": item.due_date,
                "notes": item.notes,
            }
            for item in invoice.items
        ],
    )


def _invoice_to_summary(invoice) -> InvoiceSummary:
    """Convert Invoice model to summary schema."""
    return InvoiceSummary(
        id=invoice.id,
        invoice_number=invoice.invoice_number,
        student_id=invoice.student_id,
        student_name=invoice.student.full_name if invoice.student else None,
        invoice_type=invoice.invoice_type,
        status=invoice.status,
        total_amount=float(invoice.total_amount),
        paid_amount=float(invoice.paid_amount),
        balance_amount=float(invoice.balance_amount),
        issue_date=invoice.issue_date,
        due_date=invoice.due_date,
    )


# --- Invoice CRUD ---


@router.post(
    "",
    response_model=ApiResponse[InvoiceResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_invoice(
    data: InvoiceCreate,
    db: AsyncSession = Depends(get_db),
    school_id: int = Depends(get_school_id),
    user_id: int | None = Depends(get_user_id),
):
    """Create a draft invoice with items."""
    service = InvoiceService(db)
    invoice = await service.create_invoice(school_id, data, user_id)
    return ApiResponse(
        success=True,
        message="Invoice created successfully",
        data=_invoice_to_response(invoice),
    )


@router.get(
    "",
    response_model=ApiResponse[PaginatedResponse[InvoiceSummary]],
)
async def list_invoices(
    student_id: int | None = Query(None),
    academic_year_id: int | None = Query(None),
    invoice_type: InvoiceType | None = Query(None),
    status: InvoiceStatus | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    school_id: int = Depends(get_school_id),
):
    """List invoices with filters."""
    service = InvoiceService(db)
    filters = InvoiceFilters(
        student_id=student_id,
        academic_year_id=academic_year_id,
        invoice_type=invoice_type,
        status=status,
        page=page,
        limit=limit,
    )
    invoices, total = await service.list_invoices(school_id, filters)
    return ApiResponse(
        success=True,
        data=PaginatedResponse.create(
            items=[_invoice_to_summary(inv) for inv in invoices],
            total=total,
            page=page,
            limit=limit,
        ),
    )


@router.post(
    "/generate",
    response_model=ApiResponse[InvoiceResponse],
    status_code=status.HTTP_201_CREATED,
)
async def generate_invoice(
    data: GenerateInvoiceRequest,
    db: AsyncSession = Depends(get_db),
    school_id: int = Depends(get_school_id),
    user_id: int | None = Depends(get_user_id),
):
    """Generate a draft invoice from the fee structures of the student's class."""
    service = InvoiceService(db)
    invoice = await service.generate_from_fee_structures(school_id, data, user_id)
    return ApiResponse(
        success=True,
        message="Invoice generated successfully",
        data=_invoice_to_response(invoice),
    )


@router.get(
    "/{invoice_id}",
    response_model=ApiResponse[InvoiceResponse],
)
async def get_invoice(
    invoice_id: int,
    db: AsyncSession = Depends(get_db),
    school_id: int = Depends(get_school_id),
):
    """Get invoice by ID with all items."""
    service = InvoiceService(db)
    invoice = await service.get_invoice(invoice_id, school_id)
    return ApiResponse(success=True, data=_invoice_to_response(invoice))


@router.patch(
    "/{invoice_id}",
    response_model=ApiResponse[InvoiceResponse],
)
async def update_invoice(
    invoice_id: int,
    data: InvoiceUpdate,
    db: AsyncSession = Depends(get_db),
    school_id: int = Depends(get_school_id),
    user_id: int | None = Depends(get_user_id),
):
    """Update a draft invoice."""
    service = InvoiceService(db)
    invoice = await service.update_invoice(invoice_id, school_id, data, user_id)
    return ApiResponse(
        success=True,
        message="Invoice updated successfully",
        data=_invoice_to_response(invoice),
    )


@router.delete(
    "/{invoice_id}",
    response_model=ApiResponse[None],
)
async def delete_invoice(
    invoice_id: int,
    db: AsyncSession = Depends(get_db),
    school_id: int = Depends(get_school_id),
    user_id: int | None = Depends(get_user_id),
):
    """Delete a draft invoice."""
    service = InvoiceService(db)
    await service.delete_invoice(invoice_id, school_id, user_id)
    return ApiResponse(success=True, message="Invoice deleted successfully", data=None)


# --- Lifecycle ---


@router.post(
    "/{invoice_id}/finalize",
    response_model=ApiResponse[InvoiceResponse],
)
async def finalize_invoice(
    invoice_id: int,
    db: AsyncSession = Depends(get_db),
    school_id: int = Depends(get_school_id),
    user_id: int | None = Depends(get_user_id),
):
    """Finalize a draft invoice and post it to the ledger. Safe to repeat."""
    service = InvoiceService(db)
    invoice = await service.finalize_invoice(invoice_id, school_id, user_id)
    return ApiResponse(
        success=True,
        message="Invoice finalized successfully",
        data=_invoice_to_response(invoice),
    )


@router.post(
    "/{invoice_id}/cancel",
    response_model=ApiResponse[InvoiceResponse],
)
async def cancel_invoice(
    invoice_id: int,
    reason: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    school_id: int = Depends(get_school_id),
    user_id: int | None = Depends(get_user_id),
):
    """Cancel an invoice without payments."""
    service = InvoiceService(db)
    invoice = await service.cancel_invoice(invoice_id, school_id, user_id, reason)
    return ApiResponse(
        success=True,
        message="Invoice cancelled successfully",
        data=_invoice_to_response(invoice),
    )


@router.post(
    "/{invoice_id}/items",
    response_model=ApiResponse[InvoiceResponse],
    status_code=status.HTTP_201_CREATED,
)
async def add_item(
    invoice_id: int,
    data: AddItemRequest,
    db: AsyncSession = Depends(get_db),
    school_id: int = Depends(get_school_id),
    user_id: int | None = Depends(get_user_id),
):
    """Attach a fee, transport, hostel, fine or miscellaneous charge."""
    service = InvoiceService(db)
    invoice = await service.add_item(invoice_id, school_id, data, user_id)
    return ApiResponse(
        success=True,
        message="Item added successfully",
        data=_invoice_to_response(invoice),
    )


@router.post(
    "/{invoice_id}/recalculate",
    response_model=ApiResponse[InvoiceResponse],
)
async def recalculate_balance(
    invoice_id: int,
    db: AsyncSession = Depends(get_db),
    school_id: int = Depends(get_school_id),
    user_id: int | None = Depends(get_user_id),
):
    """Rebuild paid amount, balance and status from completed payments."""
    service = InvoiceService(db)
    invoice = await service.recalculate_balance(invoice_id, school_id, user_id)
    return ApiResponse(
        success=True,
        message="Invoice balance recalculated",
        data=_invoice_to_response(invoice),
    )
