"""API endpoints for Payments module."""

from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from fee_ledger.core.database.session import get_db
from fee_ledger.core.tenancy import get_school_id, get_user_id
from fee_ledger.modules.payments.models import PaymentMethod, PaymentStatus
from fee_ledger.modules.payments.schemas import (
    PaymentCreate,
    PaymentFilters,
    PaymentResponse,
    PaymentUpdate,
    ReceiptData,
)
from fee_ledger.modules.payments.service import PaymentService
from fee_ledger.shared.schemas.base import ApiResponse, PaginatedResponse

router = APIRouter(prefix="/payments", tags=["Payments"])


def _payment_to_response(payment) -> PaymentResponse:
    return PaymentResponse(
        id=payment.id,
        receipt_number=payment.receipt_number,
        invoice_id=payment.invoice_id,
        invoice_number=payment.invoice.invoice_number if payment.invoice else None,
        student_id=payment.student_id,
        student_name=payment.student.full_name if payment.student else None,
        amount=payment.amount,
        payment_method=payment.payment_method,
        payment_date=payment.payment_date,
        transaction_id=payment.transaction_id,
        status=payment.status,
        notes=payment.notes,
        journal_entry_id=payment.journal_entry_id,
        ledger_status=payment.ledger_posting.status if payment.ledger_posting else None,
        created_at=payment.created_at,
        updated_at=payment.updated_at,
    )


@router.post(
    "",
    response_model=ApiResponse[PaymentResponse],
    status_code=status.HTTP_201_CREATED,
)
async def record_payment(
    data: PaymentCreate,
    db: AsyncSession = Depends(get_db),
    school_id: int = Depends(get_school_id),
    user_id: int | None = Depends(get_user_id),
):
    """Record a payment against an issued invoice."""
    service = PaymentService(db)
    payment = await service.record_payment(school_id, data, user_id)
    return ApiResponse(
        data=_payment_to_response(payment),
        message="Payment recorded successfully",
    )


@router.get(
    "",
    response_model=ApiResponse[PaginatedResponse[PaymentResponse]],
)
async def list_payments(
    student_id: int | None = Query(None),
    invoice_id: int | None = Query(None),
    status: PaymentStatus | None = Query(None),
    payment_method: PaymentMethod | None = Query(None),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    school_id: int = Depends(get_school_id),
):
    """List payments with optional filters."""
    service = PaymentService(db)
    filters = PaymentFilters(
        student_id=student_id,
        invoice_id=invoice_id,
        status=status,
        payment_method=payment_method,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    payments, total = await service.list_payments(school_id, filters)
    return ApiResponse(
        data=PaginatedResponse.create(
            items=[_payment_to_response(p) for p in payments],
            total=total,
            page=page,
            limit=limit,
        ),
    )


@router.get(
    "/{payment_id}",
    response_model=ApiResponse[PaymentResponse],
)
async def get_payment(
    payment_id: int,
    db: AsyncSession = Depends(get_db),
    school_id: int = Depends(get_school_id),
):
    """Get payment by ID."""
    service = PaymentService(db)
    payment = await service.get_payment(payment_id, school_id)
    return ApiResponse(data=_payment_to_response(payment))


@router.get(
    "/{payment_id}/receipt",
    response_model=ApiResponse[ReceiptData],
)
async def get_receipt(
    payment_id: int,
    db: AsyncSession = Depends(get_db),
    school_id: int = Depends(get_school_id),
):
    """Receipt data for a payment."""
    service = PaymentService(db)
    receipt = await service.get_receipt_data(payment_id, school_id)
    return ApiResponse(data=receipt)


@router.patch(
    "/{payment_id}",
    response_model=ApiResponse[PaymentResponse],
)
async def update_payment(
    payment_id: int,
    data: PaymentUpdate,
    db: AsyncSession = Depends(get_db),
    school_id: int = Depends(get_school_id),
    user_id: int | None = Depends(get_user_id),
):
    """Update payment details. The amount cannot be changed."""
    service = PaymentService(db)
    payment = await service.update_payment(payment_id, school_id, data, user_id)
    return ApiResponse(
        data=_payment_to_response(payment),
        message="Payment updated successfully",
    )


@router.delete(
    "/{payment_id}",
    response_model=ApiResponse[None],
)
async def delete_payment(
    payment_id: int,
    db: AsyncSession = Depends(get_db),
    school_id: int = Depends(get_school_id),
    user_id: int | None = Depends(get_user_id),
):
    """Delete a payment. Invoice balances must be recalculated afterwards."""
    service = PaymentService(db)
    await service.delete_payment(payment_id, school_id, user_id)
    return ApiResponse(
        data=None,
        message="Payment deleted. Recalculate the invoice balance to reflect the change.",
    )
