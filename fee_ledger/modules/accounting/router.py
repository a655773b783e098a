"""API endpoints for the accounting bridge."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fee_ledger.core.database.session import get_db
from fee_ledger.core.tenancy import get_school_id
from fee_ledger.modules.accounting.schemas import JournalEntryResponse, PostingRunResult
from fee_ledger.modules.accounting.service import AccountingService
from fee_ledger.shared.schemas.base import ApiResponse

router = APIRouter(prefix="/accounting", tags=["Accounting"])


@router.post(
    "/postings/process",
    response_model=ApiResponse[PostingRunResult],
)
async def process_pending_postings(
    limit: int = Query(100, ge=1, le=1000),
    include_failed: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    school_id: int = Depends(get_school_id),
):
    """Retry payment journal entries that could not be posted yet."""
    service = AccountingService(db)
    result = await service.process_pending_postings(school_id, limit, include_failed)
    return ApiResponse(
        success=True,
        message=f"Posted {result.posted} of {result.processed} pending entries",
        data=result,
    )


@router.get(
    "/journal-entries/{entry_id}",
    response_model=ApiResponse[JournalEntryResponse],
)
async def get_journal_entry(
    entry_id: int,
    db: AsyncSession = Depends(get_db),
    school_id: int = Depends(get_school_id),
):
    """Get a journal entry with its lines."""
    service = AccountingService(db)
    entry = await service.get_entry(entry_id, school_id)
    return ApiResponse(success=True, data=JournalEntryResponse.model_validate(entry))
