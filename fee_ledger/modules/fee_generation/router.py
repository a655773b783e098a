"""API endpoints for Fee Generation module."""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from fee_ledger.core.database.session import get_db
from fee_ledger.core.tenancy import get_school_id, get_user_id
from fee_ledger.modules.fee_generation.schemas import (
    FeeStructureBrief,
    GenerateFeesRequest,
    GenerateFeesResult,
    GenerationHistoryDetail,
    GenerationHistoryResponse,
    MonthlyGenerationRequest,
)
from fee_ledger.modules.fee_generation.service import FeeGenerationService
from fee_ledger.shared.schemas.base import ApiResponse

router = APIRouter(prefix="/fee-generation", tags=["Fee Generation"])


@router.post(
    "/generate",
    response_model=ApiResponse[GenerateFeesResult],
    status_code=status.HTTP_201_CREATED,
)
async def generate_fees(
    data: GenerateFeesRequest,
    generated_by: str | None = Query(None, max_length=255),
    db: AsyncSession = Depends(get_db),
    school_id: int = Depends(get_school_id),
    user_id: int | None = Depends(get_user_id),
):
    """Generate fee obligations for the selected students or classes."""
    service = FeeGenerationService(db)
    result = await service.generate_fees(school_id, data, user_id, generated_by)
    return ApiResponse(
        success=True,
        message=f"Generated {result.generated} fees, {result.failed} students failed",
        data=result,
    )


@router.post(
    "/monthly",
    response_model=ApiResponse[GenerateFeesResult],
)
async def generate_monthly_fees(
    data: MonthlyGenerationRequest,
    db: AsyncSession = Depends(get_db),
    school_id: int = Depends(get_school_id),
):
    """Run the scheduled monthly generation now."""
    service = FeeGenerationService(db)
    result = await service.generate_monthly_fees(school_id, data.academic_year_id, data.run_date)
    return ApiResponse(success=True, data=result)


@router.get(
    "/history",
    response_model=ApiResponse[list[GenerationHistoryResponse]],
)
async def list_history(
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    school_id: int = Depends(get_school_id),
):
    """Most recent generation runs first."""
    service = FeeGenerationService(db)
    history = await service.list_history(school_id, limit)
    return ApiResponse(
        success=True,
        data=[GenerationHistoryResponse.model_validate(h) for h in history],
    )


@router.get(
    "/history/{history_id}",
    response_model=ApiResponse[GenerationHistoryDetail],
)
async def get_history(
    history_id: int,
    db: AsyncSession = Depends(get_db),
    school_id: int = Depends(get_school_id),
):
    """Generation run with failure details and the fee structures it used."""
    service = FeeGenerationService(db)
    history, structures = await service.get_history(history_id, school_id)
    detail = GenerationHistoryDetail.model_validate(history)
    detail.fee_structures = [FeeStructureBrief.model_validate(s) for s in structures]
    return ApiResponse(success=True, data=detail)
