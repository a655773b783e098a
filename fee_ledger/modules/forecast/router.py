"""API endpoints for fee forecasting."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from fee_ledger.core.database.session import get_db
from fee_ledger.core.tenancy import get_school_id
from fee_ledger.modules.forecast.schemas import ForecastRequest, ForecastResult
from fee_ledger.modules.forecast.service import ForecastService
from fee_ledger.shared.schemas.base import ApiResponse

router = APIRouter(prefix="/forecast", tags=["Forecast"])


@router.post(
    "",
    response_model=ApiResponse[ForecastResult],
)
async def forecast_fees(
    data: ForecastRequest,
    db: AsyncSession = Depends(get_db),
    school_id: int = Depends(get_school_id),
):
    """Forecast a student's fees up to a date. Read-only."""
    service = ForecastService(db)
    result = await service.forecast_fees(school_id, data)
    return ApiResponse(success=True, data=result)
