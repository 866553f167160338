"""
/api/v1/insights endpoints.
Cached spending insights, pin/dismiss state and the deductions summary.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from taxhelper.dependencies import get_insight_service, get_user_id, verify_api_key
from taxhelper.deductions.summary import normalize_tax_rate
from taxhelper.deductions.types import DeductionContext
from taxhelper.insights.service import InsightService
from taxhelper.models.enums import ErrorCode
from taxhelper.schemas.insights import (
    DeductionsResponse,
    InsightListResponse,
    InsightStatePatch,
    InsightStateResponse,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/insights", tags=["insights"], dependencies=[Depends(verify_api_key)])


def get_deduction_context(
    is_freelancer: Optional[bool] = Query(None),
    works_from_home: Optional[bool] = Query(None),
    has_health_insurance: Optional[bool] = Query(None),
    estimated_tax_rate: Optional[float] = Query(None, ge=0),
) -> DeductionContext:
    return DeductionContext(
        is_freelancer=is_freelancer,
        works_from_home=works_from_home,
        has_health_insurance=has_health_insurance,
        estimated_tax_rate=estimated_tax_rate,
    )


@router.get("", response_model=InsightListResponse)
async def list_insights(
    response: Response,
    range_days: int = Query(30, alias="range", ge=1, le=365),
    refresh: bool = Query(False),
    context: DeductionContext = Depends(get_deduction_context),
    user_id: str = Depends(get_user_id),
    service: InsightService = Depends(get_insight_service),
):
    """Insights for the last `range` days, served from cache while fresh."""
    insights = await service.get_insights(
        user_id, range_days=range_days, force_refresh=refresh, user_context=context
    )
    response.headers["Cache-Control"] = (
        "no-store" if refresh else "private, max-age=60, stale-while-revalidate=300"
    )
    return InsightListResponse(insights=insights)


@router.get("/deductions", response_model=DeductionsResponse)
async def deductions_summary(
    range_days: int = Query(365, alias="range", ge=1, le=365),
    context: DeductionContext = Depends(get_deduction_context),
    user_id: str = Depends(get_user_id),
    service: InsightService = Depends(get_insight_service),
):
    """Potential deductions grouped by category."""
    summary = await service.get_deduction_summary(user_id, range_days=range_days, user_context=context)
    return DeductionsResponse(
        deductions=summary.deductions,
        total_potential_deduction=summary.total_potential_deduction,
        estimated_tax_savings=summary.estimated_tax_savings,
        tax_rate_used=normalize_tax_rate(context.estimated_tax_rate),
    )


@router.patch("/{insight_id}", response_model=InsightStateResponse)
async def update_insight(
    insight_id: str,
    body: InsightStatePatch,
    user_id: str = Depends(get_user_id),
    service: InsightService = Depends(get_insight_service),
):
    """Pin or dismiss an insight. The state survives regeneration."""
    if body.pinned is None and body.dismissed is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": ErrorCode.VALIDATION_ERROR.value, "error": "Provide pinned or dismissed"},
        )

    insight = await service.update_insight_state(
        user_id, insight_id, pinned=body.pinned, dismissed=body.dismissed
    )
    if insight is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": ErrorCode.NOT_FOUND.value, "error": "Insight not found"},
        )
    return InsightStateResponse(insight=insight)
