"""
Pydantic request/response schemas for the /api/v1/insights endpoints.
"""

from typing import Optional

from pydantic import BaseModel

from taxhelper.deductions.types import DeductionSummary
from taxhelper.insights.types import Insight


class InsightListResponse(BaseModel):
    insights: list[Insight]


class InsightStatePatch(BaseModel):
    pinned: Optional[bool] = None
    dismissed: Optional[bool] = None


class InsightStateResponse(BaseModel):
    insight: Insight


class DeductionsResponse(BaseModel):
    deductions: list[DeductionSummary]
    total_potential_deduction: float
    estimated_tax_savings: float
    tax_rate_used: float
