"""
Deduction rule and result contracts.
"""

from typing import Optional

from pydantic import BaseModel, Field

from taxhelper.models.enums import DeductionCategory


class DeductionContext(BaseModel):
    """What the user told us about themselves. None means unknown."""
    is_freelancer: Optional[bool] = None
    works_from_home: Optional[bool] = None
    has_health_insurance: Optional[bool] = None
    estimated_tax_rate: Optional[float] = None


class DeductionRule(BaseModel):
    id: str
    category: DeductionCategory
    keywords: list[str]
    deduction_percent: float = Field(ge=0.0, le=1.0)
    irs_category: str
    base_confidence: float
    # Context flags that must not be explicitly False
    requires: list[str] = Field(default_factory=list)


class DeductionMatch(BaseModel):
    transaction_id: str
    category: DeductionCategory
    rule_id: str
    confidence: float
    deduction_percent: float
    irs_category: str
    matched_keywords: list[str]
    amount: float
    potential_deduction: float
    merchant: Optional[str] = None
    description: Optional[str] = None


class DeductionSummary(BaseModel):
    category: DeductionCategory
    potential_deduction: float
    estimated_savings: float
    transactions: list[str]
    suggestion: str
    confidence: float


class DeductionSummaryResult(BaseModel):
    deductions: list[DeductionSummary] = Field(default_factory=list)
    total_potential_deduction: float = 0.0
    estimated_tax_savings: float = 0.0
