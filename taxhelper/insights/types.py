"""
Insight contracts and detection thresholds.
Generators read their gates from these constants, and so do their explanations.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from pydantic import BaseModel, Field

from taxhelper.models.enums import InsightType


class InsightTransaction(BaseModel):
    """The slice of a Transaction the generators look at."""
    id: str
    date: datetime
    merchant: Optional[str] = None
    description: Optional[str] = None
    total_amount: Decimal
    tax_amount: Decimal = Decimal("0")


class ThresholdEntry(BaseModel):
    name: str
    actual: Union[int, float, str]
    threshold: Union[int, float, str]


class InsightExplanation(BaseModel):
    """Why an insight was generated: shown behind 'Why am I seeing this?'"""
    reason: str
    thresholds: list[ThresholdEntry] = Field(default_factory=list)
    suggestion: Optional[str] = None


class Insight(BaseModel):
    id: Optional[str] = None
    type: InsightType
    title: str
    summary: str
    severity_score: int = Field(ge=0, le=10)
    supporting_transaction_ids: list[str] = Field(min_length=1)
    dismissed: bool = False
    pinned: bool = False
    explanation: Optional[InsightExplanation] = None


class QuietLeakThresholds:
    MIN_OCCURRENCES = 3
    MAX_INDIVIDUAL_AMOUNT = 20
    MIN_CUMULATIVE_TOTAL = 50
    SEVERITY_DIVISOR = 25


class TaxDragThresholds:
    MIN_TAX_RATE = 0.09
    MIN_TOTAL_SPENT = 100
    BASELINE_RATE = 0.08
    SEVERITY_MULTIPLIER = 100


class SpikeThresholds:
    AVERAGE_MULTIPLIER = 2
    DUPLICATE_WINDOW_HOURS = 24
    SEVERITY_MULTIPLIER = 2
    DUPLICATE_SEVERITY = 5


MAX_SEVERITY = 10


def group_by_merchant(transactions: list[InsightTransaction]) -> dict[str, list[InsightTransaction]]:
    """Merchant -> transactions, in first-seen order. Transactions without a merchant are skipped."""
    groups: dict[str, list[InsightTransaction]] = {}
    for txn in transactions:
        if not txn.merchant:
            continue
        groups.setdefault(txn.merchant, []).append(txn)
    return groups
