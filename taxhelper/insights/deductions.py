"""
Deduction insights: one per category from the deduction summary.
"""

import math
from typing import Optional

from taxhelper.deductions.summary import build_deduction_summary, format_category_label, format_currency
from taxhelper.deductions.engine import DEFAULT_MIN_CONFIDENCE
from taxhelper.deductions.types import DeductionContext
from taxhelper.insights.types import (
    MAX_SEVERITY,
    Insight,
    InsightExplanation,
    InsightTransaction,
    ThresholdEntry,
)
from taxhelper.models.enums import InsightType

SAVINGS_PER_SEVERITY_POINT = 100


def deduction_severity(estimated_savings: float) -> int:
    score = math.ceil(estimated_savings / SAVINGS_PER_SEVERITY_POINT)
    return min(MAX_SEVERITY, max(1, score))


def detect_deduction_insights(
    transactions: list[InsightTransaction],
    context: Optional[DeductionContext] = None,
) -> list[Insight]:
    summary = build_deduction_summary(transactions, context)
    insights: list[Insight] = []

    for deduction in summary.deductions:
        label = format_category_label(deduction.category)
        insights.append(Insight(
            type=InsightType.DEDUCTION,
            title=f"Potential {label} deduction: {format_currency(deduction.potential_deduction)}",
            summary=f"{deduction.suggestion} Estimated tax savings: {format_currency(deduction.estimated_savings)}.",
            severity_score=deduction_severity(deduction.estimated_savings),
            supporting_transaction_ids=deduction.transactions,
            explanation=InsightExplanation(
                reason=f"These transactions match common {label} deduction patterns.",
                thresholds=[
                    ThresholdEntry(
                        name="match confidence",
                        actual=f"{deduction.confidence:.0%}",
                        threshold=f"{DEFAULT_MIN_CONFIDENCE:.0%}",
                    ),
                    ThresholdEntry(
                        name="estimated tax savings",
                        actual=format_currency(deduction.estimated_savings),
                        threshold=f"${SAVINGS_PER_SEVERITY_POINT} per severity point",
                    ),
                ],
                suggestion="Keep the receipts and confirm eligibility with a tax professional.",
            ),
        ))

    return insights
