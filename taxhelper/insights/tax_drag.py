"""
Tax drag: merchants where a noticeably high share of spend goes to tax.
"""

import math

from taxhelper.insights.types import (
    MAX_SEVERITY,
    Insight,
    InsightExplanation,
    InsightTransaction,
    TaxDragThresholds as T,
    ThresholdEntry,
    group_by_merchant,
)
from taxhelper.models.enums import InsightType


def detect_tax_drag(transactions: list[InsightTransaction]) -> list[Insight]:
    insights: list[Insight] = []

    for merchant, group in group_by_merchant(transactions).items():
        total_spent = sum(float(t.total_amount) for t in group)
        if total_spent < T.MIN_TOTAL_SPENT:
            continue
        total_tax = sum(float(t.tax_amount) for t in group)
        rate = total_tax / total_spent
        if rate <= T.MIN_TAX_RATE:
            continue

        # 0.12 - 0.08 is 0.0399999...; round before flooring
        diff = round(rate - T.BASELINE_RATE, 4)
        severity = min(MAX_SEVERITY, math.floor(diff * T.SEVERITY_MULTIPLIER))
        rate_percent = f"{rate * 100:.1f}%"

        insights.append(Insight(
            type=InsightType.TAX_DRAG,
            title=f"High Tax: {merchant}",
            summary=f"{rate_percent} effective rate on ${total_spent:.0f}",
            severity_score=severity,
            supporting_transaction_ids=[t.id for t in group],
            explanation=InsightExplanation(
                reason=f"Purchases at {merchant} carry a higher tax rate than typical sales tax.",
                thresholds=[
                    ThresholdEntry(
                        name="effective tax rate",
                        actual=rate_percent,
                        threshold=f"{T.MIN_TAX_RATE * 100:.0f}%",
                    ),
                    ThresholdEntry(
                        name="total spent",
                        actual=f"${total_spent:.0f}",
                        threshold=f"${T.MIN_TOTAL_SPENT}",
                    ),
                ],
                suggestion=(
                    f"Check whether {merchant} adds extra fees or surcharges, "
                    "or whether a lower-tax alternative exists."
                ),
            ),
        ))

    return insights
