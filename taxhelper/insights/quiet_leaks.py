"""
Quiet leaks: small recurring purchases at one merchant that add up.
"""

import math

from taxhelper.insights.types import (
    MAX_SEVERITY,
    Insight,
    InsightExplanation,
    InsightTransaction,
    QuietLeakThresholds as T,
    ThresholdEntry,
    group_by_merchant,
)
from taxhelper.models.enums import InsightType


def detect_quiet_leaks(transactions: list[InsightTransaction]) -> list[Insight]:
    small = [t for t in transactions if float(t.total_amount) <= T.MAX_INDIVIDUAL_AMOUNT]
    insights: list[Insight] = []

    for merchant, group in group_by_merchant(small).items():
        if len(group) < T.MIN_OCCURRENCES:
            continue
        total = sum(float(t.total_amount) for t in group)
        if total < T.MIN_CUMULATIVE_TOTAL:
            continue

        largest = max(float(t.total_amount) for t in group)
        formatted_total = f"${total:.2f}"
        insights.append(Insight(
            type=InsightType.QUIET_LEAK,
            title=f"Quiet Leak: {merchant}",
            summary=f"{len(group)} purchases totaling {formatted_total}",
            severity_score=min(MAX_SEVERITY, math.floor(total / T.SEVERITY_DIVISOR)),
            supporting_transaction_ids=[t.id for t in group],
            explanation=InsightExplanation(
                reason=f"You have recurring small purchases at {merchant} that add up over time.",
                thresholds=[
                    ThresholdEntry(name="occurrences", actual=len(group), threshold=T.MIN_OCCURRENCES),
                    ThresholdEntry(
                        name="cumulative total",
                        actual=formatted_total,
                        threshold=f"${T.MIN_CUMULATIVE_TOTAL}",
                    ),
                    ThresholdEntry(
                        name="individual amount",
                        actual=f"≤${largest:.2f}",
                        threshold=f"≤${T.MAX_INDIVIDUAL_AMOUNT}",
                    ),
                ],
                suggestion=(
                    f"Consider whether these frequent purchases at {merchant} are necessary, "
                    "or if you could reduce them."
                ),
            ),
        ))

    return insights

