"""
Spikes (one purchase far above the rest) and duplicates (same charge twice within a day).
"""

import math
from datetime import timedelta
from decimal import Decimal

from taxhelper.insights.types import (
    MAX_SEVERITY,
    Insight,
    InsightExplanation,
    InsightTransaction,
    SpikeThresholds as T,
    ThresholdEntry,
)
from taxhelper.models.enums import InsightType


def detect_spikes(transactions: list[InsightTransaction]) -> list[Insight]:
    """Each transaction against the average of all the others."""
    if len(transactions) < 2:
        return []

    amounts = [float(t.total_amount) for t in transactions]
    grand_total = sum(amounts)
    insights: list[Insight] = []

    for txn, amount in zip(transactions, amounts):
        average = (grand_total - amount) / (len(amounts) - 1)
        threshold = average * T.AVERAGE_MULTIPLIER
        if amount <= threshold:
            continue

        if average > 0:
            multiplier = amount / average
            severity = min(MAX_SEVERITY, math.floor((multiplier - 1) * T.SEVERITY_MULTIPLIER))
            ratio = f"{multiplier:.1f}x"
            summary = f"${amount:.0f} ({ratio} your average)"
        else:
            # Zero baseline: any positive charge is an unbounded multiple
            severity = MAX_SEVERITY
            ratio = "no baseline"
            summary = f"${amount:.0f} (your other purchases average ${average:.0f})"
        merchant = txn.merchant or "Unknown"

        insights.append(Insight(
            type=InsightType.SPIKE,
            title=f"Unusual: {merchant}",
            summary=summary,
            severity_score=severity,
            supporting_transaction_ids=[txn.id],
            explanation=InsightExplanation(
                reason=f"This purchase is much larger than your average transaction of ${average:.2f}.",
                thresholds=[
                    ThresholdEntry(
                        name="multiplier vs average",
                        actual=ratio,
                        threshold=f"{T.AVERAGE_MULTIPLIER}x",
                    ),
                    ThresholdEntry(
                        name="amount",
                        actual=f"${amount:.2f}",
                        threshold=f"${threshold:.2f}",
                    ),
                ],
                suggestion=f"Make sure this {merchant} charge was expected and the amount is correct.",
            ),
        ))

    return insights


def detect_duplicates(transactions: list[InsightTransaction]) -> list[Insight]:
    """
    Same merchant and exact amount within the duplicate window.
    Reports the first qualifying pair per (merchant, amount) group only.
    """
    window = timedelta(hours=T.DUPLICATE_WINDOW_HOURS)
    groups: dict[tuple[str, Decimal], list[InsightTransaction]] = {}
    for txn in transactions:
        if not txn.merchant:
            continue
        groups.setdefault((txn.merchant, Decimal(txn.total_amount)), []).append(txn)

    insights: list[Insight] = []
    for (merchant, amount), group in groups.items():
        pair = _first_pair_within(group, window)
        if pair is None:
            continue

        first, second = pair
        gap_hours = abs(second.date - first.date).total_seconds() / 3600
        insights.append(Insight(
            type=InsightType.DUPLICATE,
            title=f"Possible Duplicate: {merchant}",
            summary=f"${float(amount):.2f} charged twice within {T.DUPLICATE_WINDOW_HOURS}h",
            severity_score=T.DUPLICATE_SEVERITY,
            supporting_transaction_ids=[first.id, second.id],
            explanation=InsightExplanation(
                reason="Two charges from the same merchant for the same amount landed close together.",
                thresholds=[
                    ThresholdEntry(
                        name="time window",
                        actual=f"{gap_hours:.1f}h",
                        threshold=f"{T.DUPLICATE_WINDOW_HOURS}h",
                    ),
                ],
                suggestion=f"Check your statement for a double charge from {merchant}.",
            ),
        ))

    return insights


def _first_pair_within(group: list[InsightTransaction], window: timedelta):
    for i, first in enumerate(group):
        for second in group[i + 1:]:
            if abs(second.date - first.date) <= window:
                return first, second
    return None
