"""
Per-category deduction summary built from the best rule match of each transaction.
"""

import math
from collections import Counter
from typing import Optional, Sequence

from taxhelper.deductions.engine import match_deduction_rules
from taxhelper.deductions.types import DeductionContext, DeductionSummary, DeductionSummaryResult
from taxhelper.insights.types import InsightTransaction
from taxhelper.models.enums import DeductionCategory

DEFAULT_TAX_RATE = 0.25


def format_category_label(category: DeductionCategory) -> str:
    """HOME_OFFICE -> 'Home Office'"""
    return " ".join(chunk.capitalize() for chunk in DeductionCategory(category).value.split("_"))


def format_currency(value: float) -> str:
    return f"${value:.2f}"


def normalize_tax_rate(rate: Optional[float]) -> float:
    """Rates above 1 are percentages. Unknown falls back to 25%."""
    if rate is None or math.isnan(rate):
        return DEFAULT_TAX_RATE
    if rate > 1:
        rate = rate / 100
    return min(max(rate, 0.0), 1.0)


def build_deduction_summary(
    transactions: Sequence[InsightTransaction],
    context: Optional[DeductionContext] = None,
) -> DeductionSummaryResult:
    context = context or DeductionContext()
    tax_rate = normalize_tax_rate(context.estimated_tax_rate)
    aggregates: dict[DeductionCategory, dict] = {}

    for transaction in transactions:
        matches = match_deduction_rules(transaction, context)
        if not matches:
            continue

        best = matches[0]
        agg = aggregates.setdefault(best.category, {
            "total_spend": 0.0,
            "potential_deduction": 0.0,
            "estimated_savings": 0.0,
            "transaction_ids": [],
            "merchants": Counter(),
            "confidence_total": 0.0,
        })
        agg["total_spend"] += best.amount
        agg["potential_deduction"] += best.potential_deduction
        agg["estimated_savings"] += best.potential_deduction * tax_rate
        agg["transaction_ids"].append(transaction.id)
        agg["confidence_total"] += best.confidence
        if transaction.merchant:
            agg["merchants"][transaction.merchant] += 1

    deductions: list[DeductionSummary] = []
    for category, agg in aggregates.items():
        count = len(agg["transaction_ids"])
        top = agg["merchants"].most_common(1)
        if top:
            noun = "transaction" if count == 1 else "transactions"
            subject = f"{count} {top[0][0]} {noun}"
        else:
            subject = f"{count} transactions"

        deductions.append(DeductionSummary(
            category=category,
            potential_deduction=round(agg["potential_deduction"], 2),
            estimated_savings=round(agg["estimated_savings"], 2),
            transactions=agg["transaction_ids"],
            suggestion=(
                f"Your {subject} totaling {format_currency(agg['total_spend'])} "
                f"may be deductible as {format_category_label(category)}."
            ),
            confidence=round(agg["confidence_total"] / count, 2),
        ))

    deductions.sort(key=lambda d: d.potential_deduction, reverse=True)
    return DeductionSummaryResult(
        deductions=deductions,
        total_potential_deduction=round(sum(d.potential_deduction for d in deductions), 2),
        estimated_tax_savings=round(sum(d.estimated_savings for d in deductions), 2),
    )
