"""
Deduction rules engine.

Scores each rule against a transaction's merchant and description:
    confidence = base + keyword coverage * 0.4
                 + 0.1 if any keyword hit the merchant
                 + 0.05 if more than one keyword hit the description
                 + context adjustment
clamped to [0, 0.95]. Matches under the minimum confidence are dropped.
"""

from typing import Optional, Sequence

from taxhelper.deductions.rules import DEDUCTION_RULES
from taxhelper.deductions.types import DeductionContext, DeductionMatch, DeductionRule
from taxhelper.insights.types import InsightTransaction
from taxhelper.models.enums import DeductionCategory

DEFAULT_MIN_CONFIDENCE = 0.45
MAX_CONFIDENCE = 0.95
COVERAGE_WEIGHT = 0.4
MERCHANT_MATCH_BONUS = 0.1
MULTI_DESCRIPTION_BONUS = 0.05
CONTEXT_ADJUSTMENT = 0.05


def _clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def is_rule_eligible(rule: DeductionRule, context: DeductionContext) -> bool:
    """A rule is skipped only when one of its required flags is explicitly False."""
    return not any(getattr(context, flag, None) is False for flag in rule.requires)


def context_adjustment(category: DeductionCategory, context: DeductionContext) -> float:
    adjustment = 0.0

    if category == DeductionCategory.HOME_OFFICE:
        if context.works_from_home is True:
            adjustment += CONTEXT_ADJUSTMENT
        elif context.works_from_home is None:
            adjustment -= CONTEXT_ADJUSTMENT

    if category in (DeductionCategory.BUSINESS_TRAVEL, DeductionCategory.PROFESSIONAL_DEVELOPMENT):
        if context.is_freelancer is True:
            adjustment += CONTEXT_ADJUSTMENT
        elif context.is_freelancer is False:
            adjustment -= CONTEXT_ADJUSTMENT

    if category == DeductionCategory.HEALTH and context.has_health_insurance is True:
        adjustment += CONTEXT_ADJUSTMENT

    return adjustment


def match_deduction_rules(
    transaction: InsightTransaction,
    context: Optional[DeductionContext] = None,
    min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    rules: Optional[Sequence[DeductionRule]] = None,
) -> list[DeductionMatch]:
    """All rules matching a transaction, most confident first."""
    context = context or DeductionContext()
    merchant = (transaction.merchant or "").lower()
    description = (transaction.description or "").lower()
    matches: list[DeductionMatch] = []

    for rule in rules if rules is not None else DEDUCTION_RULES:
        if not is_rule_eligible(rule, context):
            continue

        matched: list[str] = []
        merchant_hits = 0
        description_hits = 0
        for keyword in rule.keywords:
            normalized = keyword.lower()
            hit = False
            if normalized in merchant:
                merchant_hits += 1
                hit = True
            if normalized in description:
                description_hits += 1
                hit = True
            if hit and normalized not in matched:
                matched.append(normalized)

        if not matched:
            continue

        confidence = rule.base_confidence + (len(matched) / len(rule.keywords)) * COVERAGE_WEIGHT
        if merchant_hits > 0:
            confidence += MERCHANT_MATCH_BONUS
        if description_hits > 1:
            confidence += MULTI_DESCRIPTION_BONUS
        confidence = _clamp(confidence + context_adjustment(rule.category, context), 0.0, MAX_CONFIDENCE)

        if confidence < min_confidence:
            continue

        amount = float(transaction.total_amount)
        matches.append(DeductionMatch(
            transaction_id=transaction.id,
            category=rule.category,
            rule_id=rule.id,
            confidence=round(confidence, 4),
            deduction_percent=rule.deduction_percent,
            irs_category=rule.irs_category,
            matched_keywords=matched,
            amount=amount,
            potential_deduction=round(amount * rule.deduction_percent, 2),
            merchant=transaction.merchant,
            description=transaction.description,
        ))

    matches.sort(key=lambda m: m.confidence, reverse=True)
    return matches
