"""
Tests for the deduction rules engine, summary and deduction insights.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from taxhelper.deductions.engine import match_deduction_rules
from taxhelper.deductions.summary import (
    build_deduction_summary,
    format_category_label,
    normalize_tax_rate,
)
from taxhelper.deductions.types import DeductionContext
from taxhelper.insights.deductions import deduction_severity, detect_deduction_insights
from taxhelper.insights.types import InsightTransaction
from taxhelper.models.enums import DeductionCategory, InsightType


def txn(id, merchant, description=None, amount="40.00"):
    return InsightTransaction(
        id=id,
        date=datetime(2024, 6, 1, tzinfo=timezone.utc),
        merchant=merchant,
        description=description,
        total_amount=Decimal(amount),
    )


class TestMatchDeductionRules:

    def test_rideshare_for_freelancer(self):
        matches = match_deduction_rules(
            txn("t1", "Uber", "Airport ride"), DeductionContext(is_freelancer=True)
        )

        best = matches[0]
        assert best.category == DeductionCategory.BUSINESS_TRAVEL
        assert best.rule_id == "travel_rideshare"
        assert best.confidence > 0.6
        assert best.potential_deduction == 40.0
        assert set(best.matched_keywords) == {"uber", "ride", "airport"}

    def test_internet_for_remote_worker(self):
        matches = match_deduction_rules(
            txn("t1", "Comcast", "Internet bill", amount="100.00"), DeductionContext(works_from_home=True)
        )

        best = matches[0]
        assert best.category == DeductionCategory.HOME_OFFICE
        assert best.potential_deduction == 40.0
        assert best.confidence == pytest.approx(0.5643, abs=1e-4)

    def test_required_flag_false_skips_rule(self):
        matches = match_deduction_rules(
            txn("t1", "Comcast", "Internet bill"), DeductionContext(works_from_home=False)
        )
        assert all(m.category != DeductionCategory.HOME_OFFICE for m in matches)

    def test_merchant_hit_beats_description_hit(self):
        by_merchant = match_deduction_rules(txn("t1", "Lyft", "Trip"), min_confidence=0.0)[0]
        by_description = match_deduction_rules(txn("t2", "Card payment", "Lyft trip"), min_confidence=0.0)[0]
        assert by_merchant.confidence > by_description.confidence

    def test_conference_is_moderate_confidence(self):
        best = match_deduction_rules(txn("t1", "Tech Events", "Conference ticket"))[0]
        assert best.category == DeductionCategory.PROFESSIONAL_DEVELOPMENT
        assert best.confidence < 0.8

    def test_no_match(self):
        assert match_deduction_rules(txn("t1", "Grocery Mart", "Weekly groceries")) == []

    def test_confidence_is_capped(self):
        matches = match_deduction_rules(
            txn("t1", "Uber Lyft Taxi", "uber lyft taxi cab ride airport"),
            DeductionContext(is_freelancer=True),
        )
        assert matches[0].confidence == 0.95

    def test_minimum_confidence(self):
        assert match_deduction_rules(txn("t1", "Lyft", "Trip"), min_confidence=0.99) == []


class TestDeductionSummary:

    def test_groups_by_best_category(self):
        transactions = [
            txn("t1", "Uber", "Airport ride", amount="40.00"),
            txn("t2", "Uber", "Ride home", amount="20.00"),
            txn("t3", "Red Cross", "Donation", amount="100.00"),
        ]

        summary = build_deduction_summary(transactions, DeductionContext(is_freelancer=True))

        by_category = {d.category: d for d in summary.deductions}
        assert set(by_category) == {DeductionCategory.BUSINESS_TRAVEL, DeductionCategory.CHARITY}
        travel = by_category[DeductionCategory.BUSINESS_TRAVEL]
        assert travel.transactions == ["t1", "t2"]
        assert travel.potential_deduction == 60.0
        assert travel.estimated_savings == 15.0
        assert travel.suggestion == (
            "Your 2 Uber transactions totaling $60.00 may be deductible as Business Travel."
        )
        assert summary.total_potential_deduction == 160.0
        assert summary.estimated_tax_savings == 40.0
        # Largest first
        assert summary.deductions[0].category == DeductionCategory.CHARITY

    def test_custom_tax_rate(self):
        summary = build_deduction_summary(
            [txn("t1", "Red Cross", "Donation", amount="100.00")],
            DeductionContext(estimated_tax_rate=30),
        )
        assert summary.estimated_tax_savings == 30.0

    def test_empty(self):
        summary = build_deduction_summary([])
        assert summary.deductions == []
        assert summary.total_potential_deduction == 0.0

    @pytest.mark.parametrize("raw, expected", [
        (None, 0.25),
        (0.3, 0.3),
        (22, 0.22),
        (-1, 0.0),
    ])
    def test_normalize_tax_rate(self, raw, expected):
        assert normalize_tax_rate(raw) == pytest.approx(expected)

    def test_category_label(self):
        assert format_category_label(DeductionCategory.PROFESSIONAL_DEVELOPMENT) == "Professional Development"


class TestDeductionInsights:

    def test_one_insight_per_category(self):
        insights = detect_deduction_insights(
            [txn("t1", "Uber", "Airport ride")], DeductionContext(is_freelancer=True)
        )

        assert len(insights) == 1
        insight = insights[0]
        assert insight.type == InsightType.DEDUCTION
        assert insight.title == "Potential Business Travel deduction: $40.00"
        assert insight.supporting_transaction_ids == ["t1"]
        assert insight.severity_score == 1

    @pytest.mark.parametrize("savings, severity", [(0.5, 1), (100, 1), (101, 2), (5000, 10)])
    def test_severity(self, savings, severity):
        assert deduction_severity(savings) == severity
