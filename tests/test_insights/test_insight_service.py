"""
Tests for InsightService: cache hits and misses, invalidation on
transaction changes, and pinned/dismissed state across regenerations.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from taxhelper.deductions.types import DeductionContext
from taxhelper.insights.service import InsightService
from taxhelper.models.enums import DeductionCategory, InsightType
from taxhelper.models.tables import utcnow
from taxhelper.transactions.service import TransactionService

TTL = timedelta(hours=1)


@pytest.fixture
def insight_service(session_factory):
    return InsightService(session_factory)


@pytest.fixture
def transaction_service(session_factory):
    return TransactionService(session_factory)


@pytest.fixture
def coffee_habit(transaction_factory):
    """Four $15 coffees two days apart: one quiet leak, nothing else."""

    async def _create(user_id="user-1"):
        now = utcnow()
        return [
            await transaction_factory(
                user_id=user_id,
                merchant="Coffee Spot",
                total_amount=Decimal("15.00"),
                tax_amount=Decimal("0.80"),
                date=now - timedelta(days=2 * i + 1),
                created_at=now,
                updated_at=now,
            )
            for i in range(4)
        ]

    return _create


class TestGetInsights:

    async def test_generates_quiet_leak(self, insight_service, coffee_habit):
        created = await coffee_habit()

        insights = await insight_service.get_insights("user-1", 30, ttl=TTL)

        assert len(insights) == 1
        leak = insights[0]
        assert leak.type == InsightType.QUIET_LEAK
        assert leak.id is not None
        assert sorted(leak.supporting_transaction_ids) == sorted(t.id for t in created)

    async def test_no_transactions(self, insight_service):
        assert await insight_service.get_insights("user-1", 30, ttl=TTL) == []

    async def test_outside_range_ignored(self, insight_service, transaction_factory):
        old = utcnow() - timedelta(days=60)
        for _ in range(4):
            await transaction_factory(merchant="Coffee Spot", total_amount=Decimal("15.00"), date=old)

        assert await insight_service.get_insights("user-1", 30, ttl=TTL) == []

    async def test_other_users_transactions_ignored(self, insight_service, coffee_habit):
        await coffee_habit(user_id="user-2")
        assert await insight_service.get_insights("user-1", 30, ttl=TTL) == []

    async def test_deduction_insight_with_context(self, insight_service, transaction_factory):
        await transaction_factory(
            merchant="Uber",
            description="Airport ride",
            total_amount=Decimal("40.00"),
            date=utcnow() - timedelta(days=1),
        )

        insights = await insight_service.get_insights(
            "user-1", 30, user_context=DeductionContext(is_freelancer=True), ttl=TTL
        )

        assert [i.type for i in insights] == [InsightType.DEDUCTION]
        assert insights[0].explanation is not None
        assert insights[0].explanation.suggestion


class TestInsightCache:

    async def test_second_call_served_from_cache(self, insight_service, coffee_habit):
        await coffee_habit()

        first = await insight_service.get_insights("user-1", 30, ttl=TTL)
        second = await insight_service.get_insights("user-1", 30, ttl=TTL)

        assert [i.id for i in second] == [i.id for i in first]

    async def test_ranges_cached_separately(self, insight_service, coffee_habit):
        await coffee_habit()

        thirty = await insight_service.get_insights("user-1", 30, ttl=TTL)
        ninety = await insight_service.get_insights("user-1", 90, ttl=TTL)

        assert thirty[0].id != ninety[0].id

    async def test_force_refresh_regenerates(self, insight_service, coffee_habit):
        await coffee_habit()

        first = await insight_service.get_insights("user-1", 30, ttl=TTL)
        refreshed = await insight_service.get_insights("user-1", 30, force_refresh=True, ttl=TTL)

        assert refreshed[0].id != first[0].id

    async def test_expired_run_regenerates(self, insight_service, coffee_habit):
        await coffee_habit()

        first = await insight_service.get_insights("user-1", 30, ttl=TTL)
        later = utcnow() + timedelta(hours=2)
        second = await insight_service.get_insights("user-1", 30, now=later, ttl=TTL)

        assert second[0].id != first[0].id

    async def test_new_transaction_invalidates(self, insight_service, coffee_habit, transaction_factory):
        await coffee_habit()
        first = await insight_service.get_insights("user-1", 30, ttl=TTL)

        fifth = await transaction_factory(
            merchant="Coffee Spot",
            total_amount=Decimal("15.00"),
            date=utcnow() - timedelta(days=9),
        )
        second = await insight_service.get_insights("user-1", 30, ttl=TTL)

        assert second[0].id != first[0].id
        assert fifth.id in second[0].supporting_transaction_ids

    async def test_deleted_transaction_invalidates_and_is_excluded(
        self, insight_service, transaction_service, coffee_habit
    ):
        created = await coffee_habit()
        assert len(await insight_service.get_insights("user-1", 30, ttl=TTL)) == 1

        result = await transaction_service.delete("user-1", created[0].id)
        assert result.success

        # Three $15 purchases no longer reach the $50 floor
        assert await insight_service.get_insights("user-1", 30, ttl=TTL) == []

    async def test_updated_transaction_invalidates(
        self, insight_service, transaction_service, coffee_habit
    ):
        created = await coffee_habit()
        await insight_service.get_insights("user-1", 30, ttl=TTL)

        result = await transaction_service.update(
            "user-1", created[0].id, {"total_amount": Decimal("45.00")}
        )
        assert result.success

        # $45 is no longer a small purchase, and it stands out against the other three
        insights = await insight_service.get_insights("user-1", 30, ttl=TTL)
        assert [i.type for i in insights] == [InsightType.SPIKE]
        assert insights[0].supporting_transaction_ids == [created[0].id]


class TestInsightState:

    async def test_pin_survives_refresh(self, insight_service, coffee_habit):
        await coffee_habit()
        [leak] = await insight_service.get_insights("user-1", 30, ttl=TTL)

        pinned = await insight_service.update_insight_state("user-1", leak.id, pinned=True)
        assert pinned.pinned is True

        [refreshed] = await insight_service.get_insights("user-1", 30, force_refresh=True, ttl=TTL)
        assert refreshed.id != leak.id
        assert refreshed.pinned is True
        assert refreshed.dismissed is False

    async def test_dismiss_unpins(self, insight_service, coffee_habit):
        await coffee_habit()
        [leak] = await insight_service.get_insights("user-1", 30, ttl=TTL)
        await insight_service.update_insight_state("user-1", leak.id, pinned=True)

        dismissed = await insight_service.update_insight_state("user-1", leak.id, dismissed=True)

        assert dismissed.dismissed is True
        assert dismissed.pinned is False

    async def test_pin_undismisses(self, insight_service, coffee_habit):
        await coffee_habit()
        [leak] = await insight_service.get_insights("user-1", 30, ttl=TTL)
        await insight_service.update_insight_state("user-1", leak.id, dismissed=True)

        pinned = await insight_service.update_insight_state("user-1", leak.id, pinned=True)

        assert pinned.pinned is True
        assert pinned.dismissed is False

    async def test_state_visible_on_cache_hit(self, insight_service, coffee_habit):
        await coffee_habit()
        [leak] = await insight_service.get_insights("user-1", 30, ttl=TTL)
        await insight_service.update_insight_state("user-1", leak.id, dismissed=True)

        [cached] = await insight_service.get_insights("user-1", 30, ttl=TTL)

        assert cached.id == leak.id
        assert cached.dismissed is True

    async def test_other_user_cannot_update(self, insight_service, coffee_habit):
        await coffee_habit()
        [leak] = await insight_service.get_insights("user-1", 30, ttl=TTL)

        assert await insight_service.update_insight_state("user-2", leak.id, pinned=True) is None

    async def test_unknown_insight(self, insight_service):
        assert await insight_service.update_insight_state("user-1", "missing", pinned=True) is None


class TestDeductionSummary:

    async def test_summary_over_window(self, insight_service, transaction_factory):
        ride = await transaction_factory(
            merchant="Uber",
            description="Airport ride",
            total_amount=Decimal("40.00"),
            date=utcnow() - timedelta(days=100),
        )

        summary = await insight_service.get_deduction_summary(
            "user-1", 365, DeductionContext(is_freelancer=True)
        )

        assert [d.category for d in summary.deductions] == [DeductionCategory.BUSINESS_TRAVEL]
        assert summary.deductions[0].transactions == [ride.id]
        assert summary.estimated_tax_savings == 10.0

    async def test_summary_respects_range(self, insight_service, transaction_factory):
        await transaction_factory(
            merchant="Uber",
            description="Airport ride",
            total_amount=Decimal("40.00"),
            date=utcnow() - timedelta(days=100),
        )

        summary = await insight_service.get_deduction_summary("user-1", 30)

        assert summary.deductions == []
