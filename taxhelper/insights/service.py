"""
Insight generation with a per-(user, range) cache.

get_insights() serves the latest run while it is fresh and no transaction
changed since it was generated; otherwise it regenerates, carries over
pinned/dismissed state, and stores a new run.
"""

import time
from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taxhelper.config import settings
from taxhelper.deductions.summary import build_deduction_summary
from taxhelper.deductions.types import DeductionContext, DeductionSummaryResult
from taxhelper.insights.cache_policy import get_insight_cache_ttl, is_cache_valid
from taxhelper.insights.deductions import detect_deduction_insights
from taxhelper.insights.quiet_leaks import detect_quiet_leaks
from taxhelper.insights.repository import InsightRepository, TransactionRepository
from taxhelper.insights.sorting import sort_insights
from taxhelper.insights.spikes import detect_duplicates, detect_spikes
from taxhelper.insights.state import merge_insight_state
from taxhelper.insights.tax_drag import detect_tax_drag
from taxhelper.insights.types import Insight, InsightTransaction
from taxhelper.models.tables import utcnow
from taxhelper.observability.metrics import (
    insight_cache_requests_total,
    insight_generation_duration_seconds,
)

logger = structlog.get_logger(__name__)


def generate_insights(
    transactions: list[InsightTransaction], context: Optional[DeductionContext] = None
) -> list[Insight]:
    """Run every generator over one transaction window."""
    return [
        *detect_quiet_leaks(transactions),
        *detect_tax_drag(transactions),
        *detect_spikes(transactions),
        *detect_duplicates(transactions),
        *detect_deduction_insights(transactions, context),
    ]


class InsightService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        insights: Optional[InsightRepository] = None,
        transactions: Optional[TransactionRepository] = None,
    ):
        self.insights = insights or InsightRepository(session_factory)
        self.transactions = transactions or TransactionRepository(session_factory)

    async def get_insights(
        self,
        user_id: str,
        range_days: Optional[int] = None,
        force_refresh: bool = False,
        user_context: Optional[DeductionContext] = None,
        now: Optional[datetime] = None,
        ttl: Optional[timedelta] = None,
    ) -> list[Insight]:
        range_days = range_days or settings.INSIGHT_DEFAULT_RANGE_DAYS
        now = now or utcnow()
        ttl = ttl if ttl is not None else get_insight_cache_ttl()
        log = logger.bind(user_id=user_id, range_days=range_days)

        cached = await self.insights.find_latest_run(user_id, range_days)
        if not force_refresh and cached is not None:
            latest_update = await self.transactions.get_latest_updated_at(user_id)
            if is_cache_valid(cached.generated_at, now, latest_update, ttl):
                insight_cache_requests_total.labels(result="hit").inc()
                log.debug("insight_cache_hit", run_id=cached.id)
                return sort_insights(cached.insights)

        insight_cache_requests_total.labels(result="refresh" if force_refresh else "miss").inc()

        start = time.monotonic()
        transactions = await self.transactions.list_by_user_since(
            user_id, now - timedelta(days=range_days)
        )
        generated = generate_insights(transactions, user_context)
        merged = merge_insight_state(generated, cached.insights if cached else [])
        run = await self.insights.create_run(
            user_id, range_days, sort_insights(merged), generated_at=now
        )
        insight_generation_duration_seconds.observe(time.monotonic() - start)

        log.info(
            "insights_regenerated",
            run_id=run.id,
            transactions=len(transactions),
            insights=len(run.insights),
            forced=force_refresh,
        )
        return sort_insights(run.insights)

    async def update_insight_state(
        self,
        user_id: str,
        insight_id: str,
        pinned: Optional[bool] = None,
        dismissed: Optional[bool] = None,
    ) -> Optional[Insight]:
        updated = await self.insights.update_insight_state(
            user_id, insight_id, pinned=pinned, dismissed=dismissed
        )
        if updated is not None:
            logger.info(
                "insight_state_updated",
                insight_id=insight_id,
                pinned=updated.pinned,
                dismissed=updated.dismissed,
            )
        return updated

    async def get_deduction_summary(
        self,
        user_id: str,
        range_days: Optional[int] = None,
        user_context: Optional[DeductionContext] = None,
        now: Optional[datetime] = None,
    ) -> DeductionSummaryResult:
        """Potential deductions over the window. Not cached."""
        range_days = range_days or settings.INSIGHT_DEFAULT_RANGE_DAYS
        now = now or utcnow()
        transactions = await self.transactions.list_by_user_since(
            user_id, now - timedelta(days=range_days)
        )
        return build_deduction_summary(transactions, user_context)
