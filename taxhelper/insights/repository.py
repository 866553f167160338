"""
Insight run cache and the read-only transaction view the generators consume.
"""

from datetime import datetime
from typing import Optional

import structlog
from pydantic import BaseModel
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from taxhelper.insights.types import Insight, InsightExplanation, InsightTransaction
from taxhelper.models.tables import (
    Insight as InsightRow,
    InsightRun,
    Transaction,
    ensure_utc,
    utcnow,
)

logger = structlog.get_logger(__name__)


class InsightRunRecord(BaseModel):
    id: str
    user_id: str
    range_days: int
    generated_at: datetime
    insights: list[Insight]


def _parse_explanation(value) -> Optional[InsightExplanation]:
    """Stored explanations are JSON; anything malformed is dropped."""
    if not isinstance(value, dict) or not isinstance(value.get("reason"), str):
        return None
    thresholds = [
        t for t in value.get("thresholds") or []
        if isinstance(t, dict)
        and isinstance(t.get("name"), str)
        and isinstance(t.get("actual"), (int, float, str))
        and isinstance(t.get("threshold"), (int, float, str))
    ]
    suggestion = value.get("suggestion")
    return InsightExplanation(
        reason=value["reason"],
        thresholds=thresholds,
        suggestion=suggestion if isinstance(suggestion, str) else None,
    )


def _to_insight(row: InsightRow) -> Insight:
    return Insight(
        id=row.id,
        type=row.type,
        title=row.title,
        summary=row.summary,
        severity_score=row.severity_score,
        supporting_transaction_ids=list(row.supporting_transaction_ids or []),
        dismissed=row.dismissed,
        pinned=row.pinned,
        explanation=_parse_explanation(row.explanation),
    )


def _to_record(run: InsightRun) -> InsightRunRecord:
    return InsightRunRecord(
        id=run.id,
        user_id=run.user_id,
        range_days=run.range_days,
        generated_at=ensure_utc(run.generated_at),
        insights=[_to_insight(row) for row in run.insights],
    )


class InsightRepository:
    """One InsightRun per generation pass, keyed by (user, range)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def find_latest_run(self, user_id: str, range_days: int) -> Optional[InsightRunRecord]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(InsightRun)
                .where(InsightRun.user_id == user_id, InsightRun.range_days == range_days)
                .order_by(InsightRun.generated_at.desc())
                .limit(1)
                .options(selectinload(InsightRun.insights))
            )
            run = result.scalar_one_or_none()
            return _to_record(run) if run is not None else None

    async def create_run(
        self,
        user_id: str,
        range_days: int,
        insights: list[Insight],
        generated_at: Optional[datetime] = None,
    ) -> InsightRunRecord:
        """Persist a run. Insight order is kept through the position column."""
        run = InsightRun(
            user_id=user_id,
            range_days=range_days,
            generated_at=generated_at or utcnow(),
        )
        run.insights = [
            InsightRow(
                position=position,
                type=insight.type,
                title=insight.title,
                summary=insight.summary,
                severity_score=int(round(insight.severity_score)),
                supporting_transaction_ids=list(insight.supporting_transaction_ids),
                dismissed=insight.dismissed,
                pinned=insight.pinned,
                explanation=insight.explanation.model_dump() if insight.explanation else None,
            )
            for position, insight in enumerate(insights)
        ]

        async with self.session_factory() as session:
            async with session.begin():
                session.add(run)
            record = _to_record(run)

        logger.info(
            "insight_run_created",
            run_id=record.id,
            user_id=user_id,
            range_days=range_days,
            count=len(record.insights),
        )
        return record

    async def update_insight_state(
        self,
        user_id: str,
        insight_id: str,
        pinned: Optional[bool] = None,
        dismissed: Optional[bool] = None,
    ) -> Optional[Insight]:
        """
        Set pinned/dismissed on an insight the user owns.
        Dismissing unpins and pinning un-dismisses. Returns None when not found.
        """
        if dismissed is True:
            pinned = False
        if pinned is True:
            dismissed = False

        values = {}
        if pinned is not None:
            values["pinned"] = pinned
        if dismissed is not None:
            values["dismissed"] = dismissed

        owned = select(InsightRun.id).where(InsightRun.user_id == user_id)
        async with self.session_factory() as session:
            async with session.begin():
                if values:
                    await session.execute(
                        update(InsightRow)
                        .where(InsightRow.id == insight_id, InsightRow.run_id.in_(owned))
                        .values(**values)
                        .execution_options(synchronize_session=False)
                    )
                row = (
                    await session.execute(
                        select(InsightRow).where(
                            InsightRow.id == insight_id, InsightRow.run_id.in_(owned)
                        )
                    )
                ).scalar_one_or_none()
                return _to_insight(row) if row is not None else None


class TransactionRepository:
    """Read-only transaction queries for insight generation."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def list_by_user_since(self, user_id: str, from_date: datetime) -> list[InsightTransaction]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Transaction)
                .where(
                    Transaction.user_id == user_id,
                    Transaction.deleted_at.is_(None),
                    Transaction.date >= from_date,
                )
                .order_by(Transaction.date.desc(), Transaction.id)
            )
            return [
                InsightTransaction(
                    id=t.id,
                    date=ensure_utc(t.date),
                    merchant=t.merchant,
                    description=t.description,
                    total_amount=t.total_amount,
                    tax_amount=t.tax_amount if t.tax_amount is not None else 0,
                )
                for t in result.scalars().all()
            ]

    async def get_latest_updated_at(self, user_id: str) -> Optional[datetime]:
        """Includes soft-deleted rows so that a deletion invalidates the cache."""
        async with self.session_factory() as session:
            latest = await session.scalar(
                select(func.max(Transaction.updated_at)).where(Transaction.user_id == user_id)
            )
            return ensure_utc(latest) if latest is not None else None
