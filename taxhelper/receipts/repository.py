"""
Receipt job persistence.
Every status change is a conditional UPDATE; the affected-row count decides the winner.
"""

from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

import structlog
from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taxhelper.config import settings
from taxhelper.models.enums import ReceiptJobStatus
from taxhelper.models.tables import ReceiptJob, utcnow

logger = structlog.get_logger(__name__)

STALE_PROCESSING_ERROR = "[TIMEOUT] Processing timed out"


class ReceiptJobRepository:
    """Data access for ReceiptJob rows. Each method runs in its own session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(
        self,
        user_id: str,
        original_name: str,
        mime_type: str,
        file_size: int,
        storage_path: str,
        ocr_text: Optional[str] = None,
        ocr_confidence: Optional[float] = None,
        job_id: Optional[str] = None,
        max_attempts: Optional[int] = None,
    ) -> ReceiptJob:
        job = ReceiptJob(
            user_id=user_id,
            status=ReceiptJobStatus.QUEUED,
            original_name=original_name,
            mime_type=mime_type,
            file_size=file_size,
            storage_path=storage_path,
            ocr_text=ocr_text,
            ocr_confidence=ocr_confidence,
            attempts=0,
            max_attempts=max_attempts or settings.RECEIPT_MAX_ATTEMPTS,
        )
        if job_id:
            job.id = job_id

        async with self.session_factory() as session:
            async with session.begin():
                session.add(job)

        logger.info("receipt_job_created", job_id=job.id, user_id=user_id, mime_type=mime_type)
        return job

    async def find_by_id(
        self, job_id: str, user_id: Optional[str] = None, include_discarded: bool = False
    ) -> Optional[ReceiptJob]:
        stmt = select(ReceiptJob).where(ReceiptJob.id == job_id)
        if user_id is not None:
            stmt = stmt.where(ReceiptJob.user_id == user_id)
        if not include_discarded:
            stmt = stmt.where(ReceiptJob.discarded_at.is_(None))

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def find_by_user(
        self,
        user_id: str,
        statuses: Sequence[ReceiptJobStatus],
        before: Optional[datetime] = None,
        before_id: Optional[str] = None,
        limit: int = 50,
    ) -> list[ReceiptJob]:
        """
        Non-discarded jobs in the given statuses, newest first.
        (before, before_id) is the keyset position of the last row already seen;
        rows sharing its created_at continue in id order.
        """
        stmt = (
            select(ReceiptJob)
            .where(
                ReceiptJob.user_id == user_id,
                ReceiptJob.discarded_at.is_(None),
                ReceiptJob.status.in_(list(statuses)),
            )
            .order_by(ReceiptJob.created_at.desc(), ReceiptJob.id.desc())
            .limit(limit)
        )
        if before is not None and before_id is not None:
            stmt = stmt.where(
                or_(
                    ReceiptJob.created_at < before,
                    and_(ReceiptJob.created_at == before, ReceiptJob.id < before_id),
                )
            )
        elif before is not None:
            stmt = stmt.where(ReceiptJob.created_at < before)

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def find_pending_jobs(self, limit: int = 10) -> list[ReceiptJob]:
        """QUEUED jobs with attempts remaining, oldest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(ReceiptJob)
                .where(
                    ReceiptJob.status == ReceiptJobStatus.QUEUED,
                    ReceiptJob.discarded_at.is_(None),
                    ReceiptJob.attempts < ReceiptJob.max_attempts,
                )
                .order_by(ReceiptJob.created_at.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def count_by_status(self, user_id: str) -> dict[str, int]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ReceiptJob.status, func.count(ReceiptJob.id))
                .where(ReceiptJob.user_id == user_id, ReceiptJob.discarded_at.is_(None))
                .group_by(ReceiptJob.status)
            )
            return {ReceiptJobStatus(row[0]).value: row[1] for row in result.all()}

    async def _conditional_update(self, stmt) -> int:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(stmt.execution_options(synchronize_session=False))
                return result.rowcount

    async def mark_processing(self, job_id: str, now: Optional[datetime] = None) -> bool:
        """
        Claim a QUEUED job for processing.
        Increments attempts and stamps processing_started_at. Returns False if the claim was lost.
        """
        now = now or utcnow()
        claimed = await self._conditional_update(
            update(ReceiptJob)
            .where(
                ReceiptJob.id == job_id,
                ReceiptJob.status == ReceiptJobStatus.QUEUED,
                ReceiptJob.discarded_at.is_(None),
                ReceiptJob.attempts < ReceiptJob.max_attempts,
            )
            .values(
                status=ReceiptJobStatus.PROCESSING,
                attempts=ReceiptJob.attempts + 1,
                processing_started_at=now,
                updated_at=now,
            )
        )
        return claimed == 1

    async def mark_completed(
        self,
        job_id: str,
        fields: dict[str, Any],
        status: ReceiptJobStatus,
        now: Optional[datetime] = None,
    ) -> bool:
        """Store extraction results and move PROCESSING to NEEDS_REVIEW or COMPLETED."""
        now = now or utcnow()
        updated = await self._conditional_update(
            update(ReceiptJob)
            .where(ReceiptJob.id == job_id, ReceiptJob.status == ReceiptJobStatus.PROCESSING)
            .values(
                **fields,
                status=status,
                processed_at=now,
                last_error=None,
                processing_started_at=None,
                updated_at=now,
            )
        )
        return updated == 1

    async def mark_failed(
        self, job_id: str, error: str, now: Optional[datetime] = None
    ) -> Optional[ReceiptJobStatus]:
        """
        Record a processing failure.
        FAILED once attempts are exhausted, otherwise back to QUEUED.
        Returns the new status, or None if the job was no longer PROCESSING.
        """
        now = now or utcnow()
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(ReceiptJob)
                    .where(ReceiptJob.id == job_id, ReceiptJob.status == ReceiptJobStatus.PROCESSING)
                    .values(
                        status=case(
                            (ReceiptJob.attempts >= ReceiptJob.max_attempts, ReceiptJobStatus.FAILED.value),
                            else_=ReceiptJobStatus.QUEUED.value,
                        ),
                        last_error=error,
                        processing_started_at=None,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    return None
                status = await session.scalar(
                    select(ReceiptJob.status).where(ReceiptJob.id == job_id)
                )
                return ReceiptJobStatus(status)

    async def requeue_stale_jobs(
        self, stale_after: Optional[timedelta] = None, now: Optional[datetime] = None
    ) -> int:
        """
        Reclaim PROCESSING jobs whose worker died.
        Attempts exhausted goes to FAILED, otherwise back to QUEUED.
        """
        now = now or utcnow()
        stale_after = stale_after or timedelta(minutes=settings.WORKER_STALE_AFTER_MINUTES)
        cutoff = now - stale_after

        stale = (
            ReceiptJob.status == ReceiptJobStatus.PROCESSING,
            ReceiptJob.processing_started_at.is_not(None),
            ReceiptJob.processing_started_at < cutoff,
        )
        async with self.session_factory() as session:
            async with session.begin():
                failed = await session.execute(
                    update(ReceiptJob)
                    .where(*stale, ReceiptJob.attempts >= ReceiptJob.max_attempts)
                    .values(
                        status=ReceiptJobStatus.FAILED,
                        last_error=STALE_PROCESSING_ERROR,
                        processing_started_at=None,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                requeued = await session.execute(
                    update(ReceiptJob)
                    .where(*stale, ReceiptJob.attempts < ReceiptJob.max_attempts)
                    .values(
                        status=ReceiptJobStatus.QUEUED,
                        last_error=STALE_PROCESSING_ERROR,
                        processing_started_at=None,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                failed_count, requeued_count = failed.rowcount, requeued.rowcount

        total = failed_count + requeued_count
        if total:
            logger.warning(
                "stale_jobs_recovered",
                failed=failed_count,
                requeued=requeued_count,
                cutoff=cutoff.isoformat(),
            )
        return total

    async def reset_stuck_confirmations(
        self, stale_after: timedelta, now: Optional[datetime] = None
    ) -> int:
        """CONFIRMED without a transaction for longer than stale_after goes back to NEEDS_REVIEW."""
        now = now or utcnow()
        cutoff = now - stale_after
        return await self._conditional_update(
            update(ReceiptJob)
            .where(
                ReceiptJob.status == ReceiptJobStatus.CONFIRMED,
                ReceiptJob.transaction_id.is_(None),
                ReceiptJob.updated_at < cutoff,
            )
            .values(status=ReceiptJobStatus.NEEDS_REVIEW, updated_at=now)
        )
