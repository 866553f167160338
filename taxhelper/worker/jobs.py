"""
RQ job functions for the receipt pipeline.
These are the entry points that the worker calls.
"""

import asyncio
from dataclasses import asdict
from typing import Optional

import structlog
from redis import Redis
from rq import Queue

from taxhelper.config import settings

logger = structlog.get_logger(__name__)


def get_queue() -> Queue:
    """Get the receipt processing queue."""
    conn = Redis.from_url(settings.REDIS_URL)
    return Queue(settings.QUEUE_NAME, connection=conn)


def enqueue_receipt_processing(limit: Optional[int] = None) -> str:
    """
    Enqueue a worker run that drains up to `limit` queued receipt jobs.
    Returns the RQ job ID.
    """
    limit = limit or settings.WORKER_DEFAULT_LIMIT
    q = get_queue()
    job = q.enqueue(
        process_receipts_job,
        limit,
        job_timeout=settings.JOB_TIMEOUT_SECONDS,
        result_ttl=86400,  # Keep results for 24 hours
        failure_ttl=604800,  # Keep failures for 7 days
    )
    logger.info("receipt_run_enqueued", rq_job_id=job.id, limit=limit)
    return job.id


def try_enqueue_receipt_processing(limit: Optional[int] = None) -> Optional[str]:
    """Enqueue, but never fail the caller when Redis is unreachable."""
    try:
        return enqueue_receipt_processing(limit)
    except Exception as e:
        logger.warning("receipt_run_enqueue_failed", error=str(e))
        return None


def process_receipts_job(limit: Optional[int] = None) -> dict:
    """
    Main job function: drain queued receipt jobs.
    This runs inside the RQ worker process.
    """
    logger.info("job_started", limit=limit)

    try:
        result = asyncio.run(_process_receipts_async(limit))
        logger.info("job_completed", processed=result["processed"], failed=result["failed"])
        return result
    except Exception as e:
        logger.error("job_failed", error=str(e))
        raise


async def _process_receipts_async(limit: Optional[int]) -> dict:
    """
    Async wrapper for one worker run.
    The engine is disposed afterwards since asyncio.run closes the loop.
    """
    from taxhelper.models.database import async_session_factory, close_db
    from taxhelper.receipts.repository import ReceiptJobRepository
    from taxhelper.receipts.worker import ReceiptJobWorker
    from taxhelper.storage.receipt_store import ReceiptStorage

    try:
        worker = ReceiptJobWorker(
            repository=ReceiptJobRepository(async_session_factory()),
            storage=ReceiptStorage(),
        )
        result = await worker.run(limit)
        return asdict(result)
    finally:
        await close_db()
