"""
Receipt job worker.

Drains QUEUED jobs one at a time:
1. Sweep PROCESSING jobs abandoned by a dead worker
2. Sweep confirmations stuck without a transaction
3. Claim each pending job, extract, record the outcome

Several workers may run at once; the conditional claim keeps a job from being processed twice.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, time as dt_time, timezone
from decimal import Decimal
from typing import Any, Optional

import structlog

from taxhelper.config import settings
from taxhelper.models.enums import ErrorCode, ReceiptJobStatus
from taxhelper.models.tables import ReceiptJob
from taxhelper.observability.metrics import (
    extraction_confidence,
    receipt_job_duration_seconds,
    receipt_jobs_failed_total,
    receipt_jobs_processed_total,
    receipt_jobs_recovered_total,
)
from taxhelper.receipts.errors import classify_error, format_job_error
from taxhelper.receipts.extraction import ReceiptExtractor, get_default_extractor
from taxhelper.receipts.repository import ReceiptJobRepository
from taxhelper.receipts.service import ReceiptJobService, determine_status_from_confidence
from taxhelper.schemas.extraction import ExtractionInput, ReceiptExtraction
from taxhelper.storage.receipt_store import ReceiptStorage

logger = structlog.get_logger(__name__)

LOCK_FAILED_ERROR = "Failed to acquire job lock"


@dataclass
class ProcessJobResult:
    job_id: str
    success: bool
    status: Optional[ReceiptJobStatus] = None
    error: Optional[str] = None


@dataclass
class WorkerRunResult:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    recovered: int = 0
    results: list[ProcessJobResult] = field(default_factory=list)


def _to_decimal(value: Optional[float]) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value)).quantize(Decimal("0.01"))


def extraction_to_job_fields(extraction: ReceiptExtraction) -> dict[str, Any]:
    """Map an extraction onto ReceiptJob columns."""
    receipt_date = None
    if extraction.date is not None:
        receipt_date = datetime.combine(extraction.date, dt_time.min, tzinfo=timezone.utc)

    return {
        "merchant": extraction.merchant,
        "date": receipt_date,
        "total_amount": _to_decimal(extraction.total),
        "tax_amount": _to_decimal(extraction.tax),
        "items": [item.model_dump() for item in extraction.items],
        "currency": "USD",
        "category": extraction.category,
        "category_code": extraction.category_code,
        "is_deductible": bool(extraction.is_deductible),
        "extraction_confidence": extraction.confidence,
    }


class ReceiptJobWorker:
    """Processes queued receipt jobs sequentially."""

    def __init__(
        self,
        repository: ReceiptJobRepository,
        storage: ReceiptStorage,
        extractor: Optional[ReceiptExtractor] = None,
        service: Optional[ReceiptJobService] = None,
    ):
        self.repository = repository
        self.storage = storage
        self.extractor = extractor or get_default_extractor()
        self.service = service or ReceiptJobService(repository.session_factory, repository)

    async def process_job(self, job: ReceiptJob) -> ProcessJobResult:
        """Claim, extract and record one job. Never raises for extraction failures."""
        log = logger.bind(job_id=job.id, user_id=job.user_id)

        if not await self.repository.mark_processing(job.id):
            log.info("job_claim_lost")
            return ProcessJobResult(job_id=job.id, success=False, error=LOCK_FAILED_ERROR)

        start = time.monotonic()
        try:
            data = await self.storage.get(job.storage_path)
            if data is None:
                error = format_job_error(
                    ErrorCode.FILE_NOT_FOUND.value, f"Receipt file not found: {job.storage_path}"
                )
                status = await self.repository.mark_failed(job.id, error)
                receipt_jobs_failed_total.labels(error_code=ErrorCode.FILE_NOT_FOUND.value).inc()
                log.warning(
                    "job_file_missing",
                    path=job.storage_path,
                    status=status.value if status else None,
                )
                return ProcessJobResult(job_id=job.id, success=False, status=status, error=error)

            extraction = await self.extractor.extract(
                ExtractionInput(
                    ocr_text=job.ocr_text,
                    ocr_confidence=job.ocr_confidence,
                    image=data,
                    mime_type=job.mime_type,
                    request_id=job.id,
                    user_id=job.user_id,
                )
            )
        except Exception as e:
            code, retryable = classify_error(e)
            message = getattr(e, "message", None) or str(e) or type(e).__name__
            error = format_job_error(code, message)
            status = await self.repository.mark_failed(job.id, error)
            receipt_jobs_failed_total.labels(error_code=code).inc()
            log.warning(
                "job_extraction_failed",
                error_code=code,
                retryable=retryable,
                status=status.value if status else None,
                error=message,
            )
            return ProcessJobResult(job_id=job.id, success=False, status=status, error=error)
        finally:
            receipt_job_duration_seconds.observe(time.monotonic() - start)

        status = determine_status_from_confidence(extraction.confidence)
        if not await self.repository.mark_completed(job.id, extraction_to_job_fields(extraction), status):
            # Stale sweep reclaimed the job while we were extracting
            log.warning("job_result_discarded", reason="no_longer_processing")
            return ProcessJobResult(job_id=job.id, success=False, error="Job is no longer processing")

        receipt_jobs_processed_total.labels(status=status.value).inc()
        extraction_confidence.observe(extraction.confidence)
        log.info("job_processed", status=status.value, confidence=extraction.confidence)
        return ProcessJobResult(job_id=job.id, success=True, status=status)

    async def run(self, limit: Optional[int] = None) -> WorkerRunResult:
        """
        Recover stale work, then drain up to `limit` queued jobs.
        Always returns a summary; a failure in one job never aborts the batch.
        """
        limit = limit or settings.WORKER_DEFAULT_LIMIT
        result = WorkerRunResult()

        try:
            stale = await self.repository.requeue_stale_jobs()
            if stale:
                receipt_jobs_recovered_total.labels(sweep="processing").inc(stale)
            result.recovered = stale + await self.service.recover_stuck_confirmations()
            jobs = await self.repository.find_pending_jobs(limit)
        except Exception as e:
            logger.error("worker_run_failed", stage="prepare", error=str(e))
            return result

        logger.info("worker_run_started", pending=len(jobs), limit=limit, recovered=result.recovered)

        for job in jobs:
            try:
                outcome = await self.process_job(job)
            except Exception as e:
                logger.error("job_processing_crashed", job_id=job.id, error=str(e))
                outcome = ProcessJobResult(job_id=job.id, success=False, error=str(e))

            result.processed += 1
            if outcome.success:
                result.succeeded += 1
            else:
                result.failed += 1
            result.results.append(outcome)

        logger.info(
            "worker_run_finished",
            processed=result.processed,
            succeeded=result.succeeded,
            failed=result.failed,
        )
        return result
