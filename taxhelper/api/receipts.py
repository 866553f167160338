"""
/api/v1/receipts endpoints.
Handles upload (sync or queued), the worker trigger and inbox statistics.
"""

import math
import uuid
from dataclasses import asdict
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Response, UploadFile, status

from taxhelper.api.errors import raise_for_result
from taxhelper.config import settings
from taxhelper.dependencies import (
    get_extractor,
    get_receipt_service,
    get_receipt_storage,
    get_user_id,
    get_worker,
    verify_api_key,
    verify_worker_trigger,
)
from taxhelper.models.enums import ErrorCode, TransactionType
from taxhelper.observability.metrics import receipts_uploaded_total
from taxhelper.receipts.errors import BudgetExceededError, ExtractionError, RateLimitedError
from taxhelper.receipts.extraction import ReceiptExtractor
from taxhelper.receipts.parsing import summarize_items
from taxhelper.receipts.service import ReceiptJobService
from taxhelper.receipts.worker import ReceiptJobWorker
from taxhelper.schemas.extraction import ExtractionInput
from taxhelper.schemas.receipts import (
    AsyncUploadResponse,
    InboxStatsResponse,
    ProcessRunResponse,
    QueuedJob,
    SyncUploadResponse,
)
from taxhelper.storage.paths import (
    extension_from_mime_type,
    file_extension,
    is_valid_receipt_file,
    receipt_filename,
    receipt_storage_path,
)
from taxhelper.storage.receipt_store import ReceiptStorage

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/receipts", tags=["receipts"], dependencies=[Depends(verify_api_key)])

DEFAULT_RETRY_AFTER_SECONDS = 60


def _validation_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"code": ErrorCode.VALIDATION_ERROR.value, "error": message},
    )


@router.post("/upload", status_code=status.HTTP_200_OK)
async def upload_receipt(
    response: Response,
    file: UploadFile = File(...),
    ocr_text: Optional[str] = Form(None),
    ocr_confidence: Optional[float] = Form(None),
    transaction_type: str = Form("OTHER", alias="type"),
    async_mode: bool = Query(False, alias="async"),
    user_id: str = Depends(get_user_id),
    storage: ReceiptStorage = Depends(get_receipt_storage),
    extractor: ReceiptExtractor = Depends(get_extractor),
    service: ReceiptJobService = Depends(get_receipt_service),
):
    """
    Upload a receipt image or PDF.
    With ?async=1 the file is stored and a QUEUED job is returned (202);
    otherwise the receipt is extracted inline.
    """
    allowed = [m.strip().lower() for m in settings.ALLOWED_MIME_TYPES.split(",")]
    if not is_valid_receipt_file(file.filename, file.content_type, allowed):
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail=f"Unsupported file type: {file.content_type}. Supported: PDF, JPG, PNG, GIF, WebP, HEIC",
        )

    file_bytes = await file.read()
    file_size = len(file_bytes)

    max_bytes = settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024
    if file_size > max_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File too large: {file_size} bytes. Max: {max_bytes} bytes",
        )
    if file_size == 0:
        raise _validation_error("Empty file uploaded")

    try:
        tx_type = TransactionType((transaction_type or "OTHER").upper())
    except ValueError:
        raise _validation_error(f"Invalid transaction type: {transaction_type}")

    original_name = file.filename or "receipt"
    mime_type = (file.content_type or "").lower()
    extension = file_extension(original_name) or extension_from_mime_type(mime_type)

    if async_mode:
        job_id = str(uuid.uuid4())
        # The job id keeps same-day uploads from sharing a path
        filename = receipt_filename(extension, description=job_id[:8])
        storage_path = receipt_storage_path(user_id, filename, tx_type.value)
        await storage.store(storage_path, file_bytes)

        job = await service.repository.create(
            user_id=user_id,
            original_name=original_name,
            mime_type=mime_type,
            file_size=file_size,
            storage_path=storage_path,
            ocr_text=ocr_text,
            ocr_confidence=ocr_confidence,
            job_id=job_id,
        )
        receipts_uploaded_total.labels(mode="async").inc()

        from taxhelper.worker import jobs
        jobs.try_enqueue_receipt_processing()

        logger.info("receipt_job_queued", job_id=job.id, user_id=user_id, original_name=original_name)
        response.status_code = status.HTTP_202_ACCEPTED
        return AsyncUploadResponse(
            job=QueuedJob(
                id=job.id,
                status=job.status,
                original_name=job.original_name,
                poll_url=f"/api/v1/receipts/jobs/{job.id}",
            ),
        )

    try:
        extraction = await extractor.extract(
            ExtractionInput(
                ocr_text=ocr_text,
                ocr_confidence=ocr_confidence,
                image=file_bytes,
                mime_type=mime_type,
                user_id=user_id,
            )
        )
    except RateLimitedError as e:
        retry_after = math.ceil(e.retry_after_seconds or DEFAULT_RETRY_AFTER_SECONDS)
        logger.warning("receipt_extraction_rate_limited", user_id=user_id, retry_after=retry_after)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"code": e.code, "error": e.message, "retry_after": retry_after},
            headers={"Retry-After": str(retry_after)},
        )
    except BudgetExceededError as e:
        logger.warning("receipt_extraction_budget_exceeded", user_id=user_id)
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={"code": e.code, "error": "Daily extraction budget exceeded"},
        )
    except ExtractionError as e:
        logger.error("receipt_extraction_failed", user_id=user_id, error_code=e.code, error=e.message)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"code": e.code, "error": e.message},
        )

    filename = receipt_filename(
        extension, extraction.date, extraction.merchant, summarize_items(extraction.items)
    )
    storage_path = receipt_storage_path(user_id, filename, tx_type.value)
    await storage.store(storage_path, file_bytes)
    receipts_uploaded_total.labels(mode="sync").inc()

    logger.info(
        "receipt_extracted",
        user_id=user_id,
        storage_path=storage_path,
        confidence=extraction.confidence,
    )
    return SyncUploadResponse(
        filename=filename,
        storage_path=storage_path,
        original_name=original_name,
        size=file_size,
        type=mime_type,
        extracted=extraction,
    )


@router.post("/process", response_model=ProcessRunResponse)
async def process_receipts(
    limit: Optional[int] = Query(None),
    caller: Optional[str] = Depends(verify_worker_trigger),
    worker: ReceiptJobWorker = Depends(get_worker),
):
    """Run the worker inline over up to `limit` queued jobs."""
    limit = settings.WORKER_DEFAULT_LIMIT if limit is None else limit
    limit = max(1, min(limit, settings.WORKER_MAX_LIMIT))

    result = await worker.run(limit)
    logger.info(
        "receipt_process_triggered",
        trigger="user" if caller else "cron",
        limit=limit,
        processed=result.processed,
    )
    return ProcessRunResponse.model_validate(asdict(result))


@router.get("/stats", response_model=InboxStatsResponse)
async def inbox_stats(
    user_id: str = Depends(get_user_id),
    service: ReceiptJobService = Depends(get_receipt_service),
):
    """Job counts per status for the caller's inbox."""
    result = await service.get_inbox_stats(user_id)
    raise_for_result(result)
    return InboxStatsResponse(**result.data)
