"""
/api/v1/receipts/jobs endpoints.
Inbox listing, review edits, confirmation, retry and discard.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query

from taxhelper.api.errors import raise_for_result
from taxhelper.dependencies import get_receipt_service, get_user_id, verify_api_key
from taxhelper.receipts.service import ReceiptJobService
from taxhelper.schemas.receipts import (
    ConfirmResponse,
    DiscardResponse,
    ReceiptJobListResponse,
    ReceiptJobPatch,
    ReceiptJobResponse,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/receipts/jobs", tags=["receipt-jobs"], dependencies=[Depends(verify_api_key)])


@router.get("", response_model=ReceiptJobListResponse)
async def list_jobs(
    status_filter: Optional[str] = Query(None, alias="status"),
    cursor: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    user_id: str = Depends(get_user_id),
    service: ReceiptJobService = Depends(get_receipt_service),
):
    """Inbox jobs, newest first. `status` accepts a comma-separated list."""
    statuses = None
    if status_filter:
        statuses = [s.strip().upper() for s in status_filter.split(",") if s.strip()]

    result = await service.list_inbox(user_id, status=statuses, cursor=cursor, limit=limit)
    raise_for_result(result)
    return ReceiptJobListResponse(
        jobs=[ReceiptJobResponse.model_validate(job) for job in result.data.items],
        next_cursor=result.data.next_cursor,
    )


@router.get("/{job_id}", response_model=ReceiptJobResponse)
async def get_job(
    job_id: str,
    user_id: str = Depends(get_user_id),
    service: ReceiptJobService = Depends(get_receipt_service),
):
    result = await service.get_job(user_id, job_id)
    raise_for_result(result)
    return ReceiptJobResponse.model_validate(result.data)


@router.patch("/{job_id}", response_model=ReceiptJobResponse)
async def patch_job(
    job_id: str,
    body: ReceiptJobPatch,
    user_id: str = Depends(get_user_id),
    service: ReceiptJobService = Depends(get_receipt_service),
):
    """Correct extracted fields. Only NEEDS_REVIEW and COMPLETED jobs are editable."""
    result = await service.patch_job(user_id, job_id, body.model_dump(exclude_unset=True))
    raise_for_result(result)
    return ReceiptJobResponse.model_validate(result.data)


@router.post("/{job_id}/confirm", response_model=ConfirmResponse)
async def confirm_job(
    job_id: str,
    user_id: str = Depends(get_user_id),
    service: ReceiptJobService = Depends(get_receipt_service),
):
    """Create the transaction for a job. Repeated calls return the same transaction."""
    result = await service.confirm_job(user_id, job_id)
    raise_for_result(result)
    return ConfirmResponse(job_id=job_id, transaction_id=result.data)


@router.post("/{job_id}/retry", response_model=ReceiptJobResponse)
async def retry_job(
    job_id: str,
    user_id: str = Depends(get_user_id),
    service: ReceiptJobService = Depends(get_receipt_service),
):
    result = await service.retry_job(user_id, job_id)
    raise_for_result(result)

    from taxhelper.worker import jobs
    jobs.try_enqueue_receipt_processing()

    return ReceiptJobResponse.model_validate(result.data)


@router.delete("/{job_id}", response_model=DiscardResponse)
async def discard_job(
    job_id: str,
    user_id: str = Depends(get_user_id),
    service: ReceiptJobService = Depends(get_receipt_service),
):
    result = await service.discard_job(user_id, job_id)
    raise_for_result(result)
    return DiscardResponse(job_id=result.data)
