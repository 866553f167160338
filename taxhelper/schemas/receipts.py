"""
Pydantic request/response schemas for the /api/v1/receipts endpoints.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Union

from pydantic import BaseModel, Field

from taxhelper.models.enums import ReceiptJobStatus
from taxhelper.schemas.extraction import ReceiptExtraction


# ── Request Schemas ──────────────────────────────────────────

class ReceiptJobPatch(BaseModel):
    """
    Field corrections. Amounts and dates are accepted loosely here and
    validated by the service so that bad values come back as VALIDATION_ERROR.
    """
    merchant: Optional[str] = None
    date: Optional[str] = None
    total_amount: Optional[Union[float, str]] = None
    tax_amount: Optional[Union[float, str]] = None
    category: Optional[str] = None
    category_code: Optional[str] = None
    is_deductible: Optional[bool] = None


# ── Response Schemas ─────────────────────────────────────────

class ReceiptJobResponse(BaseModel):
    id: str
    status: ReceiptJobStatus
    original_name: str
    mime_type: str
    file_size: int
    merchant: Optional[str] = None
    date: Optional[datetime] = None
    total_amount: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    items: Optional[list[dict[str, Any]]] = None
    currency: Optional[str] = None
    category: Optional[str] = None
    category_code: Optional[str] = None
    is_deductible: bool = False
    extraction_confidence: Optional[float] = None
    transaction_id: Optional[str] = None
    attempts: int
    max_attempts: int
    last_error: Optional[str] = None
    processing_started_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ReceiptJobListResponse(BaseModel):
    jobs: list[ReceiptJobResponse]
    next_cursor: Optional[str] = None


class ConfirmResponse(BaseModel):
    job_id: str
    transaction_id: str


class DiscardResponse(BaseModel):
    job_id: str
    discarded: bool = True


class QueuedJob(BaseModel):
    id: str
    status: ReceiptJobStatus
    original_name: str
    poll_url: str


class AsyncUploadResponse(BaseModel):
    async_: bool = Field(default=True, serialization_alias="async")
    job: QueuedJob
    message: str = "Receipt uploaded. Processing queued."


class SyncUploadResponse(BaseModel):
    async_: bool = Field(default=False, serialization_alias="async")
    filename: str
    storage_path: str
    original_name: str
    size: int
    type: str
    extracted: ReceiptExtraction


class ProcessedJobSummary(BaseModel):
    job_id: str
    success: bool
    status: Optional[ReceiptJobStatus] = None
    error: Optional[str] = None


class ProcessRunResponse(BaseModel):
    processed: int
    succeeded: int
    failed: int
    recovered: int
    results: list[ProcessedJobSummary]


class InboxStatsResponse(BaseModel):
    queued: int = 0
    processing: int = 0
    needs_review: int = 0
    completed: int = 0
    confirmed: int = 0
    failed: int = 0
    needs_attention: int = 0
    total: int = 0
