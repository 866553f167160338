"""
Python enums matching the database status columns.
Names and values MUST match the stored strings exactly.
"""

from enum import Enum


class ReceiptJobStatus(str, Enum):
    QUEUED = "QUEUED"              # Waiting for worker
    PROCESSING = "PROCESSING"      # Worker is actively extracting
    NEEDS_REVIEW = "NEEDS_REVIEW"  # Low confidence, user must review
    COMPLETED = "COMPLETED"        # High confidence, awaiting confirmation
    CONFIRMED = "CONFIRMED"        # Transaction created, immutable
    FAILED = "FAILED"              # Terminal unless retried


# Statuses a user may edit or confirm from
EDITABLE_STATUSES = (ReceiptJobStatus.NEEDS_REVIEW, ReceiptJobStatus.COMPLETED)

# Statuses shown in the inbox when no filter is given
INBOX_STATUSES = (
    ReceiptJobStatus.NEEDS_REVIEW,
    ReceiptJobStatus.COMPLETED,
    ReceiptJobStatus.FAILED,
)

ALLOWED_TRANSITIONS: dict[ReceiptJobStatus, frozenset[ReceiptJobStatus]] = {
    ReceiptJobStatus.QUEUED: frozenset({ReceiptJobStatus.PROCESSING}),
    ReceiptJobStatus.PROCESSING: frozenset({
        ReceiptJobStatus.NEEDS_REVIEW,
        ReceiptJobStatus.COMPLETED,
        ReceiptJobStatus.FAILED,
        ReceiptJobStatus.QUEUED,
    }),
    ReceiptJobStatus.NEEDS_REVIEW: frozenset({ReceiptJobStatus.CONFIRMED}),
    ReceiptJobStatus.COMPLETED: frozenset({ReceiptJobStatus.CONFIRMED}),
    # Only the stuck-confirmation sweep moves a CONFIRMED job back
    ReceiptJobStatus.CONFIRMED: frozenset({ReceiptJobStatus.NEEDS_REVIEW}),
    ReceiptJobStatus.FAILED: frozenset({ReceiptJobStatus.QUEUED}),
}


def can_transition(current: ReceiptJobStatus, target: ReceiptJobStatus) -> bool:
    """Check a status change against the transition table."""
    return ReceiptJobStatus(target) in ALLOWED_TRANSITIONS[ReceiptJobStatus(current)]


def can_edit(status: ReceiptJobStatus) -> bool:
    """Editable jobs are exactly those that can still be confirmed."""
    return can_transition(status, ReceiptJobStatus.CONFIRMED)


def can_retry(status: ReceiptJobStatus) -> bool:
    """User retry re-queues FAILED jobs only. PROCESSING->QUEUED belongs to the worker."""
    return ReceiptJobStatus(status) == ReceiptJobStatus.FAILED and can_transition(
        status, ReceiptJobStatus.QUEUED
    )


def can_discard(status: ReceiptJobStatus) -> bool:
    """Soft delete is allowed from any status except CONFIRMED."""
    return ReceiptJobStatus(status) != ReceiptJobStatus.CONFIRMED


class ErrorCode(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    INVALID_STATUS = "INVALID_STATUS"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFLICT = "CONFLICT"
    RATE_LIMITED = "RATE_LIMITED"
    BUDGET_EXCEEDED = "BUDGET_EXCEEDED"
    TIMEOUT = "TIMEOUT"
    PARSING_ERROR = "PARSING_ERROR"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class TransactionType(str, Enum):
    SALES_TAX = "SALES_TAX"
    INCOME_TAX = "INCOME_TAX"
    OTHER = "OTHER"


class InsightType(str, Enum):
    QUIET_LEAK = "QUIET_LEAK"
    TAX_DRAG = "TAX_DRAG"
    SPIKE = "SPIKE"
    DUPLICATE = "DUPLICATE"
    DEDUCTION = "DEDUCTION"


class DeductionCategory(str, Enum):
    HOME_OFFICE = "HOME_OFFICE"
    BUSINESS_TRAVEL = "BUSINESS_TRAVEL"
    OFFICE_SUPPLIES = "OFFICE_SUPPLIES"
    PROFESSIONAL_DEVELOPMENT = "PROFESSIONAL_DEVELOPMENT"
    HEALTH = "HEALTH"
    CHARITY = "CHARITY"
