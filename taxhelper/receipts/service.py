"""
Receipt job business rules: status guards, field edits, confirmation,
retry, discard and stuck-confirmation recovery.

Validation and status-guard failures come back as a ServiceResult with a code.
They are never raised.
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Generic, Optional, TypeVar, Union

import structlog
from dateutil import parser as dateutil_parser
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taxhelper.config import settings
from taxhelper.models.enums import (
    EDITABLE_STATUSES,
    INBOX_STATUSES,
    ErrorCode,
    ReceiptJobStatus,
    TransactionType,
    can_discard,
    can_edit,
    can_retry,
)
from taxhelper.models.tables import (
    ReceiptCorrection,
    ReceiptJob,
    Transaction,
    ensure_utc,
    utcnow,
)
from taxhelper.observability.metrics import (
    receipt_confirmations_total,
    receipt_jobs_recovered_total,
)
from taxhelper.receipts.repository import ReceiptJobRepository

logger = structlog.get_logger(__name__)

T = TypeVar("T")

MAX_INBOX_LIMIT = 100
# Largest value a Numeric(12, 2) column holds
MAX_AMOUNT = Decimal("9999999999.99")
CURSOR_SEPARATOR = "|"

# Fields whose edits are recorded as corrections; category_code is applied silently
CORRECTED_FIELDS = ("merchant", "date", "total_amount", "tax_amount", "category", "is_deductible")
PATCHABLE_FIELDS = CORRECTED_FIELDS + ("category_code",)
REQUIRED_FOR_CONFIRM = ("merchant", "total_amount", "date")


@dataclass
class ServiceResult(Generic[T]):
    success: bool
    data: Optional[T] = None
    code: Optional[ErrorCode] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Optional[T] = None) -> "ServiceResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, code: ErrorCode, error: str) -> "ServiceResult[T]":
        return cls(success=False, code=code, error=error)


@dataclass
class InboxPage:
    items: list[ReceiptJob] = field(default_factory=list)
    next_cursor: Optional[str] = None


def determine_status_from_confidence(
    confidence: Optional[float], threshold: Optional[float] = None
) -> ReceiptJobStatus:
    """COMPLETED at or above the threshold, NEEDS_REVIEW otherwise (including unknown)."""
    threshold = settings.CONFIDENCE_THRESHOLD if threshold is None else threshold
    if confidence is None or confidence < threshold:
        return ReceiptJobStatus.NEEDS_REVIEW
    return ReceiptJobStatus.COMPLETED


class _ClaimLost(Exception):
    pass


class _MissingFields(Exception):
    def __init__(self, fields: list[str]):
        self.fields = fields
        super().__init__(", ".join(fields))


def _missing_required(job: ReceiptJob) -> list[str]:
    return [name for name in REQUIRED_FOR_CONFIRM if getattr(job, name) in (None, "")]


def _parse_amount(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError("not a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError("not finite")
    try:
        amount = Decimal(str(value).strip())
        if not amount.is_finite() or amount < 0:
            raise ValueError("must be a finite, non-negative number")
        amount = amount.quantize(Decimal("0.01"))
    except InvalidOperation:
        raise ValueError("not a number")
    if amount > MAX_AMOUNT:
        raise ValueError("too large")
    return amount


def _parse_date(value: Any) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        raise ValueError("not a date")
    try:
        parsed = dateutil_parser.parse(value.strip())
    except (ValueError, OverflowError):
        raise ValueError("not a date")
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _correction_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return ensure_utc(value).isoformat()
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


def _normalize_patch(patch: dict[str, Any]) -> tuple[dict[str, Any], list[str]]:
    """Coerce patch values to column types. Returns (values, errors)."""
    values: dict[str, Any] = {}
    errors: list[str] = []

    for name, raw in patch.items():
        if name not in PATCHABLE_FIELDS:
            continue
        if name in ("total_amount", "tax_amount"):
            if raw is None:
                values[name] = None
                continue
            try:
                values[name] = _parse_amount(raw)
            except ValueError:
                errors.append(f"{name} must be a finite, non-negative number")
        elif name == "date":
            if raw is None:
                values[name] = None
                continue
            try:
                values[name] = _parse_date(raw)
            except ValueError:
                errors.append("date must be a valid date")
        elif name == "is_deductible":
            if not isinstance(raw, bool):
                errors.append("is_deductible must be a boolean")
            else:
                values[name] = raw
        else:
            values[name] = (raw.strip() or None) if isinstance(raw, str) else raw

    return values, errors


def _job_value(job: ReceiptJob, name: str) -> Any:
    value = getattr(job, name)
    if name == "date":
        return ensure_utc(value)
    return value


class ReceiptJobService:
    """State machine and business rules for receipt jobs."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository: Optional[ReceiptJobRepository] = None,
    ):
        self.session_factory = session_factory
        self.repository = repository or ReceiptJobRepository(session_factory)

    async def list_inbox(
        self,
        user_id: str,
        status: Optional[Union[str, ReceiptJobStatus, list]] = None,
        cursor: Optional[str] = None,
        limit: int = 50,
    ) -> ServiceResult[InboxPage]:
        """
        Cursor-paginated jobs, newest first.
        The cursor is "<ISO created_at>|<id>" of the last item on the previous page.
        """
        if status is None:
            statuses = list(INBOX_STATUSES)
        else:
            raw = status if isinstance(status, (list, tuple)) else [status]
            try:
                statuses = [ReceiptJobStatus(s) for s in raw]
            except ValueError:
                return ServiceResult.fail(ErrorCode.VALIDATION_ERROR, f"Invalid status filter: {status}")

        before = before_id = None
        if cursor:
            stamp, _, before_id = cursor.partition(CURSOR_SEPARATOR)
            try:
                before = ensure_utc(datetime.fromisoformat(stamp))
            except ValueError:
                return ServiceResult.fail(ErrorCode.VALIDATION_ERROR, "Invalid cursor")
            before_id = before_id or None

        limit = max(1, min(limit, MAX_INBOX_LIMIT))
        jobs = await self.repository.find_by_user(
            user_id, statuses, before=before, before_id=before_id, limit=limit + 1
        )

        next_cursor = None
        if len(jobs) > limit:
            jobs = jobs[:limit]
            last = jobs[-1]
            next_cursor = f"{ensure_utc(last.created_at).isoformat()}{CURSOR_SEPARATOR}{last.id}"

        return ServiceResult.ok(InboxPage(items=jobs, next_cursor=next_cursor))

    async def get_job(self, user_id: str, job_id: str) -> ServiceResult[ReceiptJob]:
        job = await self.repository.find_by_id(job_id, user_id=user_id)
        if job is None:
            return ServiceResult.fail(ErrorCode.NOT_FOUND, "Receipt job not found")
        return ServiceResult.ok(job)

    async def patch_job(
        self, user_id: str, job_id: str, patch: dict[str, Any]
    ) -> ServiceResult[ReceiptJob]:
        """
        Apply user corrections to an editable job.
        Field updates and correction rows are written in one transaction.
        """
        job = await self.repository.find_by_id(job_id, user_id=user_id)
        if job is None:
            return ServiceResult.fail(ErrorCode.NOT_FOUND, "Receipt job not found")
        if not can_edit(job.status):
            return ServiceResult.fail(
                ErrorCode.INVALID_STATUS, f"Cannot edit a job in status {job.status.value}"
            )

        values, errors = _normalize_patch(patch)
        if errors:
            return ServiceResult.fail(ErrorCode.VALIDATION_ERROR, "; ".join(errors))

        changed = {name: value for name, value in values.items() if _job_value(job, name) != value}
        if not changed:
            return ServiceResult.ok(job)

        now = utcnow()
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(ReceiptJob)
                    .where(
                        ReceiptJob.id == job_id,
                        ReceiptJob.user_id == user_id,
                        ReceiptJob.discarded_at.is_(None),
                        ReceiptJob.status.in_(EDITABLE_STATUSES),
                    )
                    .values(**changed, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                updated = result.rowcount == 1
                if updated:
                    for name, value in changed.items():
                        if name not in CORRECTED_FIELDS:
                            continue
                        session.add(ReceiptCorrection(
                            receipt_job_id=job_id,
                            user_id=user_id,
                            field_name=name,
                            original_value=_correction_value(_job_value(job, name)),
                            corrected_value=_correction_value(value) or "",
                            created_at=now,
                        ))

        if not updated:
            # A concurrent confirm or discard got there first
            return ServiceResult.fail(ErrorCode.INVALID_STATUS, "Job is no longer editable")

        logger.info("receipt_job_patched", job_id=job_id, fields=sorted(changed))
        return await self.get_job(user_id, job_id)

    async def confirm_job(self, user_id: str, job_id: str) -> ServiceResult[str]:
        """
        Turn an editable job into a Transaction, exactly once.

        Safe to call repeatedly and concurrently: the claim is a conditional
        UPDATE on transaction_id IS NULL, and the claim, transaction insert and
        link commit or roll back together. Losers report the winner's
        transaction id. Returns the transaction id.
        """
        job = await self.repository.find_by_id(job_id, user_id=user_id)
        if job is None:
            return ServiceResult.fail(ErrorCode.NOT_FOUND, "Receipt job not found")

        if job.status == ReceiptJobStatus.CONFIRMED and job.transaction_id:
            receipt_confirmations_total.labels(outcome="already_confirmed").inc()
            return ServiceResult.ok(job.transaction_id)

        if not can_edit(job.status):
            return ServiceResult.fail(
                ErrorCode.INVALID_STATUS, f"Cannot confirm a job in status {job.status.value}"
            )

        missing = _missing_required(job)
        if missing:
            return ServiceResult.fail(
                ErrorCode.VALIDATION_ERROR, f"Missing required fields: {', '.join(missing)}"
            )

        try:
            transaction_id = await self._claim_and_create(user_id, job_id)
        except _ClaimLost:
            return await self._resolve_lost_claim(user_id, job_id)
        except _MissingFields as e:
            return ServiceResult.fail(
                ErrorCode.VALIDATION_ERROR, f"Missing required fields: {', '.join(e.fields)}"
            )

        receipt_confirmations_total.labels(outcome="created").inc()
        logger.info(
            "receipt_confirmed", job_id=job_id, user_id=user_id, transaction_id=transaction_id
        )
        return ServiceResult.ok(transaction_id)

    async def _claim_and_create(self, user_id: str, job_id: str) -> str:
        now = utcnow()
        async with self.session_factory() as session:
            async with session.begin():
                claim = await session.execute(
                    update(ReceiptJob)
                    .where(
                        ReceiptJob.id == job_id,
                        ReceiptJob.user_id == user_id,
                        ReceiptJob.transaction_id.is_(None),
                        ReceiptJob.status.in_(EDITABLE_STATUSES),
                        ReceiptJob.discarded_at.is_(None),
                    )
                    .values(status=ReceiptJobStatus.CONFIRMED, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if claim.rowcount != 1:
                    raise _ClaimLost()

                # Build the transaction from what is committed now, not the pre-check read
                fresh = (
                    await session.execute(
                        select(ReceiptJob)
                        .where(ReceiptJob.id == job_id)
                        .execution_options(populate_existing=True)
                    )
                ).scalar_one()
                missing = _missing_required(fresh)
                if missing:
                    raise _MissingFields(missing)

                transaction = Transaction(
                    user_id=user_id,
                    date=ensure_utc(fresh.date),
                    type=TransactionType.OTHER,
                    description=f"Receipt: {fresh.original_name}",
                    merchant=fresh.merchant,
                    total_amount=fresh.total_amount,
                    tax_amount=fresh.tax_amount if fresh.tax_amount is not None else Decimal("0"),
                    currency=fresh.currency or "USD",
                    category=fresh.category,
                    category_code=fresh.category_code,
                    is_deductible=bool(fresh.is_deductible),
                    receipt_path=fresh.storage_path,
                    receipt_name=fresh.original_name,
                    created_at=now,
                    updated_at=now,
                )
                session.add(transaction)
                await session.flush()

                fresh.transaction_id = transaction.id
                return transaction.id

    async def _resolve_lost_claim(self, user_id: str, job_id: str) -> ServiceResult[str]:
        current = await self.repository.find_by_id(job_id, user_id=user_id)
        if current is not None and current.transaction_id:
            receipt_confirmations_total.labels(outcome="lost_race").inc()
            logger.info(
                "receipt_confirm_lost_race",
                job_id=job_id,
                transaction_id=current.transaction_id,
            )
            return ServiceResult.ok(current.transaction_id)

        receipt_confirmations_total.labels(outcome="conflict").inc()
        logger.warning(
            "receipt_confirm_conflict",
            job_id=job_id,
            status=current.status.value if current is not None else None,
        )
        return ServiceResult.fail(
            ErrorCode.CONFLICT, "Job was confirmed concurrently but no transaction is linked yet"
        )

    async def recover_stuck_confirmations(
        self, stale_after: Optional[timedelta] = None, now: Optional[datetime] = None
    ) -> int:
        """Reset jobs stuck CONFIRMED without a transaction back to NEEDS_REVIEW."""
        stale_after = stale_after or timedelta(minutes=settings.CONFIRM_STALE_AFTER_MINUTES)
        recovered = await self.repository.reset_stuck_confirmations(stale_after, now=now)
        if recovered:
            receipt_jobs_recovered_total.labels(sweep="confirmation").inc(recovered)
            logger.warning("stuck_confirmations_recovered", count=recovered)
        return recovered

    async def retry_job(self, user_id: str, job_id: str) -> ServiceResult[ReceiptJob]:
        """FAILED back to QUEUED with attempts and error cleared."""
        job = await self.repository.find_by_id(job_id, user_id=user_id)
        if job is None:
            return ServiceResult.fail(ErrorCode.NOT_FOUND, "Receipt job not found")
        if not can_retry(job.status):
            return ServiceResult.fail(
                ErrorCode.INVALID_STATUS, f"Only failed jobs can be retried (status {job.status.value})"
            )

        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(ReceiptJob)
                    .where(
                        ReceiptJob.id == job_id,
                        ReceiptJob.user_id == user_id,
                        ReceiptJob.status == ReceiptJobStatus.FAILED,
                        ReceiptJob.discarded_at.is_(None),
                    )
                    .values(
                        status=ReceiptJobStatus.QUEUED,
                        attempts=0,
                        last_error=None,
                        processing_started_at=None,
                        updated_at=utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )
                retried = result.rowcount == 1

        if not retried:
            return ServiceResult.fail(ErrorCode.INVALID_STATUS, "Job is no longer failed")

        logger.info("receipt_job_retried", job_id=job_id, user_id=user_id)
        return await self.get_job(user_id, job_id)

    async def discard_job(self, user_id: str, job_id: str) -> ServiceResult[str]:
        """Soft delete. Confirmed jobs must be removed through their transaction instead."""
        job = await self.repository.find_by_id(job_id, user_id=user_id)
        if job is None:
            return ServiceResult.fail(ErrorCode.NOT_FOUND, "Receipt job not found")
        if not can_discard(job.status):
            return ServiceResult.fail(
                ErrorCode.INVALID_STATUS,
                "Confirmed receipts cannot be discarded; delete the transaction instead",
            )

        now = utcnow()
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(ReceiptJob)
                    .where(
                        ReceiptJob.id == job_id,
                        ReceiptJob.user_id == user_id,
                        ReceiptJob.status != ReceiptJobStatus.CONFIRMED,
                        ReceiptJob.discarded_at.is_(None),
                    )
                    .values(discarded_at=now, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                discarded = result.rowcount == 1

        if not discarded:
            return ServiceResult.fail(ErrorCode.INVALID_STATUS, "Job was confirmed concurrently")

        logger.info("receipt_job_discarded", job_id=job_id, user_id=user_id)
        return ServiceResult.ok(job_id)

    async def get_inbox_stats(self, user_id: str) -> ServiceResult[dict]:
        counts = await self.repository.count_by_status(user_id)
        stats = {status.value.lower(): counts.get(status.value, 0) for status in ReceiptJobStatus}
        stats["needs_attention"] = stats["needs_review"] + stats["completed"] + stats["failed"]
        stats["total"] = sum(counts.values())
        return ServiceResult.ok(stats)
