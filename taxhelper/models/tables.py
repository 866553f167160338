"""
SQLAlchemy ORM models.
Column types stay portable so the same models run on PostgreSQL and SQLite.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from taxhelper.models.database import Base
from taxhelper.models.enums import InsightType, ReceiptJobStatus, TransactionType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo on the way back; treat naive values as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# ────────────────────────────────────────────────────────────
# RECEIPT JOBS
# ────────────────────────────────────────────────────────────
class ReceiptJob(Base):
    __tablename__ = "receipt_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[ReceiptJobStatus] = mapped_column(
        SAEnum(ReceiptJobStatus, name="receipt_job_status_enum", native_enum=False, length=20),
        nullable=False, default=ReceiptJobStatus.QUEUED,
    )
    original_name: Mapped[str] = mapped_column(Text, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    storage_path: Mapped[str] = mapped_column(Text, nullable=False)

    # Raw OCR input captured at upload time
    ocr_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ocr_confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Extracted fields
    merchant: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    total_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    tax_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    items: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    category: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_deductible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    extraction_confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Set exactly once, by confirmation
    transaction_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("transactions.id", ondelete="SET NULL"), nullable=True, unique=True
    )

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processing_started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    discarded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    corrections = relationship(
        "ReceiptCorrection", back_populates="receipt_job", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_receipt_jobs_user", "user_id"),
        Index("idx_receipt_jobs_status", "status"),
        Index("idx_receipt_jobs_user_status_created", "user_id", "status", "created_at"),
    )


class ReceiptCorrection(Base):
    __tablename__ = "receipt_corrections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    receipt_job_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("receipt_jobs.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    field_name: Mapped[str] = mapped_column(String(50), nullable=False)
    original_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    corrected_value: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    receipt_job = relationship("ReceiptJob", back_populates="corrections")

    __table_args__ = (
        Index("idx_receipt_corrections_job", "receipt_job_id"),
        Index("idx_receipt_corrections_user_created", "user_id", "created_at"),
    )


# ────────────────────────────────────────────────────────────
# TRANSACTIONS
# ────────────────────────────────────────────────────────────
class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType, name="transaction_type_enum", native_enum=False, length=20),
        nullable=False, default=TransactionType.OTHER,
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    merchant: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    category: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_deductible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    receipt_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    receipt_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_transactions_user_date", "user_id", "date"),
        Index("idx_transactions_user_updated", "user_id", "updated_at"),
    )


# ────────────────────────────────────────────────────────────
# INSIGHTS
# ────────────────────────────────────────────────────────────
class InsightRun(Base):
    __tablename__ = "insight_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    range_days: Mapped[int] = mapped_column(Integer, nullable=False)
    generated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    insights = relationship(
        "Insight",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="Insight.position",
    )

    __table_args__ = (
        Index("idx_insight_runs_user_range_generated", "user_id", "range_days", "generated_at"),
    )


class Insight(Base):
    __tablename__ = "insights"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("insight_runs.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    type: Mapped[InsightType] = mapped_column(
        SAEnum(InsightType, name="insight_type_enum", native_enum=False, length=20),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    severity_score: Mapped[int] = mapped_column(Integer, nullable=False)
    supporting_transaction_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    dismissed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    pinned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    explanation: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    run = relationship("InsightRun", back_populates="insights")

    __table_args__ = (
        Index("idx_insights_run", "run_id"),
        Index("idx_insights_type", "type"),
    )
