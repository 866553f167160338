"""
FastAPI dependency injection.
Provides the session factory, receipt storage, services and caller identity.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taxhelper.config import settings
from taxhelper.insights.service import InsightService
from taxhelper.models.database import async_session_factory
from taxhelper.receipts.extraction import ReceiptExtractor, get_default_extractor
from taxhelper.receipts.service import ReceiptJobService
from taxhelper.receipts.worker import ReceiptJobWorker
from taxhelper.storage.receipt_store import ReceiptStorage
from taxhelper.transactions.service import TransactionService


# ── Singleton instances ──────────────────────────────────────
_receipt_storage: Optional[ReceiptStorage] = None
_extractor: Optional[ReceiptExtractor] = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_factory()


def get_receipt_storage() -> ReceiptStorage:
    """Get or create the receipt storage singleton."""
    global _receipt_storage
    if _receipt_storage is None:
        _receipt_storage = ReceiptStorage()
    return _receipt_storage


def get_extractor() -> ReceiptExtractor:
    """Get or create the receipt extractor singleton."""
    global _extractor
    if _extractor is None:
        _extractor = get_default_extractor()
    return _extractor


def get_receipt_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ReceiptJobService:
    return ReceiptJobService(session_factory)


def get_worker(
    service: ReceiptJobService = Depends(get_receipt_service),
    storage: ReceiptStorage = Depends(get_receipt_storage),
    extractor: ReceiptExtractor = Depends(get_extractor),
) -> ReceiptJobWorker:
    return ReceiptJobWorker(service.repository, storage, extractor=extractor, service=service)


def get_insight_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> InsightService:
    return InsightService(session_factory)


def get_transaction_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> TransactionService:
    return TransactionService(session_factory)


async def verify_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> Optional[str]:
    """
    Verify API key if configured.
    If API_KEY is not set, all requests are allowed (dev mode).
    """
    if settings.API_KEY is None:
        return None

    if x_api_key is None or x_api_key != settings.API_KEY:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
    return x_api_key


async def get_user_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> str:
    """The authenticated caller. Identity is established upstream."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    return x_user_id.strip()


async def verify_worker_trigger(
    authorization: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> Optional[str]:
    """
    The worker endpoint accepts either the cron secret or a signed-in user.
    Returns the user id, or None for a cron call.
    """
    if settings.CRON_SECRET and authorization == f"Bearer {settings.CRON_SECRET}":
        return None
    if x_user_id and x_user_id.strip():
        return x_user_id.strip()
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
    )
