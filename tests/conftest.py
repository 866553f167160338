"""
Shared test fixtures: file-backed SQLite through aiosqlite, temp receipt
storage, seeded receipt jobs and transactions, and an ASGI client.
"""

from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from taxhelper.dependencies import get_extractor, get_receipt_storage, get_session_factory
from taxhelper.main import app
from taxhelper.models.database import Base
from taxhelper.models.enums import ReceiptJobStatus, TransactionType
from taxhelper.models.tables import ReceiptJob, Transaction, utcnow
from taxhelper.receipts.extraction import HybridReceiptExtractor
from taxhelper.receipts.repository import ReceiptJobRepository
from taxhelper.receipts.service import ReceiptJobService
from taxhelper.storage.receipt_store import ReceiptStorage
from taxhelper.worker import jobs

USER_ID = "user-1"
OTHER_USER_ID = "user-2"

SAMPLE_RECEIPT_TEXT = """Corner Cafe
123 Main St
Date: 03/15/2024
Latte 4.50
Muffin 3.25
Subtotal $7.75
Tax $0.62
Total $8.37
"""


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "taxhelper.db"
    engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(engine)
    engine.dispose()
    return path


@pytest.fixture
def session_factory(db_path):
    # NullPool: every session gets its own connection, so concurrent sessions really race
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def repository(session_factory):
    return ReceiptJobRepository(session_factory)


@pytest.fixture
def service(session_factory, repository):
    return ReceiptJobService(session_factory, repository)


@pytest.fixture
def storage(tmp_path):
    return ReceiptStorage(root=str(tmp_path / "storage"))


@pytest.fixture
def job_factory(session_factory):
    """Insert a ReceiptJob directly, in any status."""

    async def _create(user_id=USER_ID, status=ReceiptJobStatus.NEEDS_REVIEW, **fields):
        values = {
            "original_name": "receipt.jpg",
            "mime_type": "image/jpeg",
            "file_size": 1024,
            "storage_path": f"receipts/{user_id}/OTHER/receipt.jpg",
            "merchant": "Corner Cafe",
            "date": datetime(2024, 3, 15, tzinfo=timezone.utc),
            "total_amount": Decimal("8.37"),
            "tax_amount": Decimal("0.62"),
            "currency": "USD",
            "attempts": 0,
            "max_attempts": 3,
        }
        values.update(fields)
        job = ReceiptJob(user_id=user_id, status=status, **values)
        async with session_factory() as session:
            async with session.begin():
                session.add(job)
        return job

    return _create


@pytest.fixture
def transaction_factory(session_factory):
    """Insert a Transaction directly."""

    async def _create(user_id=USER_ID, **fields):
        now = utcnow()
        values = {
            "date": now,
            "type": TransactionType.OTHER,
            "merchant": "Corner Cafe",
            "total_amount": Decimal("10.00"),
            "tax_amount": Decimal("0.80"),
            "currency": "USD",
            "is_deductible": False,
            "created_at": now,
            "updated_at": now,
        }
        values.update(fields)
        transaction = Transaction(user_id=user_id, **values)
        async with session_factory() as session:
            async with session.begin():
                session.add(transaction)
        return transaction

    return _create


@pytest.fixture
async def client(session_factory, storage, monkeypatch):
    monkeypatch.setattr(jobs, "try_enqueue_receipt_processing", lambda limit=None: None)
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_receipt_storage] = lambda: storage
    app.dependency_overrides[get_extractor] = lambda: HybridReceiptExtractor()

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def user_headers():
    return {"X-User-Id": USER_ID}


@pytest.fixture
def receipt_text():
    return SAMPLE_RECEIPT_TEXT
