"""
User-facing transaction CRUD.
Every write bumps updated_at so cached insight runs go stale.
Deletes are soft: the row stays, with deleted_at set.
"""

from typing import Any, Optional

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taxhelper.models.enums import ErrorCode
from taxhelper.models.tables import Transaction, ensure_utc, utcnow
from taxhelper.receipts.service import ServiceResult

logger = structlog.get_logger(__name__)

UPDATABLE_FIELDS = (
    "date", "type", "description", "merchant", "total_amount", "tax_amount",
    "category", "category_code", "is_deductible",
)


class TransactionService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(self, user_id: str, fields: dict[str, Any]) -> Transaction:
        now = utcnow()
        transaction = Transaction(
            user_id=user_id,
            **{**fields, "date": ensure_utc(fields["date"])},
            created_at=now,
            updated_at=now,
        )
        async with self.session_factory() as session:
            async with session.begin():
                session.add(transaction)

        logger.info("transaction_created", transaction_id=transaction.id, user_id=user_id)
        return transaction

    async def list(self, user_id: str, limit: int = 50, offset: int = 0) -> tuple[list[Transaction], int]:
        """Active transactions, newest first, with the total count."""
        active = (Transaction.user_id == user_id, Transaction.deleted_at.is_(None))
        async with self.session_factory() as session:
            total = await session.scalar(select(func.count(Transaction.id)).where(*active)) or 0
            result = await session.execute(
                select(Transaction)
                .where(*active)
                .order_by(Transaction.date.desc(), Transaction.id)
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars().all()), total

    async def get(self, user_id: str, transaction_id: str) -> Optional[Transaction]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Transaction).where(
                    Transaction.id == transaction_id,
                    Transaction.user_id == user_id,
                    Transaction.deleted_at.is_(None),
                )
            )
            return result.scalar_one_or_none()

    async def update(
        self, user_id: str, transaction_id: str, fields: dict[str, Any]
    ) -> ServiceResult[Transaction]:
        values = {k: v for k, v in fields.items() if k in UPDATABLE_FIELDS}
        if "date" in values:
            if values["date"] is None:
                return ServiceResult.fail(ErrorCode.VALIDATION_ERROR, "date cannot be null")
            values["date"] = ensure_utc(values["date"])
        for required in ("total_amount", "tax_amount", "type", "is_deductible"):
            if required in values and values[required] is None:
                return ServiceResult.fail(ErrorCode.VALIDATION_ERROR, f"{required} cannot be null")

        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(Transaction)
                    .where(
                        Transaction.id == transaction_id,
                        Transaction.user_id == user_id,
                        Transaction.deleted_at.is_(None),
                    )
                    .values(**values, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                updated = result.rowcount == 1

        if not updated:
            return ServiceResult.fail(ErrorCode.NOT_FOUND, "Transaction not found")

        logger.info("transaction_updated", transaction_id=transaction_id, fields=sorted(values))
        return ServiceResult.ok(await self.get(user_id, transaction_id))

    async def delete(self, user_id: str, transaction_id: str) -> ServiceResult[str]:
        now = utcnow()
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(Transaction)
                    .where(
                        Transaction.id == transaction_id,
                        Transaction.user_id == user_id,
                        Transaction.deleted_at.is_(None),
                    )
                    .values(deleted_at=now, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                deleted = result.rowcount == 1

        if not deleted:
            return ServiceResult.fail(ErrorCode.NOT_FOUND, "Transaction not found")

        logger.info("transaction_deleted", transaction_id=transaction_id, user_id=user_id)
        return ServiceResult.ok(transaction_id)
