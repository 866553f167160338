"""
/api/v1/transactions endpoints.
"""

import structlog
from fastapi import APIRouter, Depends, Query, status

from taxhelper.api.errors import raise_for_result
from taxhelper.dependencies import get_transaction_service, get_user_id, verify_api_key
from taxhelper.schemas.transactions import (
    TransactionCreate,
    TransactionListResponse,
    TransactionResponse,
    TransactionUpdate,
)
from taxhelper.transactions.service import TransactionService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/transactions", tags=["transactions"], dependencies=[Depends(verify_api_key)])


@router.get("", response_model=TransactionListResponse)
async def list_transactions(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_user_id),
    service: TransactionService = Depends(get_transaction_service),
):
    transactions, total = await service.list(user_id, limit=limit, offset=offset)
    return TransactionListResponse(
        transactions=[TransactionResponse.model_validate(t) for t in transactions],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def create_transaction(
    body: TransactionCreate,
    user_id: str = Depends(get_user_id),
    service: TransactionService = Depends(get_transaction_service),
):
    transaction = await service.create(user_id, body.model_dump())
    return TransactionResponse.model_validate(transaction)


@router.patch("/{transaction_id}", response_model=TransactionResponse)
async def update_transaction(
    transaction_id: str,
    body: TransactionUpdate,
    user_id: str = Depends(get_user_id),
    service: TransactionService = Depends(get_transaction_service),
):
    result = await service.update(user_id, transaction_id, body.model_dump(exclude_unset=True))
    raise_for_result(result)
    return TransactionResponse.model_validate(result.data)


@router.delete("/{transaction_id}")
async def delete_transaction(
    transaction_id: str,
    user_id: str = Depends(get_user_id),
    service: TransactionService = Depends(get_transaction_service),
):
    """Soft delete. The row is kept so that cached insights are invalidated."""
    result = await service.delete(user_id, transaction_id)
    raise_for_result(result)
    return {"id": result.data, "deleted": True}
