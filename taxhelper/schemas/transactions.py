"""
Pydantic request/response schemas for the /api/v1/transactions endpoints.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from taxhelper.models.enums import TransactionType


class TransactionCreate(BaseModel):
    date: datetime
    type: TransactionType = TransactionType.OTHER
    description: Optional[str] = None
    merchant: Optional[str] = None
    total_amount: Decimal = Field(ge=0)
    tax_amount: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    category: Optional[str] = None
    category_code: Optional[str] = None
    is_deductible: bool = False


class TransactionUpdate(BaseModel):
    date: Optional[datetime] = None
    type: Optional[TransactionType] = None
    description: Optional[str] = None
    merchant: Optional[str] = None
    total_amount: Optional[Decimal] = Field(default=None, ge=0)
    tax_amount: Optional[Decimal] = Field(default=None, ge=0)
    category: Optional[str] = None
    category_code: Optional[str] = None
    is_deductible: Optional[bool] = None


class TransactionResponse(BaseModel):
    id: str
    date: datetime
    type: TransactionType
    description: Optional[str] = None
    merchant: Optional[str] = None
    total_amount: Decimal
    tax_amount: Decimal
    currency: str
    category: Optional[str] = None
    category_code: Optional[str] = None
    is_deductible: bool
    receipt_path: Optional[str] = None
    receipt_name: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TransactionListResponse(BaseModel):
    transactions: list[TransactionResponse]
    total: int
    limit: int
    offset: int
