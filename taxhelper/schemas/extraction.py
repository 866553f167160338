"""
Extraction contracts shared by the text parser, model extractors and the worker.
"""

import datetime as dt
from typing import Optional

from pydantic import BaseModel, Field


class ReceiptItem(BaseModel):
    description: str
    quantity: Optional[float] = None
    unit_price: Optional[float] = None
    total: Optional[float] = None


class ReceiptExtraction(BaseModel):
    """Best-effort structured receipt. Every field except confidence may be missing."""
    merchant: Optional[str] = None
    date: Optional[dt.date] = None
    subtotal: Optional[float] = None
    tax: Optional[float] = None
    total: Optional[float] = None
    items: list[ReceiptItem] = Field(default_factory=list)
    category: Optional[str] = None
    category_code: Optional[str] = None
    is_deductible: Optional[bool] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class ExtractionInput(BaseModel):
    ocr_text: Optional[str] = None
    ocr_confidence: Optional[float] = None
    image: Optional[bytes] = None
    mime_type: Optional[str] = None
    request_id: Optional[str] = None
    user_id: Optional[str] = None
