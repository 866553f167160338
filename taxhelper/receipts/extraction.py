"""
Receipt extraction adapters.
Every extractor takes an ExtractionInput and returns a ReceiptExtraction.
"""

from abc import ABC, abstractmethod
from typing import Optional

import structlog

from taxhelper.config import settings
from taxhelper.receipts.parsing import parse_receipt_text
from taxhelper.schemas.extraction import ExtractionInput, ReceiptExtraction

logger = structlog.get_logger(__name__)


class ReceiptExtractor(ABC):
    """
    Abstract base class for all receipt extractors.

    Every extractor must:
    1. Accept an ExtractionInput (OCR text and/or image bytes)
    2. Return a ReceiptExtraction with confidence in [0, 1]
    3. Raise ExtractionError subclasses on failure, never return corrupt data
    """

    @property
    @abstractmethod
    def extractor_name(self) -> str:
        """Unique identifier: 'text_parser', 'hybrid', ..."""
        ...

    @abstractmethod
    async def extract(self, data: ExtractionInput) -> ReceiptExtraction:
        ...


class TextReceiptExtractor(ReceiptExtractor):
    """Deterministic OCR-text parser. Never calls out of process."""

    @property
    def extractor_name(self) -> str:
        return "text_parser"

    async def extract(self, data: ExtractionInput) -> ReceiptExtraction:
        return parse_receipt_text(data.ocr_text or "", data.ocr_confidence)


class ModelReceiptExtractor(ReceiptExtractor):
    """
    Base for extractors backed by a vision/language model.
    Vendor integrations subclass this and implement extract().
    They should raise RateLimitedError, BudgetExceededError,
    ExtractionTimeoutError or ParsingError rather than vendor exceptions.
    """

    @property
    def requires_image(self) -> bool:
        return True


def merge_extractions(parsed: ReceiptExtraction, model: ReceiptExtraction) -> ReceiptExtraction:
    """Model values win, parser values fill the gaps, confidence is the max."""
    merged = parsed.model_copy(deep=True)
    for field in ("merchant", "date", "subtotal", "tax", "total", "category", "category_code", "is_deductible"):
        value = getattr(model, field)
        if value is not None:
            setattr(merged, field, value)
    if model.items:
        merged.items = list(model.items)
    merged.confidence = max(parsed.confidence, model.confidence)
    return merged


class HybridReceiptExtractor(ReceiptExtractor):
    """
    Text parser first; model fallback when the parser is not confident enough.
    A failing model never fails the extraction, the parser result is returned instead.
    """

    def __init__(
        self,
        model: Optional[ModelReceiptExtractor] = None,
        parser: Optional[ReceiptExtractor] = None,
        fallback_threshold: Optional[float] = None,
    ):
        self.model = model
        self.parser = parser or TextReceiptExtractor()
        self.fallback_threshold = (
            fallback_threshold if fallback_threshold is not None else settings.LLM_FALLBACK_CONFIDENCE
        )

    @property
    def extractor_name(self) -> str:
        return "hybrid"

    async def extract(self, data: ExtractionInput) -> ReceiptExtraction:
        parsed = await self.parser.extract(data)

        if parsed.confidence >= self.fallback_threshold or self.model is None:
            return parsed
        if self.model.requires_image and (not data.image or not data.mime_type):
            return parsed

        try:
            model_result = await self.model.extract(data)
        except Exception as e:
            logger.warning(
                "model_extraction_failed",
                extractor=self.model.extractor_name,
                request_id=data.request_id,
                error=str(e),
            )
            return parsed

        merged = merge_extractions(parsed, model_result)
        logger.info(
            "model_extraction_merged",
            extractor=self.model.extractor_name,
            request_id=data.request_id,
            parser_confidence=parsed.confidence,
            model_confidence=model_result.confidence,
        )
        return merged


def get_default_extractor() -> ReceiptExtractor:
    """Extractor used by the API and the worker when none is injected."""
    return HybridReceiptExtractor()
