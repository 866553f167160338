"""
Tests for the hybrid extractor: text parser first, model fallback second.
"""

from datetime import date

from taxhelper.receipts.errors import RateLimitedError
from taxhelper.receipts.extraction import (
    HybridReceiptExtractor,
    ModelReceiptExtractor,
    TextReceiptExtractor,
    merge_extractions,
)
from taxhelper.schemas.extraction import ExtractionInput, ReceiptExtraction, ReceiptItem

SAMPLE_RECEIPT_TEXT = """Corner Cafe
Date: 03/15/2024
Latte 4.50
Subtotal $4.50
Tax $0.36
Total $4.86
"""


class StubModel(ModelReceiptExtractor):
    def __init__(self, result=None, error=None, requires_image=True):
        self.result = result
        self.error = error
        self._requires_image = requires_image
        self.calls = 0

    @property
    def extractor_name(self) -> str:
        return "stub_model"

    @property
    def requires_image(self) -> bool:
        return self._requires_image

    async def extract(self, data):
        self.calls += 1
        if self.error:
            raise self.error
        return self.result


MODEL_RESULT = ReceiptExtraction(
    merchant="Corner Cafe LLC",
    date=date(2024, 3, 15),
    total=4.86,
    category="Meals",
    category_code="MEALS",
    is_deductible=False,
    confidence=0.92,
)


class TestTextReceiptExtractor:

    async def test_parses_ocr_text(self):
        result = await TextReceiptExtractor().extract(ExtractionInput(ocr_text=SAMPLE_RECEIPT_TEXT))
        assert result.merchant == "Corner Cafe"
        assert result.total == 4.86

    async def test_no_text(self):
        result = await TextReceiptExtractor().extract(ExtractionInput())
        assert result.confidence == 0.0


class TestHybridReceiptExtractor:

    async def test_confident_parse_skips_model(self):
        model = StubModel(result=MODEL_RESULT)
        extractor = HybridReceiptExtractor(model=model, fallback_threshold=0.7)

        result = await extractor.extract(ExtractionInput(ocr_text=SAMPLE_RECEIPT_TEXT, image=b"img", mime_type="image/png"))

        assert model.calls == 0
        assert result.merchant == "Corner Cafe"

    async def test_weak_parse_falls_back_to_model(self):
        model = StubModel(result=MODEL_RESULT)
        extractor = HybridReceiptExtractor(model=model, fallback_threshold=0.7)

        result = await extractor.extract(ExtractionInput(ocr_text="smudged", image=b"img", mime_type="image/png"))

        assert model.calls == 1
        assert result.merchant == "Corner Cafe LLC"
        assert result.category_code == "MEALS"
        assert result.confidence == 0.92

    async def test_model_needing_an_image_is_skipped_without_one(self):
        model = StubModel(result=MODEL_RESULT)
        extractor = HybridReceiptExtractor(model=model, fallback_threshold=0.7)

        await extractor.extract(ExtractionInput(ocr_text="smudged"))

        assert model.calls == 0

    async def test_model_failure_returns_parse(self):
        model = StubModel(error=RateLimitedError(retry_after_seconds=5))
        extractor = HybridReceiptExtractor(model=model, fallback_threshold=0.7)

        result = await extractor.extract(ExtractionInput(ocr_text="Total $3.00", image=b"img", mime_type="image/png"))

        assert model.calls == 1
        assert result.total == 3.0

    async def test_without_model_returns_parse(self):
        result = await HybridReceiptExtractor(fallback_threshold=0.99).extract(ExtractionInput(ocr_text="smudged"))
        assert result.confidence == 0.0


class TestMergeExtractions:

    def test_model_wins_and_parser_fills_gaps(self):
        parsed = ReceiptExtraction(
            merchant="Corner Cafe", tax=0.36, total=4.86,
            items=[ReceiptItem(description="Latte", total=4.5)], confidence=0.6,
        )
        model = ReceiptExtraction(merchant="Corner Cafe LLC", total=4.86, confidence=0.8)

        merged = merge_extractions(parsed, model)

        assert merged.merchant == "Corner Cafe LLC"
        assert merged.tax == 0.36
        assert [i.description for i in merged.items] == ["Latte"]
        assert merged.confidence == 0.8
