"""
Tests for the deterministic receipt text parser.
"""

from datetime import date
from decimal import Decimal

import pytest

from taxhelper.receipts.parsing import (
    extract_items,
    extract_merchant,
    normalize_ocr_confidence,
    parse_amount,
    parse_receipt_date,
    parse_receipt_text,
    score_extraction,
    summarize_items,
)
from taxhelper.schemas.extraction import ReceiptExtraction, ReceiptItem

SAMPLE_RECEIPT_TEXT = """Corner Cafe
123 Main St
Date: 03/15/2024
Latte 4.50
Muffin 3.25
Subtotal $7.75
Tax $0.62
Total $8.37
"""


class TestParseAmount:

    def test_plain(self):
        assert parse_amount("12.34").amount == Decimal("12.34")

    def test_dollar_sign_and_commas(self):
        assert parse_amount("$1,234.50").amount == Decimal("1234.50")

    def test_whole_number_is_quantized(self):
        assert parse_amount("20").amount == Decimal("20.00")

    def test_negative_is_rejected(self):
        assert parse_amount("-5.00").amount is None

    def test_garbage(self):
        result = parse_amount("abc")
        assert result.amount is None
        assert result.confidence == 0.0

    def test_huge_amount_is_low_confidence(self):
        assert parse_amount("250000.00").confidence == 0.5


class TestParseReceiptDate:

    @pytest.mark.parametrize("raw, expected", [
        ("03/15/2024", date(2024, 3, 15)),
        ("2024-03-15", date(2024, 3, 15)),
        ("Mar 15, 2024", date(2024, 3, 15)),
        ("01/02/2024", date(2024, 1, 2)),   # month first
    ])
    def test_formats(self, raw, expected):
        assert parse_receipt_date(raw) == expected

    def test_implausible_year(self):
        assert parse_receipt_date("03/15/1985") is None

    def test_unparseable(self):
        assert parse_receipt_date("13/45/2024") is None

    def test_empty(self):
        assert parse_receipt_date("  ") is None


class TestParseReceiptText:

    def test_full_receipt(self):
        result = parse_receipt_text(SAMPLE_RECEIPT_TEXT)

        assert result.merchant == "Corner Cafe"
        assert result.date == date(2024, 3, 15)
        assert result.subtotal == 7.75
        assert result.tax == 0.62
        assert result.total == 8.37
        assert [i.description for i in result.items] == ["Latte", "Muffin"]
        assert result.confidence == 1.0

    def test_total_derived_from_subtotal_and_tax(self):
        result = parse_receipt_text("Shop\nSubtotal 10.00\nTax 1.00\n")
        assert result.subtotal == 10.0
        assert result.total == 11.0

    def test_subtotal_derived_from_total_and_tax(self):
        result = parse_receipt_text("Shop\nTax $1.00\nTotal $11.00\n")
        assert result.subtotal == 10.0

    def test_non_receipt_text(self):
        result = parse_receipt_text("hello world")
        assert result.merchant is None
        assert result.total is None
        assert result.confidence == 0.0

    def test_empty_text(self):
        assert parse_receipt_text("").confidence == 0.0

    def test_ocr_confidence_is_blended(self):
        assert parse_receipt_text(SAMPLE_RECEIPT_TEXT, ocr_confidence=0.5).confidence == 0.9


class TestMerchantAndItems:

    def test_skips_address_and_phone_lines(self):
        lines = ["5551234567", "Store #12", "Green Grocer", "Total $5.00"]
        assert extract_merchant(lines) == "Green Grocer"

    def test_total_line_is_never_the_merchant(self):
        assert extract_merchant(["Total $20.00"]) is None

    def test_quantity_items(self):
        items = extract_items(["Bagel 2 x 1.50 3.00"])
        assert items == [ReceiptItem(description="Bagel", quantity=2.0, unit_price=1.5, total=3.0)]

    def test_totals_are_not_items(self):
        assert extract_items(["Total 9.99", "Tax 0.80", "Change 0.21"]) == []

    def test_summarize_items(self):
        items = [ReceiptItem(description=name) for name in ("Latte", "Latte", "Muffin", "Scone", "Tea")]
        assert summarize_items(items) == "Latte, Muffin, Scone"

    def test_summarize_no_items(self):
        assert summarize_items([]) is None


class TestScoring:

    @pytest.mark.parametrize("raw, expected", [
        (0.85, 0.85),
        (85, 0.85),
        (None, None),
        (float("nan"), None),
        (150, 1.0),
    ])
    def test_normalize_ocr_confidence(self, raw, expected):
        assert normalize_ocr_confidence(raw) == expected

    def test_total_only(self):
        assert score_extraction(ReceiptExtraction(total=5.0)) == 0.3

    def test_required_fields(self):
        extraction = ReceiptExtraction(merchant="Shop", date=date(2024, 1, 1), total=5.0)
        assert score_extraction(extraction) == 0.65
