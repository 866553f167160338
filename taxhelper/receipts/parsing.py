"""
Deterministic receipt text parser.

Pulls merchant, date, subtotal, tax, total and line items out of OCR text:
- $1,234.56 / 1,234.56 / 1234.56
- TOTAL / GRAND TOTAL / AMOUNT DUE lines (never SUBTOTAL)
- TAX / SALES TAX / VAT / GST lines
- MM/DD/YYYY, YYYY-MM-DD, "Jan 5, 2024" dates (US month-first)
"""

import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

from dateutil import parser as dateutil_parser
from pydantic import BaseModel

from taxhelper.schemas.extraction import ReceiptExtraction, ReceiptItem


class AmountParseResult(BaseModel):
    amount: Optional[Decimal] = None
    raw_text: str
    confidence: float = 0.0


_AMOUNT = r"\$?\s*([\d,]+\.?\d*)"

SUBTOTAL_PATTERNS = [
    re.compile(r"\b(?:subtotal|sub\s+total)\b[:\s]*" + _AMOUNT, re.IGNORECASE),
]

TAX_PATTERNS = [
    re.compile(r"\b(?:sales\s+tax|tax|vat|gst|hst)\b[:\s]*(?:\([^)]*\)\s*)?" + _AMOUNT, re.IGNORECASE),
]

TOTAL_PATTERNS = [
    re.compile(r"\b(?:grand\s+total|total\s+due|amount\s+due|balance\s+due)\b[:\s]*" + _AMOUNT, re.IGNORECASE),
    re.compile(r"(?<!sub)(?<!sub\s)\btotal\b[:\s]*" + _AMOUNT, re.IGNORECASE),
    re.compile(r"\$\s*([\d,]+\.\d{2})\s*$", re.MULTILINE),
]

DATE_PATTERNS = [
    re.compile(r"\b(\d{4}-\d{2}-\d{2})\b"),
    re.compile(r"\b(\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4})\b"),
    re.compile(
        r"\b((?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?\s+\d{1,2},?\s+\d{2,4})\b",
        re.IGNORECASE,
    ),
]

_ITEM_IGNORE = re.compile(
    r"^(subtotal|sub total|tax|sales tax|total|grand total|change|cash|credit|debit|visa|mastercard|"
    r"balance|amount|tip|vat|gst|rounding|discount)",
    re.IGNORECASE,
)
_ITEM_QUANTITY = re.compile(
    r"^(.+?)\s+(\d+(?:\.\d+)?)\s*(?:x|@)\s*\$?([\d,]+\.\d{2})\s+\$?([\d,]+\.\d{2})$",
    re.IGNORECASE,
)
_ITEM_PRICE = re.compile(r"^(.+?)\s+\$?([\d,]+\.\d{2})$")
_RECEIPT_HINT = re.compile(r"\$[\d,]+\.?\d*|total|subtotal|tax", re.IGNORECASE)
_MERCHANT_LABEL = re.compile(r"^(store|address|phone|tel|fax|receipt|date|time)\b", re.IGNORECASE)

# Weights for the parser's own confidence score
FIELD_WEIGHTS = {
    "merchant": 0.20,
    "date": 0.15,
    "total": 0.30,
    "tax": 0.10,
    "subtotal": 0.10,
    "items": 0.15,
}
OCR_WEIGHT = 0.2


def parse_amount(raw: str) -> AmountParseResult:
    """Parse a US-formatted monetary amount. Negative amounts are rejected."""
    s = raw.strip().replace("$", "").replace("USD", "").replace(",", "").replace(" ", "")
    if not s or s in ("-", "--", "."):
        return AmountParseResult(raw_text=raw)

    try:
        amount = Decimal(s)
    except (InvalidOperation, ValueError):
        return AmountParseResult(raw_text=raw)

    if not amount.is_finite() or amount < 0:
        return AmountParseResult(raw_text=raw)

    confidence = 0.95
    if amount > Decimal("100000"):
        confidence = 0.5  # Suspiciously large for a receipt
    elif amount == 0:
        confidence = 0.8
    return AmountParseResult(amount=amount.quantize(Decimal("0.01")), raw_text=raw, confidence=confidence)


def parse_receipt_date(raw: str) -> Optional[date]:
    """Parse a receipt date, month first. Returns None when unparseable."""
    raw = raw.strip()
    if not raw:
        return None
    try:
        parsed = dateutil_parser.parse(raw, dayfirst=False, fuzzy=False).date()
    except (ValueError, OverflowError):
        return None
    if parsed.year < 2000 or parsed.year > date.today().year + 1:
        return None
    return parsed


def _first_amount(text: str, patterns: list[re.Pattern]) -> Optional[float]:
    for pattern in patterns:
        for match in pattern.finditer(text):
            result = parse_amount(match.group(1))
            if result.amount is not None:
                return float(result.amount)
    return None


def extract_merchant(lines: list[str]) -> Optional[str]:
    """First plausible name line among the top five; None if the text is not receipt-like."""
    if not _RECEIPT_HINT.search("\n".join(lines)):
        return None
    for line in lines[:5]:
        if (
            len(line) > 3
            and not re.match(r"^\d{3,}", line)   # phone number
            and "#" not in line                   # store number
            and not re.search(r"\d{5}", line)     # zip code
            and not line.startswith("$")
            and not _MERCHANT_LABEL.match(line)
            and not _ITEM_IGNORE.match(line)
        ):
            return line
    return None


def extract_date(text: str) -> Optional[date]:
    for pattern in DATE_PATTERNS:
        for match in pattern.finditer(text):
            parsed = parse_receipt_date(match.group(1))
            if parsed is not None:
                return parsed
    return None


def extract_items(lines: list[str]) -> list[ReceiptItem]:
    items: list[ReceiptItem] = []
    seen: set[tuple[str, Optional[float]]] = set()

    for line in lines:
        if _ITEM_IGNORE.match(line):
            continue

        m = _ITEM_QUANTITY.match(line)
        if m:
            description = m.group(1).strip()
            total = parse_amount(m.group(4)).amount
            item = ReceiptItem(
                description=description,
                quantity=float(m.group(2)),
                unit_price=float(parse_amount(m.group(3)).amount or 0),
                total=float(total) if total is not None else None,
            )
        else:
            m = _ITEM_PRICE.match(line)
            if not m:
                continue
            description = m.group(1).strip()
            total = parse_amount(m.group(2)).amount
            item = ReceiptItem(description=description, total=float(total) if total is not None else None)

        if len(description) <= 2 or _ITEM_IGNORE.match(description):
            continue
        key = (description, item.total)
        if key in seen:
            continue
        seen.add(key)
        items.append(item)

    return items


def normalize_ocr_confidence(value: Optional[float]) -> Optional[float]:
    """OCR engines report either 0..1 or 0..100."""
    if value is None or value != value:
        return None
    normalized = value / 100 if value > 1 else value
    return min(max(normalized, 0.0), 1.0)


def score_extraction(extraction: ReceiptExtraction, ocr_confidence: Optional[float] = None) -> float:
    """Weighted field coverage, blended with OCR confidence when known."""
    score = 0.0
    if extraction.merchant:
        score += FIELD_WEIGHTS["merchant"]
    if extraction.date:
        score += FIELD_WEIGHTS["date"]
    if extraction.total is not None:
        score += FIELD_WEIGHTS["total"]
    if extraction.tax is not None:
        score += FIELD_WEIGHTS["tax"]
    if extraction.subtotal is not None:
        score += FIELD_WEIGHTS["subtotal"]
    if extraction.items:
        score += FIELD_WEIGHTS["items"]

    ocr = normalize_ocr_confidence(ocr_confidence)
    if ocr is not None:
        score = score * (1 - OCR_WEIGHT) + ocr * OCR_WEIGHT
    return round(min(max(score, 0.0), 1.0), 4)


def parse_receipt_text(text: str, ocr_confidence: Optional[float] = None) -> ReceiptExtraction:
    """Parse OCR text into a ReceiptExtraction with a confidence score."""
    lines = [line.strip() for line in (text or "").splitlines() if line.strip()]
    joined = "\n".join(lines)

    subtotal = _first_amount(joined, SUBTOTAL_PATTERNS)
    tax = _first_amount(joined, TAX_PATTERNS)
    total = _first_amount(joined, TOTAL_PATTERNS)

    if subtotal is None and total is not None and tax is not None:
        subtotal = round(total - tax, 2)
    if total is None and subtotal is not None and tax is not None:
        total = round(subtotal + tax, 2)

    extraction = ReceiptExtraction(
        merchant=extract_merchant(lines),
        date=extract_date(joined),
        subtotal=subtotal,
        tax=tax,
        total=total,
        items=extract_items(lines),
    )
    extraction.confidence = score_extraction(extraction, ocr_confidence)
    return extraction


def summarize_items(items: list[ReceiptItem], max_items: int = 3) -> Optional[str]:
    """Short description from the first distinct item names."""
    names: list[str] = []
    for item in items:
        if item.description and item.description not in names:
            names.append(item.description)
    return ", ".join(names[:max_items]) or None
