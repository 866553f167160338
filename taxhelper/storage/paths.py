"""
Storage path generation for uploaded receipts.
Format: receipts/{user_id}/{type}/{YYYY-MM-DD} {Vendor} - Receipt[ - Description].{ext}
"""

import re
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional, Union

_INVALID_CHARS = re.compile(r'[/\\:*?"<>|]')
_VENDOR_INVALID_CHARS = re.compile(r"[/\\:*?\"<>|']")

MIME_EXTENSIONS = {
    "application/pdf": "pdf",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/heic": "heic",
    "image/heif": "heif",
}

RECEIPT_EXTENSIONS = {"pdf", "jpg", "jpeg", "png", "gif", "webp", "heic", "heif"}


def sanitize_filename(value: Optional[str]) -> str:
    """Strip characters that are invalid in filenames and collapse whitespace."""
    if not value:
        return ""
    cleaned = _INVALID_CHARS.sub("", value)
    return re.sub(r"\s+", " ", cleaned).strip()


def file_extension(file_name: Optional[str]) -> str:
    if not file_name or "." not in file_name:
        return ""
    return file_name.rsplit(".", 1)[-1].lower()


def extension_from_mime_type(mime_type: Optional[str]) -> str:
    return MIME_EXTENSIONS.get((mime_type or "").lower(), "bin")


def is_valid_receipt_file(file_name: Optional[str], mime_type: Optional[str], allowed_mime_types: list[str]) -> bool:
    """Both the MIME type and, when present, the extension must look like a receipt."""
    if (mime_type or "").lower() not in allowed_mime_types:
        return False
    ext = file_extension(file_name)
    return not ext or ext in RECEIPT_EXTENSIONS


def receipt_filename(
    extension: str,
    receipt_date: Optional[Union[date, datetime]] = None,
    vendor: Optional[str] = None,
    description: Optional[str] = None,
) -> str:
    """Standardised receipt filename."""
    receipt_date = receipt_date or datetime.now(timezone.utc)
    vendor_clean = _VENDOR_INVALID_CHARS.sub("", vendor or "Unknown")
    vendor_clean = re.sub(r"\s+", " ", vendor_clean).strip() or "Unknown"

    name = f"{receipt_date.strftime('%Y-%m-%d')} {vendor_clean} - Receipt"
    desc = sanitize_filename(description)
    if desc:
        name += f" - {desc}"
    return f"{name}.{extension}"


def receipt_storage_path(user_id: str, filename: str, transaction_type: str = "OTHER") -> str:
    """Path for an uploaded receipt, relative to RECEIPT_STORAGE_ROOT."""
    return f"receipts/{user_id}/{transaction_type or 'OTHER'}/{filename}"


def resolve_storage_path(root: Union[str, Path], relative_path: str) -> Path:
    """Absolute path under root. Raises ValueError for paths escaping the root."""
    root_path = Path(root).resolve()
    resolved = (root_path / relative_path).resolve()
    if root_path not in resolved.parents:
        raise ValueError(f"Invalid storage path: {relative_path}")
    return resolved
