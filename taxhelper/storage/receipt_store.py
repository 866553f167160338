"""
Blob storage for uploaded receipt files.
Phase 1: Local filesystem under RECEIPT_STORAGE_ROOT.
Reads return None for a missing file; that is not an error.
"""

import asyncio
from pathlib import Path
from typing import Optional

import structlog

from taxhelper.config import settings
from taxhelper.storage.paths import resolve_storage_path

logger = structlog.get_logger(__name__)


class ReceiptStorage:
    """
    Save and load receipt bytes.
    All paths are relative to the storage root; paths escaping it are rejected.
    """

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or settings.RECEIPT_STORAGE_ROOT)
        self.root.mkdir(parents=True, exist_ok=True)

    def _write(self, relative_path: str, data: bytes) -> None:
        full_path = resolve_storage_path(self.root, relative_path)
        full_path.parent.mkdir(parents=True, exist_ok=True)
        full_path.write_bytes(data)

    def _read(self, relative_path: str) -> Optional[bytes]:
        full_path = resolve_storage_path(self.root, relative_path)
        try:
            return full_path.read_bytes()
        except FileNotFoundError:
            return None

    async def store(self, relative_path: str, data: bytes) -> str:
        """Save raw bytes. Returns the relative path."""
        await asyncio.to_thread(self._write, relative_path, data)
        logger.info("receipt_stored", path=relative_path, size_bytes=len(data))
        return relative_path

    async def get(self, relative_path: str) -> Optional[bytes]:
        """Load raw bytes, or None when the file does not exist."""
        data = await asyncio.to_thread(self._read, relative_path)
        if data is None:
            logger.warning("receipt_missing_from_storage", path=relative_path)
        return data

    async def delete(self, relative_path: str) -> bool:
        """Delete a stored receipt. Returns True if it existed."""
        full_path = resolve_storage_path(self.root, relative_path)

        def _unlink() -> bool:
            if full_path.exists():
                full_path.unlink()
                return True
            return False

        deleted = await asyncio.to_thread(_unlink)
        if deleted:
            logger.info("receipt_deleted", path=relative_path)
        return deleted
