"""
Record-store update hook.

The hosted record database is an external collaborator: the OCR endpoint
only tells it that a record was processed (with its text) or failed
(with an error code).  The default updater just logs.
"""

from __future__ import annotations

from typing import Protocol

from visionocr.utils.logging import get_logger

logger = get_logger("visionocr.services.record_store")


class RecordStoreUpdater(Protocol):
    async def mark_processed(self, record_id: str, text: str, *, pages: int) -> bool:
        ...

    async def mark_failed(self, record_id: str, error_code: str, message: str) -> bool:
        ...


class LoggingRecordUpdater:
    """Updater used when no record store is wired in."""

    async def mark_processed(self, record_id: str, text: str, *, pages: int) -> bool:
        logger.info(
            "[RECORD] %s processed: %d chars from %d page(s)", record_id, len(text), pages
        )
        return True

    async def mark_failed(self, record_id: str, error_code: str, message: str) -> bool:
        logger.warning("[RECORD] %s failed (%s): %s", record_id, error_code, message)
        return True


_updater = LoggingRecordUpdater()


def get_record_updater() -> RecordStoreUpdater:
    """FastAPI dependency returning the configured record updater."""
    return _updater
