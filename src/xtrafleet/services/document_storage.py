"""Object store for driver compliance documents.

The core only ever keeps the returned URL; bytes live in the store.
"""

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Optional, Protocol

from xtrafleet.app.config import get_settings
from xtrafleet.domain.enums import DocumentKind
from xtrafleet.domain.errors import ExternalServiceError

logger = logging.getLogger(__name__)

# Driver column that stores the URL for each document kind
DOCUMENT_URL_FIELDS: dict[DocumentKind, str] = {
    DocumentKind.CDL: "cdl_document_url",
    DocumentKind.MEDICAL_CARD: "medical_card_url",
    DocumentKind.INSURANCE: "insurance_url",
    DocumentKind.MVR: "mvr_url",
    DocumentKind.BACKGROUND_CHECK: "background_check_url",
    DocumentKind.PRE_EMPLOYMENT_SCREENING: "pre_employment_screening_url",
    DocumentKind.DRUG_AND_ALCOHOL_SCREENING: "drug_and_alcohol_screening_url",
}

ALLOWED_CONTENT_TYPES = {"application/pdf", "image/jpeg", "image/png", "image/webp"}
MAX_DOCUMENT_BYTES = 10 * 1024 * 1024


class ObjectStore(Protocol):
    async def put(self, key: str, data: bytes, content_type: str) -> str: ...


def document_key(driver_id: str, kind: DocumentKind, filename: Optional[str]) -> str:
    # Strip path separators from filename for safety
    safe_name = (filename or "document").replace("/", "_").replace("\\", "_")
    return f"drivers/{driver_id}/{kind.value}/{uuid.uuid4().hex[:8]}_{safe_name}"


class LocalObjectStore:
    """Writes objects under the uploads directory served by the app's static mount."""

    def __init__(self, root: Optional[str] = None, public_base_url: Optional[str] = None):
        settings = get_settings()
        self.root = Path(root or settings.uploads_dir)
        self.public_base_url = (public_base_url or settings.public_uploads_url).rstrip("/")

    def _write(self, key: str, data: bytes) -> None:
        path = self.root / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        try:
            await asyncio.to_thread(self._write, key, data)
        except OSError as e:
            logger.exception("Failed to store %s (%s)", key, content_type)
            raise ExternalServiceError(f"Could not store document {key}: {e}") from e
        return f"{self.public_base_url}/{key}"
