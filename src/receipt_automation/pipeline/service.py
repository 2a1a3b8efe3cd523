from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import Optional, Tuple

from ..domain.models import (
    Invalid,
    ReceiptRecord,
    StoredReceiptItem,
    ValidationOutcome,
)
from ..config import DEFAULT_MAX_UPLOAD_BYTES
from ..exceptions import (
    CollaboratorError,
    CredentialsExpiredError,
    ExtractionError,
    SchemaViolation,
    UploadRejected,
)
from ..logging import get_logger
from ..store import ReceiptStore
from .exporters import (
    CSV_MEDIA_TYPE,
    HTML_MEDIA_TYPE,
    XLSX_MEDIA_TYPE,
    export_filename,
    to_csv_bytes,
    to_html_table,
    to_xlsx_bytes,
)
from .json_extract import extract_json_object, lookup_path
from .projector import ExportTable, build_export_table
from .prompt import build_receipt_prompt
from .schema import validate_receipt
from .vision import VisionModel


LOG = get_logger("service")

CREDENTIALS_HINT = (
    "Model credentials expired or were rejected. Refresh them (e.g. rotate the API key "
    "or re-run your provider login) and restart the server."
)

EXPORT_FORMATS = ("csv", "xlsx", "html")


@dataclass(frozen=True)
class ExportFile:
    filename: str
    media_type: str
    content: bytes


def _now_ms() -> int:
    return int(time.time() * 1000)


def check_upload(data: bytes, media_type: Optional[str], *, max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES) -> str:
    """Return the media type to send to the model or raise UploadRejected."""
    mt = (media_type or "").strip().lower()
    if not mt.startswith("image/"):
        raise UploadRejected("File must be an image", status_code=400)
    if len(data) > max_bytes:
        raise UploadRejected(f"Image too large (max {max_bytes} bytes)", status_code=413)
    if not data:
        raise UploadRejected("Image is empty", status_code=400)
    return mt


def describe_errors(outcome: Invalid) -> Tuple[str, ...]:
    return tuple(str(e) for e in outcome.errors)


class ReceiptTranscriptionService:
    """Coordinates model call, extraction, validation and persistence.

    The store is optional; without it the service only transcribes.
    """

    def __init__(
        self,
        vision: VisionModel,
        store: Optional[ReceiptStore] = None,
        *,
        max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
    ) -> None:
        self.vision = vision
        self.store = store
        self.max_upload_bytes = max_upload_bytes

    # ---- stateless transcription ----------------------------------------------
    def interpret(self, raw_text: str) -> ValidationOutcome:
        """Raw model text -> ValidationOutcome. Raises ExtractionError."""
        data = extract_json_object(raw_text)
        merchant = lookup_path(data, "merchant.name")
        LOG.debug("Extracted JSON (merchant.name=%r)", merchant)
        return validate_receipt(data)

    def transcribe(self, image: bytes, media_type: Optional[str]) -> ReceiptRecord:
        """Image -> validated record.

        Raises UploadRejected, CollaboratorError (CredentialsExpiredError),
        ExtractionError or SchemaViolation.
        """
        mt = check_upload(image, media_type, max_bytes=self.max_upload_bytes)
        LOG.info("Transcribing image (%s, %d bytes)", mt, len(image))
        raw = self.vision(image, mt, build_receipt_prompt())
        if not raw or not raw.strip():
            raise CollaboratorError("Vision model returned empty text")
        outcome = self.interpret(raw)
        if isinstance(outcome, Invalid):
            LOG.warning("Model JSON did not match the schema: %s", "; ".join(describe_errors(outcome)))
            raise outcome.to_exception()
        return outcome.record

    # ---- persisted items -------------------------------------------------------
    def require_store(self) -> ReceiptStore:
        if self.store is None:
            raise CollaboratorError("No receipt store configured")
        return self.store

    def _run(self, item: StoredReceiptItem, image: bytes) -> StoredReceiptItem:
        store = self.require_store()
        try:
            record = self.transcribe(image, item.mime_type)
        except SchemaViolation as exc:
            item = item.mark_error(
                "Model returned JSON that didn't match the expected schema",
                tuple(str(e) for e in exc.errors),
            )
        except CredentialsExpiredError as exc:
            LOG.error("Credentials rejected by model backend: %s", exc)
            item = item.mark_error(CREDENTIALS_HINT, (str(exc),))
        except (ExtractionError, CollaboratorError, UploadRejected) as exc:
            LOG.error("Transcription of %s failed: %s", item.id, exc)
            item = item.mark_error(str(exc))
        except Exception as exc:
            # The item must not stay "processing" forever
            LOG.exception("Unexpected failure while transcribing %s", item.id)
            item = item.mark_error(f"Unexpected error: {exc}", (type(exc).__name__,))
        else:
            item = item.mark_done(record)
            LOG.info("Item %s transcribed (%d line item(s))", item.id, len(record.line_items))
        store.put(item)
        return item

    def process_upload(self, image: bytes, media_type: Optional[str], *, file_name: str) -> StoredReceiptItem:
        """Store the upload, transcribe it and persist the final status.

        Failed items are kept (status=error) so they stay visible and can be
        retried; only the upload checks raise.
        """
        store = self.require_store()
        mt = check_upload(image, media_type, max_bytes=self.max_upload_bytes)
        item = StoredReceiptItem(
            id=uuid.uuid4().hex,
            created_at=_now_ms(),
            file_name=file_name or "receipt",
            mime_type=mt,
            size=len(image),
        )
        store.put_image(item.id, image)
        store.put(item)
        return self._run(item, image)

    def retry(self, item_id: str) -> Optional[StoredReceiptItem]:
        """Re-run transcription for a stored item from its stored image."""
        store = self.require_store()
        item = store.get(item_id)
        if item is None:
            return None
        image = store.get_image(item_id)
        if image is None:
            failed = item.mark_error("Stored image is missing; upload the receipt again")
            store.put(failed)
            return failed
        item = item.mark_processing()
        store.put(item)
        return self._run(item, image)

    # ---- export ----------------------------------------------------------------
    def export_table(self, *, include_failed: bool = False) -> ExportTable:
        items = self.require_store().list()
        return build_export_table(items, include_failed=include_failed, sort_key=lambda it: it.created_at)

    def export(self, fmt: str, *, filename: str = "receipts", include_failed: bool = False) -> ExportFile:
        fmt = (fmt or "csv").lower()
        if fmt not in EXPORT_FORMATS:
            raise ValueError(f"Unsupported export format: {fmt}")
        table = self.export_table(include_failed=include_failed)
        LOG.info("Exporting %d row(s) as %s", len(table.rows), fmt)
        if fmt == "csv":
            return ExportFile(export_filename(filename, "csv"), CSV_MEDIA_TYPE, to_csv_bytes(table))
        if fmt == "xlsx":
            return ExportFile(export_filename(filename, "xlsx"), XLSX_MEDIA_TYPE, to_xlsx_bytes(table))
        return ExportFile(export_filename(filename, "html"), HTML_MEDIA_TYPE, to_html_table(table).encode("utf-8"))
