from __future__ import annotations

import unicodedata
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from ..config import AppConfig, load_config
from ..exceptions import (
    CollaboratorError,
    CredentialsExpiredError,
    ExtractionError,
    SchemaViolation,
    UploadRejected,
)
from ..logging import get_logger
from ..pipeline.service import CREDENTIALS_HINT, EXPORT_FORMATS, ReceiptTranscriptionService
from ..pipeline.vision import build_vision_client
from ..store import ReceiptStore


LOG = get_logger("frontend")

_TRUTHY = {"1", "true", "yes", "on"}


def _error(status_code: int, message: str, details: Optional[List[str]] = None) -> JSONResponse:
    body: Dict[str, Any] = {"ok": False, "error": message}
    if details:
        body["details"] = details
    return JSONResponse(body, status_code=status_code)


def content_disposition(filename: str) -> str:
    """Attachment header with an ASCII fallback name plus the RFC 5987 UTF-8 name."""
    ascii_name = unicodedata.normalize("NFKD", filename).encode("ascii", "ignore").decode("ascii")
    ascii_name = "".join("_" if ch in '"\\' or ord(ch) < 32 or ord(ch) == 127 else ch for ch in ascii_name)
    ascii_name = ascii_name.strip() or "receipts"
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(filename, safe='')}"


async def _read_image(request: Request) -> Tuple[bytes, str, str]:
    form = await request.form()
    upload = form.get("image")
    if not isinstance(upload, UploadFile):
        raise UploadRejected("Missing form field: image", status_code=400)
    data = await upload.read()
    return data, upload.content_type or "", upload.filename or "receipt"


def build_service(config: AppConfig) -> ReceiptTranscriptionService:
    store = ReceiptStore(root_dir=config.root_dir)
    return ReceiptTranscriptionService(
        build_vision_client(config),
        store,
        max_upload_bytes=config.max_upload_bytes,
    )


def create_app(
    service: Optional[ReceiptTranscriptionService] = None,
    *,
    config: Optional[AppConfig] = None,
    allow_origins: Optional[List[str]] = None,
) -> Starlette:
    """Create a Starlette app exposing transcription, stored receipts and export."""

    if service is None:
        service = build_service(config or load_config())

    async def health(_: Request) -> JSONResponse:
        db_path = service.store.db_path if service.store is not None else None
        return JSONResponse({"status": "ok", "db_path": db_path})

    async def transcribe(request: Request) -> JSONResponse:
        try:
            data, media_type, _ = await _read_image(request)
            record = await run_in_threadpool(service.transcribe, data, media_type)
        except UploadRejected as exc:
            return _error(exc.status_code, str(exc))
        except SchemaViolation as exc:
            return _error(
                422,
                "Model returned JSON that didn't match the expected schema",
                [str(e) for e in exc.errors],
            )
        except ExtractionError as exc:
            return _error(422, "Could not read JSON from model output", [str(exc)])
        except CredentialsExpiredError as exc:
            LOG.error("Credentials rejected: %s", exc)
            return _error(401, CREDENTIALS_HINT)
        except CollaboratorError as exc:
            return _error(502, str(exc))
        return JSONResponse({"ok": True, "receipt": record.to_dict()})

    async def list_receipts(_: Request) -> JSONResponse:
        items = await run_in_threadpool(service.require_store().list)
        return JSONResponse({"items": [it.to_dict() for it in items]})

    async def create_receipt(request: Request) -> JSONResponse:
        try:
            data, media_type, filename = await _read_image(request)
            item = await run_in_threadpool(service.process_upload, data, media_type, file_name=filename)
        except UploadRejected as exc:
            return _error(exc.status_code, str(exc))
        return JSONResponse(item.to_dict(), status_code=201)

    async def receipt_detail(request: Request) -> JSONResponse:
        item = await run_in_threadpool(service.require_store().get, request.path_params["item_id"])
        if item is None:
            raise HTTPException(status_code=404, detail="Receipt not found")
        return JSONResponse(item.to_dict())

    async def delete_receipt(request: Request) -> JSONResponse:
        removed = await run_in_threadpool(service.require_store().delete, request.path_params["item_id"])
        if not removed:
            raise HTTPException(status_code=404, detail="Receipt not found")
        return JSONResponse({"deleted": True})

    async def retry_receipt(request: Request) -> JSONResponse:
        item = await run_in_threadpool(service.retry, request.path_params["item_id"])
        if item is None:
            raise HTTPException(status_code=404, detail="Receipt not found")
        return JSONResponse(item.to_dict())

    async def export(request: Request) -> Response:
        qp = request.query_params
        fmt = (qp.get("format") or "csv").lower()
        if fmt not in EXPORT_FORMATS:
            raise HTTPException(status_code=400, detail=f"Unsupported format: {fmt}")
        include_failed = (qp.get("include_failed") or "").lower() in _TRUTHY
        out = await run_in_threadpool(
            service.export,
            fmt,
            filename=qp.get("filename") or "receipts",
            include_failed=include_failed,
        )
        return Response(
            out.content,
            media_type=out.media_type,
            headers={"Content-Disposition": content_disposition(out.filename)},
        )

    routes = [
        Route("/api/health", health, methods=["GET"]),
        Route("/api/transcribe", transcribe, methods=["POST"]),
        Route("/api/receipts", list_receipts, methods=["GET"]),
        Route("/api/receipts", create_receipt, methods=["POST"]),
        Route("/api/receipts/{item_id:str}", receipt_detail, methods=["GET"]),
        Route("/api/receipts/{item_id:str}", delete_receipt, methods=["DELETE"]),
        Route("/api/receipts/{item_id:str}/retry", retry_receipt, methods=["POST"]),
        Route("/api/export", export, methods=["GET"]),
    ]

    app = Starlette(debug=False, routes=routes)

    origins = allow_origins or ["http://localhost:3000", "http://127.0.0.1:3000"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if "*" in origins else origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    return app


__all__ = ["create_app", "build_service", "content_disposition"]
