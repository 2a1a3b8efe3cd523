from __future__ import annotations

import argparse
import json
import mimetypes
import os
import sys
from typing import Sequence

from ..config import load_config
from ..exceptions import ReceiptAutomationError
from ..logging import get_logger, set_level
from ..paths import expand_abs
from ..pipeline.service import EXPORT_FORMATS, ReceiptTranscriptionService
from ..pipeline.vision import build_vision_client
from ..store import ReceiptStore

LOG = get_logger("cli-main")


def _build_service(ns: argparse.Namespace, *, with_store: bool = True) -> ReceiptTranscriptionService:
    config = load_config(ns.env_dir or os.getcwd())
    store = ReceiptStore(root_dir=config.root_dir) if with_store else None
    return ReceiptTranscriptionService(
        build_vision_client(config),
        store,
        max_upload_bytes=config.max_upload_bytes,
    )


def _read_source(path: str) -> tuple[bytes, str]:
    src = expand_abs(path)
    mime, _ = mimetypes.guess_type(src)
    with open(src, "rb") as f:
        data = f.read()
    return data, mime or "application/octet-stream"


def _transcribe(ns: argparse.Namespace) -> int:
    data, mime = _read_source(ns.source)
    svc = _build_service(ns, with_store=not ns.no_store)
    if ns.no_store:
        record = svc.transcribe(data, mime)
        print(json.dumps(record.to_dict(), ensure_ascii=False, indent=2))
        return 0
    item = svc.process_upload(data, mime, file_name=os.path.basename(ns.source))
    print(json.dumps(item.to_dict(), ensure_ascii=False, indent=2))
    return 0 if item.exportable else 1


def _list(ns: argparse.Namespace) -> int:
    svc = _build_service(ns)
    for item in svc.require_store().list():
        merchant = item.receipt.merchant.name if item.receipt and item.receipt.merchant else "-"
        print(f"{item.id}\t{item.status}\t{item.file_name}\t{merchant}\t{item.error or ''}")
    return 0


def _delete(ns: argparse.Namespace) -> int:
    svc = _build_service(ns)
    if not svc.require_store().delete(ns.id):
        LOG.error(f"No receipt with id {ns.id}")
        return 1
    LOG.info(f"Deleted receipt {ns.id}")
    return 0


def _retry(ns: argparse.Namespace) -> int:
    svc = _build_service(ns)
    item = svc.retry(ns.id)
    if item is None:
        LOG.error(f"No receipt with id {ns.id}")
        return 1
    print(json.dumps(item.to_dict(), ensure_ascii=False, indent=2))
    return 0 if item.exportable else 1


def _export(ns: argparse.Namespace) -> int:
    svc = _build_service(ns)
    out_path = expand_abs(ns.output)
    base = os.path.basename(out_path)
    out = svc.export(ns.format, filename=base, include_failed=ns.include_failed)
    target = os.path.join(os.path.dirname(out_path), out.filename)
    os.makedirs(os.path.dirname(target) or ".", exist_ok=True)
    with open(target, "wb") as f:
        f.write(out.content)
    LOG.info(f"Wrote: {target}")
    print(target)
    return 0


def _serve(ns: argparse.Namespace) -> int:
    from ..frontend import create_app
    import uvicorn

    if not ns.verbose:
        set_level(ns.log_level)
    config = load_config(ns.env_dir or os.getcwd())
    app = create_app(config=config, allow_origins=ns.allow_origins)
    uvicorn.run(app, host=ns.host, port=ns.port, log_level=ns.log_level)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="receipt-auto",
        description="Transcribe receipt photos with a vision model and export them as CSV/XLSX.",
    )
    parser.add_argument("--env-dir", help="Directory to start the .env search from (default: cwd)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging for every module")
    subparsers = parser.add_subparsers(dest="command", required=True)

    trans = subparsers.add_parser("transcribe", help="Transcribe a single receipt image.")
    trans.add_argument("--source", required=True, help="Path to the receipt image")
    trans.add_argument("--no-store", action="store_true", help="Print the receipt JSON without storing it")
    trans.set_defaults(handler=_transcribe)

    lst = subparsers.add_parser("list", help="List stored receipts (newest first).")
    lst.set_defaults(handler=_list)

    delete = subparsers.add_parser("delete", help="Delete a stored receipt and its image.")
    delete.add_argument("--id", required=True)
    delete.set_defaults(handler=_delete)

    retry = subparsers.add_parser("retry", help="Re-run transcription for a stored receipt.")
    retry.add_argument("--id", required=True)
    retry.set_defaults(handler=_retry)

    export = subparsers.add_parser("export", help="Export stored receipts.")
    export.add_argument("--format", choices=list(EXPORT_FORMATS), default="csv")
    export.add_argument("--output", required=True, help="Output path (extension added if missing)")
    export.add_argument("--include-failed", action="store_true", help="Also emit rows for failed receipts")
    export.set_defaults(handler=_export)

    serve = subparsers.add_parser("serve", help="Run the HTTP API.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8001)
    serve.add_argument("--log-level", default="info")
    serve.add_argument(
        "--allow-origin",
        action="append",
        dest="allow_origins",
        help="Allowed CORS origin (can be provided multiple times, use '*' for any).",
    )
    serve.set_defaults(handler=_serve)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]
    LOG.debug(f"CLI invoked with arguments: {provided}")
    args = build_parser().parse_args(provided)
    if args.verbose:
        set_level("DEBUG")
    try:
        code = args.handler(args)
    except ReceiptAutomationError as exc:
        LOG.error(f"{args.command} failed: {exc}")
        code = 2
    except OSError as exc:
        LOG.error(f"{args.command} failed: {exc}")
        code = 2
    LOG.info(f"Subcommand '{args.command}' finished with exit code {code}.")
    return code


if __name__ == "__main__":
    sys.exit(main())
