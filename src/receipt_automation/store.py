from __future__ import annotations

import json
import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator, List, Optional

from .domain.models import STATUS_CHOICES, StoredReceiptItem
from .exceptions import CollaboratorError
from .logging import get_logger
from .paths import find_project_root, var_dir
from .pipeline.schema import validate_receipt


LOG = get_logger("store")

DEFAULT_DB_FOLDER = "receipts"
DEFAULT_DB_FILENAME = "receipts.sqlite3"

STATUS_ENUM_SQL = ", ".join(f"'{value}'" for value in STATUS_CHOICES)

SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS items (
  id             TEXT PRIMARY KEY,
  created_at     INTEGER NOT NULL,   -- epoch milliseconds
  file_name      TEXT NOT NULL,
  mime_type      TEXT NOT NULL,
  size           INTEGER NOT NULL,
  status         TEXT NOT NULL CHECK(status IN ({STATUS_ENUM_SQL})),
  error          TEXT,
  error_details  TEXT,               -- JSON list of strings
  receipt        TEXT                -- canonical receipt JSON
);

CREATE TABLE IF NOT EXISTS images (
  id    TEXT PRIMARY KEY,
  data  BLOB NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_items_created_at ON items(created_at);
"""


class ReceiptStore:
    """SQLite-backed key-value store for receipt items and their images.

    - Places the DB under `<root>/var/receipts/receipts.sqlite3` unless
      db_path is given.
    - One connection per operation.
    """

    def __init__(self, root_dir: Optional[str] = None, *, db_path: Optional[str] = None) -> None:
        if db_path is None:
            root = find_project_root(root_dir)
            folder = os.path.join(var_dir(root), DEFAULT_DB_FOLDER)
            os.makedirs(folder, exist_ok=True)
            db_path = os.path.join(folder, DEFAULT_DB_FILENAME)
        self.db_path = db_path
        LOG.info(f"Receipt store path: {self.db_path}")
        self._ensure_schema()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as exc:
            raise CollaboratorError(f"Cannot open receipt store at {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self.connect() as conn:
            cur = conn.cursor()
            try:
                cur.execute("PRAGMA journal_mode=WAL;")
            except sqlite3.OperationalError:
                pass
            cur.executescript(SCHEMA_SQL)
            conn.commit()

    # ---------------- items ----------------
    def put(self, item: StoredReceiptItem) -> None:
        receipt_json = json.dumps(item.receipt.to_dict(), ensure_ascii=False) if item.receipt is not None else None
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO items (id, created_at, file_name, mime_type, size, status, error, error_details, receipt)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  created_at=excluded.created_at,
                  file_name=excluded.file_name,
                  mime_type=excluded.mime_type,
                  size=excluded.size,
                  status=excluded.status,
                  error=excluded.error,
                  error_details=excluded.error_details,
                  receipt=excluded.receipt
                """,
                (
                    item.id,
                    int(item.created_at),
                    item.file_name,
                    item.mime_type,
                    int(item.size),
                    item.status,
                    item.error,
                    json.dumps(list(item.error_details), ensure_ascii=False),
                    receipt_json,
                ),
            )
            conn.commit()
        LOG.debug("Stored item %s (status=%s)", item.id, item.status)

    def get(self, item_id: str) -> Optional[StoredReceiptItem]:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM items WHERE id=?", (item_id,)).fetchone()
        return self._row_to_item(row) if row is not None else None

    def delete(self, item_id: str) -> bool:
        with self.connect() as conn:
            cur = conn.execute("DELETE FROM items WHERE id=?", (item_id,))
            conn.execute("DELETE FROM images WHERE id=?", (item_id,))
            conn.commit()
            removed = cur.rowcount > 0
        LOG.debug("Deleted item %s (existed=%s)", item_id, removed)
        return removed

    def list(self) -> List[StoredReceiptItem]:
        """All items, newest first."""
        with self.connect() as conn:
            rows = conn.execute("SELECT * FROM items ORDER BY created_at DESC, id").fetchall()
        return [self._row_to_item(row) for row in rows]

    # ---------------- images ----------------
    def put_image(self, item_id: str, data: bytes) -> None:
        with self.connect() as conn:
            conn.execute(
                "INSERT INTO images (id, data) VALUES (?, ?) ON CONFLICT(id) DO UPDATE SET data=excluded.data",
                (item_id, sqlite3.Binary(data)),
            )
            conn.commit()

    def get_image(self, item_id: str) -> Optional[bytes]:
        with self.connect() as conn:
            row = conn.execute("SELECT data FROM images WHERE id=?", (item_id,)).fetchone()
        return bytes(row["data"]) if row is not None else None

    # ---------------- helpers ----------------
    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> StoredReceiptItem:
        receipt = None
        status = row["status"]
        error = row["error"]
        raw_receipt = row["receipt"]
        if raw_receipt:
            outcome = validate_receipt(json.loads(raw_receipt))
            if outcome.ok:
                receipt = outcome.record
            else:
                # Stored JSON no longer matches the schema; surface it as a failed item
                LOG.warning("Stored receipt %s no longer validates: %s", row["id"], outcome.errors[0])
                status, error = "error", "Stored receipt no longer matches the schema"
        details = tuple(json.loads(row["error_details"] or "[]"))
        return StoredReceiptItem(
            id=row["id"],
            created_at=int(row["created_at"]),
            file_name=row["file_name"],
            mime_type=row["mime_type"],
            size=int(row["size"]),
            status=status,
            error=error,
            error_details=details,
            receipt=receipt,
        )
