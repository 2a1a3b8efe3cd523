"""Project stored receipts into a rectangular export table."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..domain.models import Number, ReceiptRecord, StoredReceiptItem, TaxRateEntry
from ..domain.normalize import format_rate_label, normalize_date_dmy
from ..logging import get_logger

LOG = get_logger("projector")

FIXED_COLUMNS: Tuple[str, ...] = (
    "no",
    "id",
    "status",
    "created_at",
    "file_name",
    "document_type",
    "merchant_name",
    "merchant_address",
    "tax_office",
    "tax_number",
    "receipt_number",
    "transaction_date",
    "transaction_time",
    "payment_method",
    "currency",
    "subtotal",
    "tax",
    "tip",
    "discount",
    "total",
    "line_items_count",
    "line_items",
    "notes",
    "error",
)

EMPTY = ""


@dataclass(frozen=True)
class ExportTable:
    """Column names plus rows holding exactly one cell per column."""

    columns: Tuple[str, ...]
    rows: Tuple[Tuple[Any, ...], ...]
    rates: Tuple[Number, ...] = ()

    def row_dicts(self) -> List[Dict[str, Any]]:
        return [dict(zip(self.columns, row)) for row in self.rows]


def rate_columns(rate: Number, decimal_separator: str = ",") -> Tuple[str, str]:
    label = format_rate_label(rate, decimal_separator)
    return f"tax_base {label}", f"tax_amount {label}"


def _cell(value: Any) -> Any:
    if value is None:
        return EMPTY
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value, ensure_ascii=False)
    return value


def _iso_utc(ms: int) -> str:
    try:
        return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    except (OverflowError, OSError, ValueError, TypeError):
        return str(ms)


def discover_rates(records: Iterable[Optional[ReceiptRecord]]) -> Tuple[Number, ...]:
    """First pass: distinct tax rates across all records, ascending."""
    seen = set()
    for record in records:
        if record is None:
            continue
        for entry in record.tax_rates:
            seen.add(entry.rate)
    return tuple(sorted(seen))


def _rates_by_value(entries: Sequence[TaxRateEntry]) -> Dict[Number, Dict[str, Number]]:
    """Duplicate rates: the first non-empty value of each field wins."""
    merged: Dict[Number, Dict[str, Number]] = {}
    for entry in entries:
        slot = merged.setdefault(entry.rate, {})
        if "taxable_amount" not in slot and entry.taxable_amount is not None:
            slot["taxable_amount"] = entry.taxable_amount
        if "tax_amount" not in slot and entry.tax_amount is not None:
            slot["tax_amount"] = entry.tax_amount
    return merged


def _record_cells(record: Optional[ReceiptRecord]) -> Dict[str, Any]:
    if record is None:
        return {}
    merchant = record.merchant
    txn = record.transaction
    totals = record.totals
    cells: Dict[str, Any] = {
        "document_type": record.document_type,
        "line_items_count": len(record.line_items),
        "line_items": [item.to_dict() for item in record.line_items],
        "notes": list(record.notes),
    }
    if merchant is not None:
        cells.update(
            merchant_name=merchant.name,
            merchant_address=merchant.address,
            tax_office=merchant.tax_office,
            tax_number=merchant.tax_number,
        )
    if txn is not None:
        cells.update(
            receipt_number=txn.receipt_number,
            transaction_date=normalize_date_dmy(txn.date) if txn.date else None,
            transaction_time=txn.time,
            payment_method=txn.payment_method,
            currency=txn.currency,
        )
    if totals is not None:
        cells.update(
            subtotal=totals.subtotal,
            tax=totals.tax,
            tip=totals.tip,
            discount=totals.discount,
            total=totals.total,
        )
    return cells


def build_export_table(
    items: Iterable[StoredReceiptItem],
    *,
    include_failed: bool = False,
    sort_key: Optional[Callable[[StoredReceiptItem], Any]] = None,
    decimal_separator: str = ",",
) -> ExportTable:
    """Build the export table for a collection of stored receipts.

    Items that are not `done` are skipped unless include_failed is set, in
    which case they appear with empty data cells and their error message.
    Rows keep input order unless sort_key is given. Never raises on data.
    """
    selected = [it for it in items if include_failed or it.exportable]
    if sort_key is not None:
        selected = sorted(selected, key=sort_key)

    rates = discover_rates(it.receipt for it in selected)
    dynamic: List[str] = []
    for rate in rates:
        dynamic.extend(rate_columns(rate, decimal_separator))
    columns = FIXED_COLUMNS + tuple(dynamic)

    rows: List[Tuple[Any, ...]] = []
    for idx, item in enumerate(selected, 1):
        cells: Dict[str, Any] = {
            "no": idx,
            "id": item.id,
            "status": item.status,
            "created_at": _iso_utc(item.created_at),
            "file_name": item.file_name,
            "error": item.error,
        }
        cells.update(_record_cells(item.receipt))
        by_rate = _rates_by_value(item.receipt.tax_rates) if item.receipt is not None else {}
        for rate in rates:
            base_col, amount_col = rate_columns(rate, decimal_separator)
            slot = by_rate.get(rate, {})
            cells[base_col] = slot.get("taxable_amount")
            cells[amount_col] = slot.get("tax_amount")
        rows.append(tuple(_cell(cells.get(col)) for col in columns))

    LOG.debug("Projected %d row(s) with %d rate column pair(s)", len(rows), len(rates))
    return ExportTable(columns=columns, rows=tuple(rows), rates=rates)
