from __future__ import annotations

import csv
import html
import io
from datetime import datetime
from typing import Any

from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE

from ..logging import get_logger
from .projector import ExportTable

LOG = get_logger("exporters")

BOM = "\ufeff"
CSV_MEDIA_TYPE = "text/csv; charset=utf-8"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
HTML_MEDIA_TYPE = "text/html; charset=utf-8"

# Pinned so identical tables give identical workbook properties
_FIXED_TIMESTAMP = datetime(2000, 1, 1)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _xlsx_value(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, str):
        # Control characters are not allowed in worksheet XML
        return ILLEGAL_CHARACTERS_RE.sub("", value)
    return value


def export_filename(name: str, extension: str) -> str:
    """Append '.ext' unless the name already ends with it (case-insensitive)."""
    ext = extension if extension.startswith(".") else f".{extension}"
    base = (name or "receipts").strip() or "receipts"
    if base.lower().endswith(ext.lower()):
        return base
    return f"{base}{ext}"


def to_csv(table: ExportTable, *, bom: bool = True) -> str:
    """Render the table as CSV.

    Only fields containing a comma, quote, CR or LF are quoted; quotes are
    doubled. The BOM helps Excel detect UTF-8 (Turkish characters).
    """
    buf = io.StringIO()
    # "\r\n" makes csv quote fields holding a bare CR as well as LF
    writer = csv.writer(buf, lineterminator="\r\n", quoting=csv.QUOTE_MINIMAL)
    lines = []
    for record in [list(table.columns)] + [[_text(v) for v in row] for row in table.rows]:
        buf.seek(0)
        buf.truncate()
        writer.writerow(record)
        lines.append(buf.getvalue()[: -len("\r\n")])
    out = "\n".join(lines)
    return (BOM + out) if bom else out


def to_csv_bytes(table: ExportTable, *, bom: bool = True) -> bytes:
    return to_csv(table, bom=bom).encode("utf-8")


def to_xlsx_bytes(table: ExportTable, *, sheet_name: str = "Receipts") -> bytes:
    """Render the table as an .xlsx workbook with one header row."""
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_name
    ws.append([_xlsx_value(c) for c in table.columns])
    for row in table.rows:
        ws.append([_xlsx_value(v) for v in row])
    for cells in ws.iter_rows():
        for cell in cells:
            # Text starting with "=" stays text, never a live formula
            if cell.data_type == "f":
                cell.data_type = "s"
    wb.properties.created = _FIXED_TIMESTAMP
    wb.properties.modified = _FIXED_TIMESTAMP
    buf = io.BytesIO()
    wb.save(buf)
    data = buf.getvalue()
    LOG.debug("Wrote xlsx workbook (%d bytes, %d row(s))", len(data), len(table.rows))
    return data


def to_html_table(table: ExportTable) -> str:
    """Spreadsheet-friendly HTML table; every cell is escaped."""
    lines = ["<table>", "<thead><tr>"]
    lines.extend(f"<th>{html.escape(_text(c))}</th>" for c in table.columns)
    lines.append("</tr></thead>")
    lines.append("<tbody>")
    for row in table.rows:
        cells = "".join(f"<td>{html.escape(_text(v))}</td>" for v in row)
        lines.append(f"<tr>{cells}</tr>")
    lines.append("</tbody>")
    lines.append("</table>")
    return "\n".join(lines)
