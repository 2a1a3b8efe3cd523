"""Pure receipt pipeline: JSON extraction, schema validation, table projection, export."""

from .json_extract import extract_json_object, lookup_path
from .schema import parse_receipt, validate_receipt
from .projector import ExportTable, build_export_table
from .exporters import export_filename, to_csv, to_csv_bytes, to_html_table, to_xlsx_bytes

__all__ = [
    "extract_json_object",
    "lookup_path",
    "parse_receipt",
    "validate_receipt",
    "ExportTable",
    "build_export_table",
    "export_filename",
    "to_csv",
    "to_csv_bytes",
    "to_html_table",
    "to_xlsx_bytes",
]
