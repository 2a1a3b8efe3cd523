from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..domain.models import (
    DOCUMENT_TYPES,
    FieldError,
    Invalid,
    LineItem,
    Merchant,
    ReceiptRecord,
    TaxRateEntry,
    Totals,
    Transaction,
    Valid,
    ValidationOutcome,
)
from ..domain.normalize import normalize_number
from ..exceptions import NumericFormatError
from ..logging import get_logger


LOG = get_logger("schema")

TEXT = "text"
REQUIRED_TEXT = "required_text"
NUMBER = "number"
REQUIRED_NUMBER = "required_number"

_REQUIRED = {REQUIRED_TEXT, REQUIRED_NUMBER}
_NUMERIC = {NUMBER, REQUIRED_NUMBER}

MERCHANT_FIELDS: Dict[str, str] = {
    "name": REQUIRED_TEXT,
    "address": TEXT,
    "phone": TEXT,
    "website": TEXT,
    "tax_office": TEXT,
    "tax_number": TEXT,
}

TRANSACTION_FIELDS: Dict[str, str] = {
    "date": TEXT,
    "time": TEXT,
    "receipt_number": TEXT,
    "payment_method": TEXT,
    "card_last4": TEXT,
    "currency": TEXT,
}

TOTALS_FIELDS: Dict[str, str] = {
    "subtotal": NUMBER,
    "tax": NUMBER,
    "tip": NUMBER,
    "discount": NUMBER,
    "total": NUMBER,
}

TAX_RATE_FIELDS: Dict[str, str] = {
    "rate": REQUIRED_NUMBER,
    "taxable_amount": NUMBER,
    "tax_amount": NUMBER,
}

LINE_ITEM_FIELDS: Dict[str, str] = {
    "description": REQUIRED_TEXT,
    "quantity": NUMBER,
    "unit_price": NUMBER,
    "total_price": NUMBER,
}

TOP_LEVEL_FIELDS = (
    "document_type",
    "merchant",
    "transaction",
    "totals",
    "tax_rates",
    "line_items",
    "notes",
)


class _Errors:
    def __init__(self) -> None:
        self.items: List[FieldError] = []

    def add(self, path: str, reason: str, kind: str = "schema") -> None:
        self.items.append(FieldError(path=path, reason=reason, kind=kind))

    def __bool__(self) -> bool:
        return bool(self.items)


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def _reject_unknown(obj: Dict[str, Any], allowed, path: str, errors: _Errors) -> None:
    for key in obj:
        if key not in allowed:
            errors.add(_join(path, str(key)), "unknown field")


def _structural(obj: Dict[str, Any], field_kinds: Dict[str, str], path: str, errors: _Errors) -> Dict[str, Any]:
    """Phase 1: unknown keys, presence and value types."""
    _reject_unknown(obj, field_kinds, path, errors)
    present: Dict[str, Any] = {}
    for key, kind in field_kinds.items():
        fpath = _join(path, key)
        value = obj.get(key)
        if value is None:
            if kind in _REQUIRED:
                errors.add(fpath, "required field missing")
            continue
        if kind in _NUMERIC:
            if isinstance(value, bool) or not isinstance(value, (int, float, str)):
                errors.add(fpath, "expected a number or numeric string")
                continue
            present[key] = value
            continue
        if not isinstance(value, str):
            errors.add(fpath, "expected a string")
            continue
        if kind == REQUIRED_TEXT and not value.strip():
            errors.add(fpath, "must not be empty")
            continue
        present[key] = value.strip()
    return present


def _coerce_numbers(present: Dict[str, Any], field_kinds: Dict[str, str], path: str, errors: _Errors) -> Dict[str, Any]:
    """Phase 2: run numeric fields through the normalizer, collecting failures."""
    out = dict(present)
    for key, kind in field_kinds.items():
        if kind not in _NUMERIC or key not in out:
            continue
        try:
            out[key] = normalize_number(out[key])
        except NumericFormatError as exc:
            errors.add(_join(path, key), str(exc), kind="numeric")
            del out[key]
    return out


def _sub_object(value: Any, field_kinds: Dict[str, str], path: str, errors: _Errors) -> Optional[Dict[str, Any]]:
    if value is None:
        return None
    if not isinstance(value, dict):
        errors.add(path, "expected an object")
        return None
    present = _structural(value, field_kinds, path, errors)
    return _coerce_numbers(present, field_kinds, path, errors)


def _object_list(value: Any, field_kinds: Dict[str, str], path: str, errors: _Errors) -> List[Dict[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list):
        errors.add(path, "expected a list")
        return []
    out: List[Dict[str, Any]] = []
    for idx, entry in enumerate(value):
        epath = f"{path}[{idx}]"
        if entry is None:
            errors.add(epath, "expected an object")
            continue
        item = _sub_object(entry, field_kinds, epath, errors)
        if item is not None:
            out.append(item)
    return out


def _string_list(value: Any, path: str, errors: _Errors) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        errors.add(path, "expected a list of strings")
        return []
    out: List[str] = []
    for idx, entry in enumerate(value):
        if not isinstance(entry, str):
            errors.add(f"{path}[{idx}]", "expected a string")
            continue
        out.append(entry)
    return out


def _document_type(value: Any, errors: _Errors) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str) or value.strip().lower() not in DOCUMENT_TYPES:
        errors.add("document_type", f"expected one of {', '.join(DOCUMENT_TYPES)}")
        return None
    return value.strip().lower()


def validate_receipt(data: Any) -> ValidationOutcome:
    """Validate extracted JSON against the closed receipt schema.

    Every violation is collected (unknown keys at any level, wrong types,
    empty required strings, unparseable amounts) so the caller sees all of
    them in one pass. Returns Valid(record) or Invalid(errors), never both.
    """
    if not isinstance(data, dict):
        return Invalid((FieldError(path="", reason="expected a JSON object"),))

    errors = _Errors()
    _reject_unknown(data, TOP_LEVEL_FIELDS, "", errors)

    document_type = _document_type(data.get("document_type"), errors)
    merchant = _sub_object(data.get("merchant"), MERCHANT_FIELDS, "merchant", errors)
    transaction = _sub_object(data.get("transaction"), TRANSACTION_FIELDS, "transaction", errors)
    totals = _sub_object(data.get("totals"), TOTALS_FIELDS, "totals", errors)
    tax_rates = _object_list(data.get("tax_rates"), TAX_RATE_FIELDS, "tax_rates", errors)
    line_items = _object_list(data.get("line_items"), LINE_ITEM_FIELDS, "line_items", errors)
    notes = _string_list(data.get("notes"), "notes", errors)

    if errors:
        LOG.debug("Receipt JSON rejected with %d violation(s)", len(errors.items))
        return Invalid(tuple(errors.items))

    record = ReceiptRecord(
        document_type=document_type,
        merchant=Merchant(**merchant) if merchant is not None else None,
        transaction=Transaction(**transaction) if transaction is not None else None,
        totals=Totals(**totals) if totals is not None else None,
        tax_rates=tuple(TaxRateEntry(**entry) for entry in tax_rates),
        line_items=tuple(LineItem(**entry) for entry in line_items),
        notes=tuple(notes),
    )
    LOG.debug(
        "Receipt JSON validated (line_items=%d tax_rates=%d)",
        len(record.line_items),
        len(record.tax_rates),
    )
    return Valid(record)


def parse_receipt(data: Any) -> ReceiptRecord:
    """Like validate_receipt but raises SchemaViolation on failure."""
    outcome = validate_receipt(data)
    if isinstance(outcome, Invalid):
        raise outcome.to_exception()
    return outcome.record
