from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Optional, Tuple, Union

from ..exceptions import SchemaViolation

Number = Union[int, float]

STATUS_PROCESSING = "processing"
STATUS_DONE = "done"
STATUS_ERROR = "error"
STATUS_CHOICES: Tuple[str, ...] = (STATUS_PROCESSING, STATUS_DONE, STATUS_ERROR)

DOCUMENT_TYPES: Tuple[str, ...] = ("receipt", "invoice", "other")


def _compact(obj: Any) -> Dict[str, Any]:
    """Dataclass -> dict, dropping fields that were not provided."""
    out: Dict[str, Any] = {}
    for f in fields(obj):
        value = getattr(obj, f.name)
        if value is None:
            continue
        if isinstance(value, tuple):
            value = [v.to_dict() if hasattr(v, "to_dict") else v for v in value]
        elif hasattr(value, "to_dict"):
            value = value.to_dict()
        out[f.name] = value
    return out


@dataclass(frozen=True)
class Merchant:
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    tax_office: Optional[str] = None  # Vergi Dairesi
    tax_number: Optional[str] = None  # VKN / TCKN

    def to_dict(self) -> Dict[str, Any]:
        return _compact(self)


@dataclass(frozen=True)
class Transaction:
    date: Optional[str] = None
    time: Optional[str] = None
    receipt_number: Optional[str] = None  # Fiş No / Belge No
    payment_method: Optional[str] = None
    card_last4: Optional[str] = None
    currency: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact(self)


@dataclass(frozen=True)
class Totals:
    subtotal: Optional[Number] = None
    tax: Optional[Number] = None
    tip: Optional[Number] = None
    discount: Optional[Number] = None
    total: Optional[Number] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact(self)


@dataclass(frozen=True)
class TaxRateEntry:
    """One KDV row: percentage rate, taxable base (matrah) and tax amount."""

    rate: Number
    taxable_amount: Optional[Number] = None
    tax_amount: Optional[Number] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact(self)


@dataclass(frozen=True)
class LineItem:
    description: str
    quantity: Optional[Number] = None
    unit_price: Optional[Number] = None
    total_price: Optional[Number] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact(self)


@dataclass(frozen=True)
class ReceiptRecord:
    """Validated receipt. Every attribute is optional; None means not provided."""

    document_type: Optional[str] = None
    merchant: Optional[Merchant] = None
    transaction: Optional[Transaction] = None
    totals: Optional[Totals] = None
    tax_rates: Tuple[TaxRateEntry, ...] = ()
    line_items: Tuple[LineItem, ...] = ()
    notes: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        """Canonical JSON-ready form; validating it again yields an equal record."""
        out = _compact(self)
        for key in ("tax_rates", "line_items", "notes"):
            if not out.get(key):
                out.pop(key, None)
        return out


@dataclass(frozen=True)
class FieldError:
    path: str
    reason: str
    kind: str = "schema"  # schema | numeric

    def __str__(self) -> str:
        return f"{self.path or '<root>'}: {self.reason}"


@dataclass(frozen=True)
class Valid:
    record: ReceiptRecord
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class Invalid:
    errors: Tuple[FieldError, ...]
    ok: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        if not self.errors:
            raise ValueError("Invalid outcome requires at least one error")

    def to_exception(self) -> SchemaViolation:
        return SchemaViolation(self.errors)


ValidationOutcome = Union[Valid, Invalid]


@dataclass(frozen=True)
class StoredReceiptItem:
    """One uploaded receipt as tracked by the caller (store, API, CLI)."""

    id: str
    created_at: int  # epoch milliseconds
    file_name: str
    mime_type: str
    size: int
    status: str = STATUS_PROCESSING
    error: Optional[str] = None
    error_details: Tuple[str, ...] = ()
    receipt: Optional[ReceiptRecord] = None

    @property
    def exportable(self) -> bool:
        return self.status == STATUS_DONE and self.receipt is not None

    def mark_done(self, record: ReceiptRecord) -> "StoredReceiptItem":
        return replace(self, status=STATUS_DONE, error=None, error_details=(), receipt=record)

    def mark_error(self, message: str, details: Tuple[str, ...] = ()) -> "StoredReceiptItem":
        return replace(self, status=STATUS_ERROR, error=message, error_details=tuple(details), receipt=None)

    def mark_processing(self) -> "StoredReceiptItem":
        return replace(self, status=STATUS_PROCESSING, error=None, error_details=())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "file_name": self.file_name,
            "mime_type": self.mime_type,
            "size": self.size,
            "status": self.status,
            "error": self.error,
            "error_details": list(self.error_details),
            "receipt": self.receipt.to_dict() if self.receipt is not None else None,
        }
