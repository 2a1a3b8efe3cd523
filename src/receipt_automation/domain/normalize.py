"""Locale-aware amount parsing, receipt date rendering and tax-rate labels."""

from __future__ import annotations

import math
import re
from decimal import Decimal
from typing import Any, Union

from ..exceptions import NumericFormatError

Number = Union[int, float]

_WHITESPACE = re.compile(r"\s+")
_NOT_NUMERIC = re.compile(r"[^0-9.\-]")
_DATE_PARTS = re.compile(r"(\d{1,4})\D+(\d{1,2})\D+(\d{1,4})")


def normalize_number(value: Any) -> Number:
    """Coerce a model-supplied amount to a finite number.

    Handles inputs like '14,70', '1.234,56', '1,234.56', '₺1.234,56' and
    plain numbers. When both separators appear, the later one is the
    decimal point; a lone comma is a decimal comma.
    """
    if isinstance(value, bool):
        raise NumericFormatError(f"expected a number, got boolean {value!r}")
    if isinstance(value, (int, float)):
        try:
            as_float = float(value)
        except OverflowError:
            raise NumericFormatError("integer is too large to be an amount") from None
        if not math.isfinite(as_float):
            raise NumericFormatError(f"expected a finite number, got {value!r}")
        return value
    if not isinstance(value, str):
        raise NumericFormatError(f"expected a number or string, got {type(value).__name__}")

    s = _WHITESPACE.sub("", value)
    has_comma = "," in s
    has_dot = "." in s
    if has_comma and has_dot:
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif has_comma:
        s = s.replace(",", ".")

    s = _NOT_NUMERIC.sub("", s)
    if s.count(".") > 1:
        head, _, tail = s.rpartition(".")
        s = head.replace(".", "") + "." + tail

    try:
        num = float(s)
    except ValueError:
        raise NumericFormatError(f"cannot parse {value!r} as a number") from None
    if not math.isfinite(num):
        raise NumericFormatError(f"{value!r} is not a finite number")
    return num


def normalize_date_dmy(value: Any) -> str:
    """Render common receipt date strings as DD/MM/YYYY.

    Accepts DD-MM-YYYY, DD.MM.YYYY, DD/MM/YYYY, YYYY-MM-DD and two-digit
    years (mapped to 20xx). Unrecognized strings are returned trimmed but
    otherwise unchanged; non-strings yield an empty string.
    """
    if not isinstance(value, str):
        return ""
    s = value.strip()
    if not s:
        return ""
    m = _DATE_PARTS.search(s)
    if not m:
        return s
    a, b, c = (int(g) for g in m.groups())
    # A leading four-digit year means Y-M-D
    if a >= 1900:
        return f"{c:02d}/{b:02d}/{a}"
    year = 2000 + c if c < 100 else c
    return f"{a:02d}/{b:02d}/{year}"


def format_rate_label(rate: Number, decimal_separator: str = ",") -> str:
    """Human label for a tax rate: 1 -> '1%', 8.5 -> '8,5%'."""
    text = format(Decimal(str(rate)).normalize(), "f")
    if "." in text:
        text = text.replace(".", decimal_separator)
    return f"{text}%"
