"""Recover a JSON object from raw vision-model output."""

from __future__ import annotations

import json
import re
from typing import Any

from ..exceptions import EmptyOutputError, ExtractionError
from ..logging import get_logger

LOG = get_logger("json-extract")

_FENCE_LANG = re.compile(r"```json", re.IGNORECASE)


def extract_json_object(text: str) -> Any:
    """Return the JSON value contained in model output.

    Order:
    1. Parse the trimmed text directly (models usually comply).
    2. Drop ``` / ```json fence markers wherever they occur.
    3. Parse the slice from the first '{' to the last '}'.

    Braces are never balanced by hand; the JSON parser decides whether the
    slice is valid.
    """
    trimmed = (text or "").strip()
    if not trimmed:
        raise EmptyOutputError("empty output")

    try:
        return json.loads(trimmed)
    except json.JSONDecodeError:
        LOG.debug("Direct JSON parse failed; trying fence strip + slice (first 200 chars: %r)", trimmed[:200])

    unfenced = _FENCE_LANG.sub("```", trimmed).replace("```", "").strip()
    first = unfenced.find("{")
    last = unfenced.rfind("}")
    if first == -1 or last == -1 or last <= first:
        raise ExtractionError("no JSON object located")

    candidate = unfenced[first : last + 1]
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"invalid JSON in model output: {exc}") from exc


def lookup_path(tree: Any, path: str, default: Any = None) -> Any:
    """Walk a dotted path ('merchant.name', 'line_items.0.description').

    Only meant for raw extracted JSON before validation; validated records
    use attribute access.
    """
    node = tree
    for part in path.split("."):
        if isinstance(node, dict):
            if part not in node:
                return default
            node = node[part]
        elif isinstance(node, list):
            try:
                node = node[int(part)]
            except (ValueError, IndexError):
                return default
        else:
            return default
    return node
