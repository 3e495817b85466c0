"""Normalize loosely typed job fields at the data-access boundary.

Job records store tonnage entries, ticket references and image paths as JSON
text. Older rows hold a bare number, a plain string, a JSON array, or a JSON
string wrapping either. Everything past this module only sees plain lists.
"""

from __future__ import annotations

import json
import logging
import math
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable, List, Optional

logger = logging.getLogger(__name__)


class UnknownDispatchType(ValueError):
    """A job type has no dispatch classification, or one we do not bill."""

    pass


class DispatchType(str, Enum):
    """Billing method of a job type."""

    HOURLY = "Hourly"
    TONNAGE = "Tonnage"
    LOAD = "Load"
    FIXED = "Fixed"


class InvoiceStatus(str, Enum):
    """Billing status of a job or invoice."""

    PENDING = "Pending"
    INVOICED = "Invoiced"
    RAISED = "Raised"
    RECEIVED = "Received"
    PAID = "Paid"


_DISPATCH_ALIASES = {
    "hourly": DispatchType.HOURLY,
    "tonnage": DispatchType.TONNAGE,
    "load": DispatchType.LOAD,
    "loads": DispatchType.LOAD,
    "fixed": DispatchType.FIXED,
}

_STATUS_ALIASES = {
    "not invoiced": InvoiceStatus.PENDING,
    "uninvoiced": InvoiceStatus.PENDING,
}


def parse_dispatch_type(value: Any) -> DispatchType:
    """
    Resolve a stored dispatch type label (case-insensitive).

    Raises:
        UnknownDispatchType: If the value is missing or not a known type
    """
    if isinstance(value, DispatchType):
        return value

    key = str(value).strip().lower() if value is not None else ""
    try:
        return _DISPATCH_ALIASES[key]
    except KeyError:
        raise UnknownDispatchType(f"Unknown dispatch type: {value!r}")


def normalize_status(value: Any) -> InvoiceStatus:
    """Map a status label, including legacy spellings, to InvoiceStatus."""
    if isinstance(value, InvoiceStatus):
        return value

    key = str(value or "").strip().lower()
    if key in _STATUS_ALIASES:
        return _STATUS_ALIASES[key]

    for status in InvoiceStatus:
        if status.value.lower() == key:
            return status

    raise ValueError(f"Unknown invoice status: {value!r}")


def _to_float(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    # NaN and Infinity parse but are not weights
    return number if math.isfinite(number) else 0.0


def _decode(raw: Any) -> Any:
    """Decode JSON text; anything else is returned as-is."""
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")

    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        try:
            decoded = json.loads(text)
        except ValueError:
            return text
        # A JSON string holding another JSON document ("\"[15.5]\"")
        if isinstance(decoded, str) and decoded.strip() != text:
            return _decode(decoded)
        return decoded

    return raw


def parse_weights(raw: Any) -> List[float]:
    """
    Normalize a tonnage field to a list of floats.

    15.5, "15.5", [15.5] and "[15.5]" all give [15.5]. A value that cannot be
    parsed is treated as a single entry of 0.
    """
    value = _decode(raw)

    if value is None:
        return []

    if isinstance(value, (list, tuple)):
        return [_to_float(entry) for entry in value]

    if isinstance(value, bool):
        return [0.0]

    return [_to_float(value)]


def _parse_string_list(raw: Any) -> List[str]:
    value = _decode(raw)

    if value is None:
        return []

    if isinstance(value, (list, tuple)):
        return [str(entry).strip() for entry in value if entry is not None and str(entry).strip()]

    return [str(value).strip()]


def parse_ticket_ids(raw: Any) -> List[str]:
    """Normalize ticket references to a list of strings."""
    return _parse_string_list(raw)


def parse_image_urls(raw: Any) -> List[str]:
    """Normalize ticket photograph paths to a list of strings."""
    return _parse_string_list(raw)


def dump_json_list(values: Optional[Iterable[Any]]) -> str:
    """Serialize a normalized list for storage."""
    return json.dumps(list(values or []))


def parse_local_date(value: Any) -> date:
    """
    Parse a calendar date without any timezone conversion.

    Accepts date objects, datetimes (date part kept as-is) and "YYYY-MM-DD"
    strings, optionally followed by a time component.

    Raises:
        ValueError: If the value is not a valid date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value or "").strip()
    # Drop any time portion; the calendar day is what was entered.
    text = text.split("T")[0].split(" ")[0]
    try:
        return datetime.strptime(text, "%Y-%m-%d").date()
    except ValueError:
        raise ValueError(f"Invalid date (expected YYYY-MM-DD): {value!r}")
