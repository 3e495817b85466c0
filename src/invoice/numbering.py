"""Default invoice numbers: INV-{dispatcher}-{unit}-{first date}-{last date}."""

from __future__ import annotations

import re
from datetime import date
from typing import Iterable, Optional, Tuple, Union

UNKNOWN_DISPATCHER_TOKEN = "XX"
MULTIPLE_UNITS_TOKEN = "MUL"
UNKNOWN_DATES_TOKEN = "XXXXXX-XXXXXX"

# A unit name, or a (unit id, unit name) pair
UnitRef = Union[Optional[str], Tuple[Optional[str], Optional[str]]]


def dispatcher_token(dispatcher_name: Optional[str]) -> str:
    """Initials of the dispatcher name: "John Smith" -> "JS"."""
    words = (dispatcher_name or "").split()
    if not words:
        return UNKNOWN_DISPATCHER_TOKEN
    return "".join(word[0].upper() for word in words)


def _unit_key(unit: UnitRef) -> Tuple[Optional[str], Optional[str]]:
    if isinstance(unit, tuple):
        return unit
    return (unit or None, unit or None)


def unit_token(units: Iterable[UnitRef]) -> str:
    """
    Number of the single unit in a batch: "Truck 42" -> "42".

    Units are compared by id when given as (id, name) pairs. A job without a
    unit counts as a unit of its own, so a batch mixing "Truck 7" and no unit
    is "MUL". Batches with several units, no unit, or a unit name without
    digits use "MUL".
    """
    distinct = {_unit_key(unit) for unit in units}
    if len(distinct) != 1:
        return MULTIPLE_UNITS_TOKEN

    _, name = distinct.pop()
    if not name:
        return MULTIPLE_UNITS_TOKEN

    match = re.search(r"\d+", name)
    return match.group(0) if match else MULTIPLE_UNITS_TOKEN


def date_token(
    job_dates: Iterable[Optional[date]],
    date_range: Optional[Tuple[date, date]] = None,
) -> str:
    """
    First and last date as yyMMdd, joined by a hyphen.

    An explicit date range takes precedence over the job dates.
    """
    if date_range is not None:
        first, last = date_range
    else:
        dates = sorted(d for d in job_dates if d is not None)
        if not dates:
            return UNKNOWN_DATES_TOKEN
        first, last = dates[0], dates[-1]

    return f"{first.strftime('%y%m%d')}-{last.strftime('%y%m%d')}"


def generate_invoice_number(
    dispatcher_name: Optional[str],
    units: Iterable[UnitRef],
    job_dates: Iterable[Optional[date]],
    date_range: Optional[Tuple[date, date]] = None,
) -> str:
    """
    Build the default invoice number for a job batch.

    Example: "Jane Doe", ["Truck 7"], [2024-03-01, 2024-03-15]
    -> "INV-JD-7-240301-240315"
    """
    return "-".join(
        [
            "INV",
            dispatcher_token(dispatcher_name),
            unit_token(units),
            date_token(job_dates, date_range),
        ]
    )


def resolve_invoice_number(
    explicit_number: Optional[str],
    dispatcher_name: Optional[str],
    units: Iterable[UnitRef],
    job_dates: Iterable[Optional[date]],
    date_range: Optional[Tuple[date, date]] = None,
) -> str:
    """Use the caller's invoice number when supplied, otherwise generate one."""
    if explicit_number and explicit_number.strip():
        return explicit_number.strip()
    return generate_invoice_number(dispatcher_name, units, job_dates, date_range)
