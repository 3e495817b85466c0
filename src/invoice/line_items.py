"""Aggregate a batch of jobs into invoice totals."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

# Ontario HST, charged on subtotal plus commission.
TAX_RATE = 0.13


class InvoiceValidationError(ValueError):
    """An invoice operation was rejected; nothing was written."""

    pass


class InvoiceNotFound(InvoiceValidationError):
    """The referenced invoice does not exist."""

    pass


class JobAlreadyInvoiced(InvoiceValidationError):
    """A job in the batch is already linked to another invoice."""

    pass


class DispatcherMismatch(InvoiceValidationError):
    """The jobs in a batch do not share exactly one dispatcher."""

    pass


@dataclass
class InvoiceTotals:
    """Money figures stored on an invoice."""

    sub_total: float
    dispatch_percent: float
    commission: float
    hst: float
    total: float


def resolve_commission_percent(
    override: Optional[float], dispatcher_default: Optional[float]
) -> float:
    """Use the explicit percent when given, otherwise the dispatcher's default."""
    if override is not None:
        return float(override)
    return float(dispatcher_default or 0)


def calculate_invoice_totals(amounts: Iterable[float], percent: float) -> InvoiceTotals:
    """
    Calculate subtotal, commission, tax and total for a set of job amounts.

    commission = subtotal x percent / 100
    hst = (subtotal + commission) x TAX_RATE
    total = subtotal + commission + hst
    """
    sub_total = round(sum(float(a or 0) for a in amounts), 2)
    commission = round(sub_total * (percent / 100), 2)
    hst = round((sub_total + commission) * TAX_RATE, 2)
    total = round(sub_total + commission + hst, 2)

    return InvoiceTotals(
        sub_total=sub_total,
        dispatch_percent=percent,
        commission=commission,
        hst=hst,
        total=total,
    )


def validate_job_batch(
    jobs: Sequence,
    requested_ids: Sequence[str],
    invoice_id: Optional[str] = None,
) -> str:
    """
    Check that a batch of jobs can be invoiced together.

    Jobs must all exist, be un-invoiced (or already belong to invoice_id when
    editing that invoice) and share exactly one dispatcher.

    Returns:
        The shared dispatcher ID

    Raises:
        InvoiceValidationError: If no jobs were supplied or some are missing
        JobAlreadyInvoiced: If a job belongs to a different invoice
        DispatcherMismatch: If the jobs span zero or several dispatchers
    """
    unique_ids = list(dict.fromkeys(requested_ids or []))
    if not unique_ids:
        raise InvoiceValidationError("No jobs provided for invoice")

    found = {job.id for job in jobs}
    missing = [job_id for job_id in unique_ids if job_id not in found]
    if missing:
        raise InvoiceValidationError(f"Jobs not found: {', '.join(missing)}")

    taken = [
        job.id
        for job in jobs
        if job.invoice_id is not None and job.invoice_id != invoice_id
    ]
    if taken:
        raise JobAlreadyInvoiced(f"Jobs already invoiced: {', '.join(taken)}")

    dispatcher_ids = {job.dispatcher_id for job in jobs}
    if len(dispatcher_ids) != 1 or None in dispatcher_ids:
        raise DispatcherMismatch("All jobs must have the same dispatcher")

    return dispatcher_ids.pop()
