"""Invoice record operations.

Each function runs inside the caller's unit of work (see session_scope) and
raises before anything is committed when a precondition fails.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from src.calculations.amounts import calculate_job_amount
from src.db.models import Dispatcher, Invoice, InvoiceLine, Job
from src.invoice.line_items import (
    InvoiceNotFound,
    InvoiceValidationError,
    JobAlreadyInvoiced,
    calculate_invoice_totals,
    resolve_commission_percent,
    validate_job_batch,
)
from src.invoice.numbering import UnitRef, resolve_invoice_number
from src.parsing.job_fields import (
    InvoiceStatus,
    UnknownDispatchType,
    normalize_status,
    parse_local_date,
)

logger = logging.getLogger(__name__)

# Line amounts further than this from the recalculated job amount are reported
AMOUNT_TOLERANCE = 0.01


class InvoiceConsistencyError(RuntimeError):
    """Invoice data was left in a state the operation cannot continue from."""

    pass


@dataclass
class AmountDiscrepancy:
    """An invoice line whose amount no longer matches its job."""

    job_id: str
    line_amount: float
    calculated_amount: float

    @property
    def difference(self) -> float:
        return round(self.calculated_amount - self.line_amount, 2)


def _unique(ids: Optional[Sequence[str]]) -> List[str]:
    return list(dict.fromkeys(ids or []))


def _load_jobs(session: Session, job_ids: List[str]) -> List[Job]:
    if not job_ids:
        return []
    return session.query(Job).filter(Job.id.in_(job_ids)).all()


def _status_value(status: Any) -> Optional[str]:
    if status is None:
        return None
    try:
        return normalize_status(status).value
    except ValueError as e:
        raise InvoiceValidationError(str(e))


def _invoice_date(value: Any) -> date:
    if value is None or value == "":
        return date.today()
    try:
        return parse_local_date(value)
    except ValueError as e:
        raise InvoiceValidationError(str(e))


def _batch_dispatcher(session: Session, dispatcher_id: str) -> Dispatcher:
    dispatcher = session.get(Dispatcher, dispatcher_id)
    if dispatcher is None or not dispatcher.name:
        raise InvoiceValidationError("Dispatcher not found for the selected jobs")
    return dispatcher


def _check_percent(percent: float) -> float:
    if percent < 0:
        raise InvoiceValidationError("Commission percent cannot be negative")
    return percent


def _check_number_available(
    session: Session, number: str, invoice_id: Optional[str] = None
) -> None:
    query = session.query(Invoice).filter(Invoice.invoice_number == number)
    if invoice_id is not None:
        query = query.filter(Invoice.id != invoice_id)
    if query.first() is not None:
        raise InvoiceValidationError(f"Invoice number already exists: {number}")


def _claim_jobs(session: Session, invoice: Invoice, job_ids: List[str], status: str) -> None:
    """
    Link un-invoiced jobs to the invoice.

    The update only matches jobs whose invoice_id is still empty, so if
    another request claimed one of them first the row count comes up short.

    Raises:
        JobAlreadyInvoiced: If any job was claimed by another invoice
    """
    if not job_ids:
        return

    claimed = (
        session.query(Job)
        .filter(Job.id.in_(job_ids), Job.invoice_id.is_(None))
        .update(
            {Job.invoice_id: invoice.id, Job.invoice_status: status},
            synchronize_session="fetch",
        )
    )
    if claimed != len(job_ids):
        raise JobAlreadyInvoiced(
            f"Only {claimed} of {len(job_ids)} jobs could be claimed; "
            "some were invoiced by another request"
        )


def _release_jobs(session: Session, invoice_id: str, job_ids: Optional[List[str]] = None) -> int:
    """Unlink jobs from an invoice and reset them to Pending."""
    query = session.query(Job).filter(Job.invoice_id == invoice_id)
    if job_ids is not None:
        if not job_ids:
            return 0
        query = query.filter(Job.id.in_(job_ids))

    return query.update(
        {Job.invoice_id: None, Job.invoice_status: InvoiceStatus.PENDING.value},
        synchronize_session="fetch",
    )


def _delete_lines(session: Session, invoice: Invoice) -> None:
    for line in list(invoice.lines):
        session.delete(line)
    session.flush()
    session.expire(invoice, ["lines"])


def _line_count(session: Session, invoice_id: str) -> int:
    return session.query(InvoiceLine).filter(InvoiceLine.invoice_id == invoice_id).count()


def _add_lines(invoice: Invoice, jobs: Sequence[Job]) -> None:
    for job in jobs:
        invoice.lines.append(InvoiceLine(job_id=job.id, line_amount=job.job_gross_amount or 0))


def _batch_identity(jobs: Sequence[Job]) -> Tuple[List[UnitRef], List[Optional[date]]]:
    units = [
        (job.unit_id, job.unit.name) if job.unit is not None else (None, None)
        for job in jobs
    ]
    dates = [job.date_of_job for job in jobs]
    return units, dates


def preview_invoice_number(
    session: Session,
    job_ids: Sequence[str],
    date_range: Optional[Tuple[date, date]] = None,
) -> str:
    """Invoice number that create_invoice would generate for these jobs."""
    unique_ids = _unique(job_ids)
    jobs = _load_jobs(session, unique_ids)
    dispatcher_id = validate_job_batch(jobs, unique_ids)
    dispatcher = session.get(Dispatcher, dispatcher_id)
    units, dates = _batch_identity(jobs)
    return resolve_invoice_number(
        None, dispatcher.name if dispatcher else None, units, dates, date_range
    )


def create_invoice(
    session: Session,
    job_ids: Sequence[str],
    *,
    invoice_number: Optional[str] = None,
    invoice_date: Any = None,
    dispatch_percent: Optional[float] = None,
    billed_to: Optional[str] = None,
    billed_email: Optional[str] = None,
    status: Any = None,
    date_range: Optional[Tuple[date, date]] = None,
) -> Invoice:
    """
    Create an invoice for a batch of un-invoiced jobs from one dispatcher.

    Args:
        session: Open session; the caller commits or rolls back
        job_ids: Jobs to bill (duplicates ignored)
        invoice_number: Explicit number; generated when omitted
        invoice_date: Invoice date (defaults to today)
        dispatch_percent: Commission percent; defaults to the dispatcher's
        billed_to: Defaults to the dispatcher name
        billed_email: Defaults to the dispatcher email
        status: Status given to the claimed jobs (default Invoiced)
        date_range: Dates to use in a generated number instead of the job dates

    Returns:
        The new Invoice with its lines

    Raises:
        InvoiceValidationError: Missing jobs, duplicate number, bad input
        JobAlreadyInvoiced: A job is or just became linked to another invoice
        DispatcherMismatch: The jobs do not share one dispatcher
    """
    unique_ids = _unique(job_ids)
    jobs = _load_jobs(session, unique_ids)
    dispatcher_id = validate_job_batch(jobs, unique_ids)

    dispatcher = _batch_dispatcher(session, dispatcher_id)

    percent = _check_percent(
        resolve_commission_percent(dispatch_percent, dispatcher.commission_percent)
    )
    units, dates = _batch_identity(jobs)
    number = resolve_invoice_number(invoice_number, dispatcher.name, units, dates, date_range)
    _check_number_available(session, number)

    job_status = _status_value(status) or InvoiceStatus.INVOICED.value
    totals = calculate_invoice_totals([job.job_gross_amount for job in jobs], percent)

    invoice = Invoice(
        invoice_number=number,
        invoice_date=_invoice_date(invoice_date),
        dispatcher_id=dispatcher.id,
        status=InvoiceStatus.PENDING.value,
        sub_total=totals.sub_total,
        dispatch_percent=totals.dispatch_percent,
        commission=totals.commission,
        hst=totals.hst,
        total=totals.total,
        billed_to=billed_to or dispatcher.name,
        billed_email=billed_email or dispatcher.email,
    )
    _add_lines(invoice, jobs)
    session.add(invoice)
    session.flush()

    _claim_jobs(session, invoice, unique_ids, job_status)
    session.expire(invoice, ["jobs"])

    logger.info(
        "Created invoice %s for %d jobs, total %.2f", invoice.invoice_number, len(jobs), invoice.total
    )
    return invoice


def get_invoice(session: Session, invoice_id: str) -> Invoice:
    """
    Raises:
        InvoiceNotFound: If no invoice has this ID
    """
    invoice = session.get(Invoice, invoice_id)
    if invoice is None:
        raise InvoiceNotFound(f"Invoice not found: {invoice_id}")
    return invoice


def list_invoices(
    session: Session,
    dispatcher_id: Optional[str] = None,
    status: Any = None,
) -> List[Invoice]:
    """Invoices, newest invoice date first."""
    query = session.query(Invoice)
    if dispatcher_id:
        query = query.filter(Invoice.dispatcher_id == dispatcher_id)
    if status is not None:
        query = query.filter(Invoice.status == _status_value(status))
    return query.order_by(Invoice.invoice_date.desc(), Invoice.invoice_number).all()


def update_invoice(
    session: Session,
    invoice_id: str,
    job_ids: Optional[Sequence[str]] = None,
    *,
    invoice_number: Optional[str] = None,
    invoice_date: Any = None,
    dispatch_percent: Optional[float] = None,
    billed_to: Optional[str] = None,
    billed_email: Optional[str] = None,
    status: Any = None,
) -> Invoice:
    """
    Change an invoice's job set and details, then recompute its totals.

    Jobs dropped from the invoice are unlinked and reset to Pending. Added
    jobs are claimed and marked Invoiced, or given status when supplied.
    Jobs that stay keep their status unless status is supplied. Lines are
    rebuilt from the current job amounts.

    When job_ids is None the job set is left as is.

    Raises:
        InvoiceNotFound: If the invoice does not exist
        InvoiceValidationError: Same preconditions as create_invoice
    """
    invoice = get_invoice(session, invoice_id)
    status_value = _status_value(status)

    current_ids = [
        job_id
        for (job_id,) in session.query(Job.id).filter(Job.invoice_id == invoice.id).all()
    ]
    requested_ids = _unique(job_ids) if job_ids is not None else current_ids

    jobs = _load_jobs(session, requested_ids)
    dispatcher_id = validate_job_batch(jobs, requested_ids, invoice_id=invoice.id)
    dispatcher = _batch_dispatcher(session, dispatcher_id)

    removed_ids = [job_id for job_id in current_ids if job_id not in requested_ids]
    added_ids = [job_id for job_id in requested_ids if job_id not in current_ids]
    retained_ids = [job_id for job_id in requested_ids if job_id in current_ids]

    if invoice_number is not None and invoice_number.strip():
        number = invoice_number.strip()
        _check_number_available(session, number, invoice.id)
        invoice.invoice_number = number
    if invoice_date is not None:
        invoice.invoice_date = _invoice_date(invoice_date)
    if dispatcher_id != invoice.dispatcher_id:
        invoice.dispatcher_id = dispatcher_id
        invoice.billed_to = dispatcher.name
        invoice.billed_email = dispatcher.email
    if billed_to is not None:
        invoice.billed_to = billed_to
    if billed_email is not None:
        invoice.billed_email = billed_email
    if status_value is not None:
        invoice.status = status_value

    if dispatch_percent is not None:
        percent = _check_percent(float(dispatch_percent))
    else:
        percent = invoice.dispatch_percent or 0
    totals = calculate_invoice_totals([job.job_gross_amount for job in jobs], percent)
    invoice.sub_total = totals.sub_total
    invoice.dispatch_percent = totals.dispatch_percent
    invoice.commission = totals.commission
    invoice.hst = totals.hst
    invoice.total = totals.total

    _release_jobs(session, invoice.id, removed_ids)
    _claim_jobs(session, invoice, added_ids, status_value or InvoiceStatus.INVOICED.value)
    if status_value is not None and retained_ids:
        session.query(Job).filter(Job.id.in_(retained_ids)).update(
            {Job.invoice_status: status_value}, synchronize_session="fetch"
        )

    _delete_lines(session, invoice)
    _add_lines(invoice, jobs)
    session.flush()
    session.expire(invoice, ["jobs"])

    logger.info(
        "Updated invoice %s: %d added, %d removed, total %.2f",
        invoice.invoice_number,
        len(added_ids),
        len(removed_ids),
        invoice.total,
    )
    return invoice


def delete_invoice(session: Session, invoice_id: str) -> None:
    """
    Delete an invoice, returning its jobs to Pending.

    Jobs are unlinked first, then the lines are removed. The invoice itself
    is only deleted once no lines remain for it.

    Raises:
        InvoiceNotFound: If the invoice does not exist
        InvoiceConsistencyError: If lines remain after deleting them
    """
    invoice = get_invoice(session, invoice_id)

    released = _release_jobs(session, invoice.id)
    _delete_lines(session, invoice)

    remaining = _line_count(session, invoice.id)
    if remaining:
        raise InvoiceConsistencyError(
            f"{remaining} lines remain for invoice {invoice.invoice_number}; not deleting"
        )

    session.delete(invoice)
    session.flush()
    logger.info("Deleted invoice %s, released %d jobs", invoice.invoice_number, released)


def invoice_jobs(session: Session, invoice_id: str) -> List[Job]:
    """Jobs linked to the invoice, by date."""
    return (
        session.query(Job)
        .filter(Job.invoice_id == invoice_id)
        .order_by(Job.date_of_job, Job.id)
        .all()
    )


def check_invoice_amounts(session: Session, invoice_id: str) -> List[AmountDiscrepancy]:
    """
    Compare each line amount with the job amount recalculated from current data.

    Report only; nothing is changed. Lines whose job no longer exists or has
    an unknown dispatch type are skipped.
    """
    invoice = get_invoice(session, invoice_id)
    discrepancies: List[AmountDiscrepancy] = []

    for line in invoice.lines:
        job = line.job
        if job is None:
            logger.warning("Invoice %s line %s has no job", invoice.invoice_number, line.id)
            continue

        job_type = job.job_type
        try:
            calculated = calculate_job_amount(
                job_type.dispatch_type if job_type else None,
                job_type.rate_of_job if job_type else 0,
                start_time=job.start_time_for_job,
                end_time=job.end_time_for_job,
                weights=job.weights,
                loads=job.loads,
                fixed_amount=job.fixed_amount,
            )
        except UnknownDispatchType as e:
            logger.warning("Job %s: %s - skipped in amount check", job.id, e)
            continue

        if abs(calculated - (line.line_amount or 0)) > AMOUNT_TOLERANCE:
            logger.warning(
                "Invoice %s job %s: line amount %.2f, calculated %.2f",
                invoice.invoice_number,
                job.id,
                line.line_amount or 0,
                calculated,
            )
            discrepancies.append(
                AmountDiscrepancy(
                    job_id=job.id,
                    line_amount=line.line_amount or 0,
                    calculated_amount=calculated,
                )
            )

    return discrepancies
