"""Prepare invoice data for printing: header, line-item rows, totals, images.

Everything here is plain data. src.invoice.pdf turns it into a document.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from itertools import groupby
from typing import List, Optional, Sequence

from src.config import CompanyIdentity
from src.invoice.line_items import TAX_RATE
from src.parsing.job_fields import DispatchType, UnknownDispatchType, parse_dispatch_type

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"

LINE_ITEM_COLUMNS = [
    "Date",
    "Unit",
    "Driver",
    "Customer",
    "Route",
    "Tickets",
    "Qty",
    "Rate",
    "Amount",
]


@dataclass
class InvoiceHeader:
    """Company identity plus the invoice's own identity fields."""

    company: CompanyIdentity
    invoice_number: str
    invoice_date: str
    billed_to: str = ""
    billed_email: str = ""


@dataclass
class LineItemRow:
    """One job, formatted for the line-item table."""

    job_id: str
    job_date: Optional[date]
    date: str
    unit: str
    driver: str
    customer: str
    route: str
    tickets: str
    quantity: str
    rate: str
    amount: str

    def cells(self) -> List[str]:
        return [
            self.date,
            self.unit,
            self.driver,
            self.customer,
            self.route,
            self.tickets,
            self.quantity,
            self.rate,
            self.amount,
        ]


@dataclass
class MonthGroup:
    """Line items for one calendar month."""

    label: str
    rows: List[LineItemRow]


@dataclass
class TotalsLine:
    label: str
    value: str


@dataclass
class TicketImage:
    """A ticket photograph that was found in the file store."""

    job_id: str
    path: str
    caption: str
    data: bytes


@dataclass
class InvoiceDocument:
    """Everything needed to lay out one invoice."""

    header: InvoiceHeader
    rows: List[LineItemRow]
    month_groups: List[MonthGroup]
    totals: List[TotalsLine]
    images: List[TicketImage] = field(default_factory=list)
    filename: str = ""


def format_currency(value: Optional[float]) -> str:
    """Format as currency: 1234.5 -> "$1,234.50"."""
    return f"${float(value or 0):,.2f}"


def format_amount_cell(value: Optional[float]) -> str:
    """Currency for a table cell; zero or missing amounts are left blank."""
    if not value:
        return ""
    return format_currency(value)


def format_percent(value: Optional[float]) -> str:
    """10 -> "10.0%", 12.5 -> "12.5%"."""
    return f"{float(value or 0):.1f}%"


def format_date(value: Optional[date]) -> str:
    return value.isoformat() if value else ""


def route_description(start_location: Optional[str], end_location: Optional[str]) -> str:
    """'start to end', or blank if either end of the route is missing."""
    start = (start_location or "").strip()
    end = (end_location or "").strip()
    if not start or not end:
        return ""
    return f"{start} to {end}"


def join_ticket_ids(ticket_ids: Sequence[str]) -> str:
    return ", ".join(ticket_ids)


def format_quantity(job) -> str:
    """
    Quantity column for a job, based on its job type's dispatch type.

    Hourly: billable hours to 2 decimals. Tonnage: summed tonnage to 2
    decimals. Load: load count. Fixed: "1". Unknown types are left blank.
    """
    job_type = job.job_type
    try:
        kind = parse_dispatch_type(job_type.dispatch_type if job_type else None)
    except UnknownDispatchType:
        return ""

    if kind == DispatchType.HOURLY:
        return f"{job.billed_hours:.2f}"
    if kind == DispatchType.TONNAGE:
        return f"{sum(job.weights):.2f}"
    if kind == DispatchType.LOAD:
        return str(int(job.loads or 0))
    return "1"


def _name(entity) -> str:
    return entity.name if entity is not None and entity.name else ""


def build_line_item_row(job) -> LineItemRow:
    """Format one job for the line-item table."""
    job_type = job.job_type
    company = job_type.company if job_type is not None else None

    return LineItemRow(
        job_id=job.id,
        job_date=job.date_of_job,
        date=format_date(job.date_of_job),
        unit=_name(job.unit),
        driver=_name(job.driver),
        customer=_name(company),
        route=(
            route_description(job_type.start_location, job_type.end_location)
            if job_type is not None
            else ""
        ),
        tickets=join_ticket_ids(job.tickets),
        quantity=format_quantity(job),
        rate=format_amount_cell(job_type.rate_of_job if job_type is not None else None),
        amount=format_amount_cell(job.job_gross_amount),
    )


def _job_sort_key(job):
    return (job.date_of_job or date.min, job.id or "")


def sort_jobs(jobs: Sequence) -> List:
    """Jobs ordered by date ascending. Undated jobs go first."""
    return sorted(jobs, key=_job_sort_key)


def build_line_item_rows(jobs: Sequence) -> List[LineItemRow]:
    """One row per job, ordered by job date."""
    return [build_line_item_row(job) for job in sort_jobs(jobs)]


def month_label(value: date) -> str:
    """date(2024, 3, 5) -> "March 2024"."""
    return value.strftime("%B %Y")


def group_rows_by_month(rows: Sequence[LineItemRow]) -> List[MonthGroup]:
    """
    Group rows by calendar month, months in chronological order and rows by
    date within each month. Undated rows form a trailing "Undated" group.
    """
    dated = sorted(
        (row for row in rows if row.job_date is not None),
        key=lambda row: row.job_date,
    )
    groups = [
        MonthGroup(label=month_label(date(year, month, 1)), rows=list(month_rows))
        for (year, month), month_rows in groupby(
            dated, key=lambda row: (row.job_date.year, row.job_date.month)
        )
    ]

    undated = [row for row in rows if row.job_date is None]
    if undated:
        groups.append(MonthGroup(label="Undated", rows=undated))

    return groups


def build_totals_lines(invoice) -> List[TotalsLine]:
    """Summary lines under the table. Zero values still print as $0.00."""
    return [
        TotalsLine("SUBTOTAL", format_currency(invoice.sub_total)),
        TotalsLine(
            f"COMM. ({format_percent(invoice.dispatch_percent)})",
            format_currency(invoice.commission),
        ),
        TotalsLine(f"HST ({TAX_RATE * 100:.0f}%)", format_currency(invoice.hst)),
        TotalsLine("TOTAL", format_currency(invoice.total)),
    ]


def build_header(invoice, company: CompanyIdentity) -> InvoiceHeader:
    return InvoiceHeader(
        company=company,
        invoice_number=invoice.invoice_number or "",
        invoice_date=format_date(invoice.invoice_date),
        billed_to=invoice.billed_to or "",
        billed_email=invoice.billed_email or "",
    )


def pdf_filename(invoice) -> str:
    """Suggested download name: "{invoice_number}.pdf" or "invoice-{id}.pdf"."""
    if invoice.invoice_number:
        return f"{invoice.invoice_number}.pdf"
    return f"invoice-{invoice.id}.pdf"


def _image_caption(job, path: str) -> str:
    parts = [format_date(job.date_of_job), _name(job.unit)]
    tickets = join_ticket_ids(job.tickets)
    if tickets:
        parts.append(f"Tickets: {tickets}")
    parts.append(path.rsplit("/", 1)[-1])
    return " | ".join(part for part in parts if part)


def collect_ticket_images(jobs: Sequence, file_store) -> List[TicketImage]:
    """
    Read every ticket photograph for the given jobs, in job date order.

    Missing or unreadable files are logged and skipped.
    """
    images: List[TicketImage] = []
    if file_store is None:
        return images

    for job in sort_jobs(jobs):
        for path in job.images:
            try:
                data = file_store.read(path)
            except OSError as e:
                logger.warning("Skipping ticket image %s for job %s: %s", path, job.id, e)
                continue

            images.append(
                TicketImage(
                    job_id=job.id,
                    path=path,
                    caption=_image_caption(job, path),
                    data=data,
                )
            )

    return images


def prepare_invoice_document(
    invoice,
    jobs: Sequence,
    company: CompanyIdentity,
    file_store=None,
) -> InvoiceDocument:
    """
    Build the printable representation of an invoice.

    Args:
        invoice: Invoice with its stored totals
        jobs: The jobs linked to the invoice
        company: Company identity for the header
        file_store: Store used to read ticket photographs (optional)

    Returns:
        InvoiceDocument ready for rendering
    """
    rows = build_line_item_rows(jobs)
    return InvoiceDocument(
        header=build_header(invoice, company),
        rows=rows,
        month_groups=group_rows_by_month(rows),
        totals=build_totals_lines(invoice),
        images=collect_ticket_images(jobs, file_store),
        filename=pdf_filename(invoice),
    )
