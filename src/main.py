"""Command-line entry point for the trucking billing back office."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional

from src.config import Settings, load_settings
from src.calculations.reports import company_stats, driver_earnings, monthly_revenue
from src.db.database import create_db_engine, init_db, make_session_factory, session_scope
from src.db.invoices import check_invoice_amounts, get_invoice, invoice_jobs
from src.db.jobs import list_jobs
from src.invoice.document import prepare_invoice_document
from src.invoice.line_items import InvoiceNotFound
from src.invoice.pdf import render_invoice_pdf
from src.parsing.job_fields import parse_local_date
from src.parsing.job_import import JobImportError, import_jobs
from src.storage.files import LocalFileStore

logger = logging.getLogger(__name__)


def run_import(session_factory, settings: Settings, path: str) -> int:
    """Import a CSV/Excel job sheet and print a summary."""
    if not Path(path).exists():
        print(f"ERROR: Job sheet not found: {path}")
        return 1

    print(f"Loading job sheet: {path}")
    try:
        with session_scope(session_factory) as session:
            result = import_jobs(session, path, fuel_cost_per_hour=settings.fuel_cost_per_hour)
    except JobImportError as e:
        print(f"ERROR: {e}")
        return 1

    print(f"  Created: {len(result.created)} jobs")
    print(f"  Skipped: {len(result.skipped)} rows")
    for row_number, reason in result.skipped:
        print(f"    Row {row_number}: {reason}")
    return 0


def render_invoice(session_factory, settings: Settings, invoice_id: str, output_dir: str) -> int:
    """Write an invoice PDF to output_dir."""
    store = LocalFileStore(settings.upload_dir)
    try:
        with session_scope(session_factory) as session:
            invoice = get_invoice(session, invoice_id)
            document = prepare_invoice_document(
                invoice, invoice_jobs(session, invoice.id), settings.company, store
            )
    except InvoiceNotFound as e:
        print(f"ERROR: {e}")
        return 1

    out_dir = Path(output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = out_dir / document.filename
    out_path.write_bytes(render_invoice_pdf(document))

    print(f"Wrote {out_path} ({len(document.rows)} jobs, {len(document.images)} ticket images)")
    return 0


def print_report(
    session_factory,
    report: str,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> int:
    """Print one of the job summaries as a table."""
    with session_scope(session_factory) as session:
        jobs = list_jobs(session)
        if report == "monthly":
            df = monthly_revenue(jobs)
        elif report == "companies":
            df = company_stats(jobs)
        else:
            df = driver_earnings(
                jobs,
                parse_local_date(start_date) if start_date else None,
                parse_local_date(end_date) if end_date else None,
            )

    if df.empty:
        print("No jobs found.")
    else:
        print(df.to_string(index=False))
    return 0


def check_invoice(session_factory, invoice_id: str) -> int:
    """Compare an invoice's line amounts with the current job amounts."""
    try:
        with session_scope(session_factory) as session:
            invoice = get_invoice(session, invoice_id)
            number = invoice.invoice_number
            discrepancies = check_invoice_amounts(session, invoice_id)
    except InvoiceNotFound as e:
        print(f"ERROR: {e}")
        return 1

    if not discrepancies:
        print(f"Invoice {number}: all line amounts match")
        return 0

    print(f"Invoice {number}: {len(discrepancies)} line amounts differ")
    print("-" * 60)
    print(f"{'Job':<38} {'Line':>10} {'Calculated':>10}")
    for d in discrepancies:
        print(f"{d.job_id:<38} {d.line_amount:>10.2f} {d.calculated_amount:>10.2f}")
    return 2


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Trucking billing back office: jobs, invoices and reports"
    )
    parser.add_argument(
        "--database-url",
        help="Database URL (default: DATABASE_URL or a local SQLite file)",
    )
    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Initialize database tables and exit",
    )
    parser.add_argument(
        "--import-jobs",
        metavar="FILE",
        help="Import jobs from a CSV or Excel job sheet",
    )
    parser.add_argument(
        "--render-invoice",
        metavar="INVOICE_ID",
        help="Render an invoice PDF",
    )
    parser.add_argument(
        "--output",
        default=".",
        help="Directory for rendered PDFs (default: current directory)",
    )
    parser.add_argument(
        "--report",
        choices=["monthly", "companies", "drivers"],
        help="Print a revenue or earnings report",
    )
    parser.add_argument("--start-date", help="Report start date, YYYY-MM-DD")
    parser.add_argument("--end-date", help="Report end date, YYYY-MM-DD")
    parser.add_argument(
        "--check-invoice",
        metavar="INVOICE_ID",
        help="Check invoice line amounts against current job amounts",
    )

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    settings = load_settings(args.database_url)
    engine = create_db_engine(settings.database_url)

    # Handle database initialization
    if args.init_db:
        init_db(engine)
        print("Database initialized")
        return 0

    init_db(engine)
    session_factory = make_session_factory(engine)

    if args.import_jobs:
        return run_import(session_factory, settings, args.import_jobs)
    if args.render_invoice:
        return render_invoice(session_factory, settings, args.render_invoice, args.output)
    if args.report:
        return print_report(session_factory, args.report, args.start_date, args.end_date)
    if args.check_invoice:
        return check_invoice(session_factory, args.check_invoice)

    parser.print_help()
    return 1


if __name__ == "__main__":
    exit(main())
