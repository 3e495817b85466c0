"""Tests for invoice create, update and delete against a real session."""

from datetime import date
from unittest.mock import patch

import pytest

from src.db.database import session_scope
from src.db.invoices import (
    InvoiceConsistencyError,
    check_invoice_amounts,
    create_invoice,
    delete_invoice,
    get_invoice,
    invoice_jobs,
    list_invoices,
    preview_invoice_number,
    update_invoice,
)
from src.db.jobs import update_job
from src.db.models import Invoice, InvoiceLine, Job
from src.invoice.line_items import (
    DispatcherMismatch,
    InvoiceNotFound,
    InvoiceValidationError,
    JobAlreadyInvoiced,
)


@pytest.fixture
def acme_jobs(make_job):
    """Three Fixed jobs for Acme Corp worth $100, $150 and $250."""
    return [
        make_job(fixed_amount=100, date_of_job="2024-03-01"),
        make_job(fixed_amount=150, date_of_job="2024-03-08"),
        make_job(fixed_amount=250, date_of_job="2024-03-15"),
    ]


def _ids(jobs):
    return [job.id for job in jobs]


# =============================================================================
# Create
# =============================================================================


class TestCreateInvoice:
    """Creating an invoice from a job batch."""

    def test_acme_scenario(self, db_session, acme_jobs):
        invoice = create_invoice(db_session, _ids(acme_jobs), invoice_date="2024-03-31")

        assert invoice.sub_total == 500.00
        assert invoice.dispatch_percent == 10
        assert invoice.commission == 50.00
        assert invoice.hst == 71.50
        assert invoice.total == 621.50
        assert invoice.invoice_date == date(2024, 3, 31)

    def test_reread_subtotal_matches_lines(self, db_session, session_factory, acme_jobs):
        invoice_id = create_invoice(db_session, _ids(acme_jobs)).id
        db_session.commit()

        with session_scope(session_factory) as session:
            invoice = get_invoice(session, invoice_id)
            assert len(invoice.lines) == 3
            assert invoice.sub_total == sum(line.line_amount for line in invoice.lines)

    def test_jobs_are_claimed(self, db_session, acme_jobs):
        invoice = create_invoice(db_session, _ids(acme_jobs))
        for job in acme_jobs:
            assert job.invoice_id == invoice.id
            assert job.invoice_status == "Invoiced"
        assert _ids(invoice_jobs(db_session, invoice.id)) == _ids(acme_jobs)

    def test_generated_number(self, db_session, acme_jobs):
        invoice = create_invoice(db_session, _ids(acme_jobs))
        assert invoice.invoice_number == "INV-AC-7-240301-240315"

    def test_job_without_unit_makes_number_multi_unit(self, db_session, make_job):
        jobs = [
            make_job(date_of_job="2024-03-01"),
            make_job(date_of_job="2024-03-15", unit_id=None),
        ]
        invoice = create_invoice(db_session, _ids(jobs))
        assert invoice.invoice_number == "INV-AC-MUL-240301-240315"

    def test_explicit_number(self, db_session, acme_jobs):
        invoice = create_invoice(db_session, _ids(acme_jobs), invoice_number="2024-017")
        assert invoice.invoice_number == "2024-017"

    def test_duplicate_number_rejected(self, db_session, acme_jobs):
        create_invoice(db_session, _ids(acme_jobs[:1]), invoice_number="2024-017")
        with pytest.raises(InvoiceValidationError, match="already exists"):
            create_invoice(db_session, _ids(acme_jobs[1:]), invoice_number="2024-017")

    def test_percent_override(self, db_session, acme_jobs):
        invoice = create_invoice(db_session, _ids(acme_jobs), dispatch_percent=0)
        assert invoice.commission == 0.0
        assert invoice.hst == 65.00
        assert invoice.total == 565.00

    def test_negative_percent_rejected(self, db_session, acme_jobs):
        with pytest.raises(InvoiceValidationError):
            create_invoice(db_session, _ids(acme_jobs), dispatch_percent=-5)

    def test_billed_to_defaults_to_dispatcher(self, db_session, acme_jobs):
        invoice = create_invoice(db_session, _ids(acme_jobs))
        assert invoice.billed_to == "Acme Corp"
        assert invoice.billed_email == "billing@acme.example"

    def test_explicit_job_status(self, db_session, acme_jobs):
        create_invoice(db_session, _ids(acme_jobs), status="Raised")
        assert {job.invoice_status for job in acme_jobs} == {"Raised"}

    def test_no_jobs(self, db_session):
        with pytest.raises(InvoiceValidationError, match="No jobs"):
            create_invoice(db_session, [])

    def test_mixed_dispatchers_write_nothing(self, db_session, make_job, other_dispatcher):
        jobs = [make_job(), make_job(dispatcher_id=other_dispatcher.id)]

        with pytest.raises(DispatcherMismatch):
            create_invoice(db_session, _ids(jobs))

        assert db_session.query(Invoice).count() == 0
        assert all(job.invoice_id is None for job in jobs)


class TestJobClaiming:
    """A job belongs to at most one invoice."""

    def test_second_invoice_cannot_take_job(self, db_session, acme_jobs):
        create_invoice(db_session, _ids(acme_jobs))
        with pytest.raises(JobAlreadyInvoiced):
            create_invoice(db_session, _ids(acme_jobs[:1]), invoice_number="B-1")

    def test_losing_a_race_writes_nothing(self, db_session, acme_jobs):
        first = create_invoice(db_session, [acme_jobs[0].id])
        db_session.commit()

        # Another request claims job 2 without this session noticing
        racer_job = acme_jobs[1]
        db_session.query(Job).filter(Job.id == racer_job.id).update(
            {Job.invoice_id: first.id}, synchronize_session=False
        )
        assert racer_job.invoice_id is None

        with pytest.raises(JobAlreadyInvoiced):
            create_invoice(db_session, [racer_job.id, acme_jobs[2].id], invoice_number="B-1")
        db_session.rollback()

        assert db_session.query(Invoice).count() == 1
        assert db_session.get(Job, acme_jobs[2].id).invoice_id is None


# =============================================================================
# Update
# =============================================================================


class TestUpdateInvoice:
    """Changing an invoice's job set."""

    def test_removed_added_and_retained_jobs(self, db_session, acme_jobs):
        kept, dropped, added = acme_jobs
        invoice = create_invoice(db_session, [kept.id, dropped.id])
        update_job(db_session, kept.id, {"invoice_status": "Paid"})

        update_invoice(db_session, invoice.id, [kept.id, added.id])

        assert dropped.invoice_id is None
        assert dropped.invoice_status == "Pending"
        assert added.invoice_id == invoice.id
        assert added.invoice_status == "Invoiced"
        assert kept.invoice_id == invoice.id
        assert kept.invoice_status == "Paid"

        assert sorted(line.job_id for line in invoice.lines) == sorted([kept.id, added.id])
        assert invoice.sub_total == 350.00
        assert invoice.total == round(350 + 35 + 50.05, 2)

    def test_explicit_status_applies_to_all_jobs(self, db_session, acme_jobs):
        invoice = create_invoice(db_session, _ids(acme_jobs[:2]))
        update_invoice(db_session, invoice.id, _ids(acme_jobs), status="Raised")

        assert invoice.status == "Raised"
        assert {job.invoice_status for job in acme_jobs} == {"Raised"}

    def test_details_only(self, db_session, acme_jobs):
        invoice = create_invoice(db_session, _ids(acme_jobs))
        update_invoice(db_session, invoice.id, dispatch_percent=5, billed_to="Acme AP")

        assert invoice.commission == 25.00
        assert invoice.billed_to == "Acme AP"
        assert len(invoice.lines) == 3

    def test_percent_kept_when_not_supplied(self, db_session, acme_jobs):
        invoice = create_invoice(db_session, _ids(acme_jobs), dispatch_percent=7)
        update_invoice(db_session, invoice.id, _ids(acme_jobs[:1]))
        assert invoice.dispatch_percent == 7

    def test_cannot_take_job_from_other_invoice(self, db_session, acme_jobs):
        first = create_invoice(db_session, [acme_jobs[0].id])
        second = create_invoice(db_session, [acme_jobs[1].id], invoice_number="B-1")

        with pytest.raises(JobAlreadyInvoiced):
            update_invoice(db_session, second.id, [acme_jobs[1].id, acme_jobs[0].id])
        assert acme_jobs[0].invoice_id == first.id

    def test_missing_invoice(self, db_session):
        with pytest.raises(InvoiceNotFound):
            update_invoice(db_session, "nope", [])

    def test_dangling_dispatcher_rejected(self, db_session, acme_jobs):
        invoice = create_invoice(db_session, _ids(acme_jobs[:1]))
        db_session.query(Job).filter(Job.id == acme_jobs[1].id).update(
            {Job.dispatcher_id: "gone"}, synchronize_session="fetch"
        )

        with pytest.raises(InvoiceValidationError, match="Dispatcher not found"):
            update_invoice(db_session, invoice.id, [acme_jobs[1].id])


# =============================================================================
# Delete
# =============================================================================


class TestDeleteInvoice:
    """Deleting an invoice releases its jobs and removes its lines."""

    def test_jobs_restored_and_lines_removed(self, db_session, acme_jobs):
        invoice = create_invoice(db_session, _ids(acme_jobs))
        invoice_id = invoice.id
        db_session.commit()

        delete_invoice(db_session, invoice_id)
        db_session.commit()

        assert db_session.get(Invoice, invoice_id) is None
        assert db_session.query(InvoiceLine).filter_by(invoice_id=invoice_id).count() == 0
        for job in db_session.query(Job).all():
            assert job.invoice_id is None
            assert job.invoice_status == "Pending"
        assert db_session.query(Job).count() == 3

    def test_remaining_lines_abort_delete(self, db_session, acme_jobs):
        invoice_id = create_invoice(db_session, _ids(acme_jobs)).id
        db_session.commit()

        with patch("src.db.invoices._line_count", return_value=1):
            with pytest.raises(InvoiceConsistencyError):
                delete_invoice(db_session, invoice_id)
        db_session.rollback()

        assert db_session.get(Invoice, invoice_id) is not None

    def test_missing_invoice(self, db_session):
        with pytest.raises(InvoiceNotFound):
            delete_invoice(db_session, "nope")


# =============================================================================
# Queries and Checks
# =============================================================================


class TestQueries:
    def test_list_invoices(self, db_session, acme_jobs, dispatcher):
        create_invoice(db_session, [acme_jobs[0].id], invoice_date="2024-03-01", invoice_number="A")
        create_invoice(db_session, [acme_jobs[1].id], invoice_date="2024-04-01", invoice_number="B")

        assert [i.invoice_number for i in list_invoices(db_session)] == ["B", "A"]
        assert len(list_invoices(db_session, dispatcher_id=dispatcher.id)) == 2
        assert list_invoices(db_session, status="Paid") == []

    def test_preview_number(self, db_session, acme_jobs):
        assert preview_invoice_number(db_session, _ids(acme_jobs)) == "INV-AC-7-240301-240315"

    def test_preview_number_with_range(self, db_session, acme_jobs):
        number = preview_invoice_number(
            db_session, _ids(acme_jobs), (date(2024, 3, 1), date(2024, 3, 31))
        )
        assert number == "INV-AC-7-240301-240331"


class TestCheckInvoiceAmounts:
    """Line amounts are frozen; drift against current job data is reported."""

    def test_no_drift(self, db_session, acme_jobs):
        invoice = create_invoice(db_session, _ids(acme_jobs))
        assert check_invoice_amounts(db_session, invoice.id) == []

    def test_reports_drift(self, db_session, acme_jobs):
        invoice = create_invoice(db_session, _ids(acme_jobs))
        update_job(db_session, acme_jobs[0].id, {"fixed_amount": 120})

        discrepancies = check_invoice_amounts(db_session, invoice.id)

        assert len(discrepancies) == 1
        assert discrepancies[0].job_id == acme_jobs[0].id
        assert discrepancies[0].line_amount == 100.00
        assert discrepancies[0].calculated_amount == 120.00
        assert discrepancies[0].difference == 20.00
        # Report only
        assert invoice.sub_total == 500.00
