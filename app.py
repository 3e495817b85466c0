"""Flask JSON application for jobs, invoices and invoice PDFs."""

from __future__ import annotations

import io
import logging
import os
from datetime import datetime
from functools import wraps
from typing import Optional

from flask import Flask, current_app, jsonify, request, send_file
from sqlalchemy.orm import sessionmaker

from src.config import Settings, load_settings
from src.db.database import create_db_engine, init_db, make_session_factory, session_scope
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
from src.db.jobs import (
    JobFilters,
    JobInput,
    JobNotFound,
    JobValidationError,
    add_job_image,
    create_job,
    delete_job,
    get_job,
    list_jobs,
    update_job,
)
from src.invoice.document import PDF_MIME_TYPE, prepare_invoice_document
from src.invoice.line_items import InvoiceNotFound, InvoiceValidationError
from src.invoice.pdf import render_invoice_pdf
from src.parsing.job_fields import parse_local_date
from src.storage.files import FileNotFoundInStore, InvalidUpload, LocalFileStore

logger = logging.getLogger(__name__)


# =============================================================================
# Helpers
# =============================================================================


def json_errors(f):
    """Decorator mapping domain errors to JSON error responses."""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except (InvoiceNotFound, JobNotFound, FileNotFoundInStore) as e:
            return jsonify({"error": str(e)}), 404
        except (InvoiceValidationError, JobValidationError, InvalidUpload) as e:
            return jsonify({"error": str(e)}), 400
        except InvoiceConsistencyError as e:
            logger.exception("Invoice consistency error")
            return jsonify({"error": str(e)}), 500
        except ValueError as e:
            return jsonify({"error": str(e)}), 400

    return decorated_function


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValueError("Request must be JSON")
    return data


def _optional_date(value: Optional[str]):
    return parse_local_date(value) if value else None


def _optional_bool(value: Optional[str]) -> Optional[bool]:
    if value is None or value == "":
        return None
    return value.lower() in ("1", "true", "yes")


def _sessions() -> sessionmaker:
    return current_app.extensions["session_factory"]


def _settings() -> Settings:
    return current_app.extensions["settings"]


def _file_store() -> LocalFileStore:
    return current_app.extensions["file_store"]


def _invoice_payload(session, invoice) -> dict:
    payload = invoice.to_dict()
    payload["jobs"] = [job.to_dict() for job in invoice_jobs(session, invoice.id)]
    return payload


def _invoice_options(data: dict) -> dict:
    return {
        "invoice_number": data.get("invoice_number"),
        "invoice_date": data.get("invoice_date"),
        "dispatch_percent": data.get("dispatch_percent"),
        "billed_to": data.get("billed_to"),
        "billed_email": data.get("billed_email"),
        "status": data.get("status"),
    }


# =============================================================================
# Application Factory
# =============================================================================


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    file_store: Optional[LocalFileStore] = None,
) -> Flask:
    """
    Build the Flask app.

    Args:
        settings: Runtime settings (loaded from the environment when omitted)
        session_factory: Session factory; when omitted an engine is created
            from settings.database_url and tables are created
        file_store: Store for ticket photographs (defaults to settings.upload_dir)
    """
    settings = settings or load_settings()

    if session_factory is None:
        engine = create_db_engine(settings.database_url)
        init_db(engine)
        session_factory = make_session_factory(engine)

    app = Flask(__name__)
    app.secret_key = settings.flask_secret_key or None
    app.extensions["settings"] = settings
    app.extensions["session_factory"] = session_factory
    app.extensions["file_store"] = file_store or LocalFileStore(settings.upload_dir)

    # =========================================================================
    # Health Check
    # =========================================================================

    @app.route("/health")
    def health():
        """Health check endpoint."""
        return jsonify({"status": "healthy", "timestamp": datetime.utcnow().isoformat()})

    # =========================================================================
    # Jobs
    # =========================================================================

    @app.route("/jobs", methods=["GET"])
    @json_errors
    def jobs_index():
        """List jobs, filtered by dispatcher, invoice membership and date range."""
        filters = JobFilters(
            dispatcher_id=request.args.get("dispatcher_id"),
            invoiced=_optional_bool(request.args.get("invoiced")),
            invoice_id=request.args.get("invoice_id"),
            start_date=_optional_date(request.args.get("start_date")),
            end_date=_optional_date(request.args.get("end_date")),
        )
        with session_scope(_sessions()) as session:
            return jsonify({"jobs": [job.to_dict() for job in list_jobs(session, filters)]})

    @app.route("/jobs", methods=["POST"])
    @json_errors
    def jobs_create():
        data = JobInput.from_dict(_json_body())
        with session_scope(_sessions()) as session:
            job = create_job(session, data, _settings().fuel_cost_per_hour)
            return jsonify(job.to_dict()), 201

    @app.route("/jobs/<job_id>", methods=["GET"])
    @json_errors
    def jobs_show(job_id):
        with session_scope(_sessions()) as session:
            return jsonify(get_job(session, job_id).to_dict())

    @app.route("/jobs/<job_id>", methods=["PUT"])
    @json_errors
    def jobs_update(job_id):
        changes = _json_body()
        with session_scope(_sessions()) as session:
            job = update_job(session, job_id, changes, _settings().fuel_cost_per_hour)
            return jsonify(job.to_dict())

    @app.route("/jobs/<job_id>", methods=["DELETE"])
    @json_errors
    def jobs_delete(job_id):
        """Delete a job. Invoiced jobs must be removed from their invoice first."""
        with session_scope(_sessions()) as session:
            delete_job(session, job_id)
        return jsonify({"success": True})

    @app.route("/jobs/<job_id>/images", methods=["POST"])
    @json_errors
    def jobs_add_image(job_id):
        """Upload a ticket photograph (multipart field "file") for a job."""
        upload = request.files.get("file")
        if upload is None or not upload.filename:
            return jsonify({"error": "No file uploaded"}), 400

        store = _file_store()
        with session_scope(_sessions()) as session:
            get_job(session, job_id)
            path = store.save(upload.read(), upload.filename)
            try:
                job = add_job_image(session, job_id, path)
            except Exception:
                store.delete(path)
                raise
            return jsonify({"path": path, "job": job.to_dict()}), 201

    # =========================================================================
    # Invoices
    # =========================================================================

    @app.route("/invoices", methods=["GET"])
    @json_errors
    def invoices_index():
        with session_scope(_sessions()) as session:
            invoices = list_invoices(
                session,
                dispatcher_id=request.args.get("dispatcher_id"),
                status=request.args.get("status"),
            )
            return jsonify({"invoices": [invoice.to_dict() for invoice in invoices]})

    @app.route("/invoices", methods=["POST"])
    @json_errors
    def invoices_create():
        """Create an invoice from {"job_ids": [...], ...}."""
        data = _json_body()
        with session_scope(_sessions()) as session:
            invoice = create_invoice(session, data.get("job_ids") or [], **_invoice_options(data))
            return jsonify(_invoice_payload(session, invoice)), 201

    @app.route("/invoices/number-preview", methods=["POST"])
    @json_errors
    def invoices_number_preview():
        """Preview the generated invoice number for a job selection."""
        data = _json_body()
        start = _optional_date(data.get("start_date"))
        end = _optional_date(data.get("end_date"))
        date_range = (start, end) if start and end else None

        with session_scope(_sessions()) as session:
            number = preview_invoice_number(session, data.get("job_ids") or [], date_range)
        return jsonify({"invoice_number": number})

    @app.route("/invoices/<invoice_id>", methods=["GET"])
    @json_errors
    def invoices_show(invoice_id):
        with session_scope(_sessions()) as session:
            return jsonify(_invoice_payload(session, get_invoice(session, invoice_id)))

    @app.route("/invoices/<invoice_id>", methods=["PUT"])
    @json_errors
    def invoices_update(invoice_id):
        """Update an invoice; "job_ids", when present, replaces its job set."""
        data = _json_body()
        with session_scope(_sessions()) as session:
            invoice = update_invoice(
                session, invoice_id, data.get("job_ids"), **_invoice_options(data)
            )
            return jsonify(_invoice_payload(session, invoice))

    @app.route("/invoices/<invoice_id>", methods=["DELETE"])
    @json_errors
    def invoices_delete(invoice_id):
        with session_scope(_sessions()) as session:
            delete_invoice(session, invoice_id)
        return jsonify({"success": True})

    @app.route("/invoices/<invoice_id>/amount-check", methods=["GET"])
    @json_errors
    def invoices_amount_check(invoice_id):
        """Report line amounts that drifted from the current job amounts."""
        with session_scope(_sessions()) as session:
            discrepancies = check_invoice_amounts(session, invoice_id)
        return jsonify(
            {
                "discrepancies": [
                    {
                        "job_id": d.job_id,
                        "line_amount": d.line_amount,
                        "calculated_amount": d.calculated_amount,
                        "difference": d.difference,
                    }
                    for d in discrepancies
                ]
            }
        )

    @app.route("/invoices/<invoice_id>/pdf", methods=["GET"])
    @json_errors
    def invoices_pdf(invoice_id):
        """Download the invoice as a PDF."""
        group_by_month = request.args.get("group_by_month", "true").lower() != "false"

        with session_scope(_sessions()) as session:
            invoice = get_invoice(session, invoice_id)
            document = prepare_invoice_document(
                invoice,
                invoice_jobs(session, invoice.id),
                _settings().company,
                _file_store(),
            )

        pdf_bytes = render_invoice_pdf(document, group_by_month=group_by_month)
        return send_file(
            io.BytesIO(pdf_bytes),
            mimetype=PDF_MIME_TYPE,
            as_attachment=True,
            download_name=document.filename,
        )

    return app


# =============================================================================
# Run Server
# =============================================================================


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    port = int(os.getenv("PORT", 5000))
    debug = os.getenv("FLASK_DEBUG", "false").lower() == "true"
    create_app().run(host="0.0.0.0", port=port, debug=debug)
