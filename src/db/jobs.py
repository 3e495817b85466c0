"""Job record operations."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from src.calculations.amounts import (
    FUEL_COST_PER_HOUR,
    MissingDriverRate,
    compute_job_financials,
)
from src.calculations.time_calc import parse_time_of_day
from src.db.models import Company, Dispatcher, Driver, Job, JobType, Unit
from src.parsing.job_fields import (
    InvoiceStatus,
    dump_json_list,
    normalize_status,
    parse_image_urls,
    parse_local_date,
    parse_ticket_ids,
    parse_weights,
)

logger = logging.getLogger(__name__)

TIME_FIELDS = (
    "start_time_for_job",
    "end_time_for_job",
    "start_time_for_driver",
    "end_time_for_driver",
)


class JobValidationError(ValueError):
    """A job create/update/delete was rejected."""

    pass


class JobNotFound(JobValidationError):
    """The referenced job does not exist."""

    pass


@dataclass
class JobInput:
    """Fields accepted when creating a job. Loosely typed values are normalized."""

    date_of_job: Any
    job_type_id: Optional[str] = None
    driver_id: Optional[str] = None
    dispatcher_id: Optional[str] = None
    unit_id: Optional[str] = None
    title: Optional[str] = None
    start_time_for_job: Optional[str] = None
    end_time_for_job: Optional[str] = None
    start_time_for_driver: Optional[str] = None
    end_time_for_driver: Optional[str] = None
    weight: Any = None
    loads: Optional[int] = 0
    ticket_ids: Any = None
    image_urls: Any = None
    fixed_amount: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobInput":
        known = {name for name in cls.__dataclass_fields__}
        unknown = set(data) - known
        if unknown:
            raise JobValidationError(f"Unknown job fields: {', '.join(sorted(unknown))}")
        if "date_of_job" not in data:
            raise JobValidationError("date_of_job is required")
        return cls(**data)


@dataclass
class JobFilters:
    dispatcher_id: Optional[str] = None
    invoiced: Optional[bool] = None
    invoice_id: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    statuses: List[str] = field(default_factory=list)


def _lookup(session: Session, model, entity_id: Optional[str], label: str):
    if not entity_id:
        return None
    entity = session.get(model, entity_id)
    if entity is None:
        raise JobValidationError(f"{label} not found: {entity_id}")
    return entity


def _clean_time(name: str, value: Optional[str]) -> Optional[str]:
    if value is None or str(value).strip() == "":
        return None
    text = str(value).strip()
    try:
        parse_time_of_day(text)
    except ValueError as e:
        raise JobValidationError(f"{name}: {e}")
    return text


def _clean_loads(value: Any) -> int:
    if value is None or value == "":
        return 0
    try:
        loads = int(value)
    except (TypeError, ValueError):
        raise JobValidationError(f"loads must be a whole number, got {value!r}")
    if loads < 0:
        raise JobValidationError("loads cannot be negative")
    return loads


def _clean_fixed_amount(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise JobValidationError(f"fixed_amount must be a number, got {value!r}")
    if amount < 0:
        raise JobValidationError("fixed_amount cannot be negative")
    return amount


def recalculate_job(job: Job, fuel_cost_per_hour: float = FUEL_COST_PER_HOUR) -> Job:
    """
    Recompute and store the job's gross amount, driver pay, fuel and revenue.

    Raises:
        JobValidationError: If the assigned driver lacks the rate the job's
            dispatch type needs
    """
    job_type = job.job_type
    driver = job.driver

    try:
        financials = compute_job_financials(
            job_type.dispatch_type if job_type else None,
            job_type.rate_of_job if job_type else 0,
            start_time=job.start_time_for_job,
            end_time=job.end_time_for_job,
            driver_start_time=job.start_time_for_driver,
            driver_end_time=job.end_time_for_driver,
            weights=job.weights,
            loads=job.loads,
            fixed_amount=job.fixed_amount,
            driver_rates=driver.rates if driver is not None else None,
            fuel_cost_per_hour=fuel_cost_per_hour,
            job_label=job.id or job.title or "",
        )
    except MissingDriverRate as e:
        raise JobValidationError(str(e))

    job.job_gross_amount = financials.gross_amount
    job.driver_pay = financials.driver_pay
    job.estimated_fuel = financials.estimated_fuel
    job.estimated_revenue = financials.estimated_revenue
    return job


def create_job(
    session: Session,
    data: JobInput,
    fuel_cost_per_hour: float = FUEL_COST_PER_HOUR,
) -> Job:
    """
    Create a Pending, un-invoiced job with its money figures computed.

    Raises:
        JobValidationError: If the date, times or references are invalid
    """
    try:
        job_date = parse_local_date(data.date_of_job)
    except ValueError as e:
        raise JobValidationError(str(e))

    job = Job(
        title=data.title,
        date_of_job=job_date,
        start_time_for_job=_clean_time("start_time_for_job", data.start_time_for_job),
        end_time_for_job=_clean_time("end_time_for_job", data.end_time_for_job),
        start_time_for_driver=_clean_time("start_time_for_driver", data.start_time_for_driver),
        end_time_for_driver=_clean_time("end_time_for_driver", data.end_time_for_driver),
        weight=dump_json_list(parse_weights(data.weight)),
        loads=_clean_loads(data.loads),
        ticket_ids=dump_json_list(parse_ticket_ids(data.ticket_ids)),
        image_urls=dump_json_list(parse_image_urls(data.image_urls)),
        fixed_amount=_clean_fixed_amount(data.fixed_amount),
        invoice_status=InvoiceStatus.PENDING.value,
    )
    job.job_type = _lookup(session, JobType, data.job_type_id, "Job type")
    job.driver = _lookup(session, Driver, data.driver_id, "Driver")
    job.dispatcher = _lookup(session, Dispatcher, data.dispatcher_id, "Dispatcher")
    job.unit = _lookup(session, Unit, data.unit_id, "Unit")

    recalculate_job(job, fuel_cost_per_hour)
    session.add(job)
    session.flush()

    logger.info("Created job %s (%s) amount %.2f", job.id, job.date_of_job, job.job_gross_amount)
    return job


def get_job(session: Session, job_id: str) -> Job:
    """
    Raises:
        JobNotFound: If no job has this ID
    """
    job = session.get(Job, job_id)
    if job is None:
        raise JobNotFound(f"Job not found: {job_id}")
    return job


def update_job(
    session: Session,
    job_id: str,
    changes: Dict[str, Any],
    fuel_cost_per_hour: float = FUEL_COST_PER_HOUR,
) -> Job:
    """
    Apply changes to a job and recompute its money figures.

    A job on an invoice keeps its dispatcher; invoice line amounts are not
    touched (use check_invoice_amounts to find drift).

    Raises:
        JobNotFound: If the job does not exist
        JobValidationError: If a change is invalid
    """
    job = get_job(session, job_id)

    allowed = set(JobInput.__dataclass_fields__) | {"invoice_status"}
    unknown = set(changes) - allowed
    if unknown:
        raise JobValidationError(f"Unknown job fields: {', '.join(sorted(unknown))}")

    if "date_of_job" in changes:
        try:
            job.date_of_job = parse_local_date(changes["date_of_job"])
        except ValueError as e:
            raise JobValidationError(str(e))

    for name in TIME_FIELDS:
        if name in changes:
            setattr(job, name, _clean_time(name, changes[name]))

    if "title" in changes:
        job.title = changes["title"]
    if "weight" in changes:
        job.weight = dump_json_list(parse_weights(changes["weight"]))
    if "loads" in changes:
        job.loads = _clean_loads(changes["loads"])
    if "ticket_ids" in changes:
        job.ticket_ids = dump_json_list(parse_ticket_ids(changes["ticket_ids"]))
    if "image_urls" in changes:
        job.image_urls = dump_json_list(parse_image_urls(changes["image_urls"]))
    if "fixed_amount" in changes:
        job.fixed_amount = _clean_fixed_amount(changes["fixed_amount"])

    if "dispatcher_id" in changes and changes["dispatcher_id"] != job.dispatcher_id:
        if job.invoice_id is not None:
            raise JobValidationError(
                "Cannot change the dispatcher of an invoiced job; "
                "remove it from its invoice first"
            )
        job.dispatcher = _lookup(session, Dispatcher, changes["dispatcher_id"], "Dispatcher")

    if "job_type_id" in changes:
        job.job_type = _lookup(session, JobType, changes["job_type_id"], "Job type")
    if "driver_id" in changes:
        job.driver = _lookup(session, Driver, changes["driver_id"], "Driver")
    if "unit_id" in changes:
        job.unit = _lookup(session, Unit, changes["unit_id"], "Unit")

    if "invoice_status" in changes:
        try:
            job.invoice_status = normalize_status(changes["invoice_status"]).value
        except ValueError as e:
            raise JobValidationError(str(e))

    recalculate_job(job, fuel_cost_per_hour)
    session.flush()
    return job


def list_jobs(session: Session, filters: Optional[JobFilters] = None) -> List[Job]:
    """List jobs ordered by date, optionally filtered."""
    filters = filters or JobFilters()
    query = session.query(Job)

    if filters.dispatcher_id:
        query = query.filter(Job.dispatcher_id == filters.dispatcher_id)
    if filters.invoiced is True:
        query = query.filter(Job.invoice_id.isnot(None))
    elif filters.invoiced is False:
        query = query.filter(Job.invoice_id.is_(None))
    if filters.invoice_id:
        query = query.filter(Job.invoice_id == filters.invoice_id)
    if filters.start_date:
        query = query.filter(Job.date_of_job >= filters.start_date)
    if filters.end_date:
        query = query.filter(Job.date_of_job <= filters.end_date)
    if filters.statuses:
        query = query.filter(Job.invoice_status.in_(filters.statuses))

    return query.order_by(Job.date_of_job, Job.id).all()


def delete_job(session: Session, job_id: str) -> None:
    """
    Delete a job that is not on any invoice.

    Raises:
        JobNotFound: If the job does not exist
        JobValidationError: If the job is linked to an invoice
    """
    job = get_job(session, job_id)
    if job.invoice_id is not None:
        raise JobValidationError(
            f"Job {job_id} is on invoice {job.invoice_id}; "
            "remove it from the invoice before deleting"
        )
    session.delete(job)
    session.flush()
    logger.info("Deleted job %s", job_id)


def add_job_image(session: Session, job_id: str, path: str) -> Job:
    """Append a stored ticket photograph path to the job."""
    job = get_job(session, job_id)
    images = job.images
    images.append(path)
    job.image_urls = dump_json_list(images)
    session.flush()
    return job


def find_by_name(session: Session, model, name: str):
    """Find a Company, Dispatcher, Driver or Unit by exact name."""
    name = (name or "").strip()
    if not name:
        return None
    return session.query(model).filter(model.name == name).first()


def find_or_create_by_name(session: Session, model, name: str, **defaults):
    """
    Find a Company, Dispatcher, Driver or Unit by exact name, creating it if
    missing.
    """
    name = (name or "").strip()
    if not name:
        return None

    entity = find_by_name(session, model, name)
    if entity is None:
        entity = model(name=name, **defaults)
        session.add(entity)
        session.flush()
        logger.info("Created %s %r", model.__name__, name)
    return entity


def find_job_type(
    session: Session,
    title: str,
    company: Optional[Company] = None,
) -> Optional[JobType]:
    """Look up a job type by title, preferring one that belongs to company."""
    title = (title or "").strip()
    if not title:
        return None

    query = session.query(JobType).filter(JobType.title == title)
    if company is not None:
        match = query.filter(JobType.company_id == company.id).first()
        if match is not None:
            return match
    return query.first()
