"""SQLAlchemy models for dispatch, jobs and invoices."""

import uuid
from datetime import datetime
from typing import List

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

from src.calculations.amounts import DriverRates
from src.calculations.time_calc import billable_hours
from src.parsing.job_fields import (
    InvoiceStatus,
    parse_image_urls,
    parse_ticket_ids,
    parse_weights,
)

Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


class TimestampMixin:
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Company(TimestampMixin, Base):
    """Customer company that owns job types."""

    __tablename__ = "companies"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    description = Column(String(255))
    email = Column(String(255))
    phone = Column(String(255))

    job_types = relationship("JobType", back_populates="company")


class Dispatcher(TimestampMixin, Base):
    """Dispatcher that hands out jobs and takes a commission on invoices."""

    __tablename__ = "dispatchers"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    description = Column(String(255))
    email = Column(String(255))
    phone = Column(String(255))
    commission_percent = Column(Float, nullable=False, default=0)


class Driver(TimestampMixin, Base):
    """Driver with separate hourly and revenue-share compensation rates."""

    __tablename__ = "drivers"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    description = Column(String(255))
    email = Column(String(255))
    phone = Column(String(255))
    hourly_rate = Column(Float)
    revenue_share_percent = Column(Float)

    @property
    def rates(self) -> DriverRates:
        return DriverRates(
            hourly_rate=self.hourly_rate,
            revenue_share_percent=self.revenue_share_percent,
        )


class Unit(TimestampMixin, Base):
    """A truck."""

    __tablename__ = "units"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    description = Column(String(255))


class JobType(TimestampMixin, Base):
    """Billing template for a kind of job: route, dispatch type and rate."""

    __tablename__ = "job_types"

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String(255), nullable=False)
    start_location = Column(String(255))
    end_location = Column(String(255))
    dispatch_type = Column(String(50))
    rate_of_job = Column(Float, nullable=False, default=0)
    company_id = Column(String(36), ForeignKey("companies.id"))

    company = relationship("Company", back_populates="job_types")


class Job(TimestampMixin, Base):
    """A single dispatched job and its computed money figures."""

    __tablename__ = "jobs"

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String(255))
    date_of_job = Column(Date, nullable=False)
    start_time_for_job = Column(String(8))
    end_time_for_job = Column(String(8))
    start_time_for_driver = Column(String(8))
    end_time_for_driver = Column(String(8))

    # JSON text; read through the normalized properties below
    weight = Column(Text)
    ticket_ids = Column(Text)
    image_urls = Column(Text)
    loads = Column(Integer, default=0)

    # Manually entered amount for Fixed jobs
    fixed_amount = Column(Float)

    job_gross_amount = Column(Float, nullable=False, default=0)
    driver_pay = Column(Float, nullable=False, default=0)
    estimated_fuel = Column(Float, nullable=False, default=0)
    estimated_revenue = Column(Float, nullable=False, default=0)

    invoice_id = Column(String(36), ForeignKey("invoices.id"), index=True)
    invoice_status = Column(String(20), nullable=False, default=InvoiceStatus.PENDING.value)

    job_type_id = Column(String(36), ForeignKey("job_types.id"))
    driver_id = Column(String(36), ForeignKey("drivers.id"))
    dispatcher_id = Column(String(36), ForeignKey("dispatchers.id"), index=True)
    unit_id = Column(String(36), ForeignKey("units.id"))

    job_type = relationship("JobType")
    driver = relationship("Driver")
    dispatcher = relationship("Dispatcher")
    unit = relationship("Unit")
    invoice = relationship("Invoice", back_populates="jobs")

    @property
    def weights(self) -> List[float]:
        return parse_weights(self.weight)

    @property
    def tickets(self) -> List[str]:
        return parse_ticket_ids(self.ticket_ids)

    @property
    def images(self) -> List[str]:
        return parse_image_urls(self.image_urls)

    @property
    def billed_hours(self) -> float:
        return billable_hours(self.start_time_for_job, self.end_time_for_job)

    @property
    def driver_hours(self) -> float:
        return billable_hours(self.start_time_for_driver, self.end_time_for_driver)

    def to_dict(self) -> dict:
        """Convert to a JSON-friendly dictionary."""
        return {
            "id": self.id,
            "title": self.title,
            "date_of_job": self.date_of_job.isoformat() if self.date_of_job else None,
            "start_time_for_job": self.start_time_for_job,
            "end_time_for_job": self.end_time_for_job,
            "start_time_for_driver": self.start_time_for_driver,
            "end_time_for_driver": self.end_time_for_driver,
            "weight": self.weights,
            "loads": self.loads,
            "ticket_ids": self.tickets,
            "image_urls": self.images,
            "fixed_amount": self.fixed_amount,
            "job_gross_amount": self.job_gross_amount,
            "driver_pay": self.driver_pay,
            "estimated_fuel": self.estimated_fuel,
            "estimated_revenue": self.estimated_revenue,
            "invoice_id": self.invoice_id,
            "invoice_status": self.invoice_status,
            "job_type_id": self.job_type_id,
            "driver_id": self.driver_id,
            "dispatcher_id": self.dispatcher_id,
            "unit_id": self.unit_id,
        }


class Invoice(TimestampMixin, Base):
    """Invoice issued for one dispatcher's batch of jobs."""

    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True, default=new_id)
    invoice_number = Column(String(255), nullable=False, unique=True)
    invoice_date = Column(Date, nullable=False)
    dispatcher_id = Column(String(36), ForeignKey("dispatchers.id"), nullable=False)
    status = Column(String(20), nullable=False, default=InvoiceStatus.PENDING.value)
    sub_total = Column(Float, nullable=False, default=0)
    dispatch_percent = Column(Float, nullable=False, default=0)
    commission = Column(Float, nullable=False, default=0)
    hst = Column(Float, nullable=False, default=0)
    total = Column(Float, nullable=False, default=0)
    billed_to = Column(String(255))
    billed_email = Column(String(255))

    dispatcher = relationship("Dispatcher")
    lines = relationship("InvoiceLine", back_populates="invoice", cascade="all, delete-orphan")
    jobs = relationship("Job", back_populates="invoice")

    def to_dict(self) -> dict:
        """Convert to a JSON-friendly dictionary."""
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "invoice_date": self.invoice_date.isoformat() if self.invoice_date else None,
            "dispatcher_id": self.dispatcher_id,
            "status": self.status,
            "sub_total": self.sub_total,
            "dispatch_percent": self.dispatch_percent,
            "commission": self.commission,
            "hst": self.hst,
            "total": self.total,
            "billed_to": self.billed_to,
            "billed_email": self.billed_email,
            "lines": [
                {"job_id": line.job_id, "line_amount": line.line_amount}
                for line in self.lines
            ],
        }


class InvoiceLine(TimestampMixin, Base):
    """One job's billed amount on an invoice, frozen at invoicing time."""

    __tablename__ = "invoice_lines"

    id = Column(String(36), primary_key=True, default=new_id)
    invoice_id = Column(String(36), ForeignKey("invoices.id"), nullable=False, index=True)
    job_id = Column(String(36), ForeignKey("jobs.id"))
    line_amount = Column(Float, nullable=False, default=0)

    invoice = relationship("Invoice", back_populates="lines")
    job = relationship("Job")
