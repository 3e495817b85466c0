"""Shared database fixtures."""

from datetime import date

import pytest

from src.db.database import create_db_engine, init_db, make_session_factory
from src.db.jobs import JobInput, create_job
from src.db.models import Company, Dispatcher, Driver, JobType, Unit


@pytest.fixture
def engine():
    """In-memory SQLite shared across sessions."""
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def company(db_session):
    company = Company(name="Greenfield Aggregates", email="ap@greenfield.example")
    db_session.add(company)
    db_session.flush()
    return company


@pytest.fixture
def dispatcher(db_session):
    dispatcher = Dispatcher(name="Acme Corp", email="billing@acme.example", commission_percent=10)
    db_session.add(dispatcher)
    db_session.flush()
    return dispatcher


@pytest.fixture
def other_dispatcher(db_session):
    dispatcher = Dispatcher(name="Jane Doe", email="jane@example.com", commission_percent=5)
    db_session.add(dispatcher)
    db_session.flush()
    return dispatcher


@pytest.fixture
def driver(db_session):
    driver = Driver(name="Sam Driver", hourly_rate=25, revenue_share_percent=30)
    db_session.add(driver)
    db_session.flush()
    return driver


@pytest.fixture
def unit(db_session):
    unit = Unit(name="Truck 7")
    db_session.add(unit)
    db_session.flush()
    return unit


@pytest.fixture
def job_types(db_session, company):
    """One job type per dispatch type."""
    types = {
        "Hourly": JobType(
            title="Hourly haul", dispatch_type="Hourly", rate_of_job=60,
            start_location="Quarry", end_location="Site A", company=company,
        ),
        "Tonnage": JobType(
            title="Gravel by tonne", dispatch_type="Tonnage", rate_of_job=10,
            start_location="Pit 3", end_location="Site B", company=company,
        ),
        "Load": JobType(
            title="Fill loads", dispatch_type="Load", rate_of_job=50, company=company,
        ),
        "Fixed": JobType(
            title="Flat move", dispatch_type="Fixed", rate_of_job=250,
            start_location="Yard", end_location="Depot", company=company,
        ),
    }
    db_session.add_all(types.values())
    db_session.flush()
    return types


@pytest.fixture
def make_job(db_session, job_types, dispatcher, driver, unit):
    """Factory creating jobs through create_job; defaults to a $250 Fixed job."""

    def _make_job(**overrides):
        kind = overrides.pop("kind", "Fixed")
        values = {
            "date_of_job": date(2024, 3, 1),
            "job_type_id": job_types[kind].id,
            "dispatcher_id": dispatcher.id,
            "driver_id": driver.id,
            "unit_id": unit.id,
        }
        values.update(overrides)
        job = create_job(db_session, JobInput(**values))
        db_session.commit()
        return job

    return _make_job
