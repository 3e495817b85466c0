"""Database engine, session factory and unit-of-work scope."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from src.config import normalize_database_url
from src.db.models import Base

logger = logging.getLogger(__name__)


def create_db_engine(url: str) -> Engine:
    """
    Create a SQLAlchemy engine for the given URL.

    In-memory SQLite shares one connection so every session sees the same
    database (used by tests).
    """
    url = normalize_database_url(url)

    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})

    return create_engine(url, pool_pre_ping=True)


def init_db(engine: Engine) -> None:
    """Create tables if they don't exist."""
    Base.metadata.create_all(engine)
    logger.info("Database initialized successfully")


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Run a unit of work: commit on success, roll back on any exception.

    Usage:
        with session_scope(factory) as session:
            create_invoice(session, job_ids)
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
