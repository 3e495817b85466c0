"""Application settings loaded from the environment."""

from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///trucking.db"
DEFAULT_UPLOAD_DIR = "uploads"
DEFAULT_FUEL_COST_PER_HOUR = 30.0
POSTGRES_DRIVER_SCHEME = "postgresql+psycopg2://"


class ConfigError(ValueError):
    """A setting is present but cannot be used."""

    pass


@dataclass
class CompanyIdentity:
    """Static company details printed in the invoice header."""

    name: str = "5 Rivers Trucking Inc."
    address_lines: List[str] = field(
        default_factory=lambda: ["140 Cherryhill Place", "London, Ontario", "N6H4M5"]
    )
    phone: str = "+1 (437) 679 9350"
    email: str = "info@5riverstruckinginc.ca"
    tax_number: str = "760059956"


@dataclass
class Settings:
    """Runtime configuration for the web app and the CLI."""

    database_url: str = DEFAULT_DATABASE_URL
    upload_dir: str = DEFAULT_UPLOAD_DIR
    fuel_cost_per_hour: float = DEFAULT_FUEL_COST_PER_HOUR
    company: CompanyIdentity = field(default_factory=CompanyIdentity)
    flask_secret_key: str = ""


def normalize_database_url(url: str) -> str:
    """
    Point PostgreSQL URLs at the psycopg2 driver.

    Hosting providers hand out postgres:// URLs, which SQLAlchemy 2.0 rejects,
    and a bare postgresql:// may select a driver that is not installed.
    """
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return POSTGRES_DRIVER_SCHEME + url[len(prefix):]
    return url


def get_database_url() -> str:
    """
    Get DATABASE_URL, normalized for SQLAlchemy.

    Falls back to a local SQLite file when the variable is not set.
    """
    return normalize_database_url(os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL)


def _float_setting(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def _company_from_env() -> CompanyIdentity:
    defaults = CompanyIdentity()
    address = os.getenv("COMPANY_ADDRESS")
    return CompanyIdentity(
        name=os.getenv("COMPANY_NAME", defaults.name),
        address_lines=(
            [line.strip() for line in address.split("|") if line.strip()]
            if address
            else defaults.address_lines
        ),
        phone=os.getenv("COMPANY_PHONE", defaults.phone),
        email=os.getenv("COMPANY_EMAIL", defaults.email),
        tax_number=os.getenv("COMPANY_TAX_NUMBER", defaults.tax_number),
    )


def load_settings(database_url: Optional[str] = None) -> Settings:
    """
    Build Settings from environment variables.

    Args:
        database_url: Optional override for DATABASE_URL (used by tests and the CLI)

    Raises:
        ConfigError: If a numeric setting cannot be parsed
    """
    secret_key = os.getenv("FLASK_SECRET_KEY")
    if not secret_key:
        logger.warning(
            "FLASK_SECRET_KEY not set - using random key. "
            "Set FLASK_SECRET_KEY in production."
        )
        secret_key = secrets.token_hex(32)

    fuel_cost = _float_setting("FUEL_COST_PER_HOUR", DEFAULT_FUEL_COST_PER_HOUR)
    if fuel_cost < 0:
        raise ConfigError("FUEL_COST_PER_HOUR cannot be negative")

    return Settings(
        database_url=database_url or get_database_url(),
        upload_dir=os.getenv("UPLOAD_DIR", DEFAULT_UPLOAD_DIR),
        fuel_cost_per_hour=fuel_cost,
        company=_company_from_env(),
        flask_secret_key=secret_key,
    )
