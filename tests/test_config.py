"""Tests for settings loaded from the environment."""

import os
from unittest.mock import patch

import pytest

from src.config import (
    DEFAULT_DATABASE_URL,
    DEFAULT_FUEL_COST_PER_HOUR,
    CompanyIdentity,
    ConfigError,
    get_database_url,
    normalize_database_url,
    load_settings,
)


class TestGetDatabaseUrl:
    def test_default(self):
        with patch.dict(os.environ, {}, clear=True):
            assert get_database_url() == DEFAULT_DATABASE_URL

    def test_postgres_scheme_rewritten(self):
        with patch.dict(os.environ, {"DATABASE_URL": "postgres://u:p@db/trucking"}):
            assert get_database_url() == "postgresql+psycopg2://u:p@db/trucking"


class TestNormalizeDatabaseUrl:
    """PostgreSQL URLs always name the psycopg2 driver."""

    def test_bare_postgresql_scheme(self):
        assert normalize_database_url("postgresql://u:p@db/trucking") == (
            "postgresql+psycopg2://u:p@db/trucking"
        )

    def test_explicit_driver_untouched(self):
        url = "postgresql+psycopg2://u:p@db/trucking"
        assert normalize_database_url(url) == url

    def test_sqlite_untouched(self):
        assert normalize_database_url("sqlite:///trucking.db") == "sqlite:///trucking.db"

class TestLoadSettings:
    """Settings come from environment variables with sensible defaults."""

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = load_settings()

        assert settings.fuel_cost_per_hour == DEFAULT_FUEL_COST_PER_HOUR
        assert settings.upload_dir == "uploads"
        assert settings.company == CompanyIdentity()
        # Random key generated when unset
        assert len(settings.flask_secret_key) == 64

    def test_overrides(self):
        env = {
            "FUEL_COST_PER_HOUR": "42.5",
            "UPLOAD_DIR": "/srv/uploads",
            "FLASK_SECRET_KEY": "s3cret",
            "COMPANY_NAME": "Northern Haulage",
            "COMPANY_ADDRESS": "1 Main St | Sudbury, Ontario |",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = load_settings(database_url="sqlite://")

        assert settings.database_url == "sqlite://"
        assert settings.fuel_cost_per_hour == 42.5
        assert settings.upload_dir == "/srv/uploads"
        assert settings.flask_secret_key == "s3cret"
        assert settings.company.name == "Northern Haulage"
        assert settings.company.address_lines == ["1 Main St", "Sudbury, Ontario"]

    def test_bad_fuel_cost(self):
        with patch.dict(os.environ, {"FUEL_COST_PER_HOUR": "lots"}, clear=True):
            with pytest.raises(ConfigError, match="FUEL_COST_PER_HOUR"):
                load_settings()

    def test_negative_fuel_cost(self):
        with patch.dict(os.environ, {"FUEL_COST_PER_HOUR": "-1"}, clear=True):
            with pytest.raises(ConfigError):
                load_settings()
