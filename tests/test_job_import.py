"""Tests for importing jobs from CSV and Excel job sheets."""

from datetime import date
from io import BytesIO

import pandas as pd
import pytest

from src.db.models import Company, Dispatcher, Driver, Job, Unit
from src.parsing.job_import import (
    JobImportError,
    get_file_extension,
    import_jobs,
    is_excel_file,
    parse_job_sheet,
)

SHEET_CSV = """Date,Dispatcher,Job Type,Company,Driver,Unit,Start Time,End Time,Tickets,Fixed Amount
2024-03-01,Acme Corp,Hourly haul,Greenfield Aggregates,Sam Driver,Truck 7,08:00,12:00,"T-1, T-2",
2024-03-02,Acme Corp,Flat move,Greenfield Aggregates,Sam Driver,Truck 7,,,,"$1,200.00"
2024-03-03,Acme Corp,Snow removal,Greenfield Aggregates,Sam Driver,Truck 7,,,,
2024-03-04,Acme Corp,Hourly haul,Greenfield Aggregates,Sam Driver,Truck 7,8am,12:00,,
,,,,,,,,,
"""


def _csv(text=SHEET_CSV):
    return BytesIO(text.encode("utf-8"))


class TestFileDetection:
    def test_extension(self):
        assert get_file_extension("Jobs.XLSX") == ".xlsx"

    @pytest.mark.parametrize("name,expected", [("a.xlsx", True), ("a.xls", True), ("a.csv", False)])
    def test_is_excel(self, name, expected):
        assert is_excel_file(name) is expected


class TestParseJobSheet:
    """Reading and cleaning the raw sheet."""

    def test_cleans_columns(self):
        df = parse_job_sheet(_csv(), "jobs.csv")

        assert len(df) == 4
        assert df.iloc[1]["Fixed Amount"] == 1200.0
        assert df.iloc[0]["Fixed Amount"] is None
        assert df.iloc[0]["Loads"] == 0
        assert df.iloc[0]["Weight"] is None

    def test_missing_required_columns(self):
        with pytest.raises(JobImportError, match="Job Type"):
            parse_job_sheet(_csv("Date,Dispatcher\n2024-03-01,Acme Corp\n"), "jobs.csv")

    def test_unreadable_path(self, tmp_path):
        with pytest.raises(JobImportError):
            parse_job_sheet(tmp_path / "missing.csv")

    def test_excel(self):
        buf = BytesIO()
        pd.DataFrame(
            [{"Date": "2024-03-01", "Dispatcher": "Acme Corp", "Job Type": "Flat move", "Loads": 2}]
        ).to_excel(buf, index=False)

        df = parse_job_sheet(buf, "jobs.xlsx")

        assert list(df["Job Type"]) == ["Flat move"]
        assert df.iloc[0]["Loads"] == 2


class TestImportJobs:
    """Rows become jobs; bad rows are skipped and reported."""

    def test_import(self, db_session, job_types, dispatcher, driver, unit):
        result = import_jobs(db_session, _csv(), "jobs.csv")

        assert len(result.created) == 2
        assert [row for row, _ in result.skipped] == [4, 5]
        assert "Snow removal" in result.skipped[0][1]
        assert "start_time_for_job" in result.skipped[1][1]

        hourly = db_session.get(Job, result.created[0])
        assert hourly.date_of_job == date(2024, 3, 1)
        assert hourly.tickets == ["T-1", "T-2"]
        assert hourly.job_gross_amount == 240.00
        assert hourly.dispatcher_id == dispatcher.id
        assert hourly.invoice_status == "Pending"

        fixed = db_session.get(Job, result.created[1])
        assert fixed.job_gross_amount == 1200.00

    def test_creates_missing_dispatcher(self, db_session, job_types, driver):
        sheet = "Date,Dispatcher,Job Type,Driver,Fixed Amount\n2024-03-01,New Co,Flat move,Sam Driver,100\n"

        result = import_jobs(db_session, _csv(sheet), "jobs.csv")

        assert len(result.created) == 1
        assert db_session.query(Dispatcher).filter_by(name="New Co").count() == 1

    def test_import_from_path(self, db_session, job_types, driver, tmp_path):
        path = tmp_path / "jobs.csv"
        path.write_text("Date,Dispatcher,Job Type,Loads\n2024-03-01,Acme Corp,Fill loads,3\n")

        result = import_jobs(db_session, str(path))

        job = db_session.get(Job, result.created[0])
        assert job.loads == 3
        assert job.job_gross_amount == 150.00

    def test_unknown_driver_is_skipped(self, db_session, job_types, driver):
        sheet = (
            "Date,Dispatcher,Job Type,Driver,Unit\n"
            "2024-03-01,Fresh Dispatch,Flat move,Brand New Driver,Truck 99\n"
        )

        result = import_jobs(db_session, _csv(sheet), "jobs.csv")

        assert result.created == []
        assert result.skipped == [(2, "Unknown driver 'Brand New Driver'")]
        assert db_session.query(Driver).filter_by(name="Brand New Driver").count() == 0
        assert db_session.query(Dispatcher).filter_by(name="Fresh Dispatch").count() == 0
        assert db_session.query(Unit).filter_by(name="Truck 99").count() == 0

    def test_rejected_row_leaves_no_new_names(self, db_session, job_types, driver):
        sheet = (
            "Date,Dispatcher,Job Type,Company,Unit,Start Time,End Time\n"
            "2024-03-01,Fresh Dispatch,Hourly haul,Fresh Co,Truck 99,8am,12:00\n"
        )

        result = import_jobs(db_session, _csv(sheet), "jobs.csv")
        db_session.commit()

        assert [row for row, _ in result.skipped] == [2]
        assert db_session.query(Dispatcher).filter_by(name="Fresh Dispatch").count() == 0
        assert db_session.query(Company).filter_by(name="Fresh Co").count() == 0
        assert db_session.query(Unit).filter_by(name="Truck 99").count() == 0

    def test_unknown_job_type_leaves_no_new_company(self, db_session, job_types):
        sheet = "Date,Dispatcher,Job Type,Company\n2024-03-01,Acme Corp,Snow removal,Fresh Co\n"

        result = import_jobs(db_session, _csv(sheet), "jobs.csv")

        assert "Snow removal" in result.skipped[0][1]
        assert db_session.query(Company).filter_by(name="Fresh Co").count() == 0
