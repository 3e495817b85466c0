"""Import jobs from a CSV or Excel job sheet."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import time
from io import BytesIO, StringIO
from pathlib import Path
from typing import Any, List, Optional, Tuple, Union

import pandas as pd
from sqlalchemy.orm import Session

from src.calculations.amounts import FUEL_COST_PER_HOUR
from src.db.jobs import (
    JobInput,
    JobValidationError,
    create_job,
    find_by_name,
    find_job_type,
    find_or_create_by_name,
)
from src.db.models import Company, Dispatcher, Driver, Unit

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ["Date", "Dispatcher", "Job Type"]

OPTIONAL_COLUMNS = [
    "Title",
    "Company",
    "Unit",
    "Driver",
    "Start Time",
    "End Time",
    "Driver Start",
    "Driver End",
    "Weight",
    "Loads",
    "Tickets",
    "Fixed Amount",
]


class JobImportError(ValueError):
    """The job sheet cannot be read or lacks required columns."""

    pass


@dataclass
class ImportResult:
    created: List[str] = field(default_factory=list)
    # (spreadsheet row number, reason)
    skipped: List[Tuple[int, str]] = field(default_factory=list)


def get_file_extension(filename: str) -> str:
    """Get lowercase file extension from filename."""
    return Path(filename).suffix.lower()


def is_excel_file(filename: str) -> bool:
    """Check if filename indicates an Excel file."""
    return get_file_extension(filename) in (".xlsx", ".xls")


def read_data_file(
    source: Union[str, Path, BytesIO],
    filename: str = "",
) -> pd.DataFrame:
    """
    Read a data file (CSV or Excel) into a DataFrame.

    Args:
        source: File path or BytesIO containing file data
        filename: Original filename (used to detect format when source is BytesIO)

    Raises:
        JobImportError: If the file cannot be parsed
    """
    try:
        if isinstance(source, (str, Path)):
            path = Path(source)
            filename = filename or path.name
            if is_excel_file(filename):
                return pd.read_excel(path)
            return pd.read_csv(path)

        source.seek(0)
        if is_excel_file(filename):
            return pd.read_excel(source)
        content = source.read().decode("utf-8-sig")
        source.seek(0)
        return pd.read_csv(StringIO(content))
    except (OSError, ValueError) as e:
        raise JobImportError(f"Could not read job sheet {filename or source}: {e}")


def validate_columns(df: pd.DataFrame, required: List[str]) -> List[str]:
    """Return list of missing required columns."""
    return [col for col in required if col not in df.columns]


def _money_column(series: pd.Series) -> pd.Series:
    return series.replace(r"[\$,]", "", regex=True).pipe(pd.to_numeric, errors="coerce")


def parse_job_sheet(
    source: Union[str, Path, BytesIO],
    filename: str = "",
) -> pd.DataFrame:
    """
    Read and clean a job sheet.

    Returns:
        DataFrame with every known column present, numeric columns cleaned
        and blanks as None.

    Raises:
        JobImportError: If required columns are missing
    """
    df = read_data_file(source, filename)
    df.columns = [str(col).strip() for col in df.columns]

    missing = validate_columns(df, REQUIRED_COLUMNS)
    if missing:
        raise JobImportError(f"Job sheet missing required columns: {missing}")

    for col in OPTIONAL_COLUMNS:
        if col not in df.columns:
            df[col] = None

    df["Loads"] = pd.to_numeric(df["Loads"], errors="coerce").fillna(0).astype(int)
    df["Fixed Amount"] = _money_column(df["Fixed Amount"])

    # Drop rows with nothing in them (trailing spreadsheet rows)
    df = df.dropna(how="all", subset=REQUIRED_COLUMNS)

    return df.astype(object).where(pd.notna(df), None)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, time):
        return value.strftime("%H:%M")
    text = str(value).strip()
    return text or None


def _tickets(value: Any) -> Any:
    text = _text(value)
    if text is None:
        return None
    if text.startswith("["):
        return text
    return [part.strip() for part in text.split(",") if part.strip()]


def _find_or_create(session: Session, model, value: Any, created: list):
    """find_or_create_by_name that records entities it had to create."""
    name = _text(value)
    entity = find_by_name(session, model, name)
    if entity is None and name:
        entity = find_or_create_by_name(session, model, name)
        created.append(entity)
    return entity


def _discard(session: Session, created: list) -> None:
    """Remove entities created for a row that was then rejected."""
    for entity in reversed(created):
        session.delete(entity)
    session.flush()


def import_jobs(
    session: Session,
    source: Union[str, Path, BytesIO],
    filename: str = "",
    fuel_cost_per_hour: float = FUEL_COST_PER_HOUR,
) -> ImportResult:
    """
    Create jobs from a job sheet.

    Companies, dispatchers and units are matched by name and created when
    missing. Drivers and job types must already exist since they carry the
    pay rates, dispatch type and job rate. Rows that fail validation are
    skipped and reported, and anything created for them is removed.

    Raises:
        JobImportError: If the sheet cannot be read
    """
    df = parse_job_sheet(source, filename)
    result = ImportResult()

    for index, row in enumerate(df.to_dict("records")):
        # Header is row 1
        row_number = index + 2

        driver_name = _text(row["Driver"])
        driver = find_by_name(session, Driver, driver_name)
        if driver_name and driver is None:
            result.skipped.append((row_number, f"Unknown driver {driver_name!r}"))
            continue

        created: list = []
        company = _find_or_create(session, Company, row["Company"], created)
        job_type = find_job_type(session, _text(row["Job Type"]), company)
        if job_type is None:
            _discard(session, created)
            result.skipped.append((row_number, f"Unknown job type {row['Job Type']!r}"))
            continue

        dispatcher = _find_or_create(session, Dispatcher, row["Dispatcher"], created)
        unit = _find_or_create(session, Unit, row["Unit"], created)

        data = JobInput(
            date_of_job=row["Date"],
            title=_text(row["Title"]),
            job_type_id=job_type.id,
            dispatcher_id=dispatcher.id if dispatcher else None,
            driver_id=driver.id if driver else None,
            unit_id=unit.id if unit else None,
            start_time_for_job=_text(row["Start Time"]),
            end_time_for_job=_text(row["End Time"]),
            start_time_for_driver=_text(row["Driver Start"]),
            end_time_for_driver=_text(row["Driver End"]),
            weight=row["Weight"],
            loads=row["Loads"],
            ticket_ids=_tickets(row["Tickets"]),
            fixed_amount=row["Fixed Amount"],
        )

        try:
            job = create_job(session, data, fuel_cost_per_hour)
        except JobValidationError as e:
            _discard(session, created)
            logger.warning("Skipping job sheet row %d: %s", row_number, e)
            result.skipped.append((row_number, str(e)))
            continue

        result.created.append(job.id)

    logger.info(
        "Imported %d jobs, skipped %d rows", len(result.created), len(result.skipped)
    )
    return result
