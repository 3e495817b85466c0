"""Revenue and earnings summaries over stored jobs."""

from __future__ import annotations

from datetime import date
from typing import Optional, Sequence

import pandas as pd

JOB_COLUMNS = [
    "job_id",
    "date",
    "month",
    "company",
    "driver",
    "dispatcher",
    "gross_amount",
    "driver_pay",
    "estimated_fuel",
    "estimated_revenue",
    "driver_hours",
]


def _name(entity) -> str:
    return entity.name if entity is not None and entity.name else "(none)"


def jobs_frame(jobs: Sequence) -> pd.DataFrame:
    """One row per job with the figures the reports aggregate."""
    records = []
    for job in jobs:
        job_type = job.job_type
        records.append(
            {
                "job_id": job.id,
                "date": job.date_of_job,
                "month": job.date_of_job.strftime("%Y-%m") if job.date_of_job else "",
                "company": _name(job_type.company if job_type is not None else None),
                "driver": _name(job.driver),
                "dispatcher": _name(job.dispatcher),
                "gross_amount": job.job_gross_amount or 0.0,
                "driver_pay": job.driver_pay or 0.0,
                "estimated_fuel": job.estimated_fuel or 0.0,
                "estimated_revenue": job.estimated_revenue or 0.0,
                "driver_hours": job.driver_hours,
            }
        )
    return pd.DataFrame.from_records(records, columns=JOB_COLUMNS)


def filter_date_range(
    df: pd.DataFrame,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> pd.DataFrame:
    """Keep rows dated within [start_date, end_date]; either bound may be open."""
    mask = pd.Series(True, index=df.index)
    if start_date is not None:
        mask &= df["date"].map(lambda d: d is not None and d >= start_date)
    if end_date is not None:
        mask &= df["date"].map(lambda d: d is not None and d <= end_date)
    return df[mask]


def monthly_revenue(jobs: Sequence) -> pd.DataFrame:
    """
    Gross billed, driver pay, fuel and net revenue per calendar month.

    Returns:
        DataFrame with columns month ("YYYY-MM"), jobs, gross_amount,
        driver_pay, estimated_fuel, estimated_revenue, oldest month first
    """
    df = jobs_frame(jobs)
    grouped = (
        df.groupby("month", sort=True)
        .agg(
            jobs=("job_id", "count"),
            gross_amount=("gross_amount", "sum"),
            driver_pay=("driver_pay", "sum"),
            estimated_fuel=("estimated_fuel", "sum"),
            estimated_revenue=("estimated_revenue", "sum"),
        )
        .reset_index()
    )
    return grouped.round(2)


def revenue_for_month(jobs: Sequence, year: int, month: int) -> float:
    """Total gross amount of jobs dated in the given month."""
    key = f"{year}-{month:02d}"
    df = jobs_frame(jobs)
    return round(float(df.loc[df["month"] == key, "gross_amount"].sum()), 2)


def company_stats(jobs: Sequence) -> pd.DataFrame:
    """
    Job count, total revenue and average job value per customer company.

    Returns:
        DataFrame with columns company, total_jobs, total_revenue,
        average_job_value, highest revenue first
    """
    df = jobs_frame(jobs)
    grouped = (
        df.groupby("company")
        .agg(total_jobs=("job_id", "count"), total_revenue=("gross_amount", "sum"))
        .reset_index()
    )
    grouped["average_job_value"] = grouped["total_revenue"] / grouped["total_jobs"]
    return grouped.sort_values("total_revenue", ascending=False).round(2).reset_index(drop=True)


def driver_earnings(
    jobs: Sequence,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> pd.DataFrame:
    """
    Total driver pay and hours per driver over an optional date range.

    Returns:
        DataFrame with columns driver, jobs, driver_hours, driver_pay
    """
    df = filter_date_range(jobs_frame(jobs), start_date, end_date)
    grouped = (
        df.groupby("driver")
        .agg(
            jobs=("job_id", "count"),
            driver_hours=("driver_hours", "sum"),
            driver_pay=("driver_pay", "sum"),
        )
        .reset_index()
    )
    return grouped.sort_values("driver_pay", ascending=False).round(2).reset_index(drop=True)
