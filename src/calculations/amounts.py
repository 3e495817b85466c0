"""Job money figures: gross amount, driver pay, fuel and revenue estimates."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from src.calculations.time_calc import billable_hours
from src.parsing.job_fields import DispatchType, UnknownDispatchType, parse_dispatch_type

logger = logging.getLogger(__name__)

FUEL_COST_PER_HOUR = 30.0


class MissingDriverRate(ValueError):
    """The driver rate needed for this dispatch type has not been set."""

    pass


@dataclass
class DriverRates:
    """
    Driver compensation settings.

    hourly_rate is currency per hour (Hourly and Tonnage jobs).
    revenue_share_percent is the share of job revenue (Load and Fixed jobs).
    """

    hourly_rate: Optional[float] = None
    revenue_share_percent: Optional[float] = None


@dataclass
class JobFinancials:
    """Computed figures persisted on a job."""

    gross_amount: float
    driver_pay: float
    estimated_fuel: float
    estimated_revenue: float
    warnings: List[str] = field(default_factory=list)


def driver_rates_from_legacy(legacy_rate: Optional[float], dispatch_type) -> DriverRates:
    """
    Map the legacy single driver rate field onto DriverRates.

    Older records kept one number that meant currency per hour for Hourly and
    Tonnage jobs and a percentage of revenue for Load and Fixed jobs.
    """
    kind = parse_dispatch_type(dispatch_type)
    logger.warning(
        "Mapping legacy driver rate %s for %s dispatch; set hourly_rate and "
        "revenue_share_percent explicitly on the driver",
        legacy_rate,
        kind.value,
    )
    if kind in (DispatchType.HOURLY, DispatchType.TONNAGE):
        return DriverRates(hourly_rate=legacy_rate)
    return DriverRates(revenue_share_percent=legacy_rate)


def calculate_job_amount(
    dispatch_type,
    rate: Optional[float],
    *,
    start_time: Optional[str] = None,
    end_time: Optional[str] = None,
    weights: Sequence[float] = (),
    loads: Optional[int] = 0,
    fixed_amount: Optional[float] = None,
) -> float:
    """
    Calculate a job's gross amount from its job type's dispatch type and rate.

    - Hourly: billable hours (quarter-hour round-up) x rate
    - Tonnage: sum of tonnage entries x rate
    - Load: load count x rate
    - Fixed: the rate itself, or a manually entered amount

    Raises:
        UnknownDispatchType: If the dispatch type is missing or unrecognized.
            Callers that persist amounts treat this as a zero with a warning.
    """
    kind = parse_dispatch_type(dispatch_type)
    rate = float(rate or 0)

    if kind == DispatchType.HOURLY:
        amount = billable_hours(start_time, end_time) * rate
    elif kind == DispatchType.TONNAGE:
        amount = sum(weights) * rate
    elif kind == DispatchType.LOAD:
        amount = int(loads or 0) * rate
    else:
        amount = float(fixed_amount) if fixed_amount is not None else rate

    return round(max(0.0, amount), 2)


def calculate_driver_pay(
    dispatch_type,
    rate: Optional[float],
    rates: DriverRates,
    *,
    driver_hours: float = 0.0,
    loads: Optional[int] = 0,
) -> float:
    """
    Calculate driver compensation for one job.

    - Hourly, Tonnage: driver hours x hourly rate
    - Load: loads x job rate x revenue share percent / 100
    - Fixed: job rate x revenue share percent / 100

    Raises:
        UnknownDispatchType: If the dispatch type is missing or unrecognized
        MissingDriverRate: If the rate this dispatch type needs is not set
    """
    kind = parse_dispatch_type(dispatch_type)
    rate = float(rate or 0)

    if kind in (DispatchType.HOURLY, DispatchType.TONNAGE):
        if rates.hourly_rate is None:
            raise MissingDriverRate(f"Driver has no hourly rate for {kind.value} jobs")
        return round(driver_hours * rates.hourly_rate, 2)

    if rates.revenue_share_percent is None:
        raise MissingDriverRate(
            f"Driver has no revenue share percent for {kind.value} jobs"
        )
    share = rates.revenue_share_percent / 100

    if kind == DispatchType.LOAD:
        return round(int(loads or 0) * rate * share, 2)
    return round(rate * share, 2)


def estimate_fuel(driver_hours: float, cost_per_hour: float = FUEL_COST_PER_HOUR) -> float:
    """Estimated fuel cost for the hours a driver was out."""
    return round(driver_hours * cost_per_hour, 2)


def estimate_revenue(gross_amount: float, driver_pay: float) -> float:
    """Gross amount minus driver pay. Negative means the job was priced below cost."""
    return round(gross_amount - driver_pay, 2)


def compute_job_financials(
    dispatch_type,
    rate: Optional[float],
    *,
    start_time: Optional[str] = None,
    end_time: Optional[str] = None,
    driver_start_time: Optional[str] = None,
    driver_end_time: Optional[str] = None,
    weights: Sequence[float] = (),
    loads: Optional[int] = 0,
    fixed_amount: Optional[float] = None,
    driver_rates: Optional[DriverRates] = None,
    fuel_cost_per_hour: float = FUEL_COST_PER_HOUR,
    job_label: str = "",
) -> JobFinancials:
    """
    Compute every persisted money figure for a job.

    An unknown dispatch type yields zero amounts and a warning instead of an
    error, since it points at a job type missing its classification. A job
    with no driver assigned has zero driver pay.

    Raises:
        MissingDriverRate: If a driver is assigned but lacks the needed rate
    """
    warnings: List[str] = []
    driver_hours = billable_hours(driver_start_time, driver_end_time)

    try:
        gross = calculate_job_amount(
            dispatch_type,
            rate,
            start_time=start_time,
            end_time=end_time,
            weights=weights,
            loads=loads,
            fixed_amount=fixed_amount,
        )
        driver_pay = (
            calculate_driver_pay(
                dispatch_type,
                rate,
                driver_rates,
                driver_hours=driver_hours,
                loads=loads,
            )
            if driver_rates is not None
            else 0.0
        )
    except UnknownDispatchType as e:
        logger.warning("Job %s: %s - amounts set to 0", job_label or "(new)", e)
        warnings.append(str(e))
        gross = 0.0
        driver_pay = 0.0

    return JobFinancials(
        gross_amount=gross,
        driver_pay=driver_pay,
        estimated_fuel=estimate_fuel(driver_hours, fuel_cost_per_hour),
        estimated_revenue=estimate_revenue(gross, driver_pay),
        warnings=warnings,
    )
