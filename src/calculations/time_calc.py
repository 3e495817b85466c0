"""Calculate billable hours from time-of-day ranges, including overnight shifts."""

from __future__ import annotations

import math
from typing import Optional

MINUTES_PER_DAY = 24 * 60

# Hourly work is billed in quarter-hour increments, rounded up.
BILLING_INCREMENT_MINUTES = 15


def parse_time_of_day(value: str) -> int:
    """
    Convert an "HH:MM" or "HH:MM:SS" string to minutes since midnight.

    Seconds are ignored.

    Raises:
        ValueError: If the value is not a valid time of day
    """
    parts = str(value).strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time of day: {value!r}")

    try:
        hours = int(parts[0])
        minutes = int(parts[1])
    except ValueError:
        raise ValueError(f"Invalid time of day: {value!r}")

    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError(f"Invalid time of day: {value!r}")

    return hours * 60 + minutes


def elapsed_minutes(start_time: str, end_time: str) -> int:
    """
    Minutes between two times of day.

    An end time earlier than the start time means the shift crossed midnight,
    so a full day is added to the end before subtracting.
    """
    start = parse_time_of_day(start_time)
    end = parse_time_of_day(end_time)

    if end < start:
        end += MINUTES_PER_DAY

    return end - start


def round_up_to_increment(minutes: int, increment: int = BILLING_INCREMENT_MINUTES) -> int:
    """Round minutes up to the next billing increment (50 -> 60, 60 -> 60)."""
    if minutes <= 0:
        return 0
    return int(math.ceil(minutes / increment)) * increment


def billable_hours(start_time: Optional[str], end_time: Optional[str]) -> float:
    """
    Hours billed for a time range, using quarter-hour round-up.

    Returns 0.0 when either time is missing.
    """
    if not start_time or not end_time:
        return 0.0

    minutes = round_up_to_increment(elapsed_minutes(start_time, end_time))
    return minutes / 60
