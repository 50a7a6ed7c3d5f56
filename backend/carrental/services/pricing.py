# Overview: Pure pricing rules for rents; no database access.

"""
Rental pricing rules.

- Duration is the calendar difference in whole days, any fractional day
  rounded up.
- Price = duration * daily rate, fixed when the rent is created.
- Late fee = (car tier + 1) * LATE_FEE_PER_DAY * days late, where days late
  is also rounded up. Higher tiers cost more per late day.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from carrental.time_utils import ceil_days

LATE_FEE_PER_DAY = 500


@dataclass(frozen=True)
class LateFee:
    days_late: int
    fee: int


def rental_duration_days(start: datetime, end: datetime) -> int:
    return ceil_days(end - start)


def rental_price(daily_rate: int, start: datetime, end: datetime) -> int:
    return rental_duration_days(start, end) * daily_rate


def late_fee(car_tier: int, return_date: datetime, returned_at: datetime) -> LateFee:
    """Late fee for a car handed back at `returned_at`; zero when on time."""
    if returned_at <= return_date:
        return LateFee(days_late=0, fee=0)
    days_late = ceil_days(returned_at - return_date)
    return LateFee(days_late=days_late, fee=(car_tier + 1) * LATE_FEE_PER_DAY * days_late)


def windows_overlap(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> bool:
    """
    Check overlap between [a_start, a_end) and [b_start, b_end).
    Back-to-back bookings (a_end == b_start) do not overlap.
    """
    return a_start < b_end and b_start < a_end
