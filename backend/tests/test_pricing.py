"""
Pricing rule tests: duration rounding, base price, late fee and tier derivation.
"""

from datetime import datetime, timedelta

import pytest

from carrental.models import User
from carrental.models.auth import tier_for_spend
from carrental.services.pricing import (
    LATE_FEE_PER_DAY,
    late_fee,
    rental_duration_days,
    rental_price,
    windows_overlap,
)


class TestDuration:
    def test_whole_days(self):
        assert rental_duration_days(datetime(2024, 1, 1), datetime(2024, 1, 4)) == 3

    def test_partial_day_rounds_up(self):
        start = datetime(2024, 1, 1, 9, 0)
        assert rental_duration_days(start, start + timedelta(days=2, hours=1)) == 3

    def test_zero_and_negative(self):
        day = datetime(2024, 1, 1)
        assert rental_duration_days(day, day) == 0
        assert rental_duration_days(day, day - timedelta(days=2)) <= 0


class TestPrice:
    def test_three_days_at_1000(self):
        assert rental_price(1000, datetime(2024, 1, 1), datetime(2024, 1, 4)) == 3000


class TestLateFee:
    def test_tier_two_three_days_late(self):
        fee = late_fee(2, datetime(2024, 1, 10), datetime(2024, 1, 13))
        assert fee.days_late == 3
        assert fee.fee == 4500

    def test_on_time_is_free(self):
        fee = late_fee(5, datetime(2024, 1, 10), datetime(2024, 1, 10))
        assert (fee.days_late, fee.fee) == (0, 0)

    def test_early_is_free(self):
        fee = late_fee(1, datetime(2024, 1, 10), datetime(2024, 1, 8))
        assert (fee.days_late, fee.fee) == (0, 0)

    def test_one_minute_late_counts_a_full_day(self):
        fee = late_fee(0, datetime(2024, 1, 10), datetime(2024, 1, 10, 0, 1))
        assert fee.days_late == 1
        assert fee.fee == LATE_FEE_PER_DAY


class TestTier:
    @pytest.mark.parametrize(
        "spend,tier",
        [(0, 0), (9_999, 0), (10_000, 1), (24_999, 2), (25_000, 2), (30_000, 3)],
    )
    def test_tier_for_spend(self, spend, tier):
        assert tier_for_spend(spend) == tier

    def test_add_spend_recomputes_tier(self):
        user = User(total_spend=24_000, tier=2)
        user.add_spend(6_000)
        assert user.total_spend == 30_000
        assert user.tier == 3

    def test_spend_never_decreases(self):
        user = User(total_spend=100, tier=0)
        with pytest.raises(ValueError):
            user.add_spend(-1)


class TestOverlap:
    def test_back_to_back_windows_do_not_overlap(self):
        a = (datetime(2024, 1, 1), datetime(2024, 1, 3))
        b = (datetime(2024, 1, 3), datetime(2024, 1, 5))
        assert not windows_overlap(*a, *b)

    def test_contained_window_overlaps(self):
        outer = (datetime(2024, 1, 1), datetime(2024, 1, 10))
        inner = (datetime(2024, 1, 3), datetime(2024, 1, 4))
        assert windows_overlap(*outer, *inner)
        assert windows_overlap(*inner, *outer)
