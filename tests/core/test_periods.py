from datetime import date

import pytest

from src.shared.utils.periods import BillingPeriod, days_in_month


class TestDaysInMonth:
    @pytest.mark.parametrize(
        "year,month,expected",
        [
            (2025, 1, 31),
            (2025, 4, 30),
            (2025, 2, 28),
            (2024, 2, 29),
            (2100, 2, 28),
            (2000, 2, 29),
        ],
    )
    def test_days(self, year, month, expected):
        assert days_in_month(year, month) == expected


class TestBillingPeriod:
    def test_of_date(self):
        period = BillingPeriod.of(date(2025, 3, 15))
        assert period == BillingPeriod(2025, 3)
        assert period.start == date(2025, 3, 1)
        assert period.end == date(2025, 3, 31)
        assert period.days == 31
        assert period.label == "March 2025"

    def test_invalid_month(self):
        with pytest.raises(ValueError):
            BillingPeriod(2025, 13)
        with pytest.raises(ValueError):
            BillingPeriod(2025, 0)

    def test_contains(self):
        period = BillingPeriod(2025, 3)
        assert period.contains(date(2025, 3, 1))
        assert period.contains(date(2025, 3, 31))
        assert not period.contains(date(2025, 4, 1))
        assert not period.contains(date(2024, 3, 15))

    def test_next_rolls_over_year(self):
        assert BillingPeriod(2025, 11).next() == BillingPeriod(2025, 12)
        assert BillingPeriod(2025, 12).next() == BillingPeriod(2026, 1)

    def test_ordering(self):
        assert BillingPeriod(2025, 12) < BillingPeriod(2026, 1)
        assert BillingPeriod(2025, 2) < BillingPeriod(2025, 10)

    def test_due_date_clamped(self):
        assert BillingPeriod(2025, 3).due_date(10) == date(2025, 3, 10)
        assert BillingPeriod(2025, 2).due_date(31) == date(2025, 2, 28)
