from datetime import date

from fee_ledger.shared.utils.dates import (
    add_months,
    end_of_month,
    end_of_quarter,
    quarter_of,
    start_of_month,
)


class TestAddMonths:
    def test_simple_shift(self):
        assert add_months(date(2026, 4, 15), 1) == date(2026, 5, 15)

    def test_year_rollover(self):
        assert add_months(date(2026, 11, 1), 3) == date(2027, 2, 1)

    def test_day_clamped_to_month_length(self):
        assert add_months(date(2026, 1, 31), 1) == date(2026, 2, 28)
        assert add_months(date(2028, 1, 31), 1) == date(2028, 2, 29)

    def test_zero_months(self):
        assert add_months(date(2026, 6, 30), 0) == date(2026, 6, 30)


class TestMonthBoundaries:
    def test_start_and_end_of_month(self):
        assert start_of_month(date(2026, 2, 17)) == date(2026, 2, 1)
        assert end_of_month(date(2026, 2, 17)) == date(2026, 2, 28)
        assert end_of_month(date(2026, 12, 1)) == date(2026, 12, 31)

    def test_quarters(self):
        assert quarter_of(date(2026, 1, 1)) == 1
        assert quarter_of(date(2026, 6, 30)) == 2
        assert quarter_of(date(2026, 10, 19)) == 4
        assert end_of_quarter(2026, 1) == date(2026, 3, 31)
        assert end_of_quarter(2026, 3) == date(2026, 9, 30)
