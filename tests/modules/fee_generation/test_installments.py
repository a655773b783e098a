from datetime import date
from decimal import Decimal

import pytest

from fee_ledger.core.exceptions import ValidationError
from fee_ledger.modules.fee_generation.installments import plan_installments


class TestPlanInstallments:
    """Tests for splitting a fee into monthly installments."""

    def test_even_split(self):
        parts = plan_installments(Decimal("12000.00"), 4, date(2026, 4, 10))

        assert [p.amount for p in parts] == [Decimal("3000.00")] * 4
        assert [p.number for p in parts] == [1, 2, 3, 4]
        assert [p.due_date for p in parts] == [
            date(2026, 4, 10),
            date(2026, 5, 10),
            date(2026, 6, 10),
            date(2026, 7, 10),
        ]

    def test_remainder_goes_to_last_installment(self):
        parts = plan_installments(Decimal("1000.00"), 3, date(2026, 4, 1))

        assert [p.amount for p in parts] == [
            Decimal("333.33"),
            Decimal("333.33"),
            Decimal("333.34"),
        ]
        assert sum(p.amount for p in parts) == Decimal("1000.00")

    @pytest.mark.parametrize(
        "total,count",
        [("3450.00", 7), ("0.05", 3), ("99999.99", 12), ("100.00", 1)],
    )
    def test_installments_sum_to_total(self, total, count):
        parts = plan_installments(Decimal(total), count, date(2026, 1, 31))
        assert len(parts) == count
        assert sum(p.amount for p in parts) == Decimal(total)

    def test_due_dates_clamp_to_month_end(self):
        parts = plan_installments(Decimal("300.00"), 3, date(2026, 1, 31))
        assert [p.due_date for p in parts] == [
            date(2026, 1, 31),
            date(2026, 2, 28),
            date(2026, 3, 31),
        ]

    def test_zero_count_rejected(self):
        with pytest.raises(ValidationError):
            plan_installments(Decimal("100.00"), 0, date(2026, 1, 1))
