"""Split a fee amount into dated monthly installments."""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from fee_ledger.core.exceptions import ValidationError
from fee_ledger.shared.utils.dates import add_months
from fee_ledger.shared.utils.money import round_money


@dataclass(frozen=True)
class Installment:
    number: int  # 1-based
    amount: Decimal
    due_date: date


def plan_installments(total: Decimal, count: int, start_date: date) -> list[Installment]:
    """
    Divide ``total`` into ``count`` installments due one month apart.

    Each installment is ``total / count`` rounded to cents; the rounding
    remainder goes into the last installment so the amounts add up to
    ``total`` exactly.
    """
    if count <= 0:
        raise ValidationError("Installment count must be greater than zero", field="count")

    total = round_money(total)
    base = round_money(total / count)
    last = round_money(total - base * (count - 1))

    return [
        Installment(
            number=i + 1,
            amount=last if i == count - 1 else base,
            due_date=add_months(start_date, i),
        )
        for i in range(count)
    ]
