import calendar
from datetime import date


def add_months(value: date, months: int) -> date:
    """Shift a date by whole months, clamping the day to the target month length.

    >>> add_months(date(2026, 1, 31), 1)
    datetime.date(2026, 2, 28)
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def start_of_month(value: date) -> date:
    return value.replace(day=1)


def end_of_month(value: date) -> date:
    return value.replace(day=calendar.monthrange(value.year, value.month)[1])


def end_of_quarter(year: int, quarter: int) -> date:
    return end_of_month(date(year, quarter * 3, 1))


def quarter_of(value: date) -> int:
    return (value.month - 1) // 3 + 1
