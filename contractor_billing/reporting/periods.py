"""
UK Financial Periods

Four independent calendars:
- Tax year: 6 April to 5 April
- Company year: ends on the Accounting Reference Date (ARD, "MM-DD")
- VAT quarter: depends on the VAT stagger group (1, 2 or 3)
- Calendar year: 1 January to 31 December

All functions are pure and take/return datetime.date values.
"""

import calendar
from datetime import date, timedelta
from typing import NamedTuple, Optional


MONTH_ABBREVIATIONS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)

# Months in which each stagger group's quarters end
VAT_QUARTER_END_MONTHS = {
    1: (3, 6, 9, 12),
    2: (1, 4, 7, 10),
    3: (2, 5, 8, 11),
}


class DateRange(NamedTuple):
    start: date
    end: date


class MonthRange(NamedTuple):
    start: date
    end: date
    label: str


def _month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def _quarter_for_end_month(year: int, end_month: int) -> DateRange:
    start_month = end_month - 2
    start_year = year
    if start_month <= 0:
        start_month += 12
        start_year -= 1
    return DateRange(date(start_year, start_month, 1), _month_end(year, end_month))


def _end_months(stagger_group: int) -> tuple[int, ...]:
    try:
        return VAT_QUARTER_END_MONTHS[stagger_group]
    except KeyError:
        raise ValueError(f"VAT stagger group must be 1, 2 or 3, got {stagger_group}") from None


def get_tax_year(on: date) -> DateRange:
    """UK tax year (6 Apr to 5 Apr) containing the date."""
    if on < date(on.year, 4, 6):
        return DateRange(date(on.year - 1, 4, 6), date(on.year, 4, 5))
    return DateRange(date(on.year, 4, 6), date(on.year + 1, 4, 5))


def get_calendar_year(on: date) -> DateRange:
    return DateRange(date(on.year, 1, 1), date(on.year, 12, 31))


def get_company_year(on: date, ard: Optional[str]) -> DateRange:
    """
    Company financial year containing the date.

    Args:
        on: Date to place
        ard: Accounting Reference Date as "MM-DD" (e.g. "03-31").
             Without one the calendar year is returned.

    A 29 February ARD falls on 28 February in non-leap years.
    """
    if not ard:
        return get_calendar_year(on)

    try:
        month, day = (int(part) for part in ard.split("-"))
    except ValueError:
        raise ValueError(f"ARD must be 'MM-DD', got {ard!r}") from None

    def year_end(year: int) -> date:
        return date(year, month, min(day, calendar.monthrange(year, month)[1]))

    this_year_end = year_end(on.year)
    if on <= this_year_end:
        return DateRange(year_end(on.year - 1) + timedelta(days=1), this_year_end)
    return DateRange(this_year_end + timedelta(days=1), year_end(on.year + 1))


def get_vat_quarter(on: date, stagger_group: int) -> DateRange:
    """VAT quarter containing the date for a stagger group."""
    end_months = _end_months(stagger_group)
    for end_month in end_months:
        if on.month <= end_month:
            return _quarter_for_end_month(on.year, end_month)
    # Past the last quarter end: the quarter closes early next year
    return _quarter_for_end_month(on.year + 1, end_months[0])


def get_vat_quarters(year: int, stagger_group: int) -> list[DateRange]:
    """The four VAT quarters ending in a calendar year."""
    return [_quarter_for_end_month(year, m) for m in _end_months(stagger_group)]


def month_label(on: date) -> str:
    return f"{MONTH_ABBREVIATIONS[on.month - 1]} {on.year}"


def get_months_in_range(start: date, end: date) -> list[MonthRange]:
    """
    Whole calendar months touched by [start, end].

    Returns:
        One MonthRange per month, labelled like "Jan 2025"
    """
    months = []
    year, month = start.year, start.month
    while date(year, month, 1) <= end:
        first = date(year, month, 1)
        months.append(MonthRange(first, _month_end(year, month), month_label(first)))
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return months


def format_period_label(start: date, end: date) -> str:
    """e.g. "Apr 2025 – Mar 2026"."""
    return f"{month_label(start)} – {month_label(end)}"
