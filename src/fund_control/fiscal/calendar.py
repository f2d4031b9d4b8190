"""
Fiscal calendar - federal fiscal year arithmetic

The federal fiscal year runs October 1 through September 30 and is named by
the calendar year in which it ends.
"""

from datetime import date

from fund_control.fiscal.models import ColorOfMoney, FiscalYearState


def fiscal_year_window(year: int) -> tuple[date, date]:
    """First and last day of fiscal year ``year``"""
    return date(year - 1, 10, 1), date(year, 9, 30)


def fiscal_year_of(day: date) -> int:
    """Fiscal year containing a calendar date"""
    return day.year + 1 if day.month >= 10 else day.year


def default_expiration(year: int, color: ColorOfMoney) -> date:
    """
    End of the period of availability for an appropriation

    A two-year RDTE appropriation from FY2025 expires on Sep 30, 2026.
    """
    return date(year + color.availability_years() - 1, 9, 30)


def state_for_date(year: int, day: date) -> FiscalYearState:
    """Where fiscal year ``year`` should stand on ``day`` (never LOCKED)"""
    start, end = fiscal_year_window(year)
    if day < start:
        return FiscalYearState.FUTURE
    if day > end:
        return FiscalYearState.PAST
    return FiscalYearState.CURRENT
