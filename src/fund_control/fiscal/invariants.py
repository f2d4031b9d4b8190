"""
Fiscal Module Invariants - Pure validation functions

These functions read projection dicts and raise domain errors; they never
touch the database. The one invariant they cannot enforce on their own,
obligated <= appropriated under concurrency, belongs to the fund ledger.
"""

from datetime import date
from decimal import Decimal

from fund_control.fiscal.models import AdaRisk, FiscalYearState
from fund_control.kernel.errors import (
    AppropriationExpired,
    DuplicateAppropriationCode,
    DuplicateFiscalYear,
    FiscalYearNotFound,
    InvalidTransition,
)
from fund_control.kernel.policy import FundControlPolicy


def validate_fiscal_year_exists(fiscal_year_id: str, fiscal_years: dict[str, dict]) -> dict:
    fiscal_year = fiscal_years.get(fiscal_year_id)
    if fiscal_year is None:
        raise FiscalYearNotFound(fiscal_year_id)
    return fiscal_year


def validate_unique_year(year: int, fiscal_years: dict[str, dict]) -> None:
    if any(fy["year"] == year for fy in fiscal_years.values()):
        raise DuplicateFiscalYear(year)


def validate_unique_code(code: str, appropriations: dict[str, dict]) -> None:
    if any(a["code"] == code for a in appropriations.values()):
        raise DuplicateAppropriationCode(code)


def validate_fiscal_year_transition(fiscal_year: dict, target: FiscalYearState) -> None:
    """
    Fiscal years only move forward

    Skipping ahead (future → past) is allowed; LOCKED is terminal.

    Raises:
        InvalidTransition: If target is not strictly after the current state
    """
    current = FiscalYearState(fiscal_year["state"])
    if target.rank() <= current.rank():
        raise InvalidTransition(
            fiscal_year["fiscal_year_id"],
            current=current.value,
            attempted=f"move to {target.value}",
        )


def validate_fiscal_year_open(fiscal_year: dict) -> None:
    if fiscal_year["state"] == FiscalYearState.LOCKED.value:
        raise InvalidTransition(
            fiscal_year["fiscal_year_id"],
            current=FiscalYearState.LOCKED.value,
            attempted="establish appropriation",
        )


def validate_expiration_date(code: str, expiration: date, window_start: date) -> None:
    if expiration < window_start:
        raise AppropriationExpired(
            code,
            expiration.isoformat(),
            reason=f"Expiration {expiration} precedes fiscal year start {window_start}",
        )


def assess_ada_risk(
    appropriated: Decimal,
    obligated: Decimal,
    requested: Decimal,
    policy: FundControlPolicy,
) -> AdaRisk:
    """
    Classify how close a request brings an appropriation to its ceiling

    Example (appropriated 100000, obligated 60000):
        requested 30000 → 10% remains → LOW
        requested 32000 → 8% remains → MEDIUM
        requested 36000 → 4% remains → HIGH
        requested 50000 → does not fit → CRITICAL
    """
    remaining = appropriated - obligated - requested
    if remaining < 0:
        return AdaRisk.CRITICAL
    if appropriated == 0:
        return AdaRisk.HIGH

    ratio = remaining / appropriated
    if ratio < policy.ada_high_risk_ratio:
        return AdaRisk.HIGH
    if ratio < policy.ada_medium_risk_ratio:
        return AdaRisk.MEDIUM
    return AdaRisk.LOW
