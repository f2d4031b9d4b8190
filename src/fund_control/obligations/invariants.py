"""
Obligation Module Invariants - Pure validation functions

The bona fide need rule: an appropriation may only be obligated for a need
arising within its own fiscal year. An obligation dated outside that window
is rejected unless it carries a written justification and the policy
allows overrides; accepted overrides are flagged on the obligation.
"""

from datetime import date
from decimal import Decimal

from fund_control.fiscal.calendar import fiscal_year_window
from fund_control.kernel.errors import (
    AppropriationExpired,
    AppropriationNotFound,
    BonaFideNeedViolation,
    BudgetNotAuthorized,
    BudgetNotFound,
    ExpenditureExceedsObligation,
    FiscalYearNotFound,
    InvalidExpenditureDate,
    InvalidTransition,
    LineItemNotFound,
    ObligationHasExpenditures,
    ObligationNotFound,
)
from fund_control.kernel.money import as_decimal
from fund_control.kernel.policy import FundControlPolicy
from fund_control.obligations.models import ObligationStatus


def validate_budget_authorized(budget_id: str, budgets: dict[str, dict]) -> dict:
    """
    Obligations need an approved budget version to obligate against

    Raises:
        BudgetNotFound: If the budget doesn't exist
        BudgetNotAuthorized: If no version was ever approved
    """
    budget = budgets.get(budget_id)
    if budget is None:
        raise BudgetNotFound(budget_id)
    if budget["authorized_version"] is None:
        raise BudgetNotAuthorized(budget_id, budget["status"])
    return budget


def validate_appropriation_exists(appropriation_id: str, appropriations: dict[str, dict]) -> dict:
    appropriation = appropriations.get(appropriation_id)
    if appropriation is None:
        raise AppropriationNotFound(appropriation_id)
    return appropriation


def validate_not_expired(appropriation: dict, obligation_date: date) -> None:
    """Expired funds may not incur new obligations"""
    expiration = date.fromisoformat(appropriation["expiration_date"])
    if obligation_date > expiration:
        raise AppropriationExpired(appropriation["appropriation_id"], expiration.isoformat())


def check_bona_fide_need(
    fiscal_year: dict | None,
    appropriation: dict,
    obligation_date: date,
    justification: str | None,
    policy: FundControlPolicy,
) -> bool:
    """
    Apply the bona fide need rule

    Returns:
        True if the obligation is an accepted exception (override), False
        if the date is inside the fiscal year

    Raises:
        FiscalYearNotFound: If the appropriation's fiscal year is unknown
        BonaFideNeedViolation: If outside the window without an accepted override
    """
    if fiscal_year is None:
        raise FiscalYearNotFound(appropriation["fiscal_year_id"])

    window_start, window_end = fiscal_year_window(fiscal_year["year"])
    if window_start <= obligation_date <= window_end:
        return False

    if policy.allow_bona_fide_override and justification and justification.strip():
        return True

    raise BonaFideNeedViolation(
        obligation_date.isoformat(),
        fiscal_year["year"],
        window_start.isoformat(),
        window_end.isoformat(),
    )


def validate_line_item(budget_id: str, content: dict, line_item_id: str | None) -> None:
    """The line item, if given, must be in the budget's approved version"""
    if line_item_id is None:
        return
    if not any(item["line_item_id"] == line_item_id for item in content["line_items"]):
        raise LineItemNotFound(budget_id, line_item_id)


def validate_obligation_exists(obligation_id: str, obligations: dict[str, dict]) -> dict:
    obligation = obligations.get(obligation_id)
    if obligation is None:
        raise ObligationNotFound(obligation_id)
    return obligation


def validate_obligation_active(obligation: dict, attempted: str) -> None:
    if obligation["status"] != ObligationStatus.ACTIVE.value:
        raise InvalidTransition(
            obligation["obligation_id"], current=obligation["status"], attempted=attempted
        )


def validate_no_expenditures(obligation: dict) -> None:
    expended = as_decimal(obligation["expended"])
    if expended > 0:
        raise ObligationHasExpenditures(obligation["obligation_id"], expended)


def validate_expenditure_date(obligation: dict, expenditure_date: date) -> None:
    obligation_date = date.fromisoformat(obligation["obligation_date"])
    if expenditure_date < obligation_date:
        raise InvalidExpenditureDate(
            obligation["obligation_id"],
            expenditure_date.isoformat(),
            obligation_date.isoformat(),
        )


def validate_expenditure_fits(obligation: dict, amount: Decimal) -> None:
    """
    Early rejection from the projection

    The guarded update in ObligationBalances is authoritative; this only
    avoids opening a write transaction for an obviously oversized payment.
    """
    obligated = as_decimal(obligation["amount"])
    remaining = obligated - as_decimal(obligation["expended"])
    if amount > remaining:
        raise ExpenditureExceedsObligation(obligation["obligation_id"], amount, obligated, remaining)
