"""
Tests for fiscal years and appropriations through the façade

Covers the fiscal calendar, the FUTURE → CURRENT → PAST → LOCKED lifecycle
(exactly one current year at a time), and establishing appropriations with
color-of-money expiration defaults.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from fund_control import FundControl
from fund_control.fiscal.calendar import (
    default_expiration,
    fiscal_year_of,
    fiscal_year_window,
    state_for_date,
)
from fund_control.fiscal.models import AdaRisk, ColorOfMoney, FiscalYearState
from fund_control.kernel.errors import (
    AppropriationExpired,
    DuplicateAppropriationCode,
    DuplicateFiscalYear,
    FiscalYearLocked,
    FiscalYearNotFound,
    InvalidAmount,
    InvalidTransition,
)
from fund_control.kernel.time import TestTimeProvider
from tests.helpers import create_approved_budget


# =============================================================================
# Fiscal calendar
# =============================================================================


def test_fiscal_year_window() -> None:
    """FY2025 runs Oct 1, 2024 through Sep 30, 2025"""
    assert fiscal_year_window(2025) == (date(2024, 10, 1), date(2025, 9, 30))


def test_fiscal_year_of() -> None:
    assert fiscal_year_of(date(2024, 9, 30)) == 2024
    assert fiscal_year_of(date(2024, 10, 1)) == 2025
    assert fiscal_year_of(date(2025, 1, 15)) == 2025


@pytest.mark.parametrize(
    "color, expires",
    [
        (ColorOfMoney.OM, date(2025, 9, 30)),
        (ColorOfMoney.MILPERS, date(2025, 9, 30)),
        (ColorOfMoney.RDTE, date(2026, 9, 30)),
        (ColorOfMoney.PROCUREMENT, date(2027, 9, 30)),
        (ColorOfMoney.MILCON, date(2029, 9, 30)),
    ],
)
def test_default_expiration_by_color(color: ColorOfMoney, expires: date) -> None:
    assert default_expiration(2025, color) == expires


def test_state_for_date() -> None:
    assert state_for_date(2026, date(2025, 1, 15)) == FiscalYearState.FUTURE
    assert state_for_date(2025, date(2025, 1, 15)) == FiscalYearState.CURRENT
    assert state_for_date(2024, date(2025, 1, 15)) == FiscalYearState.PAST


# =============================================================================
# Fiscal year lifecycle
# =============================================================================


def test_open_fiscal_year(fc: FundControl) -> None:
    fy = fc.open_fiscal_year(2025, state="current")

    assert fy["year"] == 2025
    assert fy["state"] == "current"
    assert fy["start_date"] == "2024-10-01"
    assert fy["end_date"] == "2025-09-30"
    assert fc.get_current_fiscal_year()["fiscal_year_id"] == fy["fiscal_year_id"]


def test_opening_a_new_current_year_demotes_the_old_one(fc: FundControl) -> None:
    fy2024 = fc.open_fiscal_year(2024, state="current")
    fy2025 = fc.open_fiscal_year(2025, state="current")

    states = {fy["year"]: fy["state"] for fy in fc.list_fiscal_years()}
    assert states == {2024: "past", 2025: "current"}
    assert fc.get_current_fiscal_year()["fiscal_year_id"] == fy2025["fiscal_year_id"]
    assert fy2024["fiscal_year_id"] != fy2025["fiscal_year_id"]


def test_duplicate_fiscal_year_rejected(fc: FundControl) -> None:
    fc.open_fiscal_year(2025)
    with pytest.raises(DuplicateFiscalYear):
        fc.open_fiscal_year(2025)


def test_cannot_open_a_year_locked(fc: FundControl) -> None:
    with pytest.raises(InvalidTransition):
        fc.open_fiscal_year(2020, state="locked")


def test_transitions_only_move_forward(fc: FundControl) -> None:
    fy = fc.open_fiscal_year(2025, state="current")

    with pytest.raises(InvalidTransition) as exc_info:
        fc.transition_fiscal_year(fy["fiscal_year_id"], "future")
    assert exc_info.value.current == "current"

    fc.transition_fiscal_year(fy["fiscal_year_id"], "past")
    fc.transition_fiscal_year(fy["fiscal_year_id"], "locked")
    with pytest.raises(InvalidTransition):
        fc.transition_fiscal_year(fy["fiscal_year_id"], "locked")


def test_making_a_year_current_keeps_exactly_one_current(fc: FundControl) -> None:
    fc.open_fiscal_year(2025, state="current")
    fy2026 = fc.open_fiscal_year(2026)

    fc.transition_fiscal_year(fy2026["fiscal_year_id"], "current")

    current = [fy for fy in fc.list_fiscal_years() if fy["state"] == "current"]
    assert [fy["year"] for fy in current] == [2026]


def test_transition_unknown_fiscal_year(fc: FundControl) -> None:
    with pytest.raises(FiscalYearNotFound):
        fc.transition_fiscal_year("missing", "past")


def test_tick_advances_fiscal_years_by_calendar(
    fc: FundControl, test_time: TestTimeProvider
) -> None:
    fc.open_fiscal_year(2025, state="current")
    fc.open_fiscal_year(2026)

    test_time.set_time(datetime(2025, 10, 2, 8, 0, 0, tzinfo=timezone.utc))
    result = fc.tick()

    states = {fy["year"]: fy["state"] for fy in fc.list_fiscal_years()}
    assert states == {2025: "past", 2026: "current"}
    assert len(result.fiscal_year_transitions) == 2


def test_tick_does_not_advance_when_policy_disables_it(temp_db, test_time) -> None:
    from fund_control.kernel.policy import FundControlPolicy

    fc = FundControl(
        temp_db, policy=FundControlPolicy(auto_advance_fiscal_years=False), time_provider=test_time
    )
    fc.open_fiscal_year(2025, state="current")
    test_time.set_time(datetime(2025, 10, 2, tzinfo=timezone.utc))

    result = fc.tick()

    assert result.fiscal_year_transitions == []
    assert fc.get_current_fiscal_year()["year"] == 2025


# =============================================================================
# Appropriations
# =============================================================================


def test_establish_appropriation(fc: FundControl, fiscal_year: dict) -> None:
    approp = fc.establish_appropriation(
        fiscal_year["fiscal_year_id"], "OM-2025", "O&M", "OM", "100000.00"
    )

    assert approp["color_of_money"] == "OM"
    assert Decimal(approp["appropriated"]) == Decimal("100000.00")
    assert Decimal(approp["available"]) == Decimal("100000.00")
    assert approp["expiration_date"] == "2025-09-30"

    balance = fc.get_appropriation_balance(approp["appropriation_id"])
    assert balance["available"] == Decimal("100000.00")
    assert balance["expires_on"] == date(2025, 9, 30)


def test_procurement_defaults_to_three_years(fc: FundControl, fiscal_year: dict) -> None:
    approp = fc.establish_appropriation(
        fiscal_year["fiscal_year_id"], "PROC-2025", "Aircraft", ColorOfMoney.PROCUREMENT, "5000000"
    )
    assert approp["expiration_date"] == "2027-09-30"


def test_explicit_expiration_date(fc: FundControl, fiscal_year: dict) -> None:
    approp = fc.establish_appropriation(
        fiscal_year["fiscal_year_id"],
        "OM-X",
        "No-year",
        "OM",
        "1000.00",
        expiration_date=date(2030, 9, 30),
        restrictions=["no travel"],
    )
    assert approp["expiration_date"] == "2030-09-30"
    assert approp["restrictions"] == ["no travel"]


def test_expiration_before_fiscal_year_rejected(fc: FundControl, fiscal_year: dict) -> None:
    with pytest.raises(AppropriationExpired):
        fc.establish_appropriation(
            fiscal_year["fiscal_year_id"],
            "OM-OLD",
            "Stale",
            "OM",
            "1000.00",
            expiration_date=date(2024, 9, 30),
        )


def test_duplicate_appropriation_code(fc: FundControl, fiscal_year: dict, appropriation) -> None:
    with pytest.raises(DuplicateAppropriationCode):
        fc.establish_appropriation(fiscal_year["fiscal_year_id"], "OM-2025", "Again", "OM", "1")


@pytest.mark.parametrize("amount", ["0", "-1.00", "10.005", "100000000000000000000.00"])
def test_invalid_appropriation_amount(fc: FundControl, fiscal_year: dict, amount: str) -> None:
    with pytest.raises(InvalidAmount):
        fc.establish_appropriation(fiscal_year["fiscal_year_id"], "BAD", "Bad", "OM", amount)
    assert fc.list_appropriations() == []


def test_list_appropriations_by_fiscal_year(fc: FundControl) -> None:
    fy2025 = fc.open_fiscal_year(2025, state="current")
    fy2026 = fc.open_fiscal_year(2026)
    fc.establish_appropriation(fy2025["fiscal_year_id"], "A", "A", "OM", "10.00")
    fc.establish_appropriation(fy2026["fiscal_year_id"], "B", "B", "OM", "10.00")

    assert [a["code"] for a in fc.list_appropriations(fy2026["fiscal_year_id"])] == ["B"]
    assert len(fc.list_appropriations()) == 2


def test_check_fund_availability(fc: FundControl, appropriation: dict) -> None:
    check = fc.check_fund_availability(appropriation["appropriation_id"], "95000.00")

    assert check.available is True
    assert check.risk == AdaRisk.MEDIUM
    assert check.shortfall == Decimal("0.00")


@pytest.mark.parametrize("amount", ["1e30", "100000000000000000000.00"])
def test_check_fund_availability_rejects_huge_amounts(
    fc: FundControl, appropriation: dict, amount: str
) -> None:
    with pytest.raises(InvalidAmount):
        fc.check_fund_availability(appropriation["appropriation_id"], amount)


def test_locking_a_year_locks_its_appropriations(
    fc: FundControl, fiscal_year: dict, appropriation: dict
) -> None:
    budget = create_approved_budget(fc, fiscal_year["fiscal_year_id"])
    obligation = fc.create_obligation(
        budget["budget_id"], appropriation["appropriation_id"], "1000.00"
    )

    fc.transition_fiscal_year(fiscal_year["fiscal_year_id"], "locked", reason="closeout")

    assert fc.get_appropriation_balance(appropriation["appropriation_id"])["locked"] is True
    assert fc.list_appropriations()[0]["locked"] is True
    with pytest.raises(FiscalYearLocked):
        fc.create_obligation(budget["budget_id"], appropriation["appropriation_id"], "1.00")
    with pytest.raises(FiscalYearLocked):
        fc.cancel_obligation(obligation["obligation_id"])
    with pytest.raises(InvalidTransition):
        fc.establish_appropriation(fiscal_year["fiscal_year_id"], "LATE", "Late", "OM", "1.00")

    # Rejected operations left no trace
    assert fc.get_obligation(obligation["obligation_id"])["status"] == "active"
    assert fc.get_appropriation_balance(appropriation["appropriation_id"])["obligated"] == Decimal(
        "1000.00"
    )
