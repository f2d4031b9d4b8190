"""
Tests for the Fund Ledger - guarded appropriation and budget balances

The ledger is where an Anti-Deficiency Act violation would happen, so these
tests hammer the one property that matters: obligated never exceeds
appropriated, however many writers race for the last dollar.

Fun fact: 31 U.S.C. 1341 carries criminal penalties - up to two years in
prison for knowingly obligating money that isn't there!
"""

import threading
from datetime import date
from decimal import Decimal

import pytest

from fund_control.fiscal.ledger import FundLedger
from fund_control.fiscal.models import AdaRisk
from fund_control.kernel.errors import (
    AppropriationExpired,
    AppropriationNotFound,
    BudgetCeilingExceeded,
    BudgetNotAuthorized,
    CeilingBelowObligations,
    FiscalYearLocked,
    FundsUnavailable,
    InvalidAmount,
    InvariantViolation,
)
from fund_control.kernel.event_store import SQLiteEventStore
from fund_control.kernel.policy import FundControlPolicy
from fund_control.kernel.time import TestTimeProvider


@pytest.fixture
def ledger(
    event_store: SQLiteEventStore, test_time: TestTimeProvider, policy: FundControlPolicy
) -> FundLedger:
    ledger = FundLedger(event_store, test_time, policy)
    ledger.open_appropriation("approp-1", "fy-2025", Decimal("100000.00"), date(2025, 9, 30))
    return ledger


def test_reserve_reduces_available(ledger: FundLedger) -> None:
    available = ledger.reserve("approp-1", Decimal("60000.00"))

    assert available == Decimal("40000.00")
    balance = ledger.get_balance("approp-1")
    assert balance["appropriated"] == Decimal("100000.00")
    assert balance["obligated"] == Decimal("60000.00")
    assert balance["available"] == Decimal("40000.00")
    assert balance["locked"] is False


def test_reserve_exact_remaining_balance(ledger: FundLedger) -> None:
    ledger.reserve("approp-1", Decimal("60000.00"))
    assert ledger.reserve("approp-1", Decimal("40000.00")) == Decimal("0.00")


def test_reserve_beyond_available_is_rejected_with_shortfall(ledger: FundLedger) -> None:
    """Scenario: $60,000 obligated of $100,000; $50,000 more needs $10,000 we don't have"""
    ledger.reserve("approp-1", Decimal("60000.00"))

    with pytest.raises(FundsUnavailable) as exc_info:
        ledger.reserve("approp-1", Decimal("50000.00"))

    assert exc_info.value.requested == Decimal("50000.00")
    assert exc_info.value.available == Decimal("40000.00")
    assert exc_info.value.shortfall == Decimal("10000.00")
    # Nothing changed
    assert ledger.get_balance("approp-1")["obligated"] == Decimal("60000.00")


def test_reserve_rejects_non_positive_and_sub_cent(ledger: FundLedger) -> None:
    with pytest.raises(InvalidAmount):
        ledger.reserve("approp-1", Decimal("0"))
    with pytest.raises(InvalidAmount):
        ledger.reserve("approp-1", Decimal("1.005"))


def test_reserve_unknown_appropriation(ledger: FundLedger) -> None:
    with pytest.raises(AppropriationNotFound):
        ledger.reserve("nope", Decimal("1.00"))


def test_release_returns_funds(ledger: FundLedger) -> None:
    ledger.reserve("approp-1", Decimal("60000.00"))
    assert ledger.release("approp-1", Decimal("60000.00")) == Decimal("100000.00")


def test_release_more_than_obligated_is_rejected(ledger: FundLedger) -> None:
    ledger.reserve("approp-1", Decimal("100.00"))
    with pytest.raises(InvariantViolation):
        ledger.release("approp-1", Decimal("100.01"))
    assert ledger.get_balance("approp-1")["obligated"] == Decimal("100.00")


def test_locked_fiscal_year_blocks_reserve_and_release(ledger: FundLedger) -> None:
    ledger.reserve("approp-1", Decimal("100.00"))
    assert ledger.lock_fiscal_year("fy-2025") == 1

    with pytest.raises(FiscalYearLocked) as exc_info:
        ledger.reserve("approp-1", Decimal("1.00"))
    assert exc_info.value.fiscal_year_id == "fy-2025"

    with pytest.raises(FiscalYearLocked):
        ledger.release("approp-1", Decimal("100.00"))

    balance = ledger.get_balance("approp-1")
    assert balance["locked"] is True
    assert balance["obligated"] == Decimal("100.00")


def test_locked_is_a_kind_of_expired(ledger: FundLedger) -> None:
    ledger.lock_fiscal_year("fy-2025")
    with pytest.raises(AppropriationExpired):
        ledger.reserve("approp-1", Decimal("1.00"))


def test_expired_appropriation_rejects_reservations(
    ledger: FundLedger, test_time: TestTimeProvider
) -> None:
    test_time.set_time(test_time.now().replace(year=2025, month=10, day=1))

    with pytest.raises(AppropriationExpired) as exc_info:
        ledger.reserve("approp-1", Decimal("1.00"))
    assert exc_info.value.expiration_date == "2025-09-30"


def test_expiration_day_itself_is_still_available(
    ledger: FundLedger, test_time: TestTimeProvider
) -> None:
    test_time.set_time(test_time.now().replace(month=9, day=30))
    assert ledger.reserve("approp-1", Decimal("1.00")) == Decimal("99999.00")


@pytest.mark.parametrize(
    "requested, risk, fits",
    [
        ("30000.00", AdaRisk.LOW, True),  # 10% remains
        ("32000.00", AdaRisk.MEDIUM, True),  # 8% remains
        ("36000.00", AdaRisk.HIGH, True),  # 4% remains
        ("50000.00", AdaRisk.CRITICAL, False),  # does not fit
    ],
)
def test_check_availability_risk_bands(
    ledger: FundLedger, requested: str, risk: AdaRisk, fits: bool
) -> None:
    ledger.reserve("approp-1", Decimal("60000.00"))

    check = ledger.check_availability("approp-1", Decimal(requested))

    assert check.risk == risk
    assert check.available is fits
    assert check.available_balance == Decimal("40000.00")
    assert check.shortfall == max(Decimal(requested) - Decimal("40000.00"), Decimal("0.00"))


def test_check_availability_reserves_nothing(ledger: FundLedger) -> None:
    ledger.check_availability("approp-1", Decimal("1000.00"))
    assert ledger.get_balance("approp-1")["obligated"] == Decimal("0.00")


def test_check_availability_reports_locked(ledger: FundLedger) -> None:
    ledger.lock_fiscal_year("fy-2025")

    check = ledger.check_availability("approp-1", Decimal("1.00"))

    assert check.available is False
    assert check.risk == AdaRisk.CRITICAL
    assert check.blocked_reason == "fiscal year locked"


def test_check_availability_unknown_appropriation(ledger: FundLedger) -> None:
    with pytest.raises(AppropriationNotFound):
        ledger.check_availability("nope", Decimal("1.00"))


def test_budget_ceiling(ledger: FundLedger) -> None:
    ledger.authorize_budget("budget-1", Decimal("50000.00"))
    ledger.reserve_budget("budget-1", "approp-1", Decimal("30000.00"))

    with pytest.raises(BudgetCeilingExceeded) as exc_info:
        ledger.reserve_budget("budget-1", "approp-1", Decimal("25000.00"))

    assert exc_info.value.budget_id == "budget-1"
    assert exc_info.value.shortfall == Decimal("5000.00")
    assert isinstance(exc_info.value, FundsUnavailable)
    assert ledger.get_budget_balance("budget-1")["available"] == Decimal("20000.00")


def test_budget_without_ceiling_cannot_be_reserved(ledger: FundLedger) -> None:
    with pytest.raises(BudgetNotAuthorized):
        ledger.reserve_budget("budget-x", "approp-1", Decimal("1.00"))


def test_new_ceiling_may_not_drop_below_obligations(ledger: FundLedger) -> None:
    ledger.authorize_budget("budget-1", Decimal("50000.00"))
    ledger.reserve_budget("budget-1", "approp-1", Decimal("30000.00"))

    with pytest.raises(CeilingBelowObligations):
        ledger.authorize_budget("budget-1", Decimal("20000.00"))

    ledger.authorize_budget("budget-1", Decimal("30000.00"))
    assert ledger.get_budget_balance("budget-1")["ceiling"] == Decimal("30000.00")


def test_release_budget(ledger: FundLedger) -> None:
    ledger.authorize_budget("budget-1", Decimal("50000.00"))
    ledger.reserve_budget("budget-1", "approp-1", Decimal("30000.00"))
    ledger.release_budget("budget-1", Decimal("30000.00"))

    assert ledger.get_budget_balance("budget-1")["obligated"] == Decimal("0.00")
    with pytest.raises(InvariantViolation):
        ledger.release_budget("budget-1", Decimal("0.01"))


def test_concurrent_reservations_never_overobligate(
    temp_db, test_time: TestTimeProvider
) -> None:
    """
    Twenty writers with their own connections race for $100,000 in $7,000
    slices: exactly fourteen fit, the rest are turned away.
    """
    policy = FundControlPolicy(db_busy_timeout_seconds=30.0, write_lock_attempts=10)
    setup = FundLedger(SQLiteEventStore(str(temp_db)), test_time, policy)
    setup.open_appropriation("approp-1", "fy-2025", Decimal("100000.00"), date(2025, 9, 30))

    accepted: list[Decimal] = []
    rejected: list[Exception] = []
    lock = threading.Lock()

    def writer() -> None:
        ledger = FundLedger(
            SQLiteEventStore(
                str(temp_db),
                busy_timeout_seconds=policy.db_busy_timeout_seconds,
                write_lock_attempts=policy.write_lock_attempts,
            ),
            test_time,
            policy,
        )
        try:
            ledger.reserve("approp-1", Decimal("7000.00"))
            with lock:
                accepted.append(Decimal("7000.00"))
        except FundsUnavailable as e:
            with lock:
                rejected.append(e)

    threads = [threading.Thread(target=writer) for _ in range(20)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    balance = setup.get_balance("approp-1")
    assert len(accepted) == 14
    assert len(rejected) == 6
    assert balance["obligated"] == Decimal("98000.00")
    assert balance["obligated"] <= balance["appropriated"]
