"""
Tests for money helpers and the fund control policy

Amounts are Decimal everywhere and integer cents in the balance tables;
the policy validates its own bands so a typo in a JSON file can't invert
the risk classification.
"""

import json
from decimal import Decimal

import pytest
from pydantic import ValidationError

from fund_control.kernel.errors import InvalidAmount
from fund_control.kernel.money import (
    MAX_AMOUNT,
    MAX_CENTS,
    as_decimal,
    from_cents,
    to_cents,
    validate_amount,
)
from fund_control.kernel.policy import FundControlPolicy


def test_validate_amount_accepts_whole_cents() -> None:
    assert validate_amount("60000.00") == Decimal("60000.00")
    assert validate_amount(Decimal("0.01")) == Decimal("0.01")
    assert validate_amount("250") == Decimal("250")


@pytest.mark.parametrize("amount", ["0", "-5.00", "10.001", "NaN", "Infinity", "abc"])
def test_validate_amount_rejects(amount: str) -> None:
    with pytest.raises(InvalidAmount) as exc_info:
        validate_amount(amount)
    assert exc_info.value.amount == amount


def test_validate_amount_allows_zero_when_asked() -> None:
    assert validate_amount("0.00", allow_zero=True) == Decimal("0.00")


@pytest.mark.parametrize("amount", ["1e30", "100000000000000000000.00", "92233720368547758.08"])
def test_validate_amount_rejects_amounts_beyond_the_ledger(amount: str) -> None:
    with pytest.raises(InvalidAmount) as exc_info:
        validate_amount(amount)
    assert exc_info.value.amount == amount


def test_largest_amount_fits_the_ledger() -> None:
    assert validate_amount(MAX_AMOUNT) == Decimal("92233720368547758.07")
    assert to_cents(MAX_AMOUNT) == MAX_CENTS


def test_cents_conversion() -> None:
    assert to_cents(Decimal("60000.00")) == 6_000_000
    assert to_cents(Decimal("0.07")) == 7
    assert from_cents(6_000_000) == Decimal("60000.00")
    assert str(from_cents(5)) == "0.05"


def test_as_decimal_treats_none_as_zero() -> None:
    assert as_decimal(None) == Decimal("0")
    assert as_decimal("12.50") == Decimal("12.50")


def test_default_policy() -> None:
    policy = FundControlPolicy()
    assert policy.ada_high_risk_ratio == Decimal("0.05")
    assert policy.ada_medium_risk_ratio == Decimal("0.10")
    assert policy.variance_unfavorable_percent == Decimal("10")
    assert policy.variance_favorable_percent == Decimal("-10")
    assert policy.variance_critical_percent == Decimal("20")
    assert policy.admin_role == "admin"


def test_policy_rejects_inverted_risk_bands() -> None:
    with pytest.raises(ValidationError):
        FundControlPolicy(ada_high_risk_ratio=Decimal("0.20"), ada_medium_risk_ratio=Decimal("0.10"))


def test_policy_rejects_critical_below_unfavorable() -> None:
    with pytest.raises(ValidationError):
        FundControlPolicy(
            variance_unfavorable_percent=Decimal("15"), variance_critical_percent=Decimal("12")
        )


def test_policy_is_frozen() -> None:
    policy = FundControlPolicy()
    with pytest.raises(ValidationError):
        policy.admin_role = "root"  # type: ignore[misc]


def test_policy_from_file(tmp_path) -> None:
    path = tmp_path / "policy.json"
    path.write_text(json.dumps({"admin_role": "budget_officer", "enforce_budget_ceiling": False}))

    policy = FundControlPolicy.from_file(path)
    assert policy.admin_role == "budget_officer"
    assert policy.enforce_budget_ceiling is False
    assert policy.ada_high_risk_ratio == Decimal("0.05")
