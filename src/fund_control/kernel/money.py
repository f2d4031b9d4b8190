"""
Money helpers - Decimal amounts in, integer cents in the balance tables

Amounts travel through commands, events and projections as Decimal (stored
as strings in JSON payloads). The guarded balance tables use integer cents so
SQLite never does floating point arithmetic on money.
"""

from decimal import Decimal, InvalidOperation

from fund_control.kernel.errors import InvalidAmount

CENT = Decimal("0.01")

# Largest amount whose cents fit a SQLite INTEGER
MAX_CENTS = 2**63 - 1
MAX_AMOUNT = Decimal(MAX_CENTS).scaleb(-2)


def as_decimal(value: Decimal | str | int | float | None) -> Decimal:
    """Coerce a payload value to Decimal (None is zero)"""
    if value is None:
        return Decimal("0")
    return Decimal(str(value))


def validate_amount(amount: Decimal | str, *, allow_zero: bool = False) -> Decimal:
    """
    Check that an amount is positive and expressed in whole cents

    Raises:
        InvalidAmount: If the amount is not a finite number, not positive,
            has more than two fractional digits, or is too large for the ledger
    """
    try:
        value = as_decimal(amount)
    except InvalidOperation as e:
        raise InvalidAmount(amount, "not a number") from e

    if not value.is_finite():
        raise InvalidAmount(amount, "not a finite number")
    if value < 0 or (value == 0 and not allow_zero):
        raise InvalidAmount(amount, "must be positive")
    if value > MAX_AMOUNT:
        raise InvalidAmount(amount, f"exceeds the ledger maximum of {MAX_AMOUNT}")
    try:
        quantized = value.quantize(CENT)
    except InvalidOperation as e:
        raise InvalidAmount(amount, "out of range") from e
    if value != quantized:
        raise InvalidAmount(amount, "more precise than one cent")
    return value


def to_cents(amount: Decimal) -> int:
    return int((as_decimal(amount) * 100).to_integral_value())


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)
