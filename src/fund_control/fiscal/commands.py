"""
Fiscal Module Commands - Intentions to change fiscal years and appropriations
"""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field

from fund_control.fiscal.models import ColorOfMoney, FiscalYearState


class OpenFiscalYear(BaseModel):
    """
    Open a fiscal year

    The date window is derived from the year. Opening a year directly as
    CURRENT moves the previous current year to PAST.
    """

    year: int = Field(..., ge=1900, le=2200)
    state: FiscalYearState = FiscalYearState.FUTURE


class TransitionFiscalYear(BaseModel):
    """
    Move a fiscal year forward (future → current → past → locked)

    Locking a year also locks every appropriation under it.
    """

    fiscal_year_id: str
    target_state: FiscalYearState
    reason: str = Field(default="manual", max_length=200)


class EstablishAppropriation(BaseModel):
    """
    Record an appropriation enacted for a fiscal year

    Requirements:
    - Fiscal year exists and is not locked
    - Code is unique
    - Amount is positive and in whole cents
    - Expiration (default: end of the color's availability period) does
      not precede the fiscal year's start
    """

    fiscal_year_id: str
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    color_of_money: ColorOfMoney
    amount: Decimal
    expiration_date: date | None = None
    restrictions: list[str] = Field(default_factory=list)
