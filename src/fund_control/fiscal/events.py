"""
Fiscal Module Events - Domain events for fiscal years and appropriations

Obligating and releasing funds is not recorded here: the appropriation's
obligated total is derived from ObligationCreated / ObligationCancelled.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from fund_control.fiscal.models import AdaRisk, ColorOfMoney, FiscalYearState


class FiscalYearOpened(BaseModel):
    fiscal_year_id: str
    year: int
    start_date: date
    end_date: date
    state: FiscalYearState
    opened_at: datetime
    opened_by: str | None


class FiscalYearTransitioned(BaseModel):
    """
    A fiscal year moved forward in its lifecycle

    reason is "manual", "calendar" (tick) or "superseded" (another year
    became current).
    """

    fiscal_year_id: str
    year: int
    from_state: FiscalYearState
    to_state: FiscalYearState
    reason: str
    transitioned_at: datetime
    transitioned_by: str | None


class AppropriationEstablished(BaseModel):
    appropriation_id: str
    fiscal_year_id: str
    code: str
    name: str
    color_of_money: ColorOfMoney
    amount: Decimal
    expiration_date: date
    restrictions: list[str] = Field(default_factory=list)
    established_at: datetime
    established_by: str | None


class AppropriationBalanceLow(BaseModel):
    """
    Tick warning: an appropriation is running out of headroom

    Emitted while remaining / appropriated is below the MEDIUM band.
    """

    appropriation_id: str
    detected_at: datetime
    appropriated: Decimal
    obligated: Decimal
    available: Decimal
    remaining_ratio: Decimal
    risk: AdaRisk


class AppropriationOverobligationDetected(BaseModel):
    """
    Tick alarm: the recorded obligations exceed the appropriation

    This should NEVER trigger - the guarded reservation makes it
    impossible. If it does, the event log and the balance table disagree.
    """

    appropriation_id: str
    detected_at: datetime
    appropriated: Decimal
    obligated: Decimal
    excess: Decimal
