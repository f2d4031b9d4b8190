"""
Fiscal Domain Models - Fiscal years, appropriations and fund checks

Key concepts:
- FiscalYear: named by the calendar year it ends in (FY2025 = Oct 1 2024
  through Sep 30 2025), moving forward through future → current → past → locked
- ColorOfMoney: the legal category of an appropriation, which fixes how many
  fiscal years it stays available for new obligations
- AdaRisk: how close an obligation brings an appropriation to an
  Anti-Deficiency Act violation
"""

from datetime import date
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field


class FiscalYearState(str, Enum):
    """
    Fiscal year lifecycle

    FUTURE → CURRENT → PAST → LOCKED (forward only)

    Exactly one fiscal year is CURRENT. LOCKED years are closed books:
    their appropriations accept no reservations and no releases.
    """

    FUTURE = "future"
    CURRENT = "current"
    PAST = "past"
    LOCKED = "locked"

    def rank(self) -> int:
        return list(FiscalYearState).index(self)


class ColorOfMoney(str, Enum):
    """
    Appropriation category

    Each color carries a period of availability measured in fiscal years:
    one-year O&M money expires at the end of its own fiscal year, while
    procurement money stays available for three.
    """

    RDTE = "RDTE"
    PROCUREMENT = "PROCUREMENT"
    OM = "OM"
    OM_RESERVE = "OM_RESERVE"
    OM_GUARD = "OM_GUARD"
    MILPERS = "MILPERS"
    MILCON = "MILCON"
    FAMILY_HOUSING = "FAMILY_HOUSING"

    def availability_years(self) -> int:
        """Number of fiscal years the appropriation may incur new obligations"""
        return {
            ColorOfMoney.RDTE: 2,
            ColorOfMoney.PROCUREMENT: 3,
            ColorOfMoney.OM: 1,
            ColorOfMoney.OM_RESERVE: 1,
            ColorOfMoney.OM_GUARD: 1,
            ColorOfMoney.MILPERS: 1,
            ColorOfMoney.MILCON: 5,
            ColorOfMoney.FAMILY_HOUSING: 2,
        }[self]


class AdaRisk(str, Enum):
    """
    Anti-Deficiency Act risk of a proposed obligation

    LOW: plenty of headroom left afterwards
    MEDIUM: under 10% of the appropriation would remain
    HIGH: under 5% would remain
    CRITICAL: the request does not fit at all
    """

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class FiscalYear(BaseModel):
    fiscal_year_id: str
    year: int
    start_date: date
    end_date: date
    state: FiscalYearState


class Appropriation(BaseModel):
    """
    A legally authorized ceiling on obligations

    Invariant enforced by the fund ledger: obligated <= appropriated
    """

    appropriation_id: str
    fiscal_year_id: str
    code: str
    name: str
    color_of_money: ColorOfMoney
    appropriated: Decimal = Field(gt=0)
    obligated: Decimal = Field(default=Decimal("0"), ge=0)
    expiration_date: date
    restrictions: list[str] = Field(default_factory=list)

    def available(self) -> Decimal:
        return self.appropriated - self.obligated

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "appropriation_id": "approp-om-25",
                    "fiscal_year_id": "fy-2025",
                    "code": "2020-OM-25",
                    "name": "Operation and Maintenance, Army",
                    "color_of_money": "OM",
                    "appropriated": "100000.00",
                    "obligated": "60000.00",
                    "expiration_date": "2025-09-30",
                    "restrictions": [],
                }
            ]
        }
    }


class FundsCheck(BaseModel):
    """
    Result of an availability check

    ``available`` is True when the requested amount fits; ``shortfall`` is
    how much more headroom the request would need (zero when it fits).
    ``blocked_reason`` is set when the appropriation cannot be obligated at
    all (expired or locked), regardless of balance.
    """

    appropriation_id: str
    requested: Decimal
    available: bool
    available_balance: Decimal
    shortfall: Decimal
    risk: AdaRisk
    blocked_reason: str | None = None
