"""
Obligation Domain Models - Binding commitments and the payments against them

An obligation reserves appropriated funds for a specific purchase; an
expenditure is an actual disbursement against it.

Invariants enforced:
- sum(active obligations) <= appropriation (fund ledger)
- sum(expenditures) <= obligation amount (obligation balances)
"""

from datetime import date
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field


class ObligationStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"


class BonaFideNeedException(str, Enum):
    """
    Recognised reasons an obligation may fall outside its fiscal year

    - SEVERABLE_SERVICE: twelve-month service contract crossing the year end
    - STOCK_INVENTORY: replenishing stock consumed during the year
    - LEAD_TIME: production lead time pushes delivery into the next year
    - MULTIYEAR_AUTHORITY: statute allows multiyear obligation
    - CONTINUING_RESOLUTION: funding delayed by a continuing resolution
    """

    SEVERABLE_SERVICE = "SEVERABLE_SERVICE"
    STOCK_INVENTORY = "STOCK_INVENTORY"
    LEAD_TIME = "LEAD_TIME"
    MULTIYEAR_AUTHORITY = "MULTIYEAR_AUTHORITY"
    CONTINUING_RESOLUTION = "CONTINUING_RESOLUTION"


class Obligation(BaseModel):
    obligation_id: str
    budget_id: str
    appropriation_id: str
    fiscal_year_id: str
    line_item_id: str | None = None
    amount: Decimal = Field(gt=0)
    obligation_date: date
    vendor: str | None = None
    description: str = ""
    bona_fide_need_exception: bool = False
    exception_type: BonaFideNeedException | None = None
    justification: str | None = None
    status: ObligationStatus = ObligationStatus.ACTIVE
    expended: Decimal = Field(default=Decimal("0"), ge=0)

    def unliquidated(self) -> Decimal:
        """Obligated but not yet paid"""
        return self.amount - self.expended


class Expenditure(BaseModel):
    expenditure_id: str
    obligation_id: str
    budget_id: str
    amount: Decimal = Field(gt=0)
    expenditure_date: date
    description: str = ""
