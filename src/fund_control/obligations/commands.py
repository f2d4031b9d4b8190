"""
Obligation Module Commands - Intentions to commit and spend funds
"""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field

from fund_control.obligations.models import BonaFideNeedException


class CreateObligation(BaseModel):
    """
    Obligate funds against an appropriation on behalf of a budget

    Requirements:
    - Budget has an approved version
    - Appropriation exists and has not expired on the obligation date
    - Obligation date falls within the appropriation's fiscal year, or a
      written justification is supplied (bona fide need override)
    - Amount fits in the appropriation and the budget's ceiling
    """

    budget_id: str
    appropriation_id: str
    amount: Decimal
    obligation_date: date
    line_item_id: str | None = None
    vendor: str | None = Field(default=None, max_length=200)
    description: str = Field(default="", max_length=1000)
    justification: str | None = Field(default=None, max_length=4000)
    exception_type: BonaFideNeedException | None = None


class CancelObligation(BaseModel):
    """
    Deobligate an obligation that has no expenditures

    The funds return to the appropriation and the budget ceiling.
    """

    obligation_id: str
    reason: str = Field(default="", max_length=1000)


class CreateExpenditure(BaseModel):
    """
    Record a disbursement against an active obligation

    The expenditure may not exceed what remains on the obligation and may
    not predate it.
    """

    obligation_id: str
    amount: Decimal
    expenditure_date: date
    description: str = Field(default="", max_length=1000)
