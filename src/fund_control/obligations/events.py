"""
Obligation Module Events - Domain events for obligations and expenditures

Expenditures are recorded on their obligation's stream, so two payments
against the same obligation are ordered by stream version.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel

from fund_control.obligations.models import BonaFideNeedException


class ObligationCreated(BaseModel):
    """
    Funds were obligated

    bona_fide_need_exception is True when the obligation date fell outside
    the appropriation's fiscal year and a justification was accepted.
    """

    obligation_id: str
    budget_id: str
    appropriation_id: str
    fiscal_year_id: str
    line_item_id: str | None
    amount: Decimal
    obligation_date: date
    vendor: str | None
    description: str
    bona_fide_need_exception: bool
    exception_type: BonaFideNeedException | None
    justification: str | None
    created_at: datetime
    created_by: str | None


class ObligationCancelled(BaseModel):
    obligation_id: str
    budget_id: str
    appropriation_id: str
    line_item_id: str | None
    amount: Decimal
    reason: str
    cancelled_at: datetime
    cancelled_by: str | None


class ExpenditureRecorded(BaseModel):
    expenditure_id: str
    obligation_id: str
    budget_id: str
    appropriation_id: str
    line_item_id: str | None
    amount: Decimal
    expenditure_date: date
    description: str
    recorded_at: datetime
    recorded_by: str | None
