"""
Budget Module Events - Domain events for budgets and versions

All events of one budget, including its versions, share the budget's
stream; the stream version orders edits, submissions and commits.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from fund_control.budget.models import BudgetStatus, VersionContent, VersionSource


class BudgetCreated(BaseModel):
    """A budget was created; its draft is version 1"""

    budget_id: str
    organization: str
    fiscal_year_id: str
    workflow_id: str | None
    content: VersionContent
    reconciliation_warnings: list[str] = Field(default_factory=list)
    created_at: datetime
    created_by: str | None


class BudgetDraftRevised(BaseModel):
    """The never-approved draft (current version) was edited in place"""

    budget_id: str
    version_number: int
    content: VersionContent
    reconciliation_warnings: list[str] = Field(default_factory=list)
    revised_at: datetime
    revised_by: str | None


class BudgetVersionCreated(BaseModel):
    """
    A pending version was created

    base_version is the current version it was cloned from.
    rolled_back_from is set when the content duplicates an earlier version.
    """

    budget_id: str
    version_number: int
    base_version: int
    source: VersionSource
    rolled_back_from: int | None = None
    content: VersionContent
    reconciliation_warnings: list[str] = Field(default_factory=list)
    created_at: datetime
    created_by: str | None


class BudgetVersionDiscarded(BaseModel):
    """A pending version was dropped (rejected, returned or superseded)"""

    budget_id: str
    version_number: int
    reason: str
    discarded_at: datetime


class BudgetVersionCommitted(BaseModel):
    """
    A pending version became current

    The previous current version is frozen and the budget's approved
    amount (and ceiling) becomes this version's requested amount.
    """

    budget_id: str
    version_number: int
    previous_version: int
    source: str  # approval | rollback
    approved_amount: Decimal
    request_id: str | None = None
    committed_at: datetime
    committed_by: str | None


class BudgetStatusChanged(BaseModel):
    budget_id: str
    from_status: BudgetStatus
    to_status: BudgetStatus
    request_id: str | None = None
    changed_at: datetime


class LineItemReconciliationWarning(BaseModel):
    """Tick warning: the authorized version's line items don't add up"""

    budget_id: str
    version_number: int
    detected_at: datetime
    requested_amount: Decimal
    line_item_total: Decimal
    difference: Decimal
