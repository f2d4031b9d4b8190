"""
Budget Module Commands - Intentions to change budgets and their versions
"""

from decimal import Decimal

from pydantic import BaseModel, Field

from fund_control.budget.models import LineItemSpec, VersionChanges


class CreateBudget(BaseModel):
    """
    Create a budget with its first (draft) version

    The draft can be revised freely until it is first submitted for
    approval. workflow_id pins an approval workflow; without it the
    default workflow for budgets is used at submission time.
    """

    organization: str = Field(..., min_length=1, max_length=200)
    fiscal_year_id: str
    title: str = Field(..., min_length=1, max_length=200)
    requested_amount: Decimal
    line_items: list[LineItemSpec] = Field(default_factory=list)
    justification: str = Field(default="", max_length=4000)
    workflow_id: str | None = None


class ReviseDraft(BaseModel):
    """Edit the draft of a budget that has never been approved"""

    budget_id: str
    changes: VersionChanges


class CreatePendingVersion(BaseModel):
    """
    Propose a change to a budget

    Requirements:
    - expected_version equals the budget's current version (optimistic lock)
    - No approval request is open for the budget
    """

    budget_id: str
    changes: VersionChanges
    expected_version: int = Field(..., ge=1)


class CommitVersion(BaseModel):
    """
    Make a pending version current

    Issued by the approval engine on final approval and by admin rollback;
    never directly by callers.
    """

    budget_id: str
    version_number: int = Field(..., ge=1)
    expected_version: int = Field(..., ge=1)
    source: str = Field(default="approval", pattern="^(approval|rollback)$")


class RollbackBudget(BaseModel):
    """
    Restore the content of an earlier committed version as a new version

    expected_version is optional; when given it must match the current
    version.
    """

    budget_id: str
    target_version: int = Field(..., ge=1)
    expected_version: int | None = Field(default=None, ge=1)
