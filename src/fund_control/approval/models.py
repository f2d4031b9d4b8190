"""
Approval Domain Models - Workflow templates and request state

Routing is data, not code: a workflow is an ordered list of steps, each
naming the role that must act and an optional auto-approval threshold.
New workflows need no code change.

Request state is a tagged value:

    draft | submitted | under_review(level) | approved | rejected | returned

``level`` exists only while under review; RequestState enforces that.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field, model_validator


class RequestStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    RETURNED = "returned"


class ApprovalAction(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    RETURNED = "returned"
    DELEGATED = "delegated"


class ApprovalStep(BaseModel):
    """
    One level of a workflow

    auto_approve_threshold: amounts at or below it pass this level without
        a human approver
    due_in_days: advisory deadline, reported by the tick when exceeded
    """

    level: int = Field(..., ge=1)
    required_role: str = Field(..., min_length=1, max_length=100)
    auto_approve_threshold: Decimal | None = Field(default=None, ge=0)
    due_in_days: int | None = Field(default=None, ge=1, le=365)


class ApprovalWorkflow(BaseModel):
    workflow_id: str
    name: str
    entity_type: str = "budget"
    steps: list[ApprovalStep]
    defined_at: datetime


class RequestState(BaseModel):
    """Tagged request state - ``level`` is present iff under review"""

    status: RequestStatus
    level: int | None = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _level_matches_status(self) -> "RequestState":
        if (self.status == RequestStatus.UNDER_REVIEW) != (self.level is not None):
            raise ValueError("level is required under review and forbidden otherwise")
        return self

    def __str__(self) -> str:
        if self.level is not None:
            return f"{self.status.value}({self.level})"
        return self.status.value


class Approval(BaseModel):
    """One recorded action on a request (approver_id None = automatic)"""

    approver_id: str | None
    level: int
    action: ApprovalAction
    auto: bool = False
    delegated_to: str | None = None
    comments: str | None = None
    recorded_at: datetime

