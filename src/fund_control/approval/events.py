"""
Approval Module Events - Domain events for workflows and requests

A request's stream reads like its paper routing slip:

    ApprovalRequestSubmitted
    ApprovalLevelEntered(1)
    ApprovalActionRecorded(1, approved, auto)
    ApprovalLevelEntered(2)
    ApprovalActionRecorded(2, delegated)
    ApprovalActionRecorded(2, approved)
    ApprovalRequestCompleted(approved)
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from fund_control.approval.models import ApprovalAction, ApprovalStep, RequestStatus


class ApprovalWorkflowDefined(BaseModel):
    workflow_id: str
    name: str
    entity_type: str
    steps: list[ApprovalStep]
    defined_at: datetime
    defined_by: str | None


class ApprovalRequestSubmitted(BaseModel):
    """
    A request entered the workflow

    steps is a snapshot of the workflow at submission; later workflow
    changes don't affect requests in flight. resubmission is True when a
    returned request was sent back in.
    """

    request_id: str
    workflow_id: str
    steps: list[ApprovalStep]
    entity_type: str
    entity_id: str
    version_number: int
    amount: Decimal
    submitted_by: str | None
    submitted_at: datetime
    resubmission: bool = False


class ApprovalLevelEntered(BaseModel):
    request_id: str
    level: int
    required_role: str
    due_at: datetime | None
    entered_at: datetime


class ApprovalActionRecorded(BaseModel):
    request_id: str
    level: int
    action: ApprovalAction
    approver_id: str | None
    auto: bool = False
    delegated_to: str | None = None
    comments: str | None = None
    recorded_at: datetime


class ApprovalRequestCompleted(BaseModel):
    request_id: str
    entity_type: str
    entity_id: str
    version_number: int
    outcome: RequestStatus
    completed_at: datetime


class ApprovalStepOverdue(BaseModel):
    """Tick warning: a level has waited past its advisory due date"""

    request_id: str
    entity_id: str
    level: int
    required_role: str
    assignee_id: str | None
    due_at: datetime
    detected_at: datetime
    days_overdue: int
