"""
Approval Module - Strictly sequential multi-level approval

Workflows are templates of steps (role, auto-approval threshold, due date).
A request moves through them one level at a time; nobody can approve
level 2 while the request sits at level 1.

Fun fact: Budget routing slips with a signature block per office predate
computers by a century - this engine just keeps the slip honest!
"""

from fund_control.approval.commands import WorkflowBuilder
from fund_control.approval.models import (
    Approval,
    ApprovalAction,
    ApprovalStep,
    ApprovalWorkflow,
    RequestState,
    RequestStatus,
)

__all__ = [
    "Approval",
    "ApprovalAction",
    "ApprovalStep",
    "ApprovalWorkflow",
    "RequestState",
    "RequestStatus",
    "WorkflowBuilder",
]
