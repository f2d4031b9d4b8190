"""
Approval Module Commands - Intentions to define workflows and act on requests
"""

from decimal import Decimal

from pydantic import BaseModel, Field

from fund_control.approval.models import ApprovalAction, ApprovalStep


class DefineWorkflow(BaseModel):
    """
    Define an approval workflow template

    Requirements:
    - At least one step
    - Levels are 1..N with no gaps, in order
    """

    name: str = Field(..., min_length=1, max_length=200)
    entity_type: str = Field(default="budget", pattern="^budget$")
    steps: list[ApprovalStep] = Field(..., min_length=1)


class SubmitForApproval(BaseModel):
    """Submit a budget's pending version into its approval workflow"""

    entity_id: str
    entity_type: str = Field(default="budget", pattern="^budget$")


class ProcessApproval(BaseModel):
    """
    Act on the current level of a request

    Delegation has its own command; here action is approved, rejected
    or returned.
    """

    request_id: str
    approver_id: str
    action: ApprovalAction
    comments: str | None = Field(default=None, max_length=4000)


class DelegateApproval(BaseModel):
    """Reassign the current level to another approver"""

    request_id: str
    from_approver_id: str
    to_approver_id: str = Field(..., min_length=1)
    comments: str | None = Field(default=None, max_length=4000)


class WorkflowBuilder:
    """
    Fluent construction of workflow definitions

    Example:
        >>> command = (
        ...     WorkflowBuilder("Standard budget review")
        ...     .step("budget_analyst", auto_approve_threshold=Decimal("5000"))
        ...     .step("comptroller", due_in_days=10)
        ...     .build()
        ... )
    """

    def __init__(self, name: str, entity_type: str = "budget") -> None:
        self.name = name
        self.entity_type = entity_type
        self._steps: list[ApprovalStep] = []

    def step(
        self,
        required_role: str,
        auto_approve_threshold: Decimal | None = None,
        due_in_days: int | None = None,
    ) -> "WorkflowBuilder":
        self._steps.append(
            ApprovalStep(
                level=len(self._steps) + 1,
                required_role=required_role,
                auto_approve_threshold=auto_approve_threshold,
                due_in_days=due_in_days,
            )
        )
        return self

    def build(self) -> DefineWorkflow:
        return DefineWorkflow(name=self.name, entity_type=self.entity_type, steps=self._steps)
