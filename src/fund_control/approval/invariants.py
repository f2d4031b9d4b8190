"""
Approval Module Invariants - The request state machine as data

ALLOWED_TRANSITIONS is the whole state machine. Every status change a
handler makes is checked against it, so an illegal move is a table miss,
not a forgotten ``if``.
"""

from decimal import Decimal

from fund_control.approval.models import ApprovalStep, RequestState, RequestStatus
from fund_control.kernel.errors import (
    ApprovalRequestNotFound,
    InvalidTransition,
    InvalidWorkflowDefinition,
    UnauthorizedApprover,
)

ALLOWED_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.DRAFT: frozenset({RequestStatus.SUBMITTED}),
    RequestStatus.SUBMITTED: frozenset({RequestStatus.UNDER_REVIEW}),
    RequestStatus.UNDER_REVIEW: frozenset(
        {
            RequestStatus.UNDER_REVIEW,  # next level
            RequestStatus.APPROVED,
            RequestStatus.REJECTED,
            RequestStatus.RETURNED,
        }
    ),
    RequestStatus.RETURNED: frozenset({RequestStatus.SUBMITTED}),
    RequestStatus.APPROVED: frozenset(),
    RequestStatus.REJECTED: frozenset(),
}


def validate_transition(request_id: str, current: RequestState, target: RequestStatus) -> None:
    """
    Raises:
        InvalidTransition: If the table has no edge current → target
    """
    if target not in ALLOWED_TRANSITIONS[current.status]:
        raise InvalidTransition(request_id, current=str(current), attempted=target.value)


def validate_workflow_steps(steps: list[ApprovalStep]) -> None:
    """
    Levels must be exactly 1..N in order

    Raises:
        InvalidWorkflowDefinition: On an empty list, gaps, duplicates or disorder
    """
    if not steps:
        raise InvalidWorkflowDefinition("a workflow needs at least one step")
    levels = [step.level for step in steps]
    if levels != list(range(1, len(steps) + 1)):
        raise InvalidWorkflowDefinition(f"levels must be 1..{len(steps)} in order, got {levels}")


def validate_request_exists(request_id: str, requests: dict[str, dict]) -> dict:
    request = requests.get(request_id)
    if request is None:
        raise ApprovalRequestNotFound(request_id)
    return request


def request_state(request: dict) -> RequestState:
    status = RequestStatus(request["status"])
    level = request["current_level"] if status == RequestStatus.UNDER_REVIEW else None
    return RequestState(status=status, level=level)


def current_step(request: dict) -> ApprovalStep:
    return ApprovalStep(**request["steps"][request["current_level"] - 1])


def validate_can_act(request: dict, approver_id: str, roles: set[str]) -> None:
    """
    Only the current level's approver may act

    When the level was delegated, only the delegate may act; otherwise any
    holder of the level's role.

    Raises:
        InvalidTransition: If the request is not under review
        UnauthorizedApprover: If the approver may not act on this level
    """
    state = request_state(request)
    if state.status != RequestStatus.UNDER_REVIEW:
        raise InvalidTransition(request["request_id"], current=str(state), attempted="act")

    step = current_step(request)
    assignee = request["assignee_id"]
    if assignee is not None:
        if approver_id != assignee:
            raise UnauthorizedApprover(
                request["request_id"], approver_id, step.level, f"delegate {assignee}"
            )
        return

    if step.required_role not in roles:
        raise UnauthorizedApprover(
            request["request_id"], approver_id, step.level, f"role {step.required_role}"
        )


def auto_approves(step: ApprovalStep, amount: Decimal) -> bool:
    return step.auto_approve_threshold is not None and amount <= step.auto_approve_threshold
