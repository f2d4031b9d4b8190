"""
Tests for the approval workflow engine

Routing is data: each workflow level names the role that must act and an
optional auto-approval threshold. These tests walk requests through the
state machine (draft → submitted → under_review(level) → approved |
rejected | returned) and check that only the right people can move them.
"""

import pytest
from pydantic import ValidationError

from fund_control import FundControl
from fund_control.approval.invariants import ALLOWED_TRANSITIONS
from fund_control.approval.models import RequestStatus
from fund_control.integrations import InMemoryNotificationDispatcher, StaticRoleDirectory
from fund_control.kernel.errors import (
    ApprovalRequestNotFound,
    InvalidTransition,
    InvalidWorkflowDefinition,
    UnauthorizedApprover,
)
from fund_control.kernel.time import TestTimeProvider
from tests.helpers import two_level_steps


def _submit(fc: FundControl, fiscal_year: dict, amount: str) -> tuple[dict, dict]:
    budget = fc.create_budget("Ops", fiscal_year["fiscal_year_id"], "Base", amount)
    request = fc.submit_for_approval(budget["budget_id"], actor_id="alice")
    return budget, request


# =============================================================================
# Workflow definitions
# =============================================================================


def test_define_workflow(fc: FundControl) -> None:
    workflow = fc.define_workflow("standard", two_level_steps(level1_threshold="5000.00"))

    assert workflow["name"] == "standard"
    assert [s["required_role"] for s in workflow["steps"]] == ["budget_analyst", "comptroller"]
    assert fc.list_workflows() == [workflow]


@pytest.mark.parametrize(
    "levels",
    [[2], [1, 3], [2, 1], [1, 1]],
)
def test_workflow_levels_must_be_consecutive(fc: FundControl, levels: list[int]) -> None:
    steps = [{"level": level, "required_role": "comptroller"} for level in levels]
    with pytest.raises(InvalidWorkflowDefinition):
        fc.define_workflow("broken", steps)


def test_workflow_needs_a_step(fc: FundControl) -> None:
    with pytest.raises(ValidationError):
        fc.define_workflow("empty", [])


def test_transition_table_has_no_exit_from_final_states() -> None:
    assert ALLOWED_TRANSITIONS[RequestStatus.APPROVED] == frozenset()
    assert ALLOWED_TRANSITIONS[RequestStatus.REJECTED] == frozenset()
    assert ALLOWED_TRANSITIONS[RequestStatus.RETURNED] == {RequestStatus.SUBMITTED}


# =============================================================================
# Auto-approval
# =============================================================================


def test_small_amount_skips_first_level(
    fc: FundControl, fiscal_year: dict, dispatcher: InMemoryNotificationDispatcher
) -> None:
    """Level 1 auto-approves up to $5,000; a $4,000 budget waits only for level 2"""
    fc.define_workflow("standard", two_level_steps(level1_threshold="5000.00"))

    budget, request = _submit(fc, fiscal_year, "4000.00")

    assert request["status"] == "under_review"
    assert request["current_level"] == 2
    [auto] = request["actions"]
    assert auto["level"] == 1
    assert auto["action"] == "approved"
    assert auto["auto"] is True
    assert auto["approver_id"] is None

    assert [r["request_id"] for r in fc.get_pending_approvals("bob")] == [request["request_id"]]
    assert fc.get_pending_approvals("alice") == []
    assert fc.get_budget(budget["budget_id"])["status"] == "under_review"

    # Only the level that actually waits is announced
    [notification] = dispatcher.sent
    assert notification.kind == "level_entered"
    assert notification.recipient_role == "comptroller"
    assert "Level 2" in notification.message


def test_large_amount_needs_both_levels(fc: FundControl, fiscal_year: dict) -> None:
    fc.define_workflow("standard", two_level_steps(level1_threshold="5000.00"))

    _, request = _submit(fc, fiscal_year, "6000.00")

    assert request["current_level"] == 1
    assert request["actions"] == []
    assert [r["request_id"] for r in fc.get_pending_approvals("alice")] == [request["request_id"]]


def test_every_level_auto_approves(
    fc: FundControl, fiscal_year: dict, dispatcher: InMemoryNotificationDispatcher
) -> None:
    fc.define_workflow(
        "standard", two_level_steps(level1_threshold="5000.00", level2_threshold="5000.00")
    )

    budget, request = _submit(fc, fiscal_year, "5000.00")

    assert request["status"] == "approved"
    assert [a["auto"] for a in request["actions"]] == [True, True]
    approved = fc.get_budget(budget["budget_id"])
    assert approved["status"] == "approved"
    assert approved["authorized_version"] == 2

    assert [n.kind for n in dispatcher.sent] == ["completed"]
    assert dispatcher.sent[0].recipient_id == "alice"


# =============================================================================
# Human approval
# =============================================================================


def test_two_level_approval(
    fc: FundControl, fiscal_year: dict, dispatcher: InMemoryNotificationDispatcher
) -> None:
    fc.define_workflow("standard", two_level_steps())
    budget, request = _submit(fc, fiscal_year, "10000.00")

    after_first = fc.process_approval(request["request_id"], "alice", "approved", "Looks right")
    assert after_first["current_level"] == 2

    done = fc.process_approval(request["request_id"], "carol", "approved")
    assert done["status"] == "approved"
    assert done["completed_at"] is not None
    assert [(a["approver_id"], a["level"]) for a in done["actions"]] == [
        ("alice", 1),
        ("carol", 2),
    ]
    assert done["actions"][0]["comments"] == "Looks right"
    assert fc.get_budget(budget["budget_id"])["status"] == "approved"
    assert [n.kind for n in dispatcher.sent] == ["level_entered", "level_entered", "completed"]


def test_approver_without_role_is_refused(fc: FundControl, fiscal_year: dict) -> None:
    fc.define_workflow("standard", two_level_steps())
    _, request = _submit(fc, fiscal_year, "10000.00")

    with pytest.raises(UnauthorizedApprover) as exc_info:
        fc.process_approval(request["request_id"], "bob", "approved")
    assert exc_info.value.level == 1
    assert exc_info.value.required == "role budget_analyst"

    with pytest.raises(UnauthorizedApprover):
        fc.process_approval(request["request_id"], "dave", "approved")

    assert fc.get_approval_request(request["request_id"])["actions"] == []


def test_role_granted_during_review_applies_to_the_next_action(
    fc: FundControl, role_directory: StaticRoleDirectory, fiscal_year: dict
) -> None:
    """Roles are looked up when the approver acts, not when the request was submitted"""
    fc.define_workflow("standard", two_level_steps())
    _, request = _submit(fc, fiscal_year, "10000.00")

    with pytest.raises(UnauthorizedApprover):
        fc.process_approval(request["request_id"], "dave", "approved")
    assert fc.get_pending_approvals("dave") == []

    role_directory.grant("dave", "budget_analyst")

    assert [r["request_id"] for r in fc.get_pending_approvals("dave")] == [request["request_id"]]
    updated = fc.process_approval(request["request_id"], "dave", "approved")
    assert updated["current_level"] == 2
    assert updated["actions"][0]["approver_id"] == "dave"


def test_cannot_act_on_a_finished_request(fc: FundControl, fiscal_year: dict) -> None:
    fc.define_workflow("standard", two_level_steps(level1_threshold="99999"))
    _, request = _submit(fc, fiscal_year, "10000.00")
    fc.process_approval(request["request_id"], "bob", "approved")

    with pytest.raises(InvalidTransition):
        fc.process_approval(request["request_id"], "carol", "approved")


def test_delegated_is_not_a_process_action(fc: FundControl, fiscal_year: dict) -> None:
    fc.define_workflow("standard", two_level_steps())
    _, request = _submit(fc, fiscal_year, "10000.00")

    with pytest.raises(InvalidTransition):
        fc.process_approval(request["request_id"], "alice", "delegated")


def test_unknown_request(fc: FundControl) -> None:
    with pytest.raises(ApprovalRequestNotFound):
        fc.process_approval("missing", "bob", "approved")
    with pytest.raises(ApprovalRequestNotFound):
        fc.get_approval_request("missing")


# =============================================================================
# Delegation
# =============================================================================


def test_delegation_hands_the_level_to_the_delegate(
    fc: FundControl, fiscal_year: dict, dispatcher: InMemoryNotificationDispatcher
) -> None:
    fc.define_workflow("standard", two_level_steps())
    _, request = _submit(fc, fiscal_year, "10000.00")

    delegated = fc.delegate_approval(request["request_id"], "alice", "dave", "On leave")

    assert delegated["current_level"] == 1
    assert delegated["assignee_id"] == "dave"
    assert delegated["actions"][-1]["action"] == "delegated"
    assert delegated["actions"][-1]["delegated_to"] == "dave"
    assert dispatcher.sent[-1].kind == "delegated"
    assert dispatcher.sent[-1].recipient_id == "dave"

    assert fc.get_pending_approvals("alice") == []
    assert [r["request_id"] for r in fc.get_pending_approvals("dave")] == [request["request_id"]]

    # The original approver may no longer act
    with pytest.raises(UnauthorizedApprover):
        fc.process_approval(request["request_id"], "alice", "approved")

    after = fc.process_approval(request["request_id"], "dave", "approved")
    assert after["current_level"] == 2
    assert after["assignee_id"] is None


def test_delegate_to_self_is_rejected(fc: FundControl, fiscal_year: dict) -> None:
    fc.define_workflow("standard", two_level_steps())
    _, request = _submit(fc, fiscal_year, "10000.00")

    with pytest.raises(InvalidTransition):
        fc.delegate_approval(request["request_id"], "alice", "alice")


def test_only_current_approver_may_delegate(fc: FundControl, fiscal_year: dict) -> None:
    fc.define_workflow("standard", two_level_steps())
    _, request = _submit(fc, fiscal_year, "10000.00")

    with pytest.raises(UnauthorizedApprover):
        fc.delegate_approval(request["request_id"], "bob", "dave")


# =============================================================================
# Rejection and return
# =============================================================================


def test_rejection_is_final(fc: FundControl, fiscal_year: dict) -> None:
    fc.define_workflow("standard", two_level_steps())
    budget, request = _submit(fc, fiscal_year, "10000.00")

    rejected = fc.process_approval(request["request_id"], "alice", "rejected", "Not funded")

    assert rejected["status"] == "rejected"
    updated = fc.get_budget(budget["budget_id"])
    assert updated["status"] == "rejected"
    assert updated["pending_version"] is None
    assert updated["open_request_id"] is None
    with pytest.raises(InvalidTransition):
        fc.process_approval(request["request_id"], "alice", "approved")


def test_returned_request_restarts_at_level_one(fc: FundControl, fiscal_year: dict) -> None:
    fc.define_workflow("standard", two_level_steps())
    budget, request = _submit(fc, fiscal_year, "10000.00")
    fc.process_approval(request["request_id"], "alice", "approved")

    returned = fc.process_approval(request["request_id"], "bob", "returned", "Add detail")
    assert returned["status"] == "returned"
    assert fc.get_budget(budget["budget_id"])["status"] == "returned"

    fc.revise_draft(budget["budget_id"], {"justification": "More detail"})
    again = fc.submit_for_approval(budget["budget_id"], actor_id="alice")

    assert again["request_id"] == request["request_id"]
    assert again["submission_count"] == 2
    assert again["current_level"] == 1
    assert again["version_number"] == 3
    # History of the first round is kept
    assert [a["action"] for a in again["actions"]] == ["approved", "returned"]

    versions = fc.get_version_history(budget["budget_id"], include_pending=True)
    assert [(v["version_number"], v["state"]) for v in versions] == [
        (1, "current"),
        (2, "discarded"),
        (3, "pending"),
    ]


def test_approval_history(fc: FundControl, fiscal_year: dict) -> None:
    fc.define_workflow("standard", two_level_steps())
    budget, request = _submit(fc, fiscal_year, "10000.00")
    fc.process_approval(request["request_id"], "alice", "approved")
    fc.process_approval(request["request_id"], "bob", "approved")
    fc.create_budget_version(budget["budget_id"], {"requested_amount": "12000.00"}, 2)
    second = fc.submit_for_approval(budget["budget_id"], actor_id="alice")

    history = fc.get_approval_history(budget["budget_id"])

    assert [r["request_id"] for r in history] == [request["request_id"], second["request_id"]]
    assert [r["status"] for r in history] == ["approved", "under_review"]


# =============================================================================
# Deadlines
# =============================================================================


def test_overdue_level_is_reported_by_tick(
    fc: FundControl, fiscal_year: dict, test_time: TestTimeProvider
) -> None:
    fc.define_workflow("standard", two_level_steps(due_in_days=3))
    _, request = _submit(fc, fiscal_year, "10000.00")

    assert fc.tick().has_warnings() is False

    test_time.advance_days(5)
    result = fc.tick()

    [overdue] = [e for e in result.triggered_events if e.event_type == "ApprovalStepOverdue"]
    assert overdue.payload["request_id"] == request["request_id"]
    assert overdue.payload["level"] == 1
    assert overdue.payload["days_overdue"] == 2
    assert result.has_warnings()
    assert fc.health()["overdue_requests"] == 1
    # Deadlines are advisory
    assert fc.get_approval_request(request["request_id"])["status"] == "under_review"
