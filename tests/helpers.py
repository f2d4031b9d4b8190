"""
Test Helper Functions - Builders for fund control scenarios

Provides reusable builders for the setups most tests share: a workflow,
an approved budget, a funded obligation. Follows the Builder pattern for
test clarity.

Fun fact: The Builder pattern was formalized by the Gang of Four in 1994,
but test data builders were popularized by the growing programmer test
movement in the 2000s - we use them to keep tests readable and maintainable!
"""

from decimal import Decimal
from typing import Any

from fund_control import FundControl


def two_level_steps(
    level1_threshold: Decimal | str | None = None,
    level2_threshold: Decimal | str | None = None,
    due_in_days: int | None = None,
) -> list[dict[str, Any]]:
    """
    Builder for the standard two-level workflow

    Level 1 is the budget analyst, level 2 the comptroller.

    Args:
        level1_threshold: Auto-approval threshold for level 1 (None = never)
        level2_threshold: Auto-approval threshold for level 2 (None = never)
        due_in_days: Advisory deadline applied to both levels

    Returns:
        Step dicts accepted by FundControl.define_workflow
    """
    return [
        {
            "level": 1,
            "required_role": "budget_analyst",
            "auto_approve_threshold": level1_threshold,
            "due_in_days": due_in_days,
        },
        {
            "level": 2,
            "required_role": "comptroller",
            "auto_approve_threshold": level2_threshold,
            "due_in_days": due_in_days,
        },
    ]


def single_level_steps(role: str = "comptroller") -> list[dict[str, Any]]:
    return [{"level": 1, "required_role": role}]


def line_items(*amounts: str) -> list[dict[str, Any]]:
    """
    Builder for line items, one per amount

    Example:
        >>> line_items("60000.00", "40000.00")
        [{"category": "cat-1", ...}, {"category": "cat-2", ...}]
    """
    return [
        {"category": f"cat-{i}", "description": f"Line {i}", "amount": amount}
        for i, amount in enumerate(amounts, start=1)
    ]


def create_approved_budget(
    fc: FundControl,
    fiscal_year_id: str,
    amount: str = "100000.00",
    items: list[dict[str, Any]] | None = None,
    title: str = "Operations",
) -> dict[str, Any]:
    """
    Builder for a budget with an approved version

    Defines a one-level comptroller workflow when none exists yet, submits
    the draft and has bob approve it.

    Args:
        fc: FundControl façade (bob must hold the comptroller role)
        fiscal_year_id: Fiscal year of the budget
        amount: Requested (and thus approved) amount
        items: Line items of the draft
        title: Budget title

    Returns:
        Budget dict after approval (status approved, current_version 2)
    """
    if not fc.list_workflows():
        fc.define_workflow("single", single_level_steps())

    budget = fc.create_budget("Ops", fiscal_year_id, title, amount, line_items=items)
    request = fc.submit_for_approval(budget["budget_id"], actor_id="alice")
    if request["status"] == "under_review":
        fc.process_approval(request["request_id"], "bob", "approved")
    return fc.get_budget(budget["budget_id"])


def submit_new_version(
    fc: FundControl, budget_id: str, changes: dict[str, Any], actor_id: str = "alice"
) -> dict[str, Any]:
    """
    Propose a change on top of the current version and submit it

    Returns:
        The approval request dict
    """
    budget = fc.get_budget(budget_id)
    fc.create_budget_version(budget_id, changes, budget["current_version"], actor_id=actor_id)
    return fc.submit_for_approval(budget_id, actor_id=actor_id)
