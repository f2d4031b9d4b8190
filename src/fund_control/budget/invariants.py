"""
Budget Module Invariants - Version chain rules

Pure functions over the budget registry and version arena dicts:
- optimistic locking on the current version number
- only committed versions can be rolled back to
- one open approval request per budget at a time
- only a never-approved draft is edited in place
"""

from fund_control.budget.models import (
    BudgetStatus,
    LineItem,
    VersionChanges,
    VersionContent,
    VersionState,
)
from fund_control.kernel.errors import (
    BudgetNotFound,
    InvalidTransition,
    VersionConflict,
    VersionNotFound,
)
from fund_control.kernel.ids import generate_id
from fund_control.kernel.money import validate_amount

REVISABLE_DRAFT_STATUSES = {
    BudgetStatus.DRAFT.value,
    BudgetStatus.RETURNED.value,
    BudgetStatus.REJECTED.value,
}


def validate_budget_exists(budget_id: str, budgets: dict[str, dict]) -> dict:
    budget = budgets.get(budget_id)
    if budget is None:
        raise BudgetNotFound(budget_id)
    return budget


def validate_no_open_request(budget: dict, attempted: str) -> None:
    if budget["open_request_id"] is not None:
        raise InvalidTransition(
            budget["budget_id"],
            current=f"under review (request {budget['open_request_id']})",
            attempted=attempted,
        )


def validate_draft_revisable(budget: dict) -> None:
    """
    Drafts are mutable only until the budget is first approved

    Raises:
        InvalidTransition: If the budget was ever approved, or is under review
    """
    validate_no_open_request(budget, "revise draft")
    if budget["authorized_version"] is not None or budget["status"] not in REVISABLE_DRAFT_STATUSES:
        raise InvalidTransition(
            budget["budget_id"],
            current=budget["status"],
            attempted="revise draft (create a new version instead)",
        )


def validate_expected_version(budget: dict, expected_version: int) -> None:
    """
    Optimistic lock on the current version

    Raises:
        VersionConflict: If the budget moved on since the caller read it
    """
    if budget["current_version"] != expected_version:
        raise VersionConflict(budget["budget_id"], expected_version, budget["current_version"])


def validate_committed_version(
    budget_id: str, version_number: int, versions: dict[tuple[str, int], dict]
) -> dict:
    """
    Only versions that were part of the committed chain can be restored

    Raises:
        VersionNotFound: If the version doesn't exist, or is pending/discarded
    """
    version = versions.get((budget_id, version_number))
    if version is None or version["state"] not in (
        VersionState.CURRENT.value,
        VersionState.FROZEN.value,
    ):
        raise VersionNotFound(budget_id, version_number)
    return version


def validate_pending_version(budget: dict, version: dict | None, version_number: int) -> dict:
    if version is None:
        raise VersionNotFound(budget["budget_id"], version_number)
    if version["state"] != VersionState.PENDING.value:
        raise InvalidTransition(
            f"{budget['budget_id']} v{version_number}",
            current=version["state"],
            attempted="commit",
        )
    return version


def validate_commit_base(budget: dict, version: dict, expected_version: int) -> None:
    """
    A pending version may only replace the version it was cloned from

    Raises:
        VersionConflict: If the current version moved since the clone
    """
    validate_expected_version(budget, expected_version)
    if version["base_version"] != budget["current_version"]:
        raise VersionConflict(budget["budget_id"], version["base_version"], budget["current_version"])


def apply_changes(content: VersionContent, changes: VersionChanges) -> VersionContent:
    """
    Clone content with changes applied

    New line items (no id) get a fresh line_item_id; supplied ids are kept.

    Raises:
        InvalidAmount: If the requested amount is not positive whole cents
    """
    requested = (
        changes.requested_amount
        if changes.requested_amount is not None
        else content.requested_amount
    )
    validate_amount(requested)

    if changes.line_items is None:
        line_items = [item.model_copy() for item in content.line_items]
    else:
        line_items = [
            LineItem(
                line_item_id=item.line_item_id or generate_id(),
                category=item.category,
                description=item.description,
                amount=validate_amount(item.amount, allow_zero=True),
            )
            for item in changes.line_items
        ]

    return VersionContent(
        title=changes.title if changes.title is not None else content.title,
        requested_amount=requested,
        line_items=line_items,
        justification=(
            changes.justification if changes.justification is not None else content.justification
        ),
    )
