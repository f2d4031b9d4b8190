"""
Budget Domain Models - Budgets and their version chain

A budget is a chain of immutable versions kept in an arena indexed by
(budget_id, version_number). "Current" and "authorized" are just version
numbers pointing into the arena; nothing is ever edited in place except the
content of a never-approved draft.

Key concepts:
- Pending version: a proposed change, cloned from the current version,
  that the approval workflow acts on
- Commit: the pending version becomes current, the old current is frozen
- Rollback: a NEW version duplicating an older one (history is never
  rewritten)
- Line items: should add up to the requested amount; when they don't, the
  version carries a reconciliation warning instead of being rejected
"""

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field


class BudgetStatus(str, Enum):
    """
    Budget lifecycle

    DRAFT → UNDER_REVIEW → APPROVED | REJECTED | RETURNED

    A budget goes back UNDER_REVIEW each time a new version is submitted.
    """

    DRAFT = "draft"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    RETURNED = "returned"


class VersionState(str, Enum):
    CURRENT = "current"  # the version the budget currently shows
    FROZEN = "frozen"  # a former current version
    PENDING = "pending"  # proposed, awaiting approval
    DISCARDED = "discarded"  # pending version that was rejected, returned or superseded


class VersionSource(str, Enum):
    DRAFT = "draft"
    AMENDMENT = "amendment"
    ROLLBACK = "rollback"


class LineItem(BaseModel):
    """
    Single line of a budget version

    line_item_id is stable across versions: cloning a version keeps the ids,
    so obligations recorded against a line keep pointing at it.
    """

    line_item_id: str
    category: str
    description: str = ""
    amount: Decimal = Field(ge=0)


class LineItemSpec(BaseModel):
    """Line item as supplied by a caller (id optional for new lines)"""

    line_item_id: str | None = None
    category: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    amount: Decimal = Field(..., ge=0)


class VersionContent(BaseModel):
    """What a budget version says"""

    title: str
    requested_amount: Decimal = Field(ge=0)
    line_items: list[LineItem] = Field(default_factory=list)
    justification: str = ""


class VersionChanges(BaseModel):
    """
    Changes applied on top of a cloned version

    Fields left as None keep the cloned value. Supplying line_items
    replaces the whole list.
    """

    title: str | None = Field(default=None, min_length=1, max_length=200)
    requested_amount: Decimal | None = Field(default=None, ge=0)
    line_items: list[LineItemSpec] | None = None
    justification: str | None = Field(default=None, max_length=4000)


def reconcile_line_items(content: VersionContent) -> list[str]:
    """
    Compare the line items with the requested amount

    Returns:
        Warning messages (empty when the lines add up, or there are none)
    """
    if not content.line_items:
        return []
    total = sum((item.amount for item in content.line_items), Decimal("0"))
    if total == content.requested_amount:
        return []
    return [
        f"Line items total {total} but requested amount is {content.requested_amount} "
        f"(difference {total - content.requested_amount})"
    ]
