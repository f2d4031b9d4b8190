"""
Budget Module - Budgets as a chain of immutable versions

Every change to an approved budget is a new version proposed as pending,
approved through the workflow engine, then committed. Rollback restores old
content as yet another version, so the chain only ever grows.
"""

from fund_control.budget.models import (
    BudgetStatus,
    LineItem,
    LineItemSpec,
    VersionChanges,
    VersionContent,
    VersionSource,
    VersionState,
)

__all__ = [
    "BudgetStatus",
    "LineItem",
    "LineItemSpec",
    "VersionChanges",
    "VersionContent",
    "VersionSource",
    "VersionState",
]
