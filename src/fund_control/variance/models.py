"""
Variance Read Models - Approved vs. obligated vs. expended

Denormalized views computed from the projections on demand; nothing here
is persisted.
"""

from decimal import Decimal
from enum import Enum

from sqlmodel import Field, SQLModel


class VarianceStatus(str, Enum):
    """
    Spending against the approved amount

    variance = expended - approved, as a percent of approved:
    - CRITICAL: at or above +20%
    - UNFAVORABLE: at or above +10%
    - FAVORABLE: at or below -10%
    - NEUTRAL: anything in between
    """

    FAVORABLE = "favorable"
    NEUTRAL = "neutral"
    UNFAVORABLE = "unfavorable"
    CRITICAL = "critical"


class BudgetVariance(SQLModel):
    """Read model for one budget's execution"""

    budget_id: str
    organization: str
    fiscal_year_id: str
    title: str
    approved: Decimal = Decimal("0.00")
    obligated: Decimal = Decimal("0.00")
    expended: Decimal = Decimal("0.00")
    unobligated_balance: Decimal = Decimal("0.00")
    unliquidated_obligations: Decimal = Decimal("0.00")
    obligation_rate: Decimal = Decimal("0.00")  # obligated / approved, percent
    expenditure_rate: Decimal = Decimal("0.00")  # expended / obligated, percent
    variance_amount: Decimal = Decimal("0.00")
    variance_percent: Decimal | None = None  # None while nothing is approved
    status: VarianceStatus = VarianceStatus.NEUTRAL


class VarianceSummary(SQLModel):
    """Read model for a set of budgets plus totals"""

    scope: str
    budgets: list[BudgetVariance] = Field(default_factory=list)
    total_approved: Decimal = Decimal("0.00")
    total_obligated: Decimal = Decimal("0.00")
    total_expended: Decimal = Decimal("0.00")
    total_unobligated: Decimal = Decimal("0.00")
    total_unliquidated: Decimal = Decimal("0.00")
    variance_amount: Decimal = Decimal("0.00")
    variance_percent: Decimal | None = None
    status: VarianceStatus = VarianceStatus.NEUTRAL
    by_status: dict[str, int] = Field(default_factory=dict)


class LineItemExecution(SQLModel):
    line_item_id: str
    category: str
    description: str = ""
    amount: Decimal = Decimal("0.00")
    obligated: Decimal = Decimal("0.00")
    expended: Decimal = Decimal("0.00")
    available: Decimal = Decimal("0.00")


class LineItemSummary(SQLModel):
    """
    Execution per line item of a budget's authorized version

    ``unassigned`` collects obligations recorded without a line item.
    """

    budget_id: str
    version_number: int
    items: list[LineItemExecution] = Field(default_factory=list)
    by_category: dict[str, Decimal] = Field(default_factory=dict)
    unassigned_obligated: Decimal = Decimal("0.00")
    unassigned_expended: Decimal = Decimal("0.00")
    reconciliation_warnings: list[str] = Field(default_factory=list)
