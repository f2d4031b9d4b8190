"""
Variance Analyzer - Read-only aggregation of budget execution

Compares what was approved with what has been obligated and spent. Pure
functions over projection dicts; the analyzer never writes.

Fun fact: A "favorable" variance means spending came in UNDER plan - which
in government often means the money lapses at year end!
"""

from collections import defaultdict
from decimal import ROUND_HALF_UP, Decimal

from fund_control.kernel.money import as_decimal
from fund_control.kernel.policy import FundControlPolicy
from fund_control.obligations.models import ObligationStatus
from fund_control.variance.models import (
    BudgetVariance,
    LineItemExecution,
    LineItemSummary,
    VarianceStatus,
    VarianceSummary,
)

_PERCENT = Decimal("0.01")


def _percent(part: Decimal, whole: Decimal) -> Decimal | None:
    if whole == 0:
        return None
    return (part / whole * 100).quantize(_PERCENT, rounding=ROUND_HALF_UP)


class VarianceAnalyzer:
    def __init__(self, policy: FundControlPolicy) -> None:
        self.policy = policy

    def classify(self, variance_percent: Decimal | None) -> VarianceStatus:
        """
        Critical is checked first: a 25% overrun is critical, not merely
        unfavorable.
        """
        if variance_percent is None:
            return VarianceStatus.NEUTRAL
        if variance_percent >= self.policy.variance_critical_percent:
            return VarianceStatus.CRITICAL
        if variance_percent >= self.policy.variance_unfavorable_percent:
            return VarianceStatus.UNFAVORABLE
        if variance_percent <= self.policy.variance_favorable_percent:
            return VarianceStatus.FAVORABLE
        return VarianceStatus.NEUTRAL

    def budget_variance(self, budget: dict) -> BudgetVariance:
        approved = as_decimal(budget["approved_amount"])
        obligated = as_decimal(budget["obligated"])
        expended = as_decimal(budget["expended"])

        variance = expended - approved
        variance_percent = _percent(variance, approved)

        return BudgetVariance(
            budget_id=budget["budget_id"],
            organization=budget["organization"],
            fiscal_year_id=budget["fiscal_year_id"],
            title=budget["title"],
            approved=approved,
            obligated=obligated,
            expended=expended,
            unobligated_balance=approved - obligated,
            unliquidated_obligations=obligated - expended,
            obligation_rate=_percent(obligated, approved) or Decimal("0.00"),
            expenditure_rate=_percent(expended, obligated) or Decimal("0.00"),
            variance_amount=variance,
            variance_percent=variance_percent,
            status=self.classify(variance_percent),
        )

    def summarize(self, budgets: list[dict], scope: str) -> VarianceSummary:
        """
        Per-budget rows and totals

        Args:
            budgets: Budget dicts from the registry
            scope: Label for the selection ("all", a budget or fiscal year id)
        """
        rows = [self.budget_variance(b) for b in budgets]

        total_approved = sum((r.approved for r in rows), Decimal("0.00"))
        total_obligated = sum((r.obligated for r in rows), Decimal("0.00"))
        total_expended = sum((r.expended for r in rows), Decimal("0.00"))
        variance = total_expended - total_approved
        variance_percent = _percent(variance, total_approved)

        by_status: dict[str, int] = defaultdict(int)
        for row in rows:
            by_status[row.status.value] += 1

        return VarianceSummary(
            scope=scope,
            budgets=rows,
            total_approved=total_approved,
            total_obligated=total_obligated,
            total_expended=total_expended,
            total_unobligated=total_approved - total_obligated,
            total_unliquidated=total_obligated - total_expended,
            variance_amount=variance,
            variance_percent=variance_percent,
            status=self.classify(variance_percent),
            by_status=dict(by_status),
        )

    def line_items(
        self,
        budget: dict,
        version: dict,
        obligations: list[dict],
        expenditures: list[dict],
    ) -> LineItemSummary:
        """
        Execution per line item of a version

        Args:
            budget: Budget dict
            version: Version dict from the arena (normally the authorized one)
            obligations: The budget's obligations
            expenditures: The budget's expenditures
        """
        obligated: dict[str | None, Decimal] = defaultdict(Decimal)
        for o in obligations:
            if o["status"] == ObligationStatus.ACTIVE.value:
                obligated[o["line_item_id"]] += as_decimal(o["amount"])

        expended: dict[str | None, Decimal] = defaultdict(Decimal)
        for e in expenditures:
            expended[e["line_item_id"]] += as_decimal(e["amount"])

        items = []
        by_category: dict[str, Decimal] = defaultdict(Decimal)
        for line in version["content"]["line_items"]:
            amount = as_decimal(line["amount"])
            line_obligated = obligated.get(line["line_item_id"], Decimal("0.00"))
            items.append(
                LineItemExecution(
                    line_item_id=line["line_item_id"],
                    category=line["category"],
                    description=line["description"],
                    amount=amount,
                    obligated=line_obligated,
                    expended=expended.get(line["line_item_id"], Decimal("0.00")),
                    available=amount - line_obligated,
                )
            )
            by_category[line["category"]] += amount

        return LineItemSummary(
            budget_id=budget["budget_id"],
            version_number=version["version_number"],
            items=items,
            by_category=dict(by_category),
            unassigned_obligated=obligated.get(None, Decimal("0.00")),
            unassigned_expended=expended.get(None, Decimal("0.00")),
            reconciliation_warnings=version["reconciliation_warnings"],
        )
