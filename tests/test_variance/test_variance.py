"""
Tests for variance analysis

Variance compares spending with the approved amount:
variance = expended - approved, as a percent of approved.
"""

from decimal import Decimal

import pytest

from fund_control import FundControl
from fund_control.kernel.errors import BudgetNotFound, FiscalYearNotFound
from fund_control.kernel.policy import FundControlPolicy
from fund_control.variance.analyzer import VarianceAnalyzer
from fund_control.variance.models import VarianceStatus
from tests.helpers import create_approved_budget, line_items


def _budget(approved: str | None, obligated: str = "0.00", expended: str = "0.00") -> dict:
    return {
        "budget_id": "b-1",
        "organization": "Ops",
        "fiscal_year_id": "fy-1",
        "title": "Base",
        "approved_amount": approved,
        "obligated": obligated,
        "expended": expended,
    }


@pytest.fixture
def analyzer() -> VarianceAnalyzer:
    return VarianceAnalyzer(FundControlPolicy())


@pytest.mark.parametrize(
    "percent, status",
    [
        (Decimal("25"), VarianceStatus.CRITICAL),
        (Decimal("20"), VarianceStatus.CRITICAL),
        (Decimal("19.99"), VarianceStatus.UNFAVORABLE),
        (Decimal("10"), VarianceStatus.UNFAVORABLE),
        (Decimal("9.99"), VarianceStatus.NEUTRAL),
        (Decimal("0"), VarianceStatus.NEUTRAL),
        (Decimal("-9.99"), VarianceStatus.NEUTRAL),
        (Decimal("-10"), VarianceStatus.FAVORABLE),
        (Decimal("-100"), VarianceStatus.FAVORABLE),
        (None, VarianceStatus.NEUTRAL),
    ],
)
def test_classify(analyzer: VarianceAnalyzer, percent: Decimal | None, status) -> None:
    assert analyzer.classify(percent) == status


def test_classify_follows_policy() -> None:
    strict = VarianceAnalyzer(
        FundControlPolicy(
            variance_unfavorable_percent=Decimal("5"), variance_critical_percent=Decimal("8")
        )
    )
    assert strict.classify(Decimal("6")) == VarianceStatus.UNFAVORABLE
    assert strict.classify(Decimal("8")) == VarianceStatus.CRITICAL


def test_budget_variance(analyzer: VarianceAnalyzer) -> None:
    row = analyzer.budget_variance(_budget("100000.00", "80000.00", "60000.00"))

    assert row.variance_amount == Decimal("-40000.00")
    assert row.variance_percent == Decimal("-40.00")
    assert row.status == VarianceStatus.FAVORABLE
    assert row.unobligated_balance == Decimal("20000.00")
    assert row.unliquidated_obligations == Decimal("20000.00")
    assert row.obligation_rate == Decimal("80.00")
    assert row.expenditure_rate == Decimal("75.00")


def test_overspending_is_critical(analyzer: VarianceAnalyzer) -> None:
    row = analyzer.budget_variance(_budget("10000.00", "12500.00", "12500.00"))

    assert row.variance_percent == Decimal("25.00")
    assert row.status == VarianceStatus.CRITICAL


def test_unapproved_budget_is_neutral(analyzer: VarianceAnalyzer) -> None:
    row = analyzer.budget_variance(_budget(None))

    assert row.approved == Decimal("0")
    assert row.variance_percent is None
    assert row.status == VarianceStatus.NEUTRAL
    assert row.obligation_rate == Decimal("0.00")


def test_summarize_totals(analyzer: VarianceAnalyzer) -> None:
    summary = analyzer.summarize(
        [
            _budget("100000.00", "100000.00", "95000.00"),
            _budget("10000.00", "12500.00", "12500.00"),
            _budget(None),
        ],
        scope="all",
    )

    assert summary.total_approved == Decimal("110000.00")
    assert summary.total_expended == Decimal("107500.00")
    assert summary.variance_amount == Decimal("-2500.00")
    assert summary.variance_percent == Decimal("-2.27")
    assert summary.status == VarianceStatus.NEUTRAL
    assert summary.by_status == {"neutral": 2, "critical": 1}


# =============================================================================
# Through the façade
# =============================================================================


def test_variance_summary_for_a_budget(
    fc: FundControl, fiscal_year: dict, appropriation: dict
) -> None:
    budget = create_approved_budget(fc, fiscal_year["fiscal_year_id"], amount="100000.00")
    obligation = fc.create_obligation(
        budget["budget_id"], appropriation["appropriation_id"], "95000.00"
    )
    fc.create_expenditure(obligation["obligation_id"], "95000.00")

    summary = fc.get_variance_summary(budget_id=budget["budget_id"])

    [row] = summary.budgets
    assert summary.scope == budget["budget_id"]
    assert row.variance_percent == Decimal("-5.00")
    assert row.status == VarianceStatus.NEUTRAL
    assert row.obligation_rate == Decimal("95.00")


def test_variance_summary_by_fiscal_year(fc: FundControl, fiscal_year: dict) -> None:
    create_approved_budget(fc, fiscal_year["fiscal_year_id"], amount="1000.00")
    fc.create_budget("Ops", fiscal_year["fiscal_year_id"], "Still a draft", "500.00")
    other = fc.open_fiscal_year(2026)
    fc.create_budget("Ops", other["fiscal_year_id"], "Next year", "700.00")

    summary = fc.get_variance_summary(fiscal_year_id=fiscal_year["fiscal_year_id"])

    assert len(summary.budgets) == 2
    assert summary.total_approved == Decimal("1000.00")
    assert summary.by_status == {"favorable": 1, "neutral": 1}
    assert len(fc.get_variance_summary().budgets) == 3


def test_variance_summary_unknown_scope(fc: FundControl) -> None:
    with pytest.raises(BudgetNotFound):
        fc.get_variance_summary(budget_id="missing")
    with pytest.raises(FiscalYearNotFound):
        fc.get_variance_summary(fiscal_year_id="missing")


def test_line_item_summary(fc: FundControl, fiscal_year: dict, appropriation: dict) -> None:
    budget = create_approved_budget(
        fc,
        fiscal_year["fiscal_year_id"],
        amount="100000.00",
        items=line_items("60000.00", "40000.00"),
    )
    first, second = fc.get_version_history(budget["budget_id"])[-1]["content"]["line_items"]
    obligation = fc.create_obligation(
        budget["budget_id"],
        appropriation["appropriation_id"],
        "25000.00",
        line_item_id=first["line_item_id"],
    )
    fc.create_expenditure(obligation["obligation_id"], "5000.00")
    fc.create_obligation(budget["budget_id"], appropriation["appropriation_id"], "1000.00")

    summary = fc.line_item_summary(budget["budget_id"])

    assert summary.version_number == 2
    by_id = {item.line_item_id: item for item in summary.items}
    assert by_id[first["line_item_id"]].obligated == Decimal("25000.00")
    assert by_id[first["line_item_id"]].expended == Decimal("5000.00")
    assert by_id[first["line_item_id"]].available == Decimal("35000.00")
    assert by_id[second["line_item_id"]].obligated == Decimal("0.00")
    assert summary.by_category == {"cat-1": Decimal("60000.00"), "cat-2": Decimal("40000.00")}
    assert summary.unassigned_obligated == Decimal("1000.00")
    assert summary.reconciliation_warnings == []


def test_line_item_summary_of_a_draft_reports_warnings(fc: FundControl, fiscal_year: dict) -> None:
    budget = fc.create_budget(
        "Ops", fiscal_year["fiscal_year_id"], "Base", "1000.00", line_items=line_items("900.00")
    )

    summary = fc.line_item_summary(budget["budget_id"])

    assert summary.version_number == 1
    assert len(summary.reconciliation_warnings) == 1
