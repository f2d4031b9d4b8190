"""
Obligation Module Projections - Read Models for obligations and expenditures

ObligationRegistry: every obligation with its derived expended total, plus
the expenditure log, and the summaries reported to budget offices.
"""

from collections import defaultdict
from decimal import Decimal

from fund_control.kernel.events import Event
from fund_control.kernel.money import as_decimal
from fund_control.obligations.models import ObligationStatus


class ObligationRegistry:
    """
    Built from events: ObligationCreated, ObligationCancelled, ExpenditureRecorded

    Query methods: get, list_obligations, list_expenditures,
                   obligation_summary, expenditure_summary
    """

    def __init__(self) -> None:
        self.obligations: dict[str, dict] = {}
        self.expenditures: dict[str, dict] = {}

    def apply_event(self, event: Event) -> None:
        if event.event_type == "ObligationCreated":
            self._apply_obligation_created(event)
        elif event.event_type == "ObligationCancelled":
            self._apply_obligation_cancelled(event)
        elif event.event_type == "ExpenditureRecorded":
            self._apply_expenditure_recorded(event)

    def _apply_obligation_created(self, event: Event) -> None:
        payload = event.payload
        self.obligations[payload["obligation_id"]] = {
            "obligation_id": payload["obligation_id"],
            "budget_id": payload["budget_id"],
            "appropriation_id": payload["appropriation_id"],
            "fiscal_year_id": payload["fiscal_year_id"],
            "line_item_id": payload["line_item_id"],
            "amount": payload["amount"],
            "expended": "0.00",
            "obligation_date": payload["obligation_date"],
            "vendor": payload["vendor"],
            "description": payload["description"],
            "bona_fide_need_exception": payload["bona_fide_need_exception"],
            "exception_type": payload["exception_type"],
            "justification": payload["justification"],
            "status": ObligationStatus.ACTIVE.value,
            "created_at": payload["created_at"],
            "created_by": payload["created_by"],
            "cancelled_at": None,
            "version": event.version,
        }

    def _apply_obligation_cancelled(self, event: Event) -> None:
        obligation = self.obligations.get(event.payload["obligation_id"])
        if obligation:
            obligation["status"] = ObligationStatus.CANCELLED.value
            obligation["cancelled_at"] = event.payload["cancelled_at"]
            obligation["version"] = event.version

    def _apply_expenditure_recorded(self, event: Event) -> None:
        payload = event.payload
        self.expenditures[payload["expenditure_id"]] = {
            "expenditure_id": payload["expenditure_id"],
            "obligation_id": payload["obligation_id"],
            "budget_id": payload["budget_id"],
            "line_item_id": payload["line_item_id"],
            "amount": payload["amount"],
            "expenditure_date": payload["expenditure_date"],
            "description": payload["description"],
            "recorded_at": payload["recorded_at"],
            "recorded_by": payload["recorded_by"],
        }

        obligation = self.obligations.get(payload["obligation_id"])
        if obligation:
            expended = as_decimal(obligation["expended"]) + as_decimal(payload["amount"])
            obligation["expended"] = str(expended)
            obligation["version"] = event.version

    def get(self, obligation_id: str) -> dict | None:
        return self.obligations.get(obligation_id)

    def list_obligations(
        self,
        budget_id: str | None = None,
        appropriation_id: str | None = None,
        active_only: bool = False,
    ) -> list[dict]:
        return [
            o
            for o in self.obligations.values()
            if (budget_id is None or o["budget_id"] == budget_id)
            and (appropriation_id is None or o["appropriation_id"] == appropriation_id)
            and (not active_only or o["status"] == ObligationStatus.ACTIVE.value)
        ]

    def list_expenditures(
        self, obligation_id: str | None = None, budget_id: str | None = None
    ) -> list[dict]:
        return [
            e
            for e in self.expenditures.values()
            if (obligation_id is None or e["obligation_id"] == obligation_id)
            and (budget_id is None or e["budget_id"] == budget_id)
        ]

    def obligation_summary(self, budget_id: str | None = None) -> dict:
        """
        Totals by status and by vendor

        Cancelled obligations are counted but contribute nothing to the
        obligated, expended or unliquidated totals.
        """
        obligations = self.list_obligations(budget_id=budget_id)
        by_status: dict[str, Decimal] = defaultdict(Decimal)
        by_vendor: dict[str, Decimal] = defaultdict(Decimal)
        obligated = expended = Decimal("0.00")

        for o in obligations:
            amount = as_decimal(o["amount"])
            by_status[o["status"]] += amount
            if o["status"] != ObligationStatus.ACTIVE.value:
                continue
            by_vendor[o["vendor"] or "unspecified"] += amount
            obligated += amount
            expended += as_decimal(o["expended"])

        return {
            "budget_id": budget_id,
            "count": len(obligations),
            "active_count": sum(
                1 for o in obligations if o["status"] == ObligationStatus.ACTIVE.value
            ),
            "total_obligated": obligated,
            "total_expended": expended,
            "unliquidated": obligated - expended,
            "by_status": dict(by_status),
            "by_vendor": dict(by_vendor),
            "bona_fide_exceptions": sum(1 for o in obligations if o["bona_fide_need_exception"]),
        }

    def expenditure_summary(self, budget_id: str | None = None) -> dict:
        """Expenditure totals by month (YYYY-MM of the expenditure date)"""
        expenditures = self.list_expenditures(budget_id=budget_id)
        by_month: dict[str, Decimal] = defaultdict(Decimal)
        for e in expenditures:
            by_month[e["expenditure_date"][:7]] += as_decimal(e["amount"])

        return {
            "budget_id": budget_id,
            "count": len(expenditures),
            "total": sum((as_decimal(e["amount"]) for e in expenditures), Decimal("0.00")),
            "by_month": dict(sorted(by_month.items())),
        }
