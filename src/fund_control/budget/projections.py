"""
Budget Module Projections - Read Models for budgets and versions

BudgetRegistry: current state of every budget (pointers into the arena,
    status, approved/obligated/expended totals)
BudgetVersionArena: every version ever created, keyed by
    (budget_id, version_number)
"""

from fund_control.budget.models import BudgetStatus, VersionState
from fund_control.kernel.events import Event
from fund_control.kernel.money import as_decimal


class BudgetRegistry:
    """
    Main budget projection

    Built from events: BudgetCreated, BudgetDraftRevised, BudgetVersionCreated,
                       BudgetVersionDiscarded, BudgetVersionCommitted,
                       BudgetStatusChanged, ObligationCreated,
                       ObligationCancelled, ExpenditureRecorded

    Query methods: get, list_by_fiscal_year, list_by_status, list_all
    """

    def __init__(self) -> None:
        self.budgets: dict[str, dict] = {}

    def apply_event(self, event: Event) -> None:
        if event.event_type == "BudgetCreated":
            self._apply_budget_created(event)
        elif event.event_type == "BudgetDraftRevised":
            self._apply_draft_revised(event)
        elif event.event_type == "BudgetVersionCreated":
            self._apply_version_created(event)
        elif event.event_type == "BudgetVersionDiscarded":
            self._apply_version_discarded(event)
        elif event.event_type == "BudgetVersionCommitted":
            self._apply_version_committed(event)
        elif event.event_type == "BudgetStatusChanged":
            self._apply_status_changed(event)
        elif event.event_type == "ObligationCreated":
            self._adjust(event.payload["budget_id"], "obligated", event.payload["amount"])
        elif event.event_type == "ObligationCancelled":
            self._adjust(
                event.payload["budget_id"], "obligated", -as_decimal(event.payload["amount"])
            )
        elif event.event_type == "ExpenditureRecorded":
            self._adjust(event.payload["budget_id"], "expended", event.payload["amount"])

    def _apply_budget_created(self, event: Event) -> None:
        payload = event.payload
        content = payload["content"]
        self.budgets[payload["budget_id"]] = {
            "budget_id": payload["budget_id"],
            "organization": payload["organization"],
            "fiscal_year_id": payload["fiscal_year_id"],
            "workflow_id": payload["workflow_id"],
            "title": content["title"],
            "status": BudgetStatus.DRAFT.value,
            "current_version": 1,
            "authorized_version": None,
            "pending_version": None,
            "latest_version": 1,
            "requested_amount": content["requested_amount"],
            "approved_amount": None,
            "obligated": "0.00",
            "expended": "0.00",
            "open_request_id": None,
            "created_at": payload["created_at"],
            "created_by": payload["created_by"],
            "version": event.version,
        }

    def _apply_draft_revised(self, event: Event) -> None:
        budget = self.budgets.get(event.payload["budget_id"])
        if budget:
            budget["title"] = event.payload["content"]["title"]
            budget["requested_amount"] = event.payload["content"]["requested_amount"]
            budget["version"] = event.version

    def _apply_version_created(self, event: Event) -> None:
        budget = self.budgets.get(event.payload["budget_id"])
        if budget:
            budget["pending_version"] = event.payload["version_number"]
            budget["latest_version"] = max(
                budget["latest_version"], event.payload["version_number"]
            )
            budget["version"] = event.version

    def _apply_version_discarded(self, event: Event) -> None:
        budget = self.budgets.get(event.payload["budget_id"])
        if budget:
            if budget["pending_version"] == event.payload["version_number"]:
                budget["pending_version"] = None
            budget["version"] = event.version

    def _apply_version_committed(self, event: Event) -> None:
        payload = event.payload
        budget = self.budgets.get(payload["budget_id"])
        if budget:
            budget["current_version"] = payload["version_number"]
            budget["authorized_version"] = payload["version_number"]
            budget["pending_version"] = None
            budget["approved_amount"] = payload["approved_amount"]
            budget["requested_amount"] = payload["approved_amount"]
            budget["version"] = event.version

    def _apply_status_changed(self, event: Event) -> None:
        payload = event.payload
        budget = self.budgets.get(payload["budget_id"])
        if budget:
            budget["status"] = payload["to_status"]
            budget["open_request_id"] = (
                payload["request_id"]
                if payload["to_status"] == BudgetStatus.UNDER_REVIEW.value
                else None
            )
            budget["version"] = event.version

    def _adjust(self, budget_id: str, field: str, delta) -> None:
        budget = self.budgets.get(budget_id)
        if budget:
            budget[field] = str(as_decimal(budget[field]) + as_decimal(delta))

    def get(self, budget_id: str) -> dict | None:
        return self.budgets.get(budget_id)

    def list_by_fiscal_year(self, fiscal_year_id: str) -> list[dict]:
        return [b for b in self.budgets.values() if b["fiscal_year_id"] == fiscal_year_id]

    def list_by_status(self, status: BudgetStatus) -> list[dict]:
        return [b for b in self.budgets.values() if b["status"] == status.value]

    def list_all(self) -> list[dict]:
        return list(self.budgets.values())


class BudgetVersionArena:
    """
    Immutable version records indexed by (budget_id, version_number)

    Only ``state`` (and the content of a never-approved draft) ever changes.

    Built from events: BudgetCreated, BudgetDraftRevised, BudgetVersionCreated,
                       BudgetVersionDiscarded, BudgetVersionCommitted

    Query methods: get, history
    """

    def __init__(self) -> None:
        self.versions: dict[tuple[str, int], dict] = {}

    def apply_event(self, event: Event) -> None:
        payload = event.payload
        if event.event_type == "BudgetCreated":
            self._add(
                payload["budget_id"],
                1,
                VersionState.CURRENT,
                payload,
                base_version=None,
                source="draft",
                rolled_back_from=None,
            )
            self.versions[(payload["budget_id"], 1)]["committed_at"] = payload["created_at"]
        elif event.event_type == "BudgetDraftRevised":
            version = self.versions.get((payload["budget_id"], payload["version_number"]))
            if version:
                version["content"] = payload["content"]
                version["reconciliation_warnings"] = payload["reconciliation_warnings"]
        elif event.event_type == "BudgetVersionCreated":
            self._add(
                payload["budget_id"],
                payload["version_number"],
                VersionState.PENDING,
                payload,
                base_version=payload["base_version"],
                source=payload["source"],
                rolled_back_from=payload["rolled_back_from"],
            )
        elif event.event_type == "BudgetVersionDiscarded":
            version = self.versions.get((payload["budget_id"], payload["version_number"]))
            if version:
                version["state"] = VersionState.DISCARDED.value
        elif event.event_type == "BudgetVersionCommitted":
            previous = self.versions.get((payload["budget_id"], payload["previous_version"]))
            if previous:
                previous["state"] = VersionState.FROZEN.value
            version = self.versions.get((payload["budget_id"], payload["version_number"]))
            if version:
                version["state"] = VersionState.CURRENT.value
                version["committed_at"] = payload["committed_at"]
                version["committed_by"] = payload["committed_by"]
                version["commit_source"] = payload["source"]

    def _add(
        self,
        budget_id: str,
        version_number: int,
        state: VersionState,
        payload: dict,
        base_version: int | None,
        source: str,
        rolled_back_from: int | None,
    ) -> None:
        self.versions[(budget_id, version_number)] = {
            "budget_id": budget_id,
            "version_number": version_number,
            "state": state.value,
            "content": payload["content"],
            "base_version": base_version,
            "source": source,
            "rolled_back_from": rolled_back_from,
            "reconciliation_warnings": payload.get("reconciliation_warnings", []),
            "created_at": payload["created_at"],
            "created_by": payload["created_by"],
            "committed_at": None,
            "committed_by": None,
            "commit_source": None,
        }

    def get(self, budget_id: str, version_number: int) -> dict | None:
        return self.versions.get((budget_id, version_number))

    def history(self, budget_id: str, include_pending: bool = False) -> list[dict]:
        """
        Versions of one budget in version order

        By default only the committed chain (current and frozen versions);
        include_pending adds pending and discarded versions.
        """
        committed = {VersionState.CURRENT.value, VersionState.FROZEN.value}
        return sorted(
            (
                v
                for (b, _), v in self.versions.items()
                if b == budget_id and (include_pending or v["state"] in committed)
            ),
            key=lambda v: v["version_number"],
        )
