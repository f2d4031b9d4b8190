"""
Budget Module Handlers - Command→Event transformation for the version chain

Handlers are the decision-making layer. They:
1. Load current state (from the budget registry and version arena)
2. Validate invariants
3. Generate events if valid
4. Return events for append to event store

Several budget events are often produced by one façade operation (submit
clones a pending version AND marks the budget under review; final approval
commits the version AND marks it approved). Handlers therefore accept an
optional ``stream_version`` - the budget stream's version after the events
already produced in the same operation - so the batch stays sequential.
"""

from fund_control.budget.commands import (
    CommitVersion,
    CreateBudget,
    CreatePendingVersion,
    ReviseDraft,
    RollbackBudget,
)
from fund_control.budget.events import (
    BudgetCreated,
    BudgetDraftRevised,
    BudgetStatusChanged,
    BudgetVersionCommitted,
    BudgetVersionCreated,
    BudgetVersionDiscarded,
)
from fund_control.budget.invariants import (
    apply_changes,
    validate_budget_exists,
    validate_commit_base,
    validate_committed_version,
    validate_draft_revisable,
    validate_expected_version,
    validate_no_open_request,
    validate_pending_version,
)
from fund_control.budget.models import (
    BudgetStatus,
    VersionChanges,
    VersionContent,
    VersionSource,
    reconcile_line_items,
)
from fund_control.fiscal.invariants import validate_fiscal_year_exists
from fund_control.kernel.errors import InvalidTransition, WorkflowNotFound
from fund_control.kernel.events import Event, create_event
from fund_control.kernel.ids import generate_id
from fund_control.kernel.logging import get_logger
from fund_control.kernel.policy import FundControlPolicy
from fund_control.kernel.time import TimeProvider

logger = get_logger(__name__)


class BudgetCommandHandlers:
    """
    Command handlers for the budget module
    """

    def __init__(self, time_provider: TimeProvider, policy: FundControlPolicy) -> None:
        self.time_provider = time_provider
        self.policy = policy

    def handle_create_budget(
        self,
        command: CreateBudget,
        command_id: str,
        actor_id: str | None,
        fiscal_years: dict[str, dict],
        workflows: dict[str, dict],
    ) -> list[Event]:
        """
        Handle CreateBudget command

        Raises:
            FiscalYearNotFound: If the fiscal year doesn't exist
            WorkflowNotFound: If a pinned workflow doesn't exist
            InvalidAmount: If an amount is not positive whole cents
        """
        now = self.time_provider.now()

        validate_fiscal_year_exists(command.fiscal_year_id, fiscal_years)
        if command.workflow_id is not None and command.workflow_id not in workflows:
            raise WorkflowNotFound(command.workflow_id)

        blank = VersionContent(title=command.title, requested_amount=command.requested_amount)
        content = apply_changes(
            blank,
            VersionChanges(line_items=command.line_items, justification=command.justification),
        )
        warnings = self._reconcile(content)

        budget_id = generate_id()
        payload = BudgetCreated(
            budget_id=budget_id,
            organization=command.organization,
            fiscal_year_id=command.fiscal_year_id,
            workflow_id=command.workflow_id,
            content=content,
            reconciliation_warnings=warnings,
            created_at=now,
            created_by=actor_id,
        ).model_dump(mode="json")

        return [self._event(budget_id, "BudgetCreated", payload, 1, command_id, actor_id)]

    def handle_revise_draft(
        self,
        command: ReviseDraft,
        command_id: str,
        actor_id: str | None,
        budgets: dict[str, dict],
        versions: dict[tuple[str, int], dict],
    ) -> list[Event]:
        """
        Handle ReviseDraft command

        Raises:
            BudgetNotFound: If the budget doesn't exist
            InvalidTransition: If the budget was ever approved or is under review
        """
        now = self.time_provider.now()

        budget = validate_budget_exists(command.budget_id, budgets)
        validate_draft_revisable(budget)

        current = versions[(budget["budget_id"], budget["current_version"])]
        content = apply_changes(VersionContent(**current["content"]), command.changes)
        warnings = self._reconcile(content)

        payload = BudgetDraftRevised(
            budget_id=budget["budget_id"],
            version_number=budget["current_version"],
            content=content,
            reconciliation_warnings=warnings,
            revised_at=now,
            revised_by=actor_id,
        ).model_dump(mode="json")

        return [
            self._event(
                budget["budget_id"],
                "BudgetDraftRevised",
                payload,
                budget["version"] + 1,
                command_id,
                actor_id,
            )
        ]

    def handle_create_pending_version(
        self,
        command: CreatePendingVersion,
        command_id: str,
        actor_id: str | None,
        budgets: dict[str, dict],
        versions: dict[tuple[str, int], dict],
    ) -> list[Event]:
        """
        Handle CreatePendingVersion command

        Clones the current version and applies the changes. An existing
        pending version that was never submitted is superseded.

        Raises:
            BudgetNotFound: If the budget doesn't exist
            VersionConflict: If expected_version is not the current version
            InvalidTransition: If an approval request is open
        """
        budget = validate_budget_exists(command.budget_id, budgets)
        validate_expected_version(budget, command.expected_version)
        validate_no_open_request(budget, "create version")

        current = versions[(budget["budget_id"], budget["current_version"])]
        content = apply_changes(VersionContent(**current["content"]), command.changes)

        return self._pending_version_events(
            budget, content, VersionSource.AMENDMENT, None, command_id, actor_id
        )

    def handle_clone_draft(
        self,
        budget_id: str,
        command_id: str,
        actor_id: str | None,
        budgets: dict[str, dict],
        versions: dict[tuple[str, int], dict],
    ) -> list[Event]:
        """
        Propose the current draft as it stands (first submission)

        Only for budgets that were never approved and have no pending
        version; later changes must go through CreatePendingVersion.
        """
        budget = validate_budget_exists(budget_id, budgets)
        current = versions[(budget_id, budget["current_version"])]
        content = VersionContent(**current["content"])
        return self._pending_version_events(
            budget, content, VersionSource.DRAFT, None, command_id, actor_id
        )

    def handle_rollback(
        self,
        command: RollbackBudget,
        command_id: str,
        actor_id: str | None,
        budgets: dict[str, dict],
        versions: dict[tuple[str, int], dict],
        commit_immediately: bool,
    ) -> list[Event]:
        """
        Handle RollbackBudget command

        Creates a new version duplicating the target's content. With
        commit_immediately (admin caller) the version is committed in the
        same batch; otherwise it stays pending for the approval workflow.

        Raises:
            BudgetNotFound: If the budget doesn't exist
            VersionConflict: If expected_version is given and stale
            InvalidTransition: If an approval request is open
            VersionNotFound: If the target is not a committed version
        """
        budget = validate_budget_exists(command.budget_id, budgets)
        if command.expected_version is not None:
            validate_expected_version(budget, command.expected_version)
        validate_no_open_request(budget, "roll back")
        target = validate_committed_version(budget["budget_id"], command.target_version, versions)

        content = VersionContent(**target["content"])
        events = self._pending_version_events(
            budget, content, VersionSource.ROLLBACK, command.target_version, command_id, actor_id
        )
        if not commit_immediately:
            return events

        created = events[-1].payload
        events.extend(
            self.handle_commit_version(
                CommitVersion(
                    budget_id=budget["budget_id"],
                    version_number=created["version_number"],
                    expected_version=budget["current_version"],
                    source="rollback",
                ),
                command_id,
                actor_id,
                budgets,
                versions,
                stream_version=events[-1].version,
                pending=created,
            )
        )
        return events

    def handle_commit_version(
        self,
        command: CommitVersion,
        command_id: str,
        actor_id: str | None,
        budgets: dict[str, dict],
        versions: dict[tuple[str, int], dict],
        request_id: str | None = None,
        stream_version: int | None = None,
        pending: dict | None = None,
    ) -> list[Event]:
        """
        Handle CommitVersion command

        ``pending`` supplies the version record when it was created earlier
        in the same batch and is not in the arena yet.

        Raises:
            BudgetNotFound: If the budget doesn't exist
            VersionNotFound: If the version doesn't exist
            InvalidTransition: If the version is not pending
            VersionConflict: If the current version moved since the clone
        """
        now = self.time_provider.now()

        budget = validate_budget_exists(command.budget_id, budgets)
        version = pending or versions.get((budget["budget_id"], command.version_number))
        if pending is None:
            version = validate_pending_version(budget, version, command.version_number)
        validate_commit_base(budget, version, command.expected_version)

        content = VersionContent(**version["content"])
        payload = BudgetVersionCommitted(
            budget_id=budget["budget_id"],
            version_number=command.version_number,
            previous_version=budget["current_version"],
            source=command.source,
            approved_amount=content.requested_amount,
            request_id=request_id,
            committed_at=now,
            committed_by=actor_id,
        ).model_dump(mode="json")

        return [
            self._event(
                budget["budget_id"],
                "BudgetVersionCommitted",
                payload,
                self._next(budget, stream_version),
                command_id,
                actor_id,
            )
        ]

    def handle_discard_pending(
        self,
        budget_id: str,
        reason: str,
        command_id: str,
        actor_id: str | None,
        budgets: dict[str, dict],
        stream_version: int | None = None,
    ) -> list[Event]:
        """Drop the budget's pending version, if it has one"""
        budget = validate_budget_exists(budget_id, budgets)
        if budget["pending_version"] is None:
            return []
        return [
            self._discard_event(
                budget, budget["pending_version"], reason, command_id, actor_id, stream_version
            )
        ]

    def handle_change_status(
        self,
        budget_id: str,
        to_status: BudgetStatus,
        request_id: str | None,
        command_id: str,
        actor_id: str | None,
        budgets: dict[str, dict],
        stream_version: int | None = None,
        from_status: BudgetStatus | None = None,
    ) -> list[Event]:
        now = self.time_provider.now()
        budget = validate_budget_exists(budget_id, budgets)
        payload = BudgetStatusChanged(
            budget_id=budget_id,
            from_status=from_status or BudgetStatus(budget["status"]),
            to_status=to_status,
            request_id=request_id,
            changed_at=now,
        ).model_dump(mode="json")
        return [
            self._event(
                budget_id,
                "BudgetStatusChanged",
                payload,
                self._next(budget, stream_version),
                command_id,
                actor_id,
            )
        ]

    def _pending_version_events(
        self,
        budget: dict,
        content: VersionContent,
        source: VersionSource,
        rolled_back_from: int | None,
        command_id: str,
        actor_id: str | None,
    ) -> list[Event]:
        now = self.time_provider.now()
        events: list[Event] = []

        if budget["pending_version"] is not None:
            if budget["open_request_id"] is not None:
                raise InvalidTransition(
                    budget["budget_id"],
                    current="pending version under review",
                    attempted="create version",
                )
            events.append(
                self._discard_event(
                    budget, budget["pending_version"], "superseded", command_id, actor_id, None
                )
            )

        warnings = self._reconcile(content)
        version_number = budget["latest_version"] + 1
        payload = BudgetVersionCreated(
            budget_id=budget["budget_id"],
            version_number=version_number,
            base_version=budget["current_version"],
            source=source,
            rolled_back_from=rolled_back_from,
            content=content,
            reconciliation_warnings=warnings,
            created_at=now,
            created_by=actor_id,
        ).model_dump(mode="json")

        events.append(
            self._event(
                budget["budget_id"],
                "BudgetVersionCreated",
                payload,
                events[-1].version + 1 if events else budget["version"] + 1,
                command_id,
                actor_id,
            )
        )
        return events

    def _discard_event(
        self,
        budget: dict,
        version_number: int,
        reason: str,
        command_id: str,
        actor_id: str | None,
        stream_version: int | None,
    ) -> Event:
        payload = BudgetVersionDiscarded(
            budget_id=budget["budget_id"],
            version_number=version_number,
            reason=reason,
            discarded_at=self.time_provider.now(),
        ).model_dump(mode="json")
        return self._event(
            budget["budget_id"],
            "BudgetVersionDiscarded",
            payload,
            self._next(budget, stream_version),
            command_id,
            actor_id,
        )

    def _reconcile(self, content: VersionContent) -> list[str]:
        warnings = reconcile_line_items(content)
        for warning in warnings:
            logger.warning("Line items do not reconcile", title=content.title, warning=warning)
        return warnings

    @staticmethod
    def _next(budget: dict, stream_version: int | None) -> int:
        return (stream_version if stream_version is not None else budget["version"]) + 1

    def _event(
        self,
        budget_id: str,
        event_type: str,
        payload: dict,
        version: int,
        command_id: str,
        actor_id: str | None,
    ) -> Event:
        return create_event(
            event_id=generate_id(),
            stream_id=budget_id,
            stream_type="budget",
            event_type=event_type,
            occurred_at=self.time_provider.now(),
            command_id=command_id,
            actor_id=actor_id,
            payload=payload,
            version=version,
        )

