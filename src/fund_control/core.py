"""
FundControl - Main façade class

This is the primary interface to the fund control system. It provides a
clean, high-level API that hides event sourcing, projections, the guarded
balance ledgers and command handling.

Every write operation follows the same path:
1. Catch the projections up with the log (other processes may have written)
2. Let the handlers decide (validate, produce events)
3. In ONE immediate transaction: post the balance effects of those events
   to the guarded ledgers, then append the events with stream versions
4. Catch up again, emit audit records, publish to the event bus

Example:
    >>> from fund_control import FundControl
    >>> fc = FundControl("funds.db")
    >>> fy = fc.open_fiscal_year(2025, state="current")
    >>> approp = fc.establish_appropriation(fy["fiscal_year_id"], "OM-25", "O&M",
    ...                                     "OM", "100000")
    >>> budget = fc.create_budget("Ops", fy["fiscal_year_id"], "Base", "40000")
    >>> fc.submit_for_approval(budget["budget_id"], actor_id="alice")
    >>> fc.tick()
"""

import copy
import sqlite3
import threading
import time
from collections.abc import Callable
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

from fund_control.approval.commands import (
    DefineWorkflow,
    DelegateApproval,
    ProcessApproval,
    SubmitForApproval,
)
from fund_control.approval.handlers import ApprovalCommandHandlers
from fund_control.approval.models import ApprovalAction, ApprovalStep, RequestStatus
from fund_control.approval.projections import ApprovalRequestRegistry, WorkflowRegistry
from fund_control.budget.commands import (
    CommitVersion,
    CreateBudget,
    CreatePendingVersion,
    ReviseDraft,
    RollbackBudget,
)
from fund_control.budget.handlers import BudgetCommandHandlers
from fund_control.budget.invariants import validate_budget_exists, validate_no_open_request
from fund_control.budget.models import BudgetStatus, LineItemSpec, VersionChanges
from fund_control.budget.projections import BudgetRegistry, BudgetVersionArena
from fund_control.fiscal.calendar import state_for_date
from fund_control.fiscal.commands import (
    EstablishAppropriation,
    OpenFiscalYear,
    TransitionFiscalYear,
)
from fund_control.fiscal.handlers import FiscalCommandHandlers
from fund_control.fiscal.invariants import validate_fiscal_year_exists
from fund_control.fiscal.ledger import FundLedger
from fund_control.fiscal.models import ColorOfMoney, FiscalYearState, FundsCheck
from fund_control.fiscal.projections import AppropriationRegistry, FiscalYearRegistry
from fund_control.integrations import (
    ApprovalNotifier,
    AuditRecord,
    AuditSink,
    InMemoryAuditSink,
    InMemoryNotificationDispatcher,
    NotificationDispatcher,
    RoleDirectory,
    StaticRoleDirectory,
)
from fund_control.kernel.bus import InProcessBus
from fund_control.kernel.errors import (
    ApprovalRequestNotFound,
    InvalidTransition,
    StreamVersionConflict,
    VersionConflict,
    WorkflowNotConfigured,
    WorkflowNotFound,
)
from fund_control.kernel.event_store import SQLiteEventStore
from fund_control.kernel.events import Event
from fund_control.kernel.ids import generate_id
from fund_control.kernel.logging import LogOperation, get_logger
from fund_control.kernel.metrics import (
    approval_actions_total,
    budget_versions_committed_total,
    expenditures_posted_total,
    obligations_created_total,
    projection_rebuild_duration_seconds,
    track_command_duration,
)
from fund_control.kernel.money import as_decimal, validate_amount
from fund_control.kernel.policy import FundControlPolicy
from fund_control.kernel.retry import retry_projection_rebuild
from fund_control.kernel.tick import TickEngine, TickResult
from fund_control.kernel.time import RealTimeProvider, TimeProvider, today
from fund_control.obligations.balances import ObligationBalances
from fund_control.obligations.commands import (
    CancelObligation,
    CreateExpenditure,
    CreateObligation,
)
from fund_control.obligations.handlers import ObligationCommandHandlers
from fund_control.obligations.models import BonaFideNeedException
from fund_control.obligations.projections import ObligationRegistry
from fund_control.variance.analyzer import VarianceAnalyzer
from fund_control.variance.models import LineItemSummary, VarianceSummary

logger = get_logger(__name__)

BUDGET_ENTITY = "budget"


class FundControl:
    """
    Fund control main façade

    Provides a unified API for all system operations including:
    - Fiscal years and appropriations (the fiscal ledger)
    - Obligations and expenditures
    - Budget versions and the approval workflow
    - Variance analysis
    - Periodic monitoring (tick) and health

    Several instances may share one database file; each catches up with the
    log before deciding, and the guarded ledgers plus stream versions reject
    whatever another instance changed in the meantime.
    """

    def __init__(
        self,
        sqlite_path: str | Path,
        policy: FundControlPolicy | None = None,
        time_provider: TimeProvider | None = None,
        role_directory: RoleDirectory | None = None,
        audit_sink: AuditSink | None = None,
        notification_dispatcher: NotificationDispatcher | None = None,
    ) -> None:
        """
        Initialize fund control

        Args:
            sqlite_path: Path to SQLite database
            policy: Fund control policy (uses defaults if None)
            time_provider: Time provider (uses real time if None)
            role_directory: Role lookup for approvers and admins
            audit_sink: Receives one AuditRecord per committed event
            notification_dispatcher: Receives approval notifications
        """
        self.sqlite_path = Path(sqlite_path)
        self.policy = policy or FundControlPolicy()
        self.time_provider = time_provider or RealTimeProvider()
        self.role_directory = role_directory or StaticRoleDirectory()
        self.audit_sink = audit_sink or InMemoryAuditSink()
        self.notification_dispatcher = (
            notification_dispatcher or InMemoryNotificationDispatcher()
        )

        # Initialize infrastructure
        self.event_store = SQLiteEventStore(
            str(self.sqlite_path),
            busy_timeout_seconds=self.policy.db_busy_timeout_seconds,
            write_lock_attempts=self.policy.write_lock_attempts,
        )
        self.ledger = FundLedger(self.event_store, self.time_provider, self.policy)
        self.obligation_balances = ObligationBalances(self.event_store)

        self.fiscal_handlers = FiscalCommandHandlers(self.time_provider, self.policy)
        self.obligation_handlers = ObligationCommandHandlers(self.time_provider, self.policy)
        self.budget_handlers = BudgetCommandHandlers(self.time_provider, self.policy)
        self.approval_handlers = ApprovalCommandHandlers(self.time_provider, self.policy)
        self.variance_analyzer = VarianceAnalyzer(self.policy)
        self.tick_engine = TickEngine(
            self.event_store, self.ledger, self.time_provider, self.policy
        )

        self.bus = InProcessBus()
        ApprovalNotifier(
            self.notification_dispatcher, lambda request_id: self.request_registry.get(request_id)
        ).subscribe(self.bus)

        self._lock = threading.RLock()
        self._position = 0
        self._replay = retry_projection_rebuild()(self._catch_up)

        self.rebuild_projections()

    # Projections

    def _reset_projections(self) -> None:
        self.fiscal_year_registry = FiscalYearRegistry()
        self.appropriation_registry = AppropriationRegistry()
        self.budget_registry = BudgetRegistry()
        self.version_arena = BudgetVersionArena()
        self.obligation_registry = ObligationRegistry()
        self.workflow_registry = WorkflowRegistry()
        self.request_registry = ApprovalRequestRegistry()
        self._projections = [
            self.fiscal_year_registry,
            self.appropriation_registry,
            self.budget_registry,
            self.version_arena,
            self.obligation_registry,
            self.workflow_registry,
            self.request_registry,
        ]
        self._position = 0

    def rebuild_projections(self) -> None:
        """Rebuild all projections from the event store"""
        with self._lock:
            started = time.perf_counter()
            self._reset_projections()
            self._replay()
            projection_rebuild_duration_seconds.observe(time.perf_counter() - started)
            logger.info("Projections rebuilt", position=self._position)

    def _catch_up(self) -> None:
        """Apply events appended since the last seen position (by anyone)"""
        for position, event in self.event_store.load_events_after(self._position):
            for projection in self._projections:
                projection.apply_event(event)
            self._position = position

    def _entity(self, stream_type: str, stream_id: str) -> dict | None:
        lookups: dict[str, Callable[[str], dict | None]] = {
            "fiscal_year": self.fiscal_year_registry.get,
            "appropriation": self.appropriation_registry.get,
            BUDGET_ENTITY: self.budget_registry.get,
            "obligation": self.obligation_registry.get,
            "approval_request": self.request_registry.get,
            "approval_workflow": self.workflow_registry.get,
        }
        lookup = lookups.get(stream_type)
        return copy.deepcopy(lookup(stream_id)) if lookup else None

    # Write path

    def _execute(self, build: Callable[[], list[Event]]) -> list[Event]:
        """
        Decide, then post balances and append events atomically

        Args:
            build: Runs the handlers against freshly caught-up projections

        Returns:
            The committed events
        """
        with self._lock:
            self._catch_up()
            events = build()
            if not events:
                return []

            streams: dict[str, list[Event]] = {}
            for event in events:
                streams.setdefault(event.stream_id, []).append(event)
            before = {
                stream_id: self._entity(stream[0].stream_type, stream_id)
                for stream_id, stream in streams.items()
            }

            try:
                with self.event_store.transaction() as tx:
                    self._post_balances(tx.connection, events)
                    for stream_id, stream in streams.items():
                        tx.append(stream_id, stream[0].version - 1, stream)
            except StreamVersionConflict as e:
                self._catch_up()
                raise self._concurrent_change(e, streams[e.stream_id][0]) from e

            self._catch_up()
            self._count(events)
            self._emit(events, before)
            return events

    def _post_balances(self, conn: sqlite3.Connection, events: list[Event]) -> None:
        """Apply the money effect of each event to the guarded ledgers"""
        for event in events:
            payload = event.payload
            if event.event_type == "AppropriationEstablished":
                self.ledger.open_appropriation(
                    payload["appropriation_id"],
                    payload["fiscal_year_id"],
                    as_decimal(payload["amount"]),
                    date.fromisoformat(payload["expiration_date"]),
                    conn,
                )
            elif event.event_type == "FiscalYearTransitioned":
                if payload["to_state"] == FiscalYearState.LOCKED.value:
                    self.ledger.lock_fiscal_year(payload["fiscal_year_id"], conn)
            elif event.event_type == "BudgetVersionCommitted":
                self.ledger.authorize_budget(
                    payload["budget_id"], as_decimal(payload["approved_amount"]), conn
                )
            elif event.event_type == "ObligationCreated":
                amount = as_decimal(payload["amount"])
                self.ledger.reserve(payload["appropriation_id"], amount, conn)
                if self.policy.enforce_budget_ceiling:
                    self.ledger.reserve_budget(
                        payload["budget_id"], payload["appropriation_id"], amount, conn
                    )
                self.obligation_balances.open(payload["obligation_id"], amount, conn)
            elif event.event_type == "ObligationCancelled":
                amount = self.obligation_balances.close(payload["obligation_id"], conn)
                self.ledger.release(payload["appropriation_id"], amount, conn)
                if self.policy.enforce_budget_ceiling:
                    self.ledger.release_budget(payload["budget_id"], amount, conn)
            elif event.event_type == "ExpenditureRecorded":
                self.obligation_balances.post_expenditure(
                    payload["obligation_id"], as_decimal(payload["amount"]), conn
                )

    def _concurrent_change(self, error: StreamVersionConflict, first: Event) -> Exception:
        """Translate a lost append race into the domain error callers expect"""
        if first.stream_type == "approval_request":
            request = self.request_registry.get(error.stream_id)
            return InvalidTransition(
                error.stream_id,
                current=request["status"] if request else "unknown",
                attempted="act on a request another approver already advanced",
            )
        if first.stream_type == BUDGET_ENTITY:
            budget = self.budget_registry.get(error.stream_id)
            if budget is not None:
                return VersionConflict(
                    error.stream_id, budget["current_version"], budget["current_version"]
                )
        return error

    def _count(self, events: list[Event]) -> None:
        for event in events:
            payload = event.payload
            if event.event_type == "ObligationCreated":
                appropriation = self.appropriation_registry.get(payload["appropriation_id"])
                obligations_created_total.labels(
                    color_of_money=appropriation["color_of_money"] if appropriation else "unknown"
                ).inc()
            elif event.event_type == "ExpenditureRecorded":
                expenditures_posted_total.inc()
            elif event.event_type == "ApprovalActionRecorded":
                approval_actions_total.labels(
                    action=payload["action"], auto=str(payload["auto"]).lower()
                ).inc()
            elif event.event_type == "BudgetVersionCommitted":
                budget_versions_committed_total.labels(source=payload["source"]).inc()

    def _emit(self, events: list[Event], before: dict[str, dict | None]) -> None:
        """Audit every committed event, then notify subscribers"""
        for event in events:
            record = AuditRecord(
                actor_id=event.actor_id,
                action=event.event_type,
                entity_type=event.stream_type,
                entity_id=event.stream_id,
                before=before.get(event.stream_id),
                after=self._entity(event.stream_type, event.stream_id),
                occurred_at=event.occurred_at,
                event_id=event.event_id,
            )
            try:
                self.audit_sink.record(record)
            except Exception as e:
                logger.error(
                    "Audit sink failed",
                    event_id=event.event_id,
                    event_type=event.event_type,
                    error=str(e),
                    exc_info=True,
                )
        self.bus.publish_events(events)

    # Fiscal years and appropriations

    @track_command_duration("open_fiscal_year")
    def open_fiscal_year(
        self, year: int, state: str | FiscalYearState = "future", actor_id: str = "system"
    ) -> dict[str, Any]:
        """
        Open a fiscal year

        Opening a year as CURRENT moves the previous current year to PAST.

        Args:
            year: Fiscal year (named by the calendar year it ends in)
            state: future or current (past for back-filled history)
            actor_id: Actor opening the year

        Returns:
            Fiscal year dict with fiscal_year_id
        """
        command = OpenFiscalYear(year=year, state=FiscalYearState(state))
        with LogOperation(logger, "open_fiscal_year", year=year, state=command.state.value):
            events = self._execute(
                lambda: self.fiscal_handlers.handle_open_fiscal_year(
                    command, generate_id(), actor_id, self.fiscal_year_registry.fiscal_years
                )
            )
        return copy.deepcopy(self.fiscal_year_registry.get(events[-1].payload["fiscal_year_id"]))

    @track_command_duration("transition_fiscal_year")
    def transition_fiscal_year(
        self,
        fiscal_year_id: str,
        target_state: str | FiscalYearState,
        reason: str = "manual",
        actor_id: str = "system",
    ) -> dict[str, Any]:
        """
        Move a fiscal year forward (future → current → past → locked)

        Locking a year locks every appropriation in it against new
        obligations and cancellations.
        """
        command = TransitionFiscalYear(
            fiscal_year_id=fiscal_year_id,
            target_state=FiscalYearState(target_state),
            reason=reason,
        )
        with LogOperation(
            logger,
            "transition_fiscal_year",
            fiscal_year_id=fiscal_year_id,
            target_state=command.target_state.value,
        ):
            self._execute(
                lambda: self.fiscal_handlers.handle_transition_fiscal_year(
                    command, generate_id(), actor_id, self.fiscal_year_registry.fiscal_years
                )
            )
        return copy.deepcopy(self.fiscal_year_registry.get(fiscal_year_id))

    def get_current_fiscal_year(self) -> dict[str, Any] | None:
        with self._lock:
            self._catch_up()
            return copy.deepcopy(self.fiscal_year_registry.get_current())

    def list_fiscal_years(self) -> list[dict[str, Any]]:
        with self._lock:
            self._catch_up()
            return copy.deepcopy(self.fiscal_year_registry.list_all())

    @track_command_duration("establish_appropriation")
    def establish_appropriation(
        self,
        fiscal_year_id: str,
        code: str,
        name: str,
        color_of_money: str | ColorOfMoney,
        amount: Decimal | str | int,
        expiration_date: date | None = None,
        restrictions: list[str] | None = None,
        actor_id: str = "system",
    ) -> dict[str, Any]:
        """
        Establish an appropriation in a fiscal year

        Args:
            fiscal_year_id: Fiscal year the money was appropriated for
            code: Unique appropriation code (e.g., "OM-2025")
            name: Descriptive name
            color_of_money: Appropriation category
            amount: Total appropriated amount
            expiration_date: End of availability (default: by color)
            restrictions: Free-form restriction flags
            actor_id: Actor establishing the appropriation

        Returns:
            Appropriation dict with appropriation_id
        """
        command = EstablishAppropriation(
            fiscal_year_id=fiscal_year_id,
            code=code,
            name=name,
            color_of_money=ColorOfMoney(color_of_money),
            amount=amount,
            expiration_date=expiration_date,
            restrictions=restrictions or [],
        )
        with LogOperation(logger, "establish_appropriation", code=code, amount=str(amount)):
            events = self._execute(
                lambda: self.fiscal_handlers.handle_establish_appropriation(
                    command,
                    generate_id(),
                    actor_id,
                    self.fiscal_year_registry.fiscal_years,
                    self.appropriation_registry.appropriations,
                )
            )
        appropriation_id = events[0].payload["appropriation_id"]
        return copy.deepcopy(self.appropriation_registry.get(appropriation_id))

    def list_appropriations(self, fiscal_year_id: str | None = None) -> list[dict[str, Any]]:
        with self._lock:
            self._catch_up()
            if fiscal_year_id:
                return copy.deepcopy(
                    self.appropriation_registry.list_by_fiscal_year(fiscal_year_id)
                )
            return copy.deepcopy(self.appropriation_registry.list_all())

    def get_appropriation_balance(self, appropriation_id: str) -> dict[str, Any] | None:
        """Authoritative balance straight from the guarded ledger"""
        return self.ledger.get_balance(appropriation_id)

    def check_fund_availability(
        self, appropriation_id: str, amount: Decimal | str | int
    ) -> FundsCheck:
        """
        Would an obligation of ``amount`` fit right now?

        Read only; nothing is reserved. A later create_obligation can still
        fail if another obligation gets there first.

        Raises:
            InvalidAmount: If amount is not positive whole cents
            AppropriationNotFound: If the appropriation is unknown
        """
        return self.ledger.check_availability(appropriation_id, validate_amount(amount))

    # Obligations and expenditures

    @track_command_duration("create_obligation")
    def create_obligation(
        self,
        budget_id: str,
        appropriation_id: str,
        amount: Decimal | str | int,
        obligation_date: date | None = None,
        line_item_id: str | None = None,
        vendor: str | None = None,
        description: str = "",
        justification: str | None = None,
        exception_type: str | BonaFideNeedException | None = None,
        actor_id: str = "system",
    ) -> dict[str, Any]:
        """
        Obligate funds against an approved budget and an appropriation

        Args:
            budget_id: Budget with an approved version
            appropriation_id: Appropriation that funds the obligation
            amount: Obligation amount
            obligation_date: Date of the obligation (default: today)
            line_item_id: Optional line item of the approved version
            vendor: Optional vendor name
            description: Free text
            justification: Bona fide need override justification
            exception_type: Category of the bona fide need exception
            actor_id: Actor recording the obligation

        Returns:
            Obligation dict with obligation_id

        Raises:
            FundsUnavailable: If the appropriation (or budget ceiling) can't cover it
            BonaFideNeedViolation: If the date is outside the fiscal year unjustified
        """
        command = CreateObligation(
            budget_id=budget_id,
            appropriation_id=appropriation_id,
            amount=amount,
            obligation_date=obligation_date or today(self.time_provider),
            line_item_id=line_item_id,
            vendor=vendor,
            description=description,
            justification=justification,
            exception_type=BonaFideNeedException(exception_type) if exception_type else None,
        )
        with LogOperation(
            logger,
            "create_obligation",
            budget_id=budget_id,
            appropriation_id=appropriation_id,
            amount=str(amount),
            actor_id=actor_id,
        ):
            events = self._execute(
                lambda: self.obligation_handlers.handle_create_obligation(
                    command,
                    generate_id(),
                    actor_id,
                    self.budget_registry.budgets,
                    self.version_arena.versions,
                    self.appropriation_registry.appropriations,
                    self.fiscal_year_registry.fiscal_years,
                )
            )
        return copy.deepcopy(self.obligation_registry.get(events[0].payload["obligation_id"]))

    @track_command_duration("cancel_obligation")
    def cancel_obligation(
        self, obligation_id: str, reason: str = "", actor_id: str = "system"
    ) -> dict[str, Any]:
        """
        Cancel an obligation with no expenditures, releasing its funds

        Raises:
            InvalidTransition: If it is already cancelled
            ObligationHasExpenditures: If anything was spent against it
        """
        command = CancelObligation(obligation_id=obligation_id, reason=reason)
        with LogOperation(logger, "cancel_obligation", obligation_id=obligation_id):
            self._execute(
                lambda: self.obligation_handlers.handle_cancel_obligation(
                    command, generate_id(), actor_id, self.obligation_registry.obligations
                )
            )
        return copy.deepcopy(self.obligation_registry.get(obligation_id))

    @track_command_duration("create_expenditure")
    def create_expenditure(
        self,
        obligation_id: str,
        amount: Decimal | str | int,
        expenditure_date: date | None = None,
        description: str = "",
        actor_id: str = "system",
    ) -> dict[str, Any]:
        """
        Record a payment against an obligation

        Returns:
            Expenditure dict with expenditure_id

        Raises:
            ExpenditureExceedsObligation: If more than remains unliquidated
        """
        command = CreateExpenditure(
            obligation_id=obligation_id,
            amount=amount,
            expenditure_date=expenditure_date or today(self.time_provider),
            description=description,
        )
        with LogOperation(
            logger,
            "create_expenditure",
            obligation_id=obligation_id,
            amount=str(amount),
            actor_id=actor_id,
        ):
            events = self._execute(
                lambda: self.obligation_handlers.handle_create_expenditure(
                    command, generate_id(), actor_id, self.obligation_registry.obligations
                )
            )
        expenditure_id = events[0].payload["expenditure_id"]
        return copy.deepcopy(self.obligation_registry.expenditures[expenditure_id])

    def get_obligation(self, obligation_id: str) -> dict[str, Any] | None:
        with self._lock:
            self._catch_up()
            return copy.deepcopy(self.obligation_registry.get(obligation_id))

    def list_obligations(
        self,
        budget_id: str | None = None,
        appropriation_id: str | None = None,
        active_only: bool = False,
    ) -> list[dict[str, Any]]:
        with self._lock:
            self._catch_up()
            obligations = self.obligation_registry.list_obligations(
                budget_id=budget_id, appropriation_id=appropriation_id, active_only=active_only
            )
            return copy.deepcopy(obligations)

    def list_expenditures(
        self, obligation_id: str | None = None, budget_id: str | None = None
    ) -> list[dict[str, Any]]:
        with self._lock:
            self._catch_up()
            return copy.deepcopy(
                self.obligation_registry.list_expenditures(
                    obligation_id=obligation_id, budget_id=budget_id
                )
            )

    def obligation_summary(self, budget_id: str | None = None) -> dict[str, Any]:
        with self._lock:
            self._catch_up()
            return copy.deepcopy(self.obligation_registry.obligation_summary(budget_id))

    def expenditure_summary(self, budget_id: str | None = None) -> dict[str, Any]:
        with self._lock:
            self._catch_up()
            return copy.deepcopy(self.obligation_registry.expenditure_summary(budget_id))

    # Budgets and versions

    @track_command_duration("create_budget")
    def create_budget(
        self,
        organization: str,
        fiscal_year_id: str,
        title: str,
        requested_amount: Decimal | str | int,
        line_items: list[dict[str, Any] | LineItemSpec] | None = None,
        justification: str = "",
        workflow_id: str | None = None,
        actor_id: str = "system",
    ) -> dict[str, Any]:
        """
        Create a budget; version 1 is its editable draft

        Args:
            organization: Requesting organization
            fiscal_year_id: Fiscal year the budget is for
            title: Budget title
            requested_amount: Total requested
            line_items: [{category, description, amount}, ...]
            justification: Free-text justification
            workflow_id: Pin an approval workflow (default: latest for budgets)
            actor_id: Actor creating the budget

        Returns:
            Budget dict with budget_id
        """
        command = CreateBudget(
            organization=organization,
            fiscal_year_id=fiscal_year_id,
            title=title,
            requested_amount=requested_amount,
            line_items=[self._line_item(item) for item in line_items or []],
            justification=justification,
            workflow_id=workflow_id,
        )
        with LogOperation(
            logger, "create_budget", organization=organization, fiscal_year_id=fiscal_year_id
        ):
            events = self._execute(
                lambda: self.budget_handlers.handle_create_budget(
                    command,
                    generate_id(),
                    actor_id,
                    self.fiscal_year_registry.fiscal_years,
                    self.workflow_registry.workflows,
                )
            )
        return copy.deepcopy(self.budget_registry.get(events[0].payload["budget_id"]))

    @track_command_duration("revise_draft")
    def revise_draft(
        self,
        budget_id: str,
        changes: dict[str, Any] | VersionChanges,
        actor_id: str = "system",
    ) -> dict[str, Any]:
        """
        Edit the draft of a budget that was never approved

        Raises:
            InvalidTransition: If the budget was approved or is under review
        """
        command = ReviseDraft(budget_id=budget_id, changes=self._changes(changes))
        with LogOperation(logger, "revise_draft", budget_id=budget_id):
            self._execute(
                lambda: self.budget_handlers.handle_revise_draft(
                    command,
                    generate_id(),
                    actor_id,
                    self.budget_registry.budgets,
                    self.version_arena.versions,
                )
            )
        return copy.deepcopy(self.budget_registry.get(budget_id))

    @track_command_duration("create_budget_version")
    def create_budget_version(
        self,
        budget_id: str,
        changes: dict[str, Any] | VersionChanges,
        expected_version: int,
        actor_id: str = "system",
    ) -> dict[str, Any]:
        """
        Propose a change as a new pending version

        Args:
            budget_id: Budget to change
            changes: Fields to change (title, requested_amount, line_items,
                justification)
            expected_version: The current version the caller based the change on
            actor_id: Actor proposing the change

        Returns:
            The pending version dict

        Raises:
            VersionConflict: If the current version is not expected_version
            InvalidTransition: While an approval request is open
        """
        command = CreatePendingVersion(
            budget_id=budget_id,
            changes=self._changes(changes),
            expected_version=expected_version,
        )
        with LogOperation(
            logger, "create_budget_version", budget_id=budget_id, expected_version=expected_version
        ):
            events = self._execute(
                lambda: self.budget_handlers.handle_create_pending_version(
                    command,
                    generate_id(),
                    actor_id,
                    self.budget_registry.budgets,
                    self.version_arena.versions,
                )
            )
        version_number = events[-1].payload["version_number"]
        return copy.deepcopy(self.version_arena.get(budget_id, version_number))

    @track_command_duration("rollback_budget")
    def rollback_budget(
        self,
        budget_id: str,
        target_version: int,
        expected_version: int | None = None,
        actor_id: str = "system",
    ) -> dict[str, Any]:
        """
        Restore an earlier committed version as a NEW version

        Admins (policy.admin_role) commit the restored version immediately.
        Everyone else gets a pending version that is submitted into the
        approval workflow in the same operation.

        Returns:
            The new version dict (current for admins, pending otherwise)

        Raises:
            VersionNotFound: If target_version is not a committed version
            InvalidTransition: While an approval request is open
        """
        command = RollbackBudget(
            budget_id=budget_id, target_version=target_version, expected_version=expected_version
        )

        def build() -> list[Event]:
            command_id = generate_id()
            admin = self.policy.admin_role in self.role_directory.roles_for(actor_id)
            events = self.budget_handlers.handle_rollback(
                command,
                command_id,
                actor_id,
                self.budget_registry.budgets,
                self.version_arena.versions,
                commit_immediately=admin,
            )
            if not admin:
                events.extend(
                    self._submission_events(
                        budget_id,
                        command_id,
                        actor_id,
                        pending=events[-1].payload,
                        stream_version=events[-1].version,
                    )
                )
            return events

        with LogOperation(
            logger,
            "rollback_budget",
            budget_id=budget_id,
            target_version=target_version,
            actor_id=actor_id,
        ):
            events = self._execute(build)

        created = next(e for e in events if e.event_type == "BudgetVersionCreated")
        return copy.deepcopy(self.version_arena.get(budget_id, created.payload["version_number"]))

    def get_budget(self, budget_id: str) -> dict[str, Any] | None:
        with self._lock:
            self._catch_up()
            return copy.deepcopy(self.budget_registry.get(budget_id))

    def list_budgets(
        self, fiscal_year_id: str | None = None, status: str | None = None
    ) -> list[dict[str, Any]]:
        with self._lock:
            self._catch_up()
            if fiscal_year_id:
                budgets = self.budget_registry.list_by_fiscal_year(fiscal_year_id)
            else:
                budgets = self.budget_registry.list_all()
            if status:
                budgets = [b for b in budgets if b["status"] == BudgetStatus(status).value]
            return copy.deepcopy(budgets)

    def get_version_history(
        self, budget_id: str, include_pending: bool = False
    ) -> list[dict[str, Any]]:
        """
        Versions of a budget in order

        Committed versions only (one current, the rest frozen) unless
        include_pending is set.
        """
        with self._lock:
            self._catch_up()
            validate_budget_exists(budget_id, self.budget_registry.budgets)
            history = self.version_arena.history(budget_id, include_pending=include_pending)
            return copy.deepcopy(history)

    # Approval workflow

    @track_command_duration("define_workflow")
    def define_workflow(
        self,
        name: str,
        steps: list[dict[str, Any] | ApprovalStep],
        entity_type: str = BUDGET_ENTITY,
        actor_id: str = "system",
    ) -> dict[str, Any]:
        """
        Define an approval workflow; the newest one is the default

        Args:
            name: Workflow name
            steps: [{level, required_role, auto_approve_threshold?, due_in_days?}, ...]
            entity_type: Entity the workflow routes (budget)
            actor_id: Actor defining the workflow

        Raises:
            InvalidWorkflowDefinition: If levels are not 1..N
        """
        command = DefineWorkflow(
            name=name,
            entity_type=entity_type,
            steps=[s if isinstance(s, ApprovalStep) else ApprovalStep(**s) for s in steps],
        )
        return self.define_workflow_from(command, actor_id=actor_id)

    def define_workflow_from(self, command: DefineWorkflow, actor_id: str = "system") -> dict:
        """Define a workflow from a prepared command (see WorkflowBuilder)"""
        with LogOperation(logger, "define_workflow", name=command.name, levels=len(command.steps)):
            events = self._execute(
                lambda: self.approval_handlers.handle_define_workflow(
                    command, generate_id(), actor_id
                )
            )
        return copy.deepcopy(self.workflow_registry.get(events[0].payload["workflow_id"]))

    def list_workflows(self) -> list[dict[str, Any]]:
        with self._lock:
            self._catch_up()
            return copy.deepcopy(self.workflow_registry.list_all())

    @track_command_duration("submit_for_approval")
    def submit_for_approval(self, budget_id: str, actor_id: str = "system") -> dict[str, Any]:
        """
        Submit a budget's pending version into its approval workflow

        A never-approved budget without a pending version submits its
        current draft. Levels whose auto-approval threshold covers the
        amount pass immediately; if all do, the version is committed in
        the same operation.

        Returns:
            The approval request dict

        Raises:
            WorkflowNotConfigured: If no workflow applies to the budget
            InvalidTransition: If a request is open, or an approved budget
                has no pending version
        """
        command = SubmitForApproval(entity_id=budget_id)
        with LogOperation(logger, "submit_for_approval", budget_id=budget_id, actor_id=actor_id):
            events = self._execute(
                lambda: self._submission_events(command.entity_id, generate_id(), actor_id)
            )
        submitted = next(e for e in events if e.event_type == "ApprovalRequestSubmitted")
        return copy.deepcopy(self.request_registry.get(submitted.payload["request_id"]))

    @track_command_duration("process_approval")
    def process_approval(
        self,
        request_id: str,
        approver_id: str,
        action: str | ApprovalAction,
        comments: str | None = None,
    ) -> dict[str, Any]:
        """
        Act on the current level of a request

        Args:
            request_id: Approval request
            approver_id: Must hold the level's role (or be its delegate)
            action: approved, rejected or returned
            comments: Preserved in the request history

        Returns:
            The updated request dict

        Raises:
            UnauthorizedApprover: If the approver may not act on this level
            InvalidTransition: If the request is not under review
        """
        command = ProcessApproval(
            request_id=request_id,
            approver_id=approver_id,
            action=ApprovalAction(action),
            comments=comments,
        )

        def build() -> list[Event]:
            command_id = generate_id()
            events = self.approval_handlers.handle_process(
                command,
                command_id,
                approver_id,
                self.request_registry.requests,
                self.role_directory.roles_for(approver_id),
            )
            request = self.request_registry.get(request_id)
            events.extend(
                self._completion_events(events, request["entity_id"], command_id, approver_id)
            )
            return events

        with LogOperation(
            logger,
            "process_approval",
            request_id=request_id,
            approver_id=approver_id,
            action=command.action.value,
        ):
            self._execute(build)
        return copy.deepcopy(self.request_registry.get(request_id))

    @track_command_duration("delegate_approval")
    def delegate_approval(
        self,
        request_id: str,
        from_approver_id: str,
        to_approver_id: str,
        comments: str | None = None,
    ) -> dict[str, Any]:
        """
        Hand the current level to someone else; the level does not change

        Raises:
            UnauthorizedApprover: If from_approver_id may not act on the level
            InvalidTransition: If not under review, or delegating to oneself
        """
        command = DelegateApproval(
            request_id=request_id,
            from_approver_id=from_approver_id,
            to_approver_id=to_approver_id,
            comments=comments,
        )
        with LogOperation(
            logger,
            "delegate_approval",
            request_id=request_id,
            approver_id=from_approver_id,
            to_approver_id=to_approver_id,
        ):
            self._execute(
                lambda: self.approval_handlers.handle_delegate(
                    command,
                    generate_id(),
                    from_approver_id,
                    self.request_registry.requests,
                    self.role_directory.roles_for(from_approver_id),
                )
            )
        return copy.deepcopy(self.request_registry.get(request_id))

    def get_approval_request(self, request_id: str) -> dict[str, Any]:
        with self._lock:
            self._catch_up()
            request = self.request_registry.get(request_id)
            if request is None:
                raise ApprovalRequestNotFound(request_id)
            return copy.deepcopy(request)

    def get_approval_history(self, entity_id: str) -> list[dict[str, Any]]:
        """Every request for the entity, oldest first, each with its actions in order"""
        with self._lock:
            self._catch_up()
            return copy.deepcopy(self.request_registry.list_for_entity(entity_id))

    def get_pending_approvals(self, approver_id: str) -> list[dict[str, Any]]:
        """Requests whose current level this approver can act on now"""
        with self._lock:
            self._catch_up()
            pending = self.request_registry.list_pending_for(
                approver_id, self.role_directory.roles_for(approver_id)
            )
            return copy.deepcopy(pending)

    def _workflow_for(self, budget: dict) -> dict:
        if budget["workflow_id"]:
            workflow = self.workflow_registry.get(budget["workflow_id"])
            if workflow is None:
                raise WorkflowNotFound(budget["workflow_id"])
            return workflow
        workflow = self.workflow_registry.get_default(BUDGET_ENTITY)
        if workflow is None:
            raise WorkflowNotConfigured(BUDGET_ENTITY, budget["budget_id"])
        return workflow

    def _submission_events(
        self,
        budget_id: str,
        command_id: str,
        actor_id: str,
        pending: dict | None = None,
        stream_version: int | None = None,
    ) -> list[Event]:
        """
        Events for submitting a budget (budget stream and request stream)

        ``pending`` and ``stream_version`` describe a version created
        earlier in the same batch (non-admin rollback).
        """
        budgets = self.budget_registry.budgets
        budget = validate_budget_exists(budget_id, budgets)
        validate_no_open_request(budget, "submit")
        workflow = self._workflow_for(budget)

        events: list[Event] = []
        if pending is None:
            if budget["pending_version"] is not None:
                pending = self.version_arena.get(budget_id, budget["pending_version"])
            elif budget["authorized_version"] is None:
                events = self.budget_handlers.handle_clone_draft(
                    budget_id, command_id, actor_id, budgets, self.version_arena.versions
                )
                pending = events[-1].payload
                stream_version = events[-1].version
            else:
                raise InvalidTransition(
                    budget_id,
                    current="approved with no pending version",
                    attempted="submit (create a version first)",
                )

        approval_events = self.approval_handlers.handle_submit(
            command_id,
            actor_id,
            workflow,
            BUDGET_ENTITY,
            budget_id,
            pending["version_number"],
            as_decimal(pending["content"]["requested_amount"]),
            returned_request=self.request_registry.find_returned(budget_id),
        )
        request_id = approval_events[0].payload["request_id"]

        events.extend(
            self.budget_handlers.handle_change_status(
                budget_id,
                BudgetStatus.UNDER_REVIEW,
                request_id,
                command_id,
                actor_id,
                budgets,
                stream_version=stream_version,
            )
        )
        status_event = events[-1]
        events.extend(approval_events)
        events.extend(
            self._completion_events(
                approval_events,
                budget_id,
                command_id,
                actor_id,
                stream_version=status_event.version,
                from_status=BudgetStatus.UNDER_REVIEW,
                pending=pending,
            )
        )
        return events

    def _completion_events(
        self,
        approval_events: list[Event],
        budget_id: str,
        command_id: str,
        actor_id: str | None,
        stream_version: int | None = None,
        from_status: BudgetStatus | None = None,
        pending: dict | None = None,
    ) -> list[Event]:
        """
        Budget consequences of a completed request

        approved: commit the pending version, budget approved
        rejected/returned: discard the pending version; a budget with an
        authorized version goes back to approved, a never-approved one
        takes the request's outcome
        """
        completed = [e for e in approval_events if e.event_type == "ApprovalRequestCompleted"]
        if not completed:
            return []
        outcome = completed[-1].payload
        budgets = self.budget_registry.budgets
        budget = validate_budget_exists(budget_id, budgets)

        if outcome["outcome"] == RequestStatus.APPROVED.value:
            pending = pending or self.version_arena.get(budget_id, outcome["version_number"])
            events = self.budget_handlers.handle_commit_version(
                CommitVersion(
                    budget_id=budget_id,
                    version_number=outcome["version_number"],
                    expected_version=pending["base_version"],
                    source="approval",
                ),
                command_id,
                actor_id,
                budgets,
                self.version_arena.versions,
                request_id=outcome["request_id"],
                stream_version=stream_version,
                pending=pending,
            )
            to_status = BudgetStatus.APPROVED
        else:
            events = self.budget_handlers.handle_discard_pending(
                budget_id,
                f"request {outcome['outcome']}",
                command_id,
                actor_id,
                budgets,
                stream_version=stream_version,
            )
            to_status = (
                BudgetStatus.APPROVED
                if budget["authorized_version"] is not None
                else BudgetStatus(outcome["outcome"])
            )

        if events:
            stream_version = events[-1].version
        events.extend(
            self.budget_handlers.handle_change_status(
                budget_id,
                to_status,
                outcome["request_id"],
                command_id,
                actor_id,
                budgets,
                stream_version=stream_version,
                from_status=from_status,
            )
        )
        return events

    # Variance

    def get_variance_summary(
        self, budget_id: str | None = None, fiscal_year_id: str | None = None
    ) -> VarianceSummary:
        """
        Approved vs. obligated vs. expended

        Args:
            budget_id: One budget
            fiscal_year_id: Every budget of a fiscal year
            (neither: every budget)
        """
        with self._lock:
            self._catch_up()
            if budget_id:
                budgets = [validate_budget_exists(budget_id, self.budget_registry.budgets)]
                scope = budget_id
            elif fiscal_year_id:
                validate_fiscal_year_exists(fiscal_year_id, self.fiscal_year_registry.fiscal_years)
                budgets = self.budget_registry.list_by_fiscal_year(fiscal_year_id)
                scope = fiscal_year_id
            else:
                budgets = self.budget_registry.list_all()
                scope = "all"
            return self.variance_analyzer.summarize(budgets, scope)

    def line_item_summary(self, budget_id: str) -> LineItemSummary:
        """Per line item execution of the authorized version (the draft if none)"""
        with self._lock:
            self._catch_up()
            budget = validate_budget_exists(budget_id, self.budget_registry.budgets)
            version = self.version_arena.get(
                budget_id, budget["authorized_version"] or budget["current_version"]
            )
            return self.variance_analyzer.line_items(
                budget,
                version,
                self.obligation_registry.list_obligations(budget_id=budget_id),
                self.obligation_registry.list_expenditures(budget_id=budget_id),
            )

    # Monitoring operations

    def tick(self) -> TickResult:
        """
        Run the periodic monitoring loop

        Moves fiscal years along the calendar (when the policy allows),
        then evaluates all triggers.

        Returns:
            TickResult with triggered events and fiscal-year transitions
        """
        with self._lock:
            self._catch_up()
            transitions = (
                self._advance_fiscal_years() if self.policy.auto_advance_fiscal_years else []
            )
            result = self.tick_engine.tick(
                self.appropriation_registry,
                self.budget_registry,
                self.version_arena,
                self.request_registry,
            )
            before = {f"tick-{result.tick_id}": None}
            self._catch_up()
            self._emit(self.event_store.load_stream(f"tick-{result.tick_id}"), before)
            result.fiscal_year_transitions = transitions
            return result

    def _advance_fiscal_years(self) -> list[Event]:
        """Calendar-driven transitions, past-bound first so one year stays current"""
        on = today(self.time_provider)
        due = []
        for fiscal_year in self.fiscal_year_registry.list_all():
            state = FiscalYearState(fiscal_year["state"])
            target = state_for_date(fiscal_year["year"], on)
            if target.rank() > state.rank():
                due.append((fiscal_year["fiscal_year_id"], target))
        due.sort(key=lambda item: item[1].rank(), reverse=True)

        transitions: list[Event] = []
        for fiscal_year_id, target in due:
            fiscal_year = self.fiscal_year_registry.get(fiscal_year_id)
            if FiscalYearState(fiscal_year["state"]).rank() >= target.rank():
                continue
            command = TransitionFiscalYear(
                fiscal_year_id=fiscal_year_id, target_state=target, reason="calendar"
            )
            transitions.extend(
                self._execute(
                    lambda: self.fiscal_handlers.handle_transition_fiscal_year(
                        command, generate_id(), "system", self.fiscal_year_registry.fiscal_years
                    )
                )
            )
        return transitions

    def health(self) -> dict[str, Any]:
        """
        Current fund position and system counts

        Returns:
            Dict with event/stream counts, the current fiscal year, totals
            from the guarded ledger, budgets by status and open requests
        """
        with self._lock:
            self._catch_up()
            balances = self.ledger.list_balances()
            appropriated = sum((b["appropriated"] for b in balances), Decimal("0.00"))
            obligated = sum((b["obligated"] for b in balances), Decimal("0.00"))

            budgets_by_status: dict[str, int] = {}
            for budget in self.budget_registry.list_all():
                budgets_by_status[budget["status"]] = budgets_by_status.get(budget["status"], 0) + 1

            now = self.time_provider.now()
            under_review = self.request_registry.list_under_review()
            current = self.fiscal_year_registry.get_current()

            return {
                "events": self.event_store.count_events(),
                "streams": self.event_store.count_streams(),
                "position": self._position,
                "current_fiscal_year": current["year"] if current else None,
                "appropriations": len(balances),
                "total_appropriated": appropriated,
                "total_obligated": obligated,
                "total_available": appropriated - obligated,
                "budgets_by_status": budgets_by_status,
                "requests_under_review": len(under_review),
                "overdue_requests": sum(
                    1
                    for r in under_review
                    if r["due_at"] and datetime.fromisoformat(r["due_at"]) < now
                ),
            }

    def readiness(self) -> dict[str, bool]:
        """Are the event log and the balance tables reachable?"""
        checks = {}
        for table in ("events", "appropriation_balances", "budget_balances", "obligation_balances"):
            try:
                with self.event_store.connect() as conn:
                    conn.execute(f"SELECT 1 FROM {table} LIMIT 1").fetchall()
                checks[table] = True
            except sqlite3.Error as e:
                logger.warning("Readiness check failed", table=table, error=str(e))
                checks[table] = False
        return checks

    def get_policy(self) -> FundControlPolicy:
        """Get current fund control policy"""
        return self.policy

    # Input conversion

    @staticmethod
    def _line_item(item: dict[str, Any] | LineItemSpec) -> LineItemSpec:
        return item if isinstance(item, LineItemSpec) else LineItemSpec(**item)

    @classmethod
    def _changes(cls, changes: dict[str, Any] | VersionChanges) -> VersionChanges:
        if isinstance(changes, VersionChanges):
            return changes
        values = dict(changes)
        if values.get("line_items") is not None:
            values["line_items"] = [cls._line_item(i) for i in values["line_items"]]
        return VersionChanges(**values)
