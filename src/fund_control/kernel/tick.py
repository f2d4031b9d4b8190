"""
TickEngine - Periodic trigger evaluation orchestrator

The TickEngine runs the monitoring loop. It's called periodically
(e.g., hourly, daily) to check appropriation balances, line-item
reconciliation and overdue approval steps, and records what it found.

Triggers only ever report. Moving money or advancing approvals is never
done by a tick; fiscal-year rollover is issued by the façade as an
ordinary transition before the engine runs.

Fun fact: Budget offices run the same loop by hand every month - the
"status of funds" report is a tick with a spreadsheet!
"""

import time
from datetime import datetime

from pydantic import BaseModel

from fund_control.approval.projections import ApprovalRequestRegistry
from fund_control.approval.triggers import evaluate_overdue_steps_trigger
from fund_control.budget.projections import BudgetRegistry, BudgetVersionArena
from fund_control.budget.triggers import evaluate_line_item_reconciliation_trigger
from fund_control.fiscal.ledger import FundLedger
from fund_control.fiscal.projections import AppropriationRegistry
from fund_control.fiscal.triggers import (
    evaluate_balance_low_trigger,
    evaluate_overobligation_trigger,
)
from fund_control.kernel.event_store import SQLiteEventStore
from fund_control.kernel.events import Event, create_event
from fund_control.kernel.ids import generate_id
from fund_control.kernel.logging import LogOperation, get_logger
from fund_control.kernel.metrics import (
    appropriation_utilization_ratio,
    tick_execution_duration_seconds,
)
from fund_control.kernel.policy import FundControlPolicy
from fund_control.kernel.time import TimeProvider

logger = get_logger(__name__)

WARNING_TYPES = {
    "AppropriationBalanceLow",
    "LineItemReconciliationWarning",
    "ApprovalStepOverdue",
}

VIOLATION_TYPES = {"AppropriationOverobligationDetected"}


class SystemTick(BaseModel):
    tick_id: str
    tick_at: datetime
    triggered_count: int


class TickResult:
    """
    Result of a tick evaluation

    Contains the trigger events and any fiscal-year transitions the
    façade issued before the triggers ran.
    """

    def __init__(
        self,
        tick_id: str,
        tick_at: datetime,
        triggered_events: list[Event],
        fiscal_year_transitions: list[Event] | None = None,
    ):
        self.tick_id = tick_id
        self.tick_at = tick_at
        self.triggered_events = triggered_events
        self.fiscal_year_transitions = fiscal_year_transitions or []

    def has_warnings(self) -> bool:
        return any(e.event_type in WARNING_TYPES for e in self.triggered_events)

    def has_violations(self) -> bool:
        """Overobligation found by replay - the guarded ledger was bypassed"""
        return any(e.event_type in VIOLATION_TYPES for e in self.triggered_events)

    def summary(self) -> str:
        """Human-readable summary of tick result"""
        parts = [
            f"Tick {self.tick_id} at {self.tick_at}",
            f"Events: {len(self.triggered_events)}",
            f"Fiscal year transitions: {len(self.fiscal_year_transitions)}",
        ]

        if self.has_violations():
            parts.append("VIOLATION: appropriation over-obligated")
        elif self.has_warnings():
            parts.append("Warning conditions detected")

        return " | ".join(parts)


class TickEngine:
    """
    Orchestrates periodic trigger evaluation

    The TickEngine:
    1. Reads authoritative balances and the projections
    2. Evaluates all triggers
    3. Records a SystemTick plus the triggered events on the tick's stream
       (a tick where nothing triggered records nothing)
    4. Refreshes the appropriation utilization gauge
    """

    def __init__(
        self,
        event_store: SQLiteEventStore,
        ledger: FundLedger,
        time_provider: TimeProvider,
        policy: FundControlPolicy,
    ):
        self.event_store = event_store
        self.ledger = ledger
        self.time_provider = time_provider
        self.policy = policy

    def tick(
        self,
        appropriation_registry: AppropriationRegistry,
        budget_registry: BudgetRegistry,
        version_arena: BudgetVersionArena,
        request_registry: ApprovalRequestRegistry,
    ) -> TickResult:
        """
        Execute a single tick evaluation

        Returns:
            TickResult with the triggered events (SystemTick excluded)
        """
        started = time.perf_counter()
        now = self.time_provider.now()
        tick_id = generate_id()

        with LogOperation(logger, "tick_evaluation", tick_id=tick_id):
            balances = self.ledger.list_balances()

            triggered_events = evaluate_balance_low_trigger(balances, now, self.policy, tick_id)
            triggered_events.extend(
                evaluate_overobligation_trigger(appropriation_registry.list_all(), now, tick_id)
            )
            triggered_events.extend(
                evaluate_line_item_reconciliation_trigger(
                    budget_registry.list_all(), version_arena.versions, now, tick_id
                )
            )
            triggered_events.extend(
                evaluate_overdue_steps_trigger(
                    request_registry.list_under_review(), now, tick_id
                )
            )

            logger.debug(
                "Triggers evaluated",
                tick_id=tick_id,
                triggered_count=len(triggered_events),
                event_types=[e.event_type for e in triggered_events],
            )

            if triggered_events:
                triggered_events = self._record(tick_id, now, triggered_events)

            for balance in balances:
                appropriation_utilization_ratio.labels(
                    appropriation_id=balance["appropriation_id"]
                ).set(float(balance["obligated"] / balance["appropriated"]))

            logger.info(
                "Tick evaluation completed",
                tick_id=tick_id,
                triggered_events_count=len(triggered_events),
                has_warnings=any(e.event_type in WARNING_TYPES for e in triggered_events),
                has_violations=any(e.event_type in VIOLATION_TYPES for e in triggered_events),
            )

        tick_execution_duration_seconds.observe(time.perf_counter() - started)
        return TickResult(tick_id=tick_id, tick_at=now, triggered_events=triggered_events)

    def _record(self, tick_id: str, now: datetime, triggered_events: list[Event]) -> list[Event]:
        """Append a SystemTick and the triggered events on the tick's own stream"""
        tick_event = create_event(
            event_id=generate_id(),
            stream_id=f"tick-{tick_id}",
            stream_type="tick",
            event_type="SystemTick",
            occurred_at=now,
            command_id=tick_id,
            actor_id="system",
            payload=SystemTick(
                tick_id=tick_id, tick_at=now, triggered_count=len(triggered_events)
            ).model_dump(mode="json"),
            version=1,
        )

        # Trigger events are built at version 1; number them along the stream
        stream = [
            event.model_copy(update={"version": i})
            for i, event in enumerate([tick_event] + triggered_events, start=1)
        ]
        self.event_store.append(f"tick-{tick_id}", 0, stream)
        return stream[1:]
