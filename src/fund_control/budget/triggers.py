"""
Budget Module Triggers - Line-item reconciliation monitoring

Line items that don't add up to the requested amount are a soft warning:
they never block a version, but every tick re-reports them for the
authorized version until a corrected version is approved.
"""

from datetime import datetime
from decimal import Decimal

from fund_control.budget.events import LineItemReconciliationWarning
from fund_control.kernel.events import Event, create_event
from fund_control.kernel.ids import generate_id


def evaluate_line_item_reconciliation_trigger(
    budgets: list[dict],
    versions: dict[tuple[str, int], dict],
    now: datetime,
    tick_id: str,
) -> list[Event]:
    """
    Check the authorized version of every approved budget

    Args:
        budgets: Budget dicts from the registry
        versions: The version arena
        now: Current time
        tick_id: Tick that owns the emitted events

    Returns:
        List of LineItemReconciliationWarning events
    """
    events: list[Event] = []

    for budget in budgets:
        if budget["authorized_version"] is None:
            continue
        version = versions.get((budget["budget_id"], budget["authorized_version"]))
        if version is None or not version["content"]["line_items"]:
            continue

        requested = Decimal(str(version["content"]["requested_amount"]))
        total = sum(
            (Decimal(str(item["amount"])) for item in version["content"]["line_items"]),
            Decimal("0"),
        )
        if total == requested:
            continue

        events.append(
            create_event(
                event_id=generate_id(),
                stream_id=f"tick-{tick_id}",
                stream_type="tick",
                event_type="LineItemReconciliationWarning",
                occurred_at=now,
                command_id=tick_id,
                actor_id="system",
                payload=LineItemReconciliationWarning(
                    budget_id=budget["budget_id"],
                    version_number=version["version_number"],
                    detected_at=now,
                    requested_amount=requested,
                    line_item_total=total,
                    difference=total - requested,
                ).model_dump(mode="json"),
                version=1,
            )
        )

    return events
