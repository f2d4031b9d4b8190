"""
Approval Module Triggers - Overdue step reporting

Due dates are advisory. The engine never expires a request; the tick only
reports levels that have waited too long so reminders can go out.
"""

from datetime import datetime

from fund_control.approval.events import ApprovalStepOverdue
from fund_control.kernel.events import Event, create_event
from fund_control.kernel.ids import generate_id


def evaluate_overdue_steps_trigger(
    requests_under_review: list[dict],
    now: datetime,
    tick_id: str,
) -> list[Event]:
    """
    Report every current level past its due date

    Args:
        requests_under_review: Request dicts from the registry
        now: Current time
        tick_id: Tick that owns the emitted events

    Returns:
        List of ApprovalStepOverdue events
    """
    events: list[Event] = []

    for request in requests_under_review:
        if not request["due_at"]:
            continue
        due_at = datetime.fromisoformat(request["due_at"])
        if now <= due_at:
            continue

        step = request["steps"][request["current_level"] - 1]
        events.append(
            create_event(
                event_id=generate_id(),
                stream_id=f"tick-{tick_id}",
                stream_type="tick",
                event_type="ApprovalStepOverdue",
                occurred_at=now,
                command_id=tick_id,
                actor_id="system",
                payload=ApprovalStepOverdue(
                    request_id=request["request_id"],
                    entity_id=request["entity_id"],
                    level=request["current_level"],
                    required_role=step["required_role"],
                    assignee_id=request["assignee_id"],
                    due_at=due_at,
                    detected_at=now,
                    days_overdue=(now - due_at).days,
                ).model_dump(mode="json"),
                version=1,
            )
        )

    return events
