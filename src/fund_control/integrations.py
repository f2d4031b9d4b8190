"""
Integrations - Identity, audit and notification boundaries

The core never talks to a directory service, an audit warehouse or an
e-mail gateway directly. It talks to three small interfaces:

- RoleDirectory: who holds which roles
- AuditSink: one AuditRecord per committed event
- NotificationDispatcher: approval notifications, fed from the event bus

Each comes with an in-memory default (tests, embedding) and a logging
default (the CLI).
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Protocol

from pydantic import BaseModel, Field

from fund_control.approval.models import RequestStatus
from fund_control.kernel.bus import InProcessBus
from fund_control.kernel.events import Event
from fund_control.kernel.ids import generate_id
from fund_control.kernel.logging import get_logger

logger = get_logger(__name__)


# Identity


class RoleDirectory(Protocol):
    """Pluggable role lookup for approvers and administrators"""

    def roles_for(self, actor_id: str) -> set[str]:
        """Return all roles held by an actor (empty if unknown)"""
        ...


class StaticRoleDirectory:
    """
    Fixed actor -> roles mapping

    Example:
        >>> directory = StaticRoleDirectory({"alice": ["budget_analyst"]})
        >>> directory.roles_for("alice")
        {'budget_analyst'}
    """

    def __init__(self, assignments: dict[str, list[str] | set[str]] | None = None) -> None:
        self._assignments = {
            actor: set(roles) for actor, roles in (assignments or {}).items()
        }

    def roles_for(self, actor_id: str) -> set[str]:
        return set(self._assignments.get(actor_id, set()))

    def grant(self, actor_id: str, role: str) -> None:
        self._assignments.setdefault(actor_id, set()).add(role)

    @classmethod
    def from_file(cls, path: str | Path) -> "StaticRoleDirectory":
        """Load ``{"actor": ["role", ...]}`` from a JSON file"""
        return cls(json.loads(Path(path).read_text()))


# Audit


class AuditRecord(BaseModel):
    """
    One audited change

    ``before`` and ``after`` are snapshots of the affected entity's read
    model around the operation that produced the event.
    """

    audit_id: str = Field(default_factory=generate_id)
    actor_id: str | None
    action: str
    entity_type: str
    entity_id: str
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    occurred_at: datetime
    event_id: str

    model_config = {"frozen": True}


class AuditSink(Protocol):
    def record(self, record: AuditRecord) -> None: ...


class InMemoryAuditSink:
    def __init__(self) -> None:
        self.records: list[AuditRecord] = []

    def record(self, record: AuditRecord) -> None:
        self.records.append(record)

    def for_entity(self, entity_id: str) -> list[AuditRecord]:
        return [r for r in self.records if r.entity_id == entity_id]


class LoggingAuditSink:
    """Writes every audit record as a structured log line"""

    def __init__(self) -> None:
        self.logger = get_logger("fund_control.audit")

    def record(self, record: AuditRecord) -> None:
        self.logger.info(
            "Audit record",
            audit_id=record.audit_id,
            action=record.action,
            entity_type=record.entity_type,
            entity_id=record.entity_id,
            event_id=record.event_id,
            occurred_at=record.occurred_at.isoformat(),
        )


# Notifications


class Notification(BaseModel):
    notification_id: str = Field(default_factory=generate_id)
    kind: str  # level_entered, delegated, completed
    request_id: str
    entity_id: str
    recipient_id: str | None = None
    recipient_role: str | None = None
    message: str
    created_at: datetime

    model_config = {"frozen": True}


class NotificationDispatcher(Protocol):
    def dispatch(self, notification: Notification) -> None: ...


class InMemoryNotificationDispatcher:
    def __init__(self) -> None:
        self.sent: list[Notification] = []

    def dispatch(self, notification: Notification) -> None:
        self.sent.append(notification)


class LoggingNotificationDispatcher:
    def __init__(self) -> None:
        self.logger = get_logger("fund_control.notifications")

    def dispatch(self, notification: Notification) -> None:
        self.logger.info(
            "Notification",
            kind=notification.kind,
            request_id=notification.request_id,
            recipient_role=notification.recipient_role,
            message=notification.message,
        )


class ApprovalNotifier:
    """
    Event bus subscriber that turns approval events into notifications

    Runs after the events are committed and the projections caught up, so
    a level that was entered and auto-approved in the same operation is
    already behind the request and is not announced.
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        get_request: Callable[[str], dict | None],
    ) -> None:
        self.dispatcher = dispatcher
        self.get_request = get_request

    def subscribe(self, bus: InProcessBus) -> None:
        bus.register_event_handler("ApprovalLevelEntered", self.on_level_entered)
        bus.register_event_handler("ApprovalActionRecorded", self.on_action_recorded)
        bus.register_event_handler("ApprovalRequestCompleted", self.on_completed)

    def on_level_entered(self, event: Event) -> None:
        payload = event.payload
        request = self.get_request(payload["request_id"])
        if (
            request is None
            or request["status"] != RequestStatus.UNDER_REVIEW.value
            or request["current_level"] != payload["level"]
        ):
            return
        self.dispatcher.dispatch(
            Notification(
                kind="level_entered",
                request_id=payload["request_id"],
                entity_id=request["entity_id"],
                recipient_role=payload["required_role"],
                message=f"Level {payload['level']} approval needed for "
                f"{request['entity_type']} {request['entity_id']}",
                created_at=event.occurred_at,
            )
        )

    def on_action_recorded(self, event: Event) -> None:
        payload = event.payload
        if not payload["delegated_to"]:
            return
        request = self.get_request(payload["request_id"])
        self.dispatcher.dispatch(
            Notification(
                kind="delegated",
                request_id=payload["request_id"],
                entity_id=request["entity_id"] if request else "",
                recipient_id=payload["delegated_to"],
                message=f"Level {payload['level']} approval delegated to you",
                created_at=event.occurred_at,
            )
        )

    def on_completed(self, event: Event) -> None:
        payload = event.payload
        request = self.get_request(payload["request_id"])
        self.dispatcher.dispatch(
            Notification(
                kind="completed",
                request_id=payload["request_id"],
                entity_id=payload["entity_id"],
                recipient_id=request["submitted_by"] if request else None,
                message=f"Request for {payload['entity_type']} {payload['entity_id']} "
                f"version {payload['version_number']} {payload['outcome']}",
                created_at=event.occurred_at,
            )
        )
