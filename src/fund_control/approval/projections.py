"""
Approval Module Projections - Read Models for workflows and requests

WorkflowRegistry: workflow templates; the latest one per entity type is
    the default
ApprovalRequestRegistry: request state and action history
"""

from fund_control.approval.models import RequestStatus
from fund_control.kernel.events import Event


class WorkflowRegistry:
    """
    Built from events: ApprovalWorkflowDefined

    Query methods: get, get_default, list_all
    """

    def __init__(self) -> None:
        self.workflows: dict[str, dict] = {}
        self._defaults: dict[str, str] = {}

    def apply_event(self, event: Event) -> None:
        if event.event_type == "ApprovalWorkflowDefined":
            payload = event.payload
            self.workflows[payload["workflow_id"]] = {
                "workflow_id": payload["workflow_id"],
                "name": payload["name"],
                "entity_type": payload["entity_type"],
                "steps": payload["steps"],
                "defined_at": payload["defined_at"],
                "defined_by": payload["defined_by"],
                "version": event.version,
            }
            self._defaults[payload["entity_type"]] = payload["workflow_id"]

    def get(self, workflow_id: str) -> dict | None:
        return self.workflows.get(workflow_id)

    def get_default(self, entity_type: str) -> dict | None:
        workflow_id = self._defaults.get(entity_type)
        return self.workflows.get(workflow_id) if workflow_id else None

    def list_all(self) -> list[dict]:
        return list(self.workflows.values())


class ApprovalRequestRegistry:
    """
    Built from events: ApprovalRequestSubmitted, ApprovalLevelEntered,
                       ApprovalActionRecorded, ApprovalRequestCompleted

    Query methods: get, list_for_entity, find_returned, list_under_review,
                   list_pending_for
    """

    def __init__(self) -> None:
        self.requests: dict[str, dict] = {}

    def apply_event(self, event: Event) -> None:
        if event.event_type == "ApprovalRequestSubmitted":
            self._apply_submitted(event)
        elif event.event_type == "ApprovalLevelEntered":
            self._apply_level_entered(event)
        elif event.event_type == "ApprovalActionRecorded":
            self._apply_action_recorded(event)
        elif event.event_type == "ApprovalRequestCompleted":
            self._apply_completed(event)

    def _apply_submitted(self, event: Event) -> None:
        payload = event.payload
        request = self.requests.get(payload["request_id"])
        if request is None:
            request = {
                "request_id": payload["request_id"],
                "entity_type": payload["entity_type"],
                "entity_id": payload["entity_id"],
                "actions": [],
                "submission_count": 0,
                "created_at": payload["submitted_at"],
            }
            self.requests[payload["request_id"]] = request

        request.update(
            {
                "workflow_id": payload["workflow_id"],
                "steps": payload["steps"],
                "version_number": payload["version_number"],
                "amount": payload["amount"],
                "submitted_by": payload["submitted_by"],
                "submitted_at": payload["submitted_at"],
                "status": RequestStatus.SUBMITTED.value,
                "current_level": None,
                "assignee_id": None,
                "due_at": None,
                "completed_at": None,
                "submission_count": request["submission_count"] + 1,
                "version": event.version,
            }
        )

    def _apply_level_entered(self, event: Event) -> None:
        payload = event.payload
        request = self.requests.get(payload["request_id"])
        if request:
            request["status"] = RequestStatus.UNDER_REVIEW.value
            request["current_level"] = payload["level"]
            request["assignee_id"] = None
            request["due_at"] = payload["due_at"]
            request["version"] = event.version

    def _apply_action_recorded(self, event: Event) -> None:
        payload = event.payload
        request = self.requests.get(payload["request_id"])
        if request:
            request["actions"].append(
                {
                    "approver_id": payload["approver_id"],
                    "level": payload["level"],
                    "action": payload["action"],
                    "auto": payload["auto"],
                    "delegated_to": payload["delegated_to"],
                    "comments": payload["comments"],
                    "recorded_at": payload["recorded_at"],
                }
            )
            if payload["delegated_to"]:
                request["assignee_id"] = payload["delegated_to"]
            request["version"] = event.version

    def _apply_completed(self, event: Event) -> None:
        payload = event.payload
        request = self.requests.get(payload["request_id"])
        if request:
            request["status"] = payload["outcome"]
            request["current_level"] = None
            request["assignee_id"] = None
            request["due_at"] = None
            request["completed_at"] = payload["completed_at"]
            request["version"] = event.version

    def get(self, request_id: str) -> dict | None:
        return self.requests.get(request_id)

    def list_for_entity(self, entity_id: str) -> list[dict]:
        return sorted(
            (r for r in self.requests.values() if r["entity_id"] == entity_id),
            key=lambda r: r["created_at"],
        )

    def find_returned(self, entity_id: str) -> dict | None:
        """The entity's returned request, if any (reused on resubmission)"""
        for request in self.list_for_entity(entity_id):
            if request["status"] == RequestStatus.RETURNED.value:
                return request
        return None

    def list_under_review(self) -> list[dict]:
        return [
            r for r in self.requests.values() if r["status"] == RequestStatus.UNDER_REVIEW.value
        ]

    def list_pending_for(self, approver_id: str, roles: set[str]) -> list[dict]:
        """Requests whose current level this approver can act on"""
        pending = []
        for request in self.list_under_review():
            assignee = request["assignee_id"]
            step = request["steps"][request["current_level"] - 1]
            if assignee == approver_id or (
                assignee is None and step["required_role"] in roles
            ):
                pending.append(request)
        return pending
