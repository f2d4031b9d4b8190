"""
Approval Module Handlers - Command→Event transformation for the workflow engine

Handlers are the decision-making layer. They:
1. Load current state (request registry, workflow registry)
2. Validate against the transition table and the approver's roles
3. Generate events if valid
4. Return events for append to event store

Entering a level whose auto-approval threshold covers the amount records an
automatic approval and moves on, so one submission can cascade through
several levels - or complete the request outright.

Budget consequences (committing or discarding the pending version) are
produced by the façade from the ApprovalRequestCompleted event.
"""

from datetime import timedelta
from decimal import Decimal

from fund_control.approval.commands import DefineWorkflow, DelegateApproval, ProcessApproval
from fund_control.approval.events import (
    ApprovalActionRecorded,
    ApprovalLevelEntered,
    ApprovalRequestCompleted,
    ApprovalRequestSubmitted,
    ApprovalWorkflowDefined,
)
from fund_control.approval.invariants import (
    auto_approves,
    current_step,
    request_state,
    validate_can_act,
    validate_request_exists,
    validate_transition,
    validate_workflow_steps,
)
from fund_control.approval.models import (
    ApprovalAction,
    ApprovalStep,
    RequestState,
    RequestStatus,
)
from fund_control.kernel.errors import InvalidTransition
from fund_control.kernel.events import Event, create_event
from fund_control.kernel.ids import generate_id
from fund_control.kernel.policy import FundControlPolicy
from fund_control.kernel.time import TimeProvider

_OUTCOMES = {
    ApprovalAction.REJECTED: RequestStatus.REJECTED,
    ApprovalAction.RETURNED: RequestStatus.RETURNED,
}


class ApprovalCommandHandlers:
    """
    Command handlers for the approval workflow engine
    """

    def __init__(self, time_provider: TimeProvider, policy: FundControlPolicy) -> None:
        self.time_provider = time_provider
        self.policy = policy

    def handle_define_workflow(
        self,
        command: DefineWorkflow,
        command_id: str,
        actor_id: str | None,
    ) -> list[Event]:
        """
        Handle DefineWorkflow command

        Raises:
            InvalidWorkflowDefinition: If levels are not 1..N
        """
        now = self.time_provider.now()
        validate_workflow_steps(command.steps)

        workflow_id = generate_id()
        payload = ApprovalWorkflowDefined(
            workflow_id=workflow_id,
            name=command.name,
            entity_type=command.entity_type,
            steps=command.steps,
            defined_at=now,
            defined_by=actor_id,
        ).model_dump(mode="json")

        return [
            create_event(
                event_id=generate_id(),
                stream_id=workflow_id,
                stream_type="approval_workflow",
                event_type="ApprovalWorkflowDefined",
                occurred_at=now,
                command_id=command_id,
                actor_id=actor_id,
                payload=payload,
                version=1,
            )
        ]

    def handle_submit(
        self,
        command_id: str,
        actor_id: str | None,
        workflow: dict,
        entity_type: str,
        entity_id: str,
        version_number: int,
        amount: Decimal,
        returned_request: dict | None = None,
    ) -> list[Event]:
        """
        Submit an entity version into a workflow

        A returned request is reused (its history is kept) and restarts at
        level 1; otherwise a new request is opened.

        Returns:
            Submitted, level and action events; ends with
            ApprovalRequestCompleted when every level auto-approved

        Raises:
            InvalidTransition: If the reused request is not returned
        """
        now = self.time_provider.now()

        if returned_request is not None:
            request_id = returned_request["request_id"]
            validate_transition(request_id, request_state(returned_request), RequestStatus.SUBMITTED)
            version = returned_request["version"]
        else:
            request_id = generate_id()
            validate_transition(
                request_id, RequestState(status=RequestStatus.DRAFT), RequestStatus.SUBMITTED
            )
            version = 0

        steps = [ApprovalStep(**s) for s in workflow["steps"]]
        payload = ApprovalRequestSubmitted(
            request_id=request_id,
            workflow_id=workflow["workflow_id"],
            steps=steps,
            entity_type=entity_type,
            entity_id=entity_id,
            version_number=version_number,
            amount=amount,
            submitted_by=actor_id,
            submitted_at=now,
            resubmission=returned_request is not None,
        ).model_dump(mode="json")

        events = [
            self._event(
                request_id, "ApprovalRequestSubmitted", payload, version + 1, command_id, actor_id
            )
        ]
        validate_transition(
            request_id, RequestState(status=RequestStatus.SUBMITTED), RequestStatus.UNDER_REVIEW
        )
        events.extend(
            self._enter_levels(
                request_id,
                steps,
                1,
                amount,
                (entity_type, entity_id, version_number),
                events[-1].version,
                command_id,
                actor_id,
            )
        )
        return events

    def handle_process(
        self,
        command: ProcessApproval,
        command_id: str,
        actor_id: str | None,
        requests: dict[str, dict],
        roles: set[str],
    ) -> list[Event]:
        """
        Handle ProcessApproval command

        Raises:
            ApprovalRequestNotFound: If the request doesn't exist
            InvalidTransition: If not under review, or action is "delegated"
            UnauthorizedApprover: If the approver may not act on this level
        """
        now = self.time_provider.now()

        request = validate_request_exists(command.request_id, requests)
        validate_can_act(request, command.approver_id, roles)
        if command.action == ApprovalAction.DELEGATED:
            raise InvalidTransition(
                request["request_id"],
                current=str(request_state(request)),
                attempted="delegate without a delegate (use DelegateApproval)",
            )

        state = request_state(request)
        step = current_step(request)
        steps = [ApprovalStep(**s) for s in request["steps"]]
        entity = (request["entity_type"], request["entity_id"], request["version_number"])

        action_payload = ApprovalActionRecorded(
            request_id=request["request_id"],
            level=step.level,
            action=command.action,
            approver_id=command.approver_id,
            comments=command.comments,
            recorded_at=now,
        ).model_dump(mode="json")
        events = [
            self._event(
                request["request_id"],
                "ApprovalActionRecorded",
                action_payload,
                request["version"] + 1,
                command_id,
                actor_id,
            )
        ]

        if command.action == ApprovalAction.APPROVED:
            if step.level < len(steps):
                validate_transition(request["request_id"], state, RequestStatus.UNDER_REVIEW)
                events.extend(
                    self._enter_levels(
                        request["request_id"],
                        steps,
                        step.level + 1,
                        Decimal(str(request["amount"])),
                        entity,
                        events[-1].version,
                        command_id,
                        actor_id,
                    )
                )
            else:
                validate_transition(request["request_id"], state, RequestStatus.APPROVED)
                events.append(
                    self._completed(
                        request["request_id"],
                        RequestStatus.APPROVED,
                        entity,
                        events[-1].version,
                        command_id,
                        actor_id,
                    )
                )
        else:
            outcome = _OUTCOMES[command.action]
            validate_transition(request["request_id"], state, outcome)
            events.append(
                self._completed(
                    request["request_id"], outcome, entity, events[-1].version, command_id, actor_id
                )
            )

        return events

    def handle_delegate(
        self,
        command: DelegateApproval,
        command_id: str,
        actor_id: str | None,
        requests: dict[str, dict],
        roles: set[str],
    ) -> list[Event]:
        """
        Handle DelegateApproval command

        The level stays where it is; from now on only the delegate may act.

        Raises:
            ApprovalRequestNotFound: If the request doesn't exist
            InvalidTransition: If not under review, or delegating to oneself
            UnauthorizedApprover: If the delegator may not act on this level
        """
        now = self.time_provider.now()

        request = validate_request_exists(command.request_id, requests)
        validate_can_act(request, command.from_approver_id, roles)
        if command.to_approver_id == command.from_approver_id:
            raise InvalidTransition(
                request["request_id"],
                current=str(request_state(request)),
                attempted="delegate to self",
            )

        payload = ApprovalActionRecorded(
            request_id=request["request_id"],
            level=request["current_level"],
            action=ApprovalAction.DELEGATED,
            approver_id=command.from_approver_id,
            delegated_to=command.to_approver_id,
            comments=command.comments,
            recorded_at=now,
        ).model_dump(mode="json")

        return [
            self._event(
                request["request_id"],
                "ApprovalActionRecorded",
                payload,
                request["version"] + 1,
                command_id,
                actor_id,
            )
        ]

    def _enter_levels(
        self,
        request_id: str,
        steps: list[ApprovalStep],
        start_level: int,
        amount: Decimal,
        entity: tuple[str, str, int],
        version: int,
        command_id: str,
        actor_id: str | None,
    ) -> list[Event]:
        """Enter start_level, cascading through auto-approving levels"""
        now = self.time_provider.now()
        events: list[Event] = []

        for step in steps[start_level - 1 :]:
            due_at = now + timedelta(days=step.due_in_days) if step.due_in_days else None
            version += 1
            events.append(
                self._event(
                    request_id,
                    "ApprovalLevelEntered",
                    ApprovalLevelEntered(
                        request_id=request_id,
                        level=step.level,
                        required_role=step.required_role,
                        due_at=due_at,
                        entered_at=now,
                    ).model_dump(mode="json"),
                    version,
                    command_id,
                    actor_id,
                )
            )
            if not auto_approves(step, amount):
                return events

            version += 1
            events.append(
                self._event(
                    request_id,
                    "ApprovalActionRecorded",
                    ApprovalActionRecorded(
                        request_id=request_id,
                        level=step.level,
                        action=ApprovalAction.APPROVED,
                        approver_id=None,
                        auto=True,
                        comments=f"Amount {amount} within auto-approval threshold "
                        f"{step.auto_approve_threshold}",
                        recorded_at=now,
                    ).model_dump(mode="json"),
                    version,
                    command_id,
                    actor_id,
                )
            )

        events.append(
            self._completed(request_id, RequestStatus.APPROVED, entity, version, command_id, actor_id)
        )
        return events

    def _completed(
        self,
        request_id: str,
        outcome: RequestStatus,
        entity: tuple[str, str, int],
        version: int,
        command_id: str,
        actor_id: str | None,
    ) -> Event:
        entity_type, entity_id, version_number = entity
        payload = ApprovalRequestCompleted(
            request_id=request_id,
            entity_type=entity_type,
            entity_id=entity_id,
            version_number=version_number,
            outcome=outcome,
            completed_at=self.time_provider.now(),
        ).model_dump(mode="json")
        return self._event(
            request_id, "ApprovalRequestCompleted", payload, version + 1, command_id, actor_id
        )

    def _event(
        self,
        request_id: str,
        event_type: str,
        payload: dict,
        version: int,
        command_id: str,
        actor_id: str | None,
    ) -> Event:
        return create_event(
            event_id=generate_id(),
            stream_id=request_id,
            stream_type="approval_request",
            event_type=event_type,
            occurred_at=self.time_provider.now(),
            command_id=command_id,
            actor_id=actor_id,
            payload=payload,
            version=version,
        )
