"""
Obligation Module Handlers - Command→Event transformation

Handlers validate against projections and build events. The money itself
moves in the façade's transaction guard (fund ledger reservation, budget
ceiling, obligation balance row), which commits atomically with these
events or not at all.
"""

from fund_control.kernel.events import Event, create_event
from fund_control.kernel.ids import generate_id
from fund_control.kernel.logging import get_logger
from fund_control.kernel.money import validate_amount
from fund_control.kernel.policy import FundControlPolicy
from fund_control.kernel.time import TimeProvider
from fund_control.obligations.commands import (
    CancelObligation,
    CreateExpenditure,
    CreateObligation,
)
from fund_control.obligations.events import (
    ExpenditureRecorded,
    ObligationCancelled,
    ObligationCreated,
)
from fund_control.obligations.invariants import (
    check_bona_fide_need,
    validate_appropriation_exists,
    validate_budget_authorized,
    validate_expenditure_date,
    validate_expenditure_fits,
    validate_line_item,
    validate_no_expenditures,
    validate_not_expired,
    validate_obligation_active,
    validate_obligation_exists,
)

logger = get_logger(__name__)


class ObligationCommandHandlers:
    """
    Command handlers for obligations and expenditures
    """

    def __init__(self, time_provider: TimeProvider, policy: FundControlPolicy) -> None:
        self.time_provider = time_provider
        self.policy = policy

    def handle_create_obligation(
        self,
        command: CreateObligation,
        command_id: str,
        actor_id: str | None,
        budgets: dict[str, dict],
        versions: dict[tuple[str, int], dict],
        appropriations: dict[str, dict],
        fiscal_years: dict[str, dict],
    ) -> list[Event]:
        """
        Handle CreateObligation command

        Validates:
        - Amount is positive whole cents
        - Budget exists and has an approved version
        - Appropriation exists and has not expired on the obligation date
        - Bona fide need (or an accepted override)
        - Line item, if given, is in the approved version

        Funds availability is NOT checked here - the guarded reservation
        does that atomically at commit.

        Raises:
            InvalidAmount, BudgetNotFound, BudgetNotAuthorized,
            AppropriationNotFound, AppropriationExpired, FiscalYearNotFound,
            BonaFideNeedViolation, LineItemNotFound
        """
        now = self.time_provider.now()

        amount = validate_amount(command.amount)
        budget = validate_budget_authorized(command.budget_id, budgets)
        appropriation = validate_appropriation_exists(command.appropriation_id, appropriations)
        validate_not_expired(appropriation, command.obligation_date)

        exception = check_bona_fide_need(
            fiscal_years.get(appropriation["fiscal_year_id"]),
            appropriation,
            command.obligation_date,
            command.justification,
            self.policy,
        )
        if exception:
            logger.warning(
                "Bona fide need override accepted",
                budget_id=command.budget_id,
                appropriation_id=command.appropriation_id,
                obligation_date=command.obligation_date.isoformat(),
                exception_type=command.exception_type.value if command.exception_type else None,
            )

        authorized = versions[(command.budget_id, budget["authorized_version"])]
        validate_line_item(command.budget_id, authorized["content"], command.line_item_id)

        obligation_id = generate_id()
        payload = ObligationCreated(
            obligation_id=obligation_id,
            budget_id=command.budget_id,
            appropriation_id=command.appropriation_id,
            fiscal_year_id=appropriation["fiscal_year_id"],
            line_item_id=command.line_item_id,
            amount=amount,
            obligation_date=command.obligation_date,
            vendor=command.vendor,
            description=command.description,
            bona_fide_need_exception=exception,
            exception_type=command.exception_type if exception else None,
            justification=command.justification if exception else None,
            created_at=now,
            created_by=actor_id,
        ).model_dump(mode="json")

        return [
            create_event(
                event_id=generate_id(),
                stream_id=obligation_id,
                stream_type="obligation",
                event_type="ObligationCreated",
                occurred_at=now,
                command_id=command_id,
                actor_id=actor_id,
                payload=payload,
                version=1,
            )
        ]

    def handle_cancel_obligation(
        self,
        command: CancelObligation,
        command_id: str,
        actor_id: str | None,
        obligations: dict[str, dict],
    ) -> list[Event]:
        """
        Handle CancelObligation command

        Raises:
            ObligationNotFound: If the obligation doesn't exist
            InvalidTransition: If it is already cancelled
            ObligationHasExpenditures: If anything was expended against it
        """
        now = self.time_provider.now()

        obligation = validate_obligation_exists(command.obligation_id, obligations)
        validate_obligation_active(obligation, "cancel")
        validate_no_expenditures(obligation)

        payload = ObligationCancelled(
            obligation_id=obligation["obligation_id"],
            budget_id=obligation["budget_id"],
            appropriation_id=obligation["appropriation_id"],
            line_item_id=obligation["line_item_id"],
            amount=obligation["amount"],
            reason=command.reason,
            cancelled_at=now,
            cancelled_by=actor_id,
        ).model_dump(mode="json")

        return [
            create_event(
                event_id=generate_id(),
                stream_id=obligation["obligation_id"],
                stream_type="obligation",
                event_type="ObligationCancelled",
                occurred_at=now,
                command_id=command_id,
                actor_id=actor_id,
                payload=payload,
                version=obligation["version"] + 1,
            )
        ]

    def handle_create_expenditure(
        self,
        command: CreateExpenditure,
        command_id: str,
        actor_id: str | None,
        obligations: dict[str, dict],
    ) -> list[Event]:
        """
        Handle CreateExpenditure command

        Raises:
            InvalidAmount: If the amount is not positive whole cents
            ObligationNotFound: If the obligation doesn't exist
            InvalidTransition: If the obligation is cancelled
            InvalidExpenditureDate: If dated before the obligation
            ExpenditureExceedsObligation: If more than remains
        """
        now = self.time_provider.now()

        amount = validate_amount(command.amount)
        obligation = validate_obligation_exists(command.obligation_id, obligations)
        validate_obligation_active(obligation, "record expenditure")
        validate_expenditure_date(obligation, command.expenditure_date)
        validate_expenditure_fits(obligation, amount)

        payload = ExpenditureRecorded(
            expenditure_id=generate_id(),
            obligation_id=obligation["obligation_id"],
            budget_id=obligation["budget_id"],
            appropriation_id=obligation["appropriation_id"],
            line_item_id=obligation["line_item_id"],
            amount=amount,
            expenditure_date=command.expenditure_date,
            description=command.description,
            recorded_at=now,
            recorded_by=actor_id,
        ).model_dump(mode="json")

        return [
            create_event(
                event_id=generate_id(),
                stream_id=obligation["obligation_id"],
                stream_type="obligation",
                event_type="ExpenditureRecorded",
                occurred_at=now,
                command_id=command_id,
                actor_id=actor_id,
                payload=payload,
                version=obligation["version"] + 1,
            )
        ]
