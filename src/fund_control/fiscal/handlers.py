"""
Fiscal Module Handlers - Command→Event transformation

Handlers are the decision-making layer. They:
1. Load current state (from projections)
2. Validate invariants
3. Generate events if valid
4. Return events for append to event store

Balance-table effects (opening an appropriation's balance row, locking a
year's appropriations) are applied by the façade inside the same
transaction as the append.
"""

from fund_control.fiscal.calendar import default_expiration, fiscal_year_window
from fund_control.fiscal.commands import (
    EstablishAppropriation,
    OpenFiscalYear,
    TransitionFiscalYear,
)
from fund_control.fiscal.events import (
    AppropriationEstablished,
    FiscalYearOpened,
    FiscalYearTransitioned,
)
from fund_control.fiscal.invariants import (
    validate_expiration_date,
    validate_fiscal_year_exists,
    validate_fiscal_year_open,
    validate_fiscal_year_transition,
    validate_unique_code,
    validate_unique_year,
)
from fund_control.fiscal.models import FiscalYearState
from fund_control.kernel.errors import InvalidTransition
from fund_control.kernel.events import Event, create_event
from fund_control.kernel.ids import generate_id
from fund_control.kernel.money import validate_amount
from fund_control.kernel.policy import FundControlPolicy
from fund_control.kernel.time import TimeProvider


class FiscalCommandHandlers:
    """
    Command handlers for fiscal years and appropriations
    """

    def __init__(self, time_provider: TimeProvider, policy: FundControlPolicy) -> None:
        self.time_provider = time_provider
        self.policy = policy

    def handle_open_fiscal_year(
        self,
        command: OpenFiscalYear,
        command_id: str,
        actor_id: str | None,
        fiscal_years: dict[str, dict],
    ) -> list[Event]:
        """
        Handle OpenFiscalYear command

        Raises:
            DuplicateFiscalYear: If the year is already open
            InvalidTransition: If opened directly as LOCKED
        """
        now = self.time_provider.now()
        validate_unique_year(command.year, fiscal_years)

        if command.state == FiscalYearState.LOCKED:
            raise InvalidTransition(
                f"FY{command.year}", current="unopened", attempted="open as locked"
            )

        fiscal_year_id = generate_id()

        start, end = fiscal_year_window(command.year)
        events: list[Event] = []
        if command.state == FiscalYearState.CURRENT:
            events.extend(
                self._demote_current(fiscal_years, command_id, actor_id, exclude=None)
            )

        payload = FiscalYearOpened(
            fiscal_year_id=fiscal_year_id,
            year=command.year,
            start_date=start,
            end_date=end,
            state=command.state,
            opened_at=now,
            opened_by=actor_id,
        ).model_dump(mode="json")

        events.append(
            create_event(
                event_id=generate_id(),
                stream_id=fiscal_year_id,
                stream_type="fiscal_year",
                event_type="FiscalYearOpened",
                occurred_at=now,
                command_id=command_id,
                actor_id=actor_id,
                payload=payload,
                version=1,
            )
        )
        return events

    def handle_transition_fiscal_year(
        self,
        command: TransitionFiscalYear,
        command_id: str,
        actor_id: str | None,
        fiscal_years: dict[str, dict],
    ) -> list[Event]:
        """
        Handle TransitionFiscalYear command

        Making a year CURRENT demotes whichever year was current to PAST in
        the same batch, keeping exactly one current year.

        Raises:
            FiscalYearNotFound: If the fiscal year doesn't exist
            InvalidTransition: If the move is not forward
        """
        fiscal_year = validate_fiscal_year_exists(command.fiscal_year_id, fiscal_years)
        validate_fiscal_year_transition(fiscal_year, command.target_state)

        events: list[Event] = []
        if command.target_state == FiscalYearState.CURRENT:
            events.extend(
                self._demote_current(
                    fiscal_years, command_id, actor_id, exclude=command.fiscal_year_id
                )
            )
        events.append(
            self._transition_event(
                fiscal_year, command.target_state, command.reason, command_id, actor_id
            )
        )
        return events

    def handle_establish_appropriation(
        self,
        command: EstablishAppropriation,
        command_id: str,
        actor_id: str | None,
        fiscal_years: dict[str, dict],
        appropriations: dict[str, dict],
    ) -> list[Event]:
        """
        Handle EstablishAppropriation command

        Raises:
            FiscalYearNotFound: If the fiscal year doesn't exist
            InvalidTransition: If the fiscal year is locked
            DuplicateAppropriationCode: If the code is taken
            InvalidAmount: If the amount is not positive whole cents
            AppropriationExpired: If the expiration precedes the fiscal year
        """
        now = self.time_provider.now()

        fiscal_year = validate_fiscal_year_exists(command.fiscal_year_id, fiscal_years)
        validate_fiscal_year_open(fiscal_year)
        validate_unique_code(command.code, appropriations)
        amount = validate_amount(command.amount)

        expiration = command.expiration_date or default_expiration(
            fiscal_year["year"], command.color_of_money
        )
        window_start, _ = fiscal_year_window(fiscal_year["year"])
        validate_expiration_date(command.code, expiration, window_start)

        appropriation_id = generate_id()
        payload = AppropriationEstablished(
            appropriation_id=appropriation_id,
            fiscal_year_id=command.fiscal_year_id,
            code=command.code,
            name=command.name,
            color_of_money=command.color_of_money,
            amount=amount,
            expiration_date=expiration,
            restrictions=command.restrictions,
            established_at=now,
            established_by=actor_id,
        ).model_dump(mode="json")

        return [
            create_event(
                event_id=generate_id(),
                stream_id=appropriation_id,
                stream_type="appropriation",
                event_type="AppropriationEstablished",
                occurred_at=now,
                command_id=command_id,
                actor_id=actor_id,
                payload=payload,
                version=1,
            )
        ]

    def _demote_current(
        self,
        fiscal_years: dict[str, dict],
        command_id: str,
        actor_id: str | None,
        exclude: str | None,
    ) -> list[Event]:
        return [
            self._transition_event(fy, FiscalYearState.PAST, "superseded", command_id, actor_id)
            for fy in fiscal_years.values()
            if fy["state"] == FiscalYearState.CURRENT.value and fy["fiscal_year_id"] != exclude
        ]

    def _transition_event(
        self,
        fiscal_year: dict,
        target: FiscalYearState,
        reason: str,
        command_id: str,
        actor_id: str | None,
    ) -> Event:
        now = self.time_provider.now()
        payload = FiscalYearTransitioned(
            fiscal_year_id=fiscal_year["fiscal_year_id"],
            year=fiscal_year["year"],
            from_state=FiscalYearState(fiscal_year["state"]),
            to_state=target,
            reason=reason,
            transitioned_at=now,
            transitioned_by=actor_id,
        ).model_dump(mode="json")

        return create_event(
            event_id=generate_id(),
            stream_id=fiscal_year["fiscal_year_id"],
            stream_type="fiscal_year",
            event_type="FiscalYearTransitioned",
            occurred_at=now,
            command_id=command_id,
            actor_id=actor_id,
            payload=payload,
            version=fiscal_year["version"] + 1,
        )
