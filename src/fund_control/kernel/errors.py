"""
Custom exceptions for Fund Control

Well-defined error hierarchy enables precise error handling and
clear error messages for the API layers that call into the core.

Domain errors (DomainError and below) are caller-recoverable outcomes of a
request. EventStoreError and below are infrastructure faults; they are never
raised for a business rule.

Fun fact: The Anti-Deficiency Act dates back to 1870. Congress passed it after
agencies kept spending money before it was appropriated, then asking for
"deficiency" appropriations to cover the hole!
"""

from decimal import Decimal


class FundControlError(Exception):
    """Base exception for all Fund Control errors"""

    pass


# Infrastructure errors


class EventStoreError(FundControlError):
    """Base class for event store and persistence errors"""

    pass


class CommandIdempotencyViolation(EventStoreError):
    """
    Raised when attempting to execute a command with duplicate command_id

    This is actually SUCCESS - idempotency means the command was already
    processed, so we return the original events without re-executing.
    """

    def __init__(self, command_id: str, message: str = "") -> None:
        self.command_id = command_id
        super().__init__(
            message or f"Command {command_id} already processed (idempotency preserved)"
        )


class StreamVersionConflict(EventStoreError):
    """
    Raised when stream version doesn't match expected (optimistic locking)

    Indicates concurrent modification - caller should reload and retry.
    """

    def __init__(
        self, stream_id: str, expected_version: int, actual_version: int
    ) -> None:
        self.stream_id = stream_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Stream {stream_id} version mismatch: "
            f"expected {expected_version}, got {actual_version}"
        )


class PersistenceUnavailable(EventStoreError):
    """
    Raised when the database cannot be reached or locked for writing

    This is the only genuine system fault - it is not a domain outcome and
    says nothing about whether funds are available.
    """

    def __init__(self, db_path: str, reason: str) -> None:
        self.db_path = db_path
        self.reason = reason
        super().__init__(f"Persistence layer unavailable at {db_path}: {reason}")


# Domain errors


class DomainError(FundControlError):
    """Base class for errors that reject a request on business grounds"""

    pass


class InvariantViolation(DomainError):
    """
    Raised when a financial-integrity invariant would be violated

    Invariants MUST hold. Examples: obligated <= appropriated,
    sum(expenditures) <= obligation amount, bona fide need.
    """

    pass


class InvalidAmount(InvariantViolation):
    """Raised when an amount is not positive or has sub-cent precision"""

    def __init__(self, amount: Decimal | str, reason: str) -> None:
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid amount {amount}: {reason}")


class FundsUnavailable(InvariantViolation):
    """
    Raised when a reservation would exceed the available balance

    The shortfall is how much more would be needed for the request to fit.
    Nothing is created when this is raised.
    """

    def __init__(
        self,
        appropriation_id: str,
        requested: Decimal,
        available: Decimal,
        shortfall: Decimal,
        message: str = "",
    ) -> None:
        self.appropriation_id = appropriation_id
        self.requested = requested
        self.available = available
        self.shortfall = shortfall
        super().__init__(
            message
            or f"Funds unavailable on appropriation {appropriation_id}: requested "
            f"{requested}, available {available}, shortfall {shortfall}"
        )


class BudgetCeilingExceeded(FundsUnavailable):
    """Raised when an obligation would exceed the budget's approved ceiling"""

    def __init__(
        self,
        budget_id: str,
        appropriation_id: str,
        requested: Decimal,
        available: Decimal,
        shortfall: Decimal,
    ) -> None:
        self.budget_id = budget_id
        super().__init__(
            appropriation_id,
            requested,
            available,
            shortfall,
            message=f"Budget {budget_id} ceiling exceeded: requested {requested}, "
            f"available {available}, shortfall {shortfall}",
        )


class AppropriationExpired(InvariantViolation):
    """Raised when obligating against an appropriation past its expiration"""

    def __init__(self, appropriation_id: str, expiration_date: str, reason: str = "") -> None:
        self.appropriation_id = appropriation_id
        self.expiration_date = expiration_date
        super().__init__(
            reason
            or f"Appropriation {appropriation_id} expired on {expiration_date} - "
            "expired funds may not incur new obligations"
        )


class FiscalYearLocked(AppropriationExpired):
    """Raised when modifying an appropriation under a locked fiscal year"""

    def __init__(self, appropriation_id: str, fiscal_year_id: str) -> None:
        self.fiscal_year_id = fiscal_year_id
        super().__init__(
            appropriation_id,
            expiration_date="",
            reason=f"Fiscal year {fiscal_year_id} is locked - appropriation "
            f"{appropriation_id} can no longer be modified",
        )


class BonaFideNeedViolation(InvariantViolation):
    """Raised when an obligation date falls outside the appropriation's fiscal year"""

    def __init__(
        self, obligation_date: str, fiscal_year: int, window_start: str, window_end: str
    ) -> None:
        self.obligation_date = obligation_date
        self.fiscal_year = fiscal_year
        self.window_start = window_start
        self.window_end = window_end
        super().__init__(
            f"Obligation date {obligation_date} is outside FY{fiscal_year} "
            f"({window_start} to {window_end}) - a justified override is required"
        )


class ObligationHasExpenditures(InvariantViolation):
    """Raised when cancelling an obligation that already has expenditures"""

    def __init__(self, obligation_id: str, expended: Decimal) -> None:
        self.obligation_id = obligation_id
        self.expended = expended
        super().__init__(
            f"Obligation {obligation_id} has {expended} in expenditures and cannot be cancelled"
        )


class ExpenditureExceedsObligation(InvariantViolation):
    """Raised when an expenditure would push spending past the obligation amount"""

    def __init__(
        self, obligation_id: str, amount: Decimal, obligated: Decimal, remaining: Decimal
    ) -> None:
        self.obligation_id = obligation_id
        self.amount = amount
        self.obligated = obligated
        self.remaining = remaining
        super().__init__(
            f"Expenditure {amount} exceeds remaining {remaining} on obligation "
            f"{obligation_id} (obligated: {obligated})"
        )


class InvalidExpenditureDate(InvariantViolation):
    """Raised when an expenditure predates its obligation"""

    def __init__(self, obligation_id: str, expenditure_date: str, obligation_date: str) -> None:
        self.obligation_id = obligation_id
        self.expenditure_date = expenditure_date
        self.obligation_date = obligation_date
        super().__init__(
            f"Expenditure dated {expenditure_date} precedes obligation "
            f"{obligation_id} dated {obligation_date}"
        )


class CeilingBelowObligations(InvariantViolation):
    """Raised when a new authorized amount would fall below existing obligations"""

    def __init__(self, budget_id: str, ceiling: Decimal, obligated: Decimal) -> None:
        self.budget_id = budget_id
        self.ceiling = ceiling
        self.obligated = obligated
        super().__init__(
            f"Budget {budget_id} ceiling {ceiling} is below obligated amount {obligated}"
        )


class InvalidWorkflowDefinition(InvariantViolation):
    """Raised when approval workflow steps are malformed"""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Invalid approval workflow: {reason}")


class UnauthorizedApprover(DomainError):
    """Raised when an actor may not act on the current approval level"""

    def __init__(self, request_id: str, approver_id: str, level: int, required: str) -> None:
        self.request_id = request_id
        self.approver_id = approver_id
        self.level = level
        self.required = required
        super().__init__(
            f"Approver {approver_id} cannot act on request {request_id} at level "
            f"{level} (requires {required})"
        )


class InvalidTransition(DomainError):
    """Raised when a state change is not allowed from the current state"""

    def __init__(self, entity_id: str, current: str, attempted: str) -> None:
        self.entity_id = entity_id
        self.current = current
        self.attempted = attempted
        super().__init__(f"{entity_id}: cannot {attempted} while {current}")


class BudgetNotAuthorized(InvalidTransition):
    """Raised when obligating against a budget that has no approved version"""

    def __init__(self, budget_id: str, status: str) -> None:
        super().__init__(budget_id, current=f"{status} with no authorized version", attempted="obligate")
        self.budget_id = budget_id


class VersionConflict(DomainError):
    """Raised when the budget's current version moved since the caller read it"""

    def __init__(self, budget_id: str, expected_version: int, current_version: int) -> None:
        self.budget_id = budget_id
        self.expected_version = expected_version
        self.current_version = current_version
        super().__init__(
            f"Budget {budget_id} is at version {current_version}, expected "
            f"{expected_version} - reload and retry"
        )


class VersionNotFound(DomainError):
    """Raised when a version is not part of the budget's committed chain"""

    def __init__(self, budget_id: str, version_number: int) -> None:
        self.budget_id = budget_id
        self.version_number = version_number
        super().__init__(f"Version {version_number} not found in budget {budget_id}")


# Lookup errors


class FiscalYearNotFound(DomainError):
    """Raised when fiscal year does not exist"""

    def __init__(self, fiscal_year_id: str) -> None:
        self.fiscal_year_id = fiscal_year_id
        super().__init__(f"Fiscal year {fiscal_year_id} not found")


class DuplicateFiscalYear(DomainError):
    """Raised when a fiscal year number is opened twice"""

    def __init__(self, year: int) -> None:
        self.year = year
        super().__init__(f"Fiscal year {year} already exists")


class AppropriationNotFound(DomainError):
    """Raised when appropriation does not exist"""

    def __init__(self, appropriation_id: str) -> None:
        self.appropriation_id = appropriation_id
        super().__init__(f"Appropriation {appropriation_id} not found")


class DuplicateAppropriationCode(DomainError):
    """Raised when an appropriation code is reused"""

    def __init__(self, code: str) -> None:
        self.code = code
        super().__init__(f"Appropriation code {code} already exists")


class BudgetNotFound(DomainError):
    """Raised when budget does not exist"""

    def __init__(self, budget_id: str) -> None:
        self.budget_id = budget_id
        super().__init__(f"Budget {budget_id} not found")


class LineItemNotFound(DomainError):
    """Raised when a line item is not in the budget's authorized version"""

    def __init__(self, budget_id: str, line_item_id: str) -> None:
        self.budget_id = budget_id
        self.line_item_id = line_item_id
        super().__init__(f"Line item {line_item_id} not found in budget {budget_id}")


class ObligationNotFound(DomainError):
    """Raised when obligation does not exist"""

    def __init__(self, obligation_id: str) -> None:
        self.obligation_id = obligation_id
        super().__init__(f"Obligation {obligation_id} not found")


class ApprovalRequestNotFound(DomainError):
    """Raised when approval request does not exist"""

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        super().__init__(f"Approval request {request_id} not found")


class WorkflowNotFound(DomainError):
    """Raised when approval workflow template does not exist"""

    def __init__(self, workflow_id: str) -> None:
        self.workflow_id = workflow_id
        super().__init__(f"Approval workflow {workflow_id} not found")


class WorkflowNotConfigured(DomainError):
    """Raised when no approval workflow is available for an entity"""

    def __init__(self, entity_type: str, entity_id: str) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"No approval workflow configured for {entity_type} {entity_id}"
        )
