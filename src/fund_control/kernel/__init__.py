"""
Kernel - Core event sourcing infrastructure

The kernel provides the machinery every fund-control module builds upon:
the append-only event store, write transactions shared with the balance
ledgers, deterministic time, structured logging and metrics.

Fun fact: Event sourcing was inspired by accountants - they never erase ledger
entries, they add correcting entries. Fund control simply takes them literally.
"""

from fund_control.kernel.errors import (
    CommandIdempotencyViolation,
    DomainError,
    EventStoreError,
    FundControlError,
    InvariantViolation,
    PersistenceUnavailable,
    StreamVersionConflict,
)
from fund_control.kernel.events import Event
from fund_control.kernel.ids import generate_id
from fund_control.kernel.time import RealTimeProvider, TestTimeProvider, TimeProvider

__all__ = [
    # IDs
    "generate_id",
    # Time
    "TimeProvider",
    "RealTimeProvider",
    "TestTimeProvider",
    # Events
    "Event",
    # Errors
    "FundControlError",
    "DomainError",
    "InvariantViolation",
    "EventStoreError",
    "CommandIdempotencyViolation",
    "StreamVersionConflict",
    "PersistenceUnavailable",
]
