"""
Fund Ledger - Atomic check-and-increment of obligated balances

This is the one place where a race directly causes an Anti-Deficiency Act
violation, so the check and the increment are a single guarded UPDATE:

    UPDATE appropriation_balances
       SET obligated_cents = obligated_cents + :amount
     WHERE appropriation_id = :id
       AND obligated_cents + :amount <= appropriated_cents
       AND ...

If no row was updated, the request did not fit (or the appropriation is
expired, locked, or unknown) and nothing changed. There is no read-modify-
write in application code.

The tables live in the event store's database. Every method accepts the
connection of an open event-store transaction so the balance change and
the events recording it commit together; without one, the method opens its
own transaction.

Budget ceilings use the same technique: once a budget version is approved,
obligations against the budget consume its ceiling atomically.
"""

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date
from decimal import Decimal

from fund_control.fiscal.invariants import assess_ada_risk
from fund_control.fiscal.models import AdaRisk, FundsCheck
from fund_control.kernel.errors import (
    AppropriationExpired,
    AppropriationNotFound,
    BudgetCeilingExceeded,
    BudgetNotAuthorized,
    CeilingBelowObligations,
    FiscalYearLocked,
    FundsUnavailable,
    InvariantViolation,
)
from fund_control.kernel.event_store import SQLiteEventStore
from fund_control.kernel.logging import get_logger
from fund_control.kernel.metrics import funds_unavailable_total
from fund_control.kernel.money import from_cents, to_cents, validate_amount
from fund_control.kernel.policy import FundControlPolicy
from fund_control.kernel.time import TimeProvider, today

logger = get_logger(__name__)


class FundLedger:
    """
    Guarded balance tables for appropriations and budget ceilings
    """

    def __init__(
        self,
        event_store: SQLiteEventStore,
        time_provider: TimeProvider,
        policy: FundControlPolicy,
    ) -> None:
        self.event_store = event_store
        self.time_provider = time_provider
        self.policy = policy
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        with self.event_store.connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS appropriation_balances (
                    appropriation_id TEXT PRIMARY KEY,
                    fiscal_year_id TEXT NOT NULL,
                    appropriated_cents INTEGER NOT NULL CHECK (appropriated_cents > 0),
                    obligated_cents INTEGER NOT NULL DEFAULT 0,
                    expires_on TEXT NOT NULL,
                    locked INTEGER NOT NULL DEFAULT 0,

                    CHECK (obligated_cents >= 0),
                    CHECK (obligated_cents <= appropriated_cents)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS budget_balances (
                    budget_id TEXT PRIMARY KEY,
                    ceiling_cents INTEGER NOT NULL,
                    obligated_cents INTEGER NOT NULL DEFAULT 0,

                    CHECK (obligated_cents >= 0)
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_balances_fiscal_year "
                "ON appropriation_balances(fiscal_year_id)"
            )

    @contextmanager
    def _unit(self, conn: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
        else:
            with self.event_store.transaction() as tx:
                yield tx.connection

    # Appropriations

    def open_appropriation(
        self,
        appropriation_id: str,
        fiscal_year_id: str,
        amount: Decimal,
        expires_on: date,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        with self._unit(conn) as c:
            c.execute(
                """
                INSERT INTO appropriation_balances (
                    appropriation_id, fiscal_year_id, appropriated_cents, expires_on
                ) VALUES (?, ?, ?, ?)
            """,
                (appropriation_id, fiscal_year_id, to_cents(amount), expires_on.isoformat()),
            )

    def reserve(
        self,
        appropriation_id: str,
        amount: Decimal,
        conn: sqlite3.Connection | None = None,
    ) -> Decimal:
        """
        Atomically add ``amount`` to the appropriation's obligated balance

        Returns:
            The available balance after the reservation

        Raises:
            InvalidAmount: If amount is not positive whole cents
            AppropriationNotFound: If there is no balance row
            FiscalYearLocked: If the appropriation's fiscal year is locked
            AppropriationExpired: If today is past the expiration date
            FundsUnavailable: If the amount exceeds the available balance
        """
        amount = validate_amount(amount)
        cents = to_cents(amount)
        on = today(self.time_provider).isoformat()

        with self._unit(conn) as c:
            cursor = c.execute(
                """
                UPDATE appropriation_balances
                   SET obligated_cents = obligated_cents + ?
                 WHERE appropriation_id = ?
                   AND locked = 0
                   AND expires_on >= ?
                   AND obligated_cents + ? <= appropriated_cents
            """,
                (cents, appropriation_id, on, cents),
            )
            if cursor.rowcount == 0:
                self._raise_reserve_rejection(c, appropriation_id, amount, on)

            row = self._balance_row(c, appropriation_id)
            return from_cents(row["appropriated_cents"] - row["obligated_cents"])

    def _raise_reserve_rejection(
        self, conn: sqlite3.Connection, appropriation_id: str, amount: Decimal, on: str
    ) -> None:
        row = self._balance_row(conn, appropriation_id)
        if row is None:
            raise AppropriationNotFound(appropriation_id)
        if row["locked"]:
            raise FiscalYearLocked(appropriation_id, row["fiscal_year_id"])
        if row["expires_on"] < on:
            raise AppropriationExpired(appropriation_id, row["expires_on"])

        available = from_cents(row["appropriated_cents"] - row["obligated_cents"])
        funds_unavailable_total.labels(scope="appropriation").inc()
        raise FundsUnavailable(appropriation_id, amount, available, amount - available)

    def release(
        self,
        appropriation_id: str,
        amount: Decimal,
        conn: sqlite3.Connection | None = None,
    ) -> Decimal:
        """
        Atomically return ``amount`` to the appropriation

        Returns:
            The available balance after the release

        Raises:
            AppropriationNotFound: If there is no balance row
            FiscalYearLocked: If the fiscal year is locked
            InvariantViolation: If more would be released than is obligated
        """
        amount = validate_amount(amount)
        cents = to_cents(amount)

        with self._unit(conn) as c:
            cursor = c.execute(
                """
                UPDATE appropriation_balances
                   SET obligated_cents = obligated_cents - ?
                 WHERE appropriation_id = ?
                   AND locked = 0
                   AND obligated_cents >= ?
            """,
                (cents, appropriation_id, cents),
            )
            if cursor.rowcount == 0:
                row = self._balance_row(c, appropriation_id)
                if row is None:
                    raise AppropriationNotFound(appropriation_id)
                if row["locked"]:
                    raise FiscalYearLocked(appropriation_id, row["fiscal_year_id"])
                raise InvariantViolation(
                    f"Cannot release {amount} from appropriation {appropriation_id}: "
                    f"only {from_cents(row['obligated_cents'])} is obligated"
                )

            row = self._balance_row(c, appropriation_id)
            return from_cents(row["appropriated_cents"] - row["obligated_cents"])

    def lock_fiscal_year(
        self, fiscal_year_id: str, conn: sqlite3.Connection | None = None
    ) -> int:
        """Lock every appropriation of a fiscal year; returns how many were locked"""
        with self._unit(conn) as c:
            cursor = c.execute(
                "UPDATE appropriation_balances SET locked = 1 "
                "WHERE fiscal_year_id = ? AND locked = 0",
                (fiscal_year_id,),
            )
            return cursor.rowcount

    def get_balance(self, appropriation_id: str) -> dict | None:
        """
        Authoritative balance of one appropriation

        Returns:
            Dict with appropriated, obligated and available (Decimal),
            expires_on and locked; None if unknown
        """
        with self.event_store.connect() as conn:
            row = self._balance_row(conn, appropriation_id)
        if row is None:
            return None
        return {
            "appropriation_id": row["appropriation_id"],
            "fiscal_year_id": row["fiscal_year_id"],
            "appropriated": from_cents(row["appropriated_cents"]),
            "obligated": from_cents(row["obligated_cents"]),
            "available": from_cents(row["appropriated_cents"] - row["obligated_cents"]),
            "expires_on": date.fromisoformat(row["expires_on"]),
            "locked": bool(row["locked"]),
        }

    def check_availability(self, appropriation_id: str, amount: Decimal) -> FundsCheck:
        """
        Would ``amount`` fit right now? (read only, no reservation)

        Raises:
            InvalidAmount: If amount is not positive whole cents
            AppropriationNotFound: If the appropriation is unknown
        """
        amount = validate_amount(amount)
        balance = self.get_balance(appropriation_id)
        if balance is None:
            raise AppropriationNotFound(appropriation_id)

        available_balance = balance["available"]
        shortfall = max(amount - available_balance, Decimal("0.00"))
        risk = assess_ada_risk(balance["appropriated"], balance["obligated"], amount, self.policy)

        blocked_reason = None
        if balance["locked"]:
            blocked_reason = "fiscal year locked"
        elif balance["expires_on"] < today(self.time_provider):
            blocked_reason = f"expired on {balance['expires_on'].isoformat()}"

        return FundsCheck(
            appropriation_id=appropriation_id,
            requested=amount,
            available=shortfall == 0 and blocked_reason is None,
            available_balance=available_balance,
            shortfall=shortfall,
            risk=AdaRisk.CRITICAL if blocked_reason else risk,
            blocked_reason=blocked_reason,
        )

    def list_balances(self) -> list[dict]:
        with self.event_store.connect() as conn:
            rows = conn.execute(
                "SELECT appropriation_id FROM appropriation_balances ORDER BY appropriation_id"
            ).fetchall()
        return [self.get_balance(row["appropriation_id"]) for row in rows]

    def _balance_row(self, conn: sqlite3.Connection, appropriation_id: str) -> sqlite3.Row | None:
        return conn.execute(
            "SELECT * FROM appropriation_balances WHERE appropriation_id = ?",
            (appropriation_id,),
        ).fetchone()

    # Budget ceilings

    def authorize_budget(
        self,
        budget_id: str,
        ceiling: Decimal,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        """
        Set a budget's ceiling to its approved amount

        Raises:
            CeilingBelowObligations: If the budget already has more obligated
        """
        cents = to_cents(validate_amount(ceiling, allow_zero=True))
        with self._unit(conn) as c:
            c.execute(
                "INSERT OR IGNORE INTO budget_balances (budget_id, ceiling_cents) VALUES (?, ?)",
                (budget_id, cents),
            )
            cursor = c.execute(
                "UPDATE budget_balances SET ceiling_cents = ? "
                "WHERE budget_id = ? AND obligated_cents <= ?",
                (cents, budget_id, cents),
            )
            if cursor.rowcount == 0:
                row = self._budget_row(c, budget_id)
                raise CeilingBelowObligations(
                    budget_id, from_cents(cents), from_cents(row["obligated_cents"])
                )

    def reserve_budget(
        self,
        budget_id: str,
        appropriation_id: str,
        amount: Decimal,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        """
        Atomically consume part of a budget's approved ceiling

        Raises:
            BudgetNotAuthorized: If the budget has no ceiling yet
            BudgetCeilingExceeded: If the amount exceeds the remaining ceiling
        """
        amount = validate_amount(amount)
        cents = to_cents(amount)
        with self._unit(conn) as c:
            cursor = c.execute(
                """
                UPDATE budget_balances
                   SET obligated_cents = obligated_cents + ?
                 WHERE budget_id = ?
                   AND obligated_cents + ? <= ceiling_cents
            """,
                (cents, budget_id, cents),
            )
            if cursor.rowcount == 0:
                row = self._budget_row(c, budget_id)
                if row is None:
                    raise BudgetNotAuthorized(budget_id, "unapproved")
                available = from_cents(row["ceiling_cents"] - row["obligated_cents"])
                funds_unavailable_total.labels(scope="budget").inc()
                raise BudgetCeilingExceeded(
                    budget_id, appropriation_id, amount, available, amount - available
                )

    def release_budget(
        self,
        budget_id: str,
        amount: Decimal,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        cents = to_cents(validate_amount(amount))
        with self._unit(conn) as c:
            cursor = c.execute(
                "UPDATE budget_balances SET obligated_cents = obligated_cents - ? "
                "WHERE budget_id = ? AND obligated_cents >= ?",
                (cents, budget_id, cents),
            )
            if cursor.rowcount == 0:
                raise InvariantViolation(
                    f"Cannot release {from_cents(cents)} from budget {budget_id} ceiling"
                )

    def get_budget_balance(self, budget_id: str) -> dict | None:
        with self.event_store.connect() as conn:
            row = self._budget_row(conn, budget_id)
        if row is None:
            return None
        return {
            "budget_id": budget_id,
            "ceiling": from_cents(row["ceiling_cents"]),
            "obligated": from_cents(row["obligated_cents"]),
            "available": from_cents(row["ceiling_cents"] - row["obligated_cents"]),
        }

    def _budget_row(self, conn: sqlite3.Connection, budget_id: str) -> sqlite3.Row | None:
        return conn.execute(
            "SELECT * FROM budget_balances WHERE budget_id = ?", (budget_id,)
        ).fetchone()
