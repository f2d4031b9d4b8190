"""
Obligation Balances - Atomic expended-amount guard per obligation

Same technique as the fund ledger: one guarded UPDATE per posting, run on
the connection of the event-store transaction that records the posting.
"""

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal

from fund_control.kernel.errors import (
    ExpenditureExceedsObligation,
    InvalidTransition,
    ObligationHasExpenditures,
    ObligationNotFound,
)
from fund_control.kernel.event_store import SQLiteEventStore
from fund_control.kernel.money import from_cents, to_cents, validate_amount
from fund_control.obligations.models import ObligationStatus


class ObligationBalances:
    def __init__(self, event_store: SQLiteEventStore) -> None:
        self.event_store = event_store
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        with self.event_store.connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS obligation_balances (
                    obligation_id TEXT PRIMARY KEY,
                    amount_cents INTEGER NOT NULL CHECK (amount_cents > 0),
                    expended_cents INTEGER NOT NULL DEFAULT 0,
                    active INTEGER NOT NULL DEFAULT 1,

                    CHECK (expended_cents >= 0),
                    CHECK (expended_cents <= amount_cents)
                )
            """)

    @contextmanager
    def _unit(self, conn: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
        else:
            with self.event_store.transaction() as tx:
                yield tx.connection

    def open(
        self, obligation_id: str, amount: Decimal, conn: sqlite3.Connection | None = None
    ) -> None:
        with self._unit(conn) as c:
            c.execute(
                "INSERT INTO obligation_balances (obligation_id, amount_cents) VALUES (?, ?)",
                (obligation_id, to_cents(amount)),
            )

    def post_expenditure(
        self, obligation_id: str, amount: Decimal, conn: sqlite3.Connection | None = None
    ) -> Decimal:
        """
        Atomically add ``amount`` to the obligation's expended total

        Returns:
            What remains unliquidated after the posting

        Raises:
            ObligationNotFound: If there is no balance row
            InvalidTransition: If the obligation is cancelled
            ExpenditureExceedsObligation: If the amount exceeds what remains
        """
        amount = validate_amount(amount)
        cents = to_cents(amount)
        with self._unit(conn) as c:
            cursor = c.execute(
                """
                UPDATE obligation_balances
                   SET expended_cents = expended_cents + ?
                 WHERE obligation_id = ?
                   AND active = 1
                   AND expended_cents + ? <= amount_cents
            """,
                (cents, obligation_id, cents),
            )
            row = self._row(c, obligation_id)
            if cursor.rowcount == 0:
                if row is None:
                    raise ObligationNotFound(obligation_id)
                if not row["active"]:
                    raise InvalidTransition(
                        obligation_id,
                        current=ObligationStatus.CANCELLED.value,
                        attempted="record expenditure",
                    )
                remaining = from_cents(row["amount_cents"] - row["expended_cents"])
                raise ExpenditureExceedsObligation(
                    obligation_id, amount, from_cents(row["amount_cents"]), remaining
                )
            return from_cents(row["amount_cents"] - row["expended_cents"])

    def close(self, obligation_id: str, conn: sqlite3.Connection | None = None) -> Decimal:
        """
        Atomically deactivate an obligation with no expenditures

        Returns:
            The obligation amount, to be released

        Raises:
            ObligationNotFound: If there is no balance row
            InvalidTransition: If it was already cancelled
            ObligationHasExpenditures: If anything was expended
        """
        with self._unit(conn) as c:
            cursor = c.execute(
                "UPDATE obligation_balances SET active = 0 "
                "WHERE obligation_id = ? AND active = 1 AND expended_cents = 0",
                (obligation_id,),
            )
            row = self._row(c, obligation_id)
            if cursor.rowcount == 0:
                if row is None:
                    raise ObligationNotFound(obligation_id)
                if not row["active"]:
                    raise InvalidTransition(
                        obligation_id,
                        current=ObligationStatus.CANCELLED.value,
                        attempted="cancel",
                    )
                raise ObligationHasExpenditures(obligation_id, from_cents(row["expended_cents"]))
            return from_cents(row["amount_cents"])

    def get(self, obligation_id: str) -> dict | None:
        with self.event_store.connect() as conn:
            row = self._row(conn, obligation_id)
        if row is None:
            return None
        return {
            "obligation_id": obligation_id,
            "amount": from_cents(row["amount_cents"]),
            "expended": from_cents(row["expended_cents"]),
            "remaining": from_cents(row["amount_cents"] - row["expended_cents"]),
            "active": bool(row["active"]),
        }

    def _row(self, conn: sqlite3.Connection, obligation_id: str) -> sqlite3.Row | None:
        return conn.execute(
            "SELECT * FROM obligation_balances WHERE obligation_id = ?", (obligation_id,)
        ).fetchone()
