"""
Fiscal Module Projections - Read Models for fiscal years and appropriations

FiscalYearRegistry: lifecycle state of every fiscal year
AppropriationRegistry: appropriations with their derived obligated totals

The obligated totals here are derived from obligation events and mirror
the guarded balance table. The balance table is what reservations check;
these are what queries and triggers read.
"""

from decimal import Decimal

from fund_control.fiscal.models import FiscalYearState
from fund_control.kernel.events import Event
from fund_control.kernel.money import as_decimal


class FiscalYearRegistry:
    """
    Built from events: FiscalYearOpened, FiscalYearTransitioned

    Query methods: get, get_by_year, get_current, list_all
    """

    def __init__(self) -> None:
        self.fiscal_years: dict[str, dict] = {}

    def apply_event(self, event: Event) -> None:
        if event.event_type == "FiscalYearOpened":
            self._apply_fiscal_year_opened(event)
        elif event.event_type == "FiscalYearTransitioned":
            self._apply_fiscal_year_transitioned(event)

    def _apply_fiscal_year_opened(self, event: Event) -> None:
        payload = event.payload
        self.fiscal_years[payload["fiscal_year_id"]] = {
            "fiscal_year_id": payload["fiscal_year_id"],
            "year": payload["year"],
            "start_date": payload["start_date"],
            "end_date": payload["end_date"],
            "state": payload["state"],
            "opened_at": payload["opened_at"],
            "version": event.version,
        }

    def _apply_fiscal_year_transitioned(self, event: Event) -> None:
        payload = event.payload
        fiscal_year = self.fiscal_years.get(payload["fiscal_year_id"])
        if fiscal_year:
            fiscal_year["state"] = payload["to_state"]
            fiscal_year["version"] = event.version

    def get(self, fiscal_year_id: str) -> dict | None:
        return self.fiscal_years.get(fiscal_year_id)

    def get_by_year(self, year: int) -> dict | None:
        for fiscal_year in self.fiscal_years.values():
            if fiscal_year["year"] == year:
                return fiscal_year
        return None

    def get_current(self) -> dict | None:
        for fiscal_year in self.fiscal_years.values():
            if fiscal_year["state"] == FiscalYearState.CURRENT.value:
                return fiscal_year
        return None

    def list_all(self) -> list[dict]:
        return sorted(self.fiscal_years.values(), key=lambda fy: fy["year"])


class AppropriationRegistry:
    """
    Built from events: AppropriationEstablished, ObligationCreated,
                       ObligationCancelled, FiscalYearTransitioned (locking)

    Query methods: get, get_by_code, list_by_fiscal_year, list_all
    """

    def __init__(self) -> None:
        self.appropriations: dict[str, dict] = {}

    def apply_event(self, event: Event) -> None:
        if event.event_type == "AppropriationEstablished":
            self._apply_appropriation_established(event)
        elif event.event_type == "ObligationCreated":
            self._adjust_obligated(event.payload["appropriation_id"], event.payload["amount"])
        elif event.event_type == "ObligationCancelled":
            self._adjust_obligated(
                event.payload["appropriation_id"], -as_decimal(event.payload["amount"])
            )
        elif event.event_type == "FiscalYearTransitioned":
            if event.payload["to_state"] == FiscalYearState.LOCKED.value:
                for appropriation in self.list_by_fiscal_year(event.payload["fiscal_year_id"]):
                    appropriation["locked"] = True

    def _apply_appropriation_established(self, event: Event) -> None:
        payload = event.payload
        self.appropriations[payload["appropriation_id"]] = {
            "appropriation_id": payload["appropriation_id"],
            "fiscal_year_id": payload["fiscal_year_id"],
            "code": payload["code"],
            "name": payload["name"],
            "color_of_money": payload["color_of_money"],
            "appropriated": payload["amount"],
            "obligated": "0.00",
            "available": payload["amount"],
            "expiration_date": payload["expiration_date"],
            "restrictions": payload.get("restrictions", []),
            "locked": False,
            "established_at": payload["established_at"],
            "version": event.version,
        }

    def _adjust_obligated(self, appropriation_id: str, delta: Decimal | str) -> None:
        appropriation = self.appropriations.get(appropriation_id)
        if not appropriation:
            return
        obligated = as_decimal(appropriation["obligated"]) + as_decimal(delta)
        appropriation["obligated"] = str(obligated)
        appropriation["available"] = str(as_decimal(appropriation["appropriated"]) - obligated)

    def get(self, appropriation_id: str) -> dict | None:
        return self.appropriations.get(appropriation_id)

    def get_by_code(self, code: str) -> dict | None:
        for appropriation in self.appropriations.values():
            if appropriation["code"] == code:
                return appropriation
        return None

    def list_by_fiscal_year(self, fiscal_year_id: str) -> list[dict]:
        return [
            a for a in self.appropriations.values() if a["fiscal_year_id"] == fiscal_year_id
        ]

    def list_all(self) -> list[dict]:
        return list(self.appropriations.values())
