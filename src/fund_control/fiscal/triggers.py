"""
Fiscal Module Triggers - Appropriation health monitoring

Triggers evaluate appropriation balances during a tick and emit warning
events. They never change balances.

Trigger events are recorded on the tick's own stream; the TickEngine
assigns their stream versions.
"""

from datetime import datetime
from decimal import Decimal

from fund_control.fiscal.events import (
    AppropriationBalanceLow,
    AppropriationOverobligationDetected,
)
from fund_control.fiscal.models import AdaRisk
from fund_control.kernel.events import Event, create_event
from fund_control.kernel.ids import generate_id
from fund_control.kernel.policy import FundControlPolicy


def evaluate_balance_low_trigger(
    balances: list[dict],
    now: datetime,
    policy: FundControlPolicy,
    tick_id: str,
) -> list[Event]:
    """
    Warn about unlocked appropriations with less than the MEDIUM band left

    Args:
        balances: Authoritative balances from the fund ledger
        now: Current time
        policy: Supplies the risk bands
        tick_id: Tick that owns the emitted events

    Returns:
        List of AppropriationBalanceLow events
    """
    events: list[Event] = []

    for balance in balances:
        if balance["locked"] or balance["expires_on"] < now.date():
            continue

        appropriated: Decimal = balance["appropriated"]
        remaining_ratio = balance["available"] / appropriated
        if remaining_ratio >= policy.ada_medium_risk_ratio:
            continue

        risk = AdaRisk.HIGH if remaining_ratio < policy.ada_high_risk_ratio else AdaRisk.MEDIUM
        events.append(
            _tick_event(
                tick_id,
                "AppropriationBalanceLow",
                now,
                AppropriationBalanceLow(
                    appropriation_id=balance["appropriation_id"],
                    detected_at=now,
                    appropriated=appropriated,
                    obligated=balance["obligated"],
                    available=balance["available"],
                    remaining_ratio=round(remaining_ratio, 4),
                    risk=risk,
                ).model_dump(mode="json"),
            )
        )

    return events


def evaluate_overobligation_trigger(
    appropriations: list[dict],
    now: datetime,
    tick_id: str,
) -> list[Event]:
    """
    Detect appropriations whose event-derived obligations exceed the ceiling

    NOTE: This should NEVER trigger if the guarded reservation is working.

    Args:
        appropriations: Appropriation dicts from the projection
        now: Current time
        tick_id: Tick that owns the emitted events

    Returns:
        List of AppropriationOverobligationDetected events
    """
    events: list[Event] = []

    for appropriation in appropriations:
        appropriated = Decimal(str(appropriation["appropriated"]))
        obligated = Decimal(str(appropriation["obligated"]))
        if obligated <= appropriated:
            continue

        events.append(
            _tick_event(
                tick_id,
                "AppropriationOverobligationDetected",
                now,
                AppropriationOverobligationDetected(
                    appropriation_id=appropriation["appropriation_id"],
                    detected_at=now,
                    appropriated=appropriated,
                    obligated=obligated,
                    excess=obligated - appropriated,
                ).model_dump(mode="json"),
            )
        )

    return events


def _tick_event(tick_id: str, event_type: str, now: datetime, payload: dict) -> Event:
    return create_event(
        event_id=generate_id(),
        stream_id=f"tick-{tick_id}",
        stream_type="tick",
        event_type=event_type,
        occurred_at=now,
        command_id=tick_id,
        actor_id="system",
        payload=payload,
        version=1,
    )
