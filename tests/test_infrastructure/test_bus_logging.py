"""
Test bus.py dispatch and logging integration.

Verifies that the InProcessBus delivers committed events in order and that
a failing subscriber never blocks the others.
"""

from datetime import datetime, timezone

from fund_control.kernel.bus import InProcessBus
from fund_control.kernel.events import Event
from fund_control.kernel.ids import generate_id
from fund_control.kernel.logging import configure_logging


def _event(event_type: str = "ObligationCreated", version: int = 1) -> Event:
    return Event(
        event_id=generate_id(),
        stream_id="obligation-1",
        stream_type="obligation",
        event_type=event_type,
        occurred_at=datetime(2025, 1, 15, tzinfo=timezone.utc),
        actor_id="alice",
        command_id=generate_id(),
        payload={},
        version=version,
    )


class TestBusDispatch:
    """Test handler registration and delivery."""

    def setup_method(self) -> None:
        configure_logging(json_output=False, log_level="DEBUG")

    def test_handlers_run_in_registration_order(self) -> None:
        bus = InProcessBus()
        seen: list[str] = []

        bus.register_event_handler("ObligationCreated", lambda e: seen.append("first"))
        bus.register_event_handler("ObligationCreated", lambda e: seen.append("second"))
        bus.publish_event(_event())

        assert seen == ["first", "second"]

    def test_only_matching_handlers_run(self) -> None:
        bus = InProcessBus()
        seen: list[str] = []

        bus.register_event_handler("ExpenditureRecorded", lambda e: seen.append(e.event_type))
        bus.publish_event(_event("ObligationCreated"))

        assert seen == []

    def test_failing_handler_is_isolated(self) -> None:
        bus = InProcessBus()
        seen: list[str] = []

        def broken(event: Event) -> None:
            raise RuntimeError("mail relay down")

        bus.register_event_handler("ObligationCreated", broken)
        bus.register_event_handler("ObligationCreated", lambda e: seen.append(e.event_id))

        event = _event()
        bus.publish_event(event)

        assert seen == [event.event_id]

    def test_publish_events_keeps_order(self) -> None:
        bus = InProcessBus()
        seen: list[int] = []

        bus.register_event_handler("ObligationCreated", lambda e: seen.append(e.version))
        bus.publish_events([_event(version=1), _event(version=2), _event(version=3)])

        assert seen == [1, 2, 3]

    def test_get_event_types_and_clear(self) -> None:
        bus = InProcessBus()
        bus.register_event_handler("ObligationCreated", lambda e: None)
        bus.register_event_handler("ApprovalLevelEntered", lambda e: None)

        assert sorted(bus.get_event_types()) == ["ApprovalLevelEntered", "ObligationCreated"]

        bus.clear()
        assert bus.get_event_types() == []
