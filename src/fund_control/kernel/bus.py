"""
In-process Event Bus

Simple synchronous pub/sub for events that have already been committed.
Subscribers (notification fan-out, read-model refreshers) react to facts;
they can never veto them.

Fun fact: This is an "observer" pattern - the ledger doesn't know who is
listening, so adding an e-mail gateway later doesn't touch domain code!
"""

from collections import defaultdict
from typing import Callable

from fund_control.kernel.events import Event
from fund_control.kernel.logging import get_logger

logger = get_logger(__name__)


EventHandler = Callable[[Event], None]


class InProcessBus:
    """
    Simple synchronous in-process event bus

    Handlers run in registration order. A failing handler is logged and
    skipped so the remaining handlers still see the event.
    """

    def __init__(self) -> None:
        self._event_handlers: defaultdict[str, list[EventHandler]] = defaultdict(list)

    def register_event_handler(self, event_type: str, handler: EventHandler) -> None:
        """
        Register an event handler (can have multiple per event type)

        Args:
            event_type: Type of event to handle (e.g., "ApprovalLevelEntered")
            handler: Function that reacts to the event
        """
        self._event_handlers[event_type].append(handler)
        logger.debug(
            "Event handler registered",
            event_type=event_type,
            total_handlers=len(self._event_handlers[event_type]),
        )

    def publish_event(self, event: Event) -> None:
        """Publish an event to all registered handlers"""
        handlers = self._event_handlers.get(event.event_type, [])
        if not handlers:
            return

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    "Event handler failed",
                    event_type=event.event_type,
                    event_id=event.event_id,
                    stream_id=event.stream_id,
                    error=str(e),
                    exc_info=True,
                )

    def publish_events(self, events: list[Event]) -> None:
        for event in events:
            self.publish_event(event)

    def get_event_types(self) -> list[str]:
        """Event types with at least one handler"""
        return list(self._event_handlers.keys())

    def clear(self) -> None:
        """Remove all handlers (useful for testing)"""
        self._event_handlers.clear()
