"""Event router: the sink that hands decoded envelopes to per-type handlers."""

import inspect
import logging
from typing import Any, Callable, Dict, Optional, Union

from .events import Envelope, EventType
from .exceptions import EventDecodeError

logger = logging.getLogger(__name__)

EventHandler = Callable[[Envelope], Any]


class EventRouter:
    """
    Dispatches envelopes to handlers registered per event type.

    Handlers may be plain functions or coroutines; they run inline, so a
    slow handler delays the next read. Types without a handler go to the
    fallback handler, which logs them by default.
    """

    def __init__(self, fallback: Optional[EventHandler] = None):
        self._handlers: Dict[str, EventHandler] = {}
        self._fallback: EventHandler = fallback or log_unhandled_event

        self.stats = {
            'events_routed': 0,
            'unhandled_events': 0,
            'decode_errors': 0
        }

    def register_handler(self, event_type: Union[str, EventType], handler: EventHandler) -> None:
        """Register a handler for a specific event type, replacing any previous one."""
        key = event_type.value if isinstance(event_type, EventType) else event_type
        self._handlers[key] = handler
        logger.info(f"Registered handler for {key}")

    def set_fallback(self, handler: EventHandler) -> None:
        """Replace the handler used for event types without a registered handler."""
        self._fallback = handler

    def handler_for(self, event_type: str) -> Optional[EventHandler]:
        return self._handlers.get(event_type)

    async def handle_event(self, envelope: Envelope) -> None:
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"Received message: \n{envelope.to_json(indent=2)}\n")

        handler = self._handlers.get(envelope.event_type)
        if handler is None:
            self.stats['unhandled_events'] += 1
            handler = self._fallback
        else:
            self.stats['events_routed'] += 1

        result = handler(envelope)
        if inspect.isawaitable(result):
            await result

    async def handle_decode_error(self, error: EventDecodeError) -> None:
        self.stats['decode_errors'] += 1
        logger.debug(f"Raw message: {error.payload_preview()}")


def log_unhandled_event(envelope: Envelope) -> None:
    logger.debug(f"Unhandled event type: {envelope.event_type}")


def log_stasis_start(envelope: Envelope) -> None:
    logger.debug(
        f"Received StasisStart message, app:{envelope.application_name}, "
        f"args:{list(envelope.arguments or ())}"
    )


def log_stasis_end(envelope: Envelope) -> None:
    logger.debug(f"Received StasisEnd message, app:{envelope.application_name}")


def default_router() -> EventRouter:
    """Router with logging handlers for the Stasis application lifecycle."""
    router = EventRouter()
    router.register_handler(EventType.STASIS_START, log_stasis_start)
    router.register_handler(EventType.STASIS_END, log_stasis_end)
    return router
