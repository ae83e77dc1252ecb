"""
In-process event bus for payment domain events.

Subscribers are registered at startup; publish runs after the ledger write
committed. A failing subscriber is logged and never propagates to the
reconciliation that produced the event.
"""
from __future__ import annotations

import inspect
from collections import defaultdict
from typing import Any, Awaitable, Callable, Union

from core.logging_config import get_logger
from domain.payment.events import PaymentEvent


logger = get_logger(__name__)

EventHandler = Callable[[PaymentEvent], Union[None, Awaitable[None]]]

# subscribe to every event type
ALL_EVENTS = "*"


class PaymentEventBus:
    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: Union[str, type], handler: EventHandler) -> None:
        """event_type is an event class, its name, or ALL_EVENTS"""
        name = event_type.__name__ if isinstance(event_type, type) else str(event_type)
        self._handlers[name].append(handler)

    def unsubscribe(self, event_type: Union[str, type], handler: EventHandler) -> None:
        name = event_type.__name__ if isinstance(event_type, type) else str(event_type)
        handlers = self._handlers.get(name, [])
        if handler in handlers:
            handlers.remove(handler)

    def handlers_for(self, event: PaymentEvent) -> list[EventHandler]:
        return [*self._handlers.get(event.name, []), *self._handlers.get(ALL_EVENTS, [])]

    async def publish(self, event: PaymentEvent) -> int:
        """Invoke matching handlers in registration order; returns how many succeeded."""
        delivered = 0
        for handler in self.handlers_for(event):
            try:
                result: Any = handler(event)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as exc:
                logger.error(
                    "payment_event_handler_failed",
                    event_name=event.name,
                    event_id=event.event_id,
                    payment_intent_id=event.payment_intent_id,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(exc),
                    exc_info=True,
                )
        logger.info("payment_event_published", event_name=event.name, payment_intent_id=event.payment_intent_id, delivered=delivered)
        return delivered
