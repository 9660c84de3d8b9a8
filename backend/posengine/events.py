# Overview: In-process event bus for post-commit POS notifications.

"""
POS event bus.

Services publish only after their transaction commits. Dispatch is
synchronous and sequential; a failing subscriber is logged and skipped,
it never breaks the publisher or the remaining subscribers.
"""

from __future__ import annotations

from threading import Lock
from typing import Callable

from flask import current_app

SHIFT_OPENED = "shift.opened"
SHIFT_CLOSED = "shift.closed"
SALE_COMPLETED = "sale.completed"
SALE_REFUNDED = "sale.refunded"
INVENTORY_UPDATED = "inventory.updated"

EVENT_TYPES = frozenset({SHIFT_OPENED, SHIFT_CLOSED, SALE_COMPLETED, SALE_REFUNDED, INVENTORY_UPDATED})


class EventBus:
    def __init__(self):
        self._subscribers: dict[str, list[Callable]] = {}
        self._lock = Lock()

    def subscribe(self, event_type: str, handler: Callable) -> None:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type}")
        if not callable(handler):
            raise ValueError(f"Handler must be callable, got {type(handler)}")
        with self._lock:
            handlers = self._subscribers.setdefault(event_type, [])
            if handler not in handlers:
                handlers.append(handler)

    def unsubscribe(self, event_type: str, handler: Callable) -> None:
        with self._lock:
            handlers = self._subscribers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def subscribers(self, event_type: str) -> list[Callable]:
        with self._lock:
            return list(self._subscribers.get(event_type, []))

    def publish(self, event_type: str, payload: dict) -> int:
        """Deliver to every subscriber. Returns the number of failed handlers."""
        failed = 0
        for handler in self.subscribers(event_type):
            try:
                handler(event_type, payload)
            except Exception:
                failed += 1
                current_app.logger.exception(
                    "Event subscriber %s failed for %s",
                    getattr(handler, "__qualname__", repr(handler)),
                    event_type,
                )
        return failed


event_bus = EventBus()


def publish(event_type: str, payload: dict) -> int:
    return event_bus.publish(event_type, payload)


def publish_inventory_updated(store_id: int, product_ids) -> None:
    """One inventory.updated per distinct product, in first-seen order."""
    seen = set()
    for product_id in product_ids:
        if product_id in seen:
            continue
        seen.add(product_id)
        publish(INVENTORY_UPDATED, {"store_id": store_id, "product_id": product_id, "variant_id": None})
