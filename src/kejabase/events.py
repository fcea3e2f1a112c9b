"""Broadcast channel for external observers.

The state store and the readiness coordinator keep their own canonical
subscriber lists. Every notification they send is additionally fanned out
through an optional :class:`EventBus`, so observers that only know an event
name (dashboards, logging hooks, the composition root) can react without a
reference to the emitting component.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

_logger = logging.getLogger(__name__)

ALL_SERVICES_READY = "allServicesReady"
STATE_CHANGED = "stateChanged"
WILDCARD = "*"

EventHandler = Callable[[str, Any], None]


def service_ready_event(service: str) -> str:
    """Event name emitted when a single service becomes ready."""
    return f"{service}ServiceReady"


class EventBus:
    """Named-event fan-out with per-handler failure isolation."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}

    def subscribe(self, event: str, handler: EventHandler) -> Callable[[], None]:
        """Register *handler* for *event* (``"*"`` receives every event)."""
        self._handlers.setdefault(event, []).append(handler)

        def _unsubscribe() -> None:
            handlers = self._handlers.get(event)
            if handlers and handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    def emit(self, event: str, payload: Any = None) -> None:
        handlers = [*self._handlers.get(event, ()), *self._handlers.get(WILDCARD, ())]
        for handler in handlers:
            try:
                handler(event, payload)
            except Exception:
                _logger.warning("Event handler for %s failed", event, exc_info=True)
