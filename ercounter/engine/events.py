# MIT License
# Copyright (c) 2025 Hashborn

"""
Event system for engine state changes.

Provides a simple pub/sub mechanism so any number of observers (CLI, HTTP
API, UI adapters) can follow the counter without polling.
"""
from typing import Dict, List, Callable, Any, Optional
import logging

logger = logging.getLogger(__name__)

ACCOUNT_CHANGED = "account_changed"
STATUS_CHANGED = "status_changed"
ROLLUP_VALUE_CHANGED = "rollup_value_changed"
BUSY_CHANGED = "busy_changed"
ERROR_CHANGED = "error_changed"
TRANSACTION_CONFIRMED = "transaction_confirmed"


class EventBus:
    """
    Simple event bus for engine events.

    Events are delivered synchronously, in subscription order. A failing
    callback is logged and does not stop delivery to the others.
    """

    def __init__(self):
        self.listeners: Dict[str, List[Callable]] = {}

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """
        Subscribe to an event type.

        Args:
            event_type: Event name (e.g., 'status_changed')
            callback: Function to call with the event data as keyword arguments
        """
        self.listeners.setdefault(event_type, []).append(callback)
        logger.debug(f"Subscribed to event: {event_type}")

    def unsubscribe(self, event_type: str, callback: Callable) -> None:
        if event_type in self.listeners:
            try:
                self.listeners[event_type].remove(callback)
                logger.debug(f"Unsubscribed from event: {event_type}")
            except ValueError:
                logger.warning(f"Callback not found for event: {event_type}")

    def emit(self, event_type: str, **data: Any) -> None:
        listeners = self.listeners.get(event_type, [])
        if not listeners:
            return

        logger.debug(f"Emitting event: {event_type} to {len(listeners)} listener(s)")
        for callback in list(listeners):
            try:
                callback(**data)
            except Exception as e:
                logger.error(f"Error in event callback for {event_type}: {e}", exc_info=True)

    def clear(self, event_type: Optional[str] = None) -> None:
        """Clear listeners for one event type, or all of them."""
        if event_type:
            self.listeners.pop(event_type, None)
        else:
            self.listeners.clear()
