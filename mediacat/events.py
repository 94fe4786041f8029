#!/usr/bin/env python3
"""
Event emitter for progress reporting.

Subscribers register plain callables per event name; emit() calls them in
subscription order on the caller's thread. A failing subscriber is logged
and never interrupts the scan.
"""

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

# Events published by the scheduler
TASK_STARTED = 'task-started'
TASK_COMPLETED = 'task-completed'
TASK_FAILED = 'task-failed'
QUEUE_DRAINED = 'queue-drained'

# Events published by the orchestrator
SCAN_STARTED = 'scan-started'
PHASE_CHANGED = 'phase-changed'
ITEM_STARTED = 'item-started'
ITEM_COMPLETED = 'item-completed'
ITEM_FAILED = 'item-failed'
SCAN_COMPLETED = 'scan-completed'
SCAN_ERROR = 'scan-error'
DUPLICATES_FOUND = 'duplicates-found'


class EventEmitter:
    """A small publish/subscribe hub keyed by event name"""

    def __init__(self):
        self._handlers: Dict[str, List[Callable[[Any], None]]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: Callable[[Any], None]):
        if handler in self._handlers[event_name]:
            return
        self._handlers[event_name].append(handler)
        logger.debug(f"Subscribed to event: {event_name}")

    def unsubscribe(self, event_name: str, handler: Callable[[Any], None]):
        try:
            self._handlers[event_name].remove(handler)
            logger.debug(f"Unsubscribed from event: {event_name}")
        except ValueError:
            logger.warning(f"Handler was not subscribed to event: {event_name}")

    def emit(self, event_name: str, payload: Any = None):
        for handler in list(self._handlers.get(event_name, ())):
            try:
                handler(payload)
            except Exception as e:
                logger.error(f"Error in handler for event {event_name}: {e}")
