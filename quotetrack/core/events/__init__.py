"""Domain event bus and quote event queries.

Example:
    >>> from quotetrack.core.events import get_global_event_bus, QuoteTransitionEvent
    >>> bus = get_global_event_bus()
    >>> bus.subscribe(QuoteTransitionEvent, my_handler)
"""

from __future__ import annotations

__all__ = [
    "BaseEvent",
    "GlobalEventBus",
    "get_global_event_bus",
    "reset_global_event_bus",
    "QuoteCreatedEvent",
    "QuoteTransitionEvent",
    "QuoteTrashedEvent",
    "QuoteRestoredEvent",
    "QuotePurgedEvent",
    "QuoteEventRepository",
    "audit_log_listener",
    "initialize_event_system",
    "load_custom_listeners",
    "register_default_listeners",
]

from .base import BaseEvent, GlobalEventBus, get_global_event_bus, reset_global_event_bus
from .listeners import (
    audit_log_listener,
    initialize_event_system,
    load_custom_listeners,
    register_default_listeners,
)
from .quote_events import (
    QuoteCreatedEvent,
    QuotePurgedEvent,
    QuoteRestoredEvent,
    QuoteTransitionEvent,
    QuoteTrashedEvent,
)
from .repository import QuoteEventRepository
