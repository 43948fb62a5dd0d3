"""In-process domain event bus.

Domain events announce that something already happened (a quote was created,
moved to a new status, trashed...). They are for loose coupling inside the
process: audit logging, custom listeners. The durable record of a quote's
lifecycle is its ``quote_events`` log, not this bus.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

import structlog

from quotetrack.utils.datetime import utc_now

logger = structlog.get_logger("events")

Handler = Callable[["BaseEvent"], Any]


@dataclass(frozen=True)
class BaseEvent:
    """Base class for domain events.

    Every event gets an ``event_id`` and ``occurred_at`` (UTC) automatically;
    ``context`` carries optional free-form data for listeners.
    """

    event_id: UUID = field(default_factory=uuid4, init=False)
    occurred_at: datetime = field(default_factory=utc_now, init=False)
    context: dict[str, Any] | None = field(default=None, kw_only=True)


@dataclass
class _HandlerRegistration:
    handler: Handler
    priority: int
    is_async: bool


def _handler_name(handler: Handler) -> str:
    return getattr(handler, "__name__", type(handler).__name__)


class GlobalEventBus:
    """Publish/subscribe bus with priorities and per-handler error isolation.

    Handlers subscribed to a base class also receive its subclasses. Higher
    ``priority`` runs first. A failing handler is logged and skipped; it never
    affects the publisher or the other handlers.

    Example:
        >>> bus = GlobalEventBus()
        >>> bus.subscribe(QuoteTransitionEvent, on_transition, priority=10)
        >>> bus.publish(QuoteTransitionEvent(quote_id="...", kind="signed", ...))
    """

    def __init__(self) -> None:
        self._handlers: dict[type[BaseEvent], list[_HandlerRegistration]] = defaultdict(list)
        self._event_count: dict[str, int] = defaultdict(int)

    def subscribe(
        self,
        event_type: type[BaseEvent],
        handler: Handler,
        priority: int = 0,
    ) -> None:
        is_async = asyncio.iscoroutinefunction(handler)
        self._handlers[event_type].append(
            _HandlerRegistration(handler=handler, priority=priority, is_async=is_async)
        )
        self._handlers[event_type].sort(key=lambda r: r.priority, reverse=True)

        logger.debug(
            "handler_registered",
            event_type=event_type.__name__,
            handler=_handler_name(handler),
            priority=priority,
            is_async=is_async,
        )

    def unsubscribe(self, event_type: type[BaseEvent], handler: Handler) -> None:
        if event_type in self._handlers:
            self._handlers[event_type] = [
                reg for reg in self._handlers[event_type] if reg.handler != handler
            ]
            logger.debug(
                "handler_unregistered",
                event_type=event_type.__name__,
                handler=_handler_name(handler),
            )

    def publish(self, event: BaseEvent) -> None:
        """Run sync handlers now; schedule async ones on the running loop, if any."""
        event_name = type(event).__name__
        self._event_count[event_name] += 1

        logger.info(
            "event_published",
            event_type=event_name,
            event_id=str(event.event_id),
            occurred_at=event.occurred_at.isoformat(),
        )

        for registration in self._get_handlers_for_event(event):
            try:
                if registration.is_async:
                    try:
                        loop = asyncio.get_running_loop()
                    except RuntimeError:
                        logger.warning(
                            "async_handler_skipped_no_loop",
                            event_type=event_name,
                            handler=_handler_name(registration.handler),
                        )
                        continue
                    loop.create_task(self._execute_async_handler(registration, event))
                else:
                    registration.handler(event)
            except Exception as e:
                logger.error(
                    "handler_failed",
                    event_type=event_name,
                    handler=_handler_name(registration.handler),
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )

    async def _execute_async_handler(
        self, registration: _HandlerRegistration, event: BaseEvent
    ) -> None:
        try:
            await registration.handler(event)
        except Exception as e:
            logger.error(
                "async_handler_failed",
                event_type=type(event).__name__,
                handler=_handler_name(registration.handler),
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )

    def _get_handlers_for_event(self, event: BaseEvent) -> list[_HandlerRegistration]:
        handlers: list[_HandlerRegistration] = []
        for event_type, registrations in self._handlers.items():
            if isinstance(event, event_type):
                handlers.extend(registrations)
        handlers.sort(key=lambda r: r.priority, reverse=True)
        return handlers

    def get_stats(self) -> dict[str, Any]:
        return {
            "total_handlers": sum(len(regs) for regs in self._handlers.values()),
            "event_types": len(self._handlers),
            "events_published": dict(self._event_count),
            "total_events": sum(self._event_count.values()),
        }


_global_event_bus: GlobalEventBus | None = None


def get_global_event_bus() -> GlobalEventBus:
    """Process-wide bus, created on first use."""
    global _global_event_bus
    if _global_event_bus is None:
        _global_event_bus = GlobalEventBus()
        logger.info("global_event_bus_initialized")
    return _global_event_bus


def reset_global_event_bus() -> None:
    """Forget the process-wide bus (used by tests)."""
    global _global_event_bus
    _global_event_bus = None
