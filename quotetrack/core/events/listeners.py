"""Audit logging listener and loading of custom listeners from settings."""

from __future__ import annotations

import importlib
from collections.abc import Callable
from dataclasses import asdict
from typing import Any

import structlog

from quotetrack.utils.config import Settings, get_settings

from .base import BaseEvent, GlobalEventBus, get_global_event_bus

logger = structlog.get_logger("event_listeners")


def audit_log_listener(event: BaseEvent) -> None:
    """Write every domain event to the structured log."""
    event_data = asdict(event)
    event_data["event_id"] = str(event_data["event_id"])
    event_data["occurred_at"] = event_data["occurred_at"].isoformat()
    event_data = {
        key: str(value) if hasattr(value, "as_tuple") else value
        for key, value in event_data.items()
    }

    logger.info("domain_event", event_type=type(event).__name__, **event_data)


def register_default_listeners(event_bus: GlobalEventBus | None = None) -> None:
    """Subscribe :func:`audit_log_listener` to all events, once."""
    event_bus = event_bus or get_global_event_bus()

    existing = [reg.handler for reg in event_bus._handlers.get(BaseEvent, [])]
    if audit_log_listener not in existing:
        event_bus.subscribe(BaseEvent, audit_log_listener, priority=-100)
        logger.info("default_listeners_registered", listeners=["audit_log_listener"])


def _import_listener(path: str) -> Callable[[BaseEvent], Any]:
    """Import ``module.function``.

    Raises:
        ImportError: bad path, module or attribute
        TypeError: attribute is not callable
    """
    try:
        module_name, attr_name = path.rsplit(".", 1)
    except ValueError:
        raise ImportError(f"Invalid listener path '{path}'. Expected format: 'module.function'")

    module = importlib.import_module(module_name)

    if not hasattr(module, attr_name):
        raise ImportError(f"Module '{module_name}' has no attribute '{attr_name}'")

    handler = getattr(module, attr_name)
    if not callable(handler):
        raise TypeError(f"Listener '{path}' is not callable (type: {type(handler).__name__})")

    return handler


def load_custom_listeners(
    event_bus: GlobalEventBus | None = None,
    settings: Settings | None = None,
) -> int:
    """Register listeners named in ``QUOTETRACK_EVENT_LISTENERS``.

    Example:
        # .env
        QUOTETRACK_EVENT_LISTENERS=myapp.listeners.crm_sync,myapp.listeners.metrics

    Returns:
        Number of listeners loaded. Broken entries are logged and skipped.
    """
    event_bus = event_bus or get_global_event_bus()
    settings = settings or get_settings()

    if not settings.event_listeners:
        logger.debug("no_custom_listeners_configured")
        return 0

    paths = [path.strip() for path in settings.event_listeners.split(",") if path.strip()]

    loaded = 0
    for path in paths:
        try:
            handler = _import_listener(path)
        except (ImportError, TypeError) as e:
            logger.error(
                "custom_listener_load_failed",
                listener=path,
                error=str(e),
                error_type=type(e).__name__,
            )
            continue

        event_bus.subscribe(BaseEvent, handler, priority=0)
        logger.info("custom_listener_loaded", listener=path)
        loaded += 1

    logger.info("custom_listeners_loaded", total=loaded, failed=len(paths) - loaded)
    return loaded


def initialize_event_system(settings: Settings | None = None) -> GlobalEventBus:
    """Set up the global bus with the audit listener and any custom listeners."""
    settings = settings or get_settings()
    event_bus = get_global_event_bus()

    register_default_listeners(event_bus)
    custom_count = load_custom_listeners(event_bus, settings)

    logger.info("event_system_initialized", custom_listeners=custom_count)
    return event_bus
