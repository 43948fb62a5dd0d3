"""CLI command groups."""

from . import events, notifications, quote

__all__ = ["events", "notifications", "quote"]
