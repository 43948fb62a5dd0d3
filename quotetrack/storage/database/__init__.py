"""Database layer: declarative base, engine setup and models."""

from .base import Base, get_session, init_db
from .models import (
    Notification,
    Quote,
    QuoteEvent,
    QuoteEventKind,
    QuoteLineItem,
    QuoteStatus,
)

__all__ = [
    "Base",
    "get_session",
    "init_db",
    "Notification",
    "Quote",
    "QuoteEvent",
    "QuoteEventKind",
    "QuoteLineItem",
    "QuoteStatus",
]
