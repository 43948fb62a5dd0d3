"""Quote domain events.

Published by :class:`~quotetrack.core.quotes.service.QuoteService` after the
corresponding change is committed.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from .base import BaseEvent


@dataclass(frozen=True)
class QuoteCreatedEvent(BaseEvent):
    quote_id: str
    client_name: str
    total_amount: Decimal
    created_by: str | None = None


@dataclass(frozen=True)
class QuoteTransitionEvent(BaseEvent):
    """A lifecycle event was appended to a quote's log.

    ``previous_status`` equals ``status`` for tracking events that do not move
    the quote (repeat opens, resends, send failures).
    """

    quote_id: str
    kind: str
    quote_event_id: str
    previous_status: str
    status: str


@dataclass(frozen=True)
class QuoteTrashedEvent(BaseEvent):
    quote_id: str
    deleted_by: str | None = None


@dataclass(frozen=True)
class QuoteRestoredEvent(BaseEvent):
    quote_id: str
    restored_by: str | None = None


@dataclass(frozen=True)
class QuotePurgedEvent(BaseEvent):
    """Quote and its log were permanently deleted (admin only)."""

    quote_id: str
    purged_by: str
    events_deleted: int = 0
