"""Status deriver.

Pure functions that compute a quote's lifecycle status and summary metrics
from its event log. No I/O: callers load the events and pass them in.

Precedence (highest wins, regardless of order in the log):

    signed > declined > viewed (any ``opened``) > sent > draft

``send_failed`` and ``created`` never influence status.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from quotetrack.storage.database.models import QuoteEventKind, QuoteStatus

from .metadata import EventMetadata


@dataclass(frozen=True)
class LoggedEvent:
    """One entry of a quote's event log, as read back from the store."""

    event_id: str
    quote_id: str
    kind: QuoteEventKind
    at: datetime
    metadata: EventMetadata
    idempotency_key: str | None = None


@dataclass(frozen=True)
class StatusSummary:
    """Derived status plus the counters shown on the quote detail page."""

    status: QuoteStatus = QuoteStatus.DRAFT
    opens_count: int = 0
    opened_at: datetime | None = None
    last_opened_at: datetime | None = None
    sent_at: datetime | None = None
    last_sent_at: datetime | None = None
    send_failures: int = 0
    last_failure_at: datetime | None = None
    signed_at: datetime | None = None
    declined_at: datetime | None = None
    last_event: QuoteEventKind | None = None
    last_at: datetime | None = None
    kinds_seen: frozenset[QuoteEventKind] = field(default_factory=frozenset)

    @property
    def is_sent(self) -> bool:
        return QuoteEventKind.SENT in self.kinds_seen

    @property
    def is_viewed(self) -> bool:
        return QuoteEventKind.OPENED in self.kinds_seen

    @property
    def is_signed(self) -> bool:
        return QuoteEventKind.SIGNED in self.kinds_seen

    @property
    def is_declined(self) -> bool:
        return QuoteEventKind.DECLINED in self.kinds_seen

    def to_dict(self) -> dict[str, Any]:
        def iso(value: datetime | None) -> str | None:
            return value.isoformat() if value else None

        return {
            "status": self.status.value,
            "opens_count": self.opens_count,
            "opened_at": iso(self.opened_at),
            "last_opened_at": iso(self.last_opened_at),
            "sent_at": iso(self.sent_at),
            "last_sent_at": iso(self.last_sent_at),
            "send_failures": self.send_failures,
            "last_failure_at": iso(self.last_failure_at),
            "signed_at": iso(self.signed_at),
            "declined_at": iso(self.declined_at),
            "last_event": self.last_event.value if self.last_event else None,
            "last_at": iso(self.last_at),
        }


# Status each kind points at; ``None`` means it does not affect status.
KIND_STATUS: dict[QuoteEventKind, QuoteStatus | None] = {
    QuoteEventKind.CREATED: QuoteStatus.DRAFT,
    QuoteEventKind.SENT: QuoteStatus.SENT,
    QuoteEventKind.OPENED: QuoteStatus.VIEWED,
    QuoteEventKind.SIGNED: QuoteStatus.SIGNED,
    QuoteEventKind.DECLINED: QuoteStatus.DECLINED,
    QuoteEventKind.SEND_FAILED: None,
}


def derive_status(events: Iterable[LoggedEvent]) -> StatusSummary:
    """Fold an ordered (oldest first) event sequence into a :class:`StatusSummary`.

    Deterministic: the same sequence always yields the same summary. An empty
    sequence yields ``draft`` with zeroed counters.
    """
    kinds: set[QuoteEventKind] = set()
    opens_count = 0
    opened_at = last_opened_at = None
    sent_at = last_sent_at = None
    send_failures = 0
    last_failure_at = None
    signed_at = declined_at = None
    last_event = None
    last_at = None

    for event in events:
        kinds.add(event.kind)
        last_event = event.kind
        last_at = event.at

        if event.kind is QuoteEventKind.OPENED:
            opens_count += 1
            if opened_at is None:
                opened_at = event.at
            last_opened_at = event.at
        elif event.kind is QuoteEventKind.SENT:
            if sent_at is None:
                sent_at = event.at
            last_sent_at = event.at
        elif event.kind is QuoteEventKind.SEND_FAILED:
            send_failures += 1
            last_failure_at = event.at
        elif event.kind is QuoteEventKind.SIGNED:
            if signed_at is None:
                signed_at = event.at
        elif event.kind is QuoteEventKind.DECLINED:
            if declined_at is None:
                declined_at = event.at

    return StatusSummary(
        status=status_from_kinds(kinds),
        opens_count=opens_count,
        opened_at=opened_at,
        last_opened_at=last_opened_at,
        sent_at=sent_at,
        last_sent_at=last_sent_at,
        send_failures=send_failures,
        last_failure_at=last_failure_at,
        signed_at=signed_at,
        declined_at=declined_at,
        last_event=last_event,
        last_at=last_at,
        kinds_seen=frozenset(kinds),
    )


def status_from_kinds(kinds: Iterable[QuoteEventKind]) -> QuoteStatus:
    seen = set(kinds)
    if QuoteEventKind.SIGNED in seen:
        return QuoteStatus.SIGNED
    if QuoteEventKind.DECLINED in seen:
        return QuoteStatus.DECLINED
    if QuoteEventKind.OPENED in seen:
        return QuoteStatus.VIEWED
    if QuoteEventKind.SENT in seen:
        return QuoteStatus.SENT
    return QuoteStatus.DRAFT


def first_status_timestamps(events: Iterable[LoggedEvent]) -> dict[str, str]:
    """Map each status to the ISO timestamp of the first event that reached it."""
    stamps: dict[str, str] = {}
    for event in events:
        status = KIND_STATUS[event.kind]
        if status is not None:
            stamps.setdefault(status.value, event.at.isoformat())
    return stamps
