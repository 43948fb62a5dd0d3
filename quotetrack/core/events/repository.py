"""Read-side queries over the ``quote_events`` log."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ...storage.database.models import QuoteEvent, QuoteEventKind
from ..lifecycle.metadata import (
    DeclinedMeta,
    EventMetadata,
    OpenedMeta,
    SendFailedMeta,
    SentMeta,
    SignedMeta,
    load_metadata,
)


class QuoteEventRepository:
    """Query quote events for timelines, stats and search.

    Read-only: appending goes through the event recorder.
    """

    def __init__(self, session: Session):
        self.session = session

    def _filtered(
        self,
        quote_id: str | None = None,
        kind: QuoteEventKind | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ):
        stmt = select(QuoteEvent)
        if quote_id:
            stmt = stmt.where(QuoteEvent.quote_id == quote_id)
        if kind:
            stmt = stmt.where(QuoteEvent.kind == kind)
        if start_date:
            stmt = stmt.where(QuoteEvent.at >= start_date)
        if end_date:
            stmt = stmt.where(QuoteEvent.at <= end_date)
        return stmt

    def get_all(
        self,
        quote_id: str | None = None,
        kind: QuoteEventKind | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[QuoteEvent]:
        """Most recent first."""
        stmt = (
            self._filtered(quote_id, kind, start_date, end_date)
            .order_by(QuoteEvent.at.desc(), QuoteEvent.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.scalars(stmt).all())

    def get_by_id(self, event_id: str) -> QuoteEvent | None:
        return self.session.scalars(
            select(QuoteEvent).where(QuoteEvent.event_id == event_id)
        ).first()

    def count(
        self,
        quote_id: str | None = None,
        kind: QuoteEventKind | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> int:
        stmt = self._filtered(quote_id, kind, start_date, end_date).subquery()
        return self.session.scalar(select(func.count()).select_from(stmt)) or 0

    def timeline(self, quote_id: str) -> list[dict[str, Any]]:
        """Oldest-first timeline of a quote with a one-line summary per event."""
        rows = self.session.scalars(
            select(QuoteEvent)
            .where(QuoteEvent.quote_id == quote_id)
            .order_by(QuoteEvent.at, QuoteEvent.id)
        ).all()

        timeline = []
        for row in rows:
            meta = load_metadata(row.kind, row.metadata_json)
            timeline.append(
                {
                    "timestamp": row.at,
                    "kind": row.kind.value,
                    "event_id": row.event_id,
                    "summary": self._create_event_summary(row.kind, meta),
                }
            )
        return timeline

    def get_stats(
        self,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> dict[str, Any]:
        filtered = self._filtered(start_date=start_date, end_date=end_date).subquery()

        total = self.session.scalar(select(func.count()).select_from(filtered)) or 0
        by_kind = self.session.execute(
            select(filtered.c.kind, func.count()).group_by(filtered.c.kind)
        ).all()
        first_at, last_at = self.session.execute(
            select(func.min(filtered.c.at), func.max(filtered.c.at))
        ).one()
        quotes_touched = (
            self.session.scalar(select(func.count(func.distinct(filtered.c.quote_id)))) or 0
        )

        return {
            "total_events": total,
            "events_by_kind": {
                (kind.value if isinstance(kind, QuoteEventKind) else str(kind)): count
                for kind, count in by_kind
            },
            "quotes_touched": quotes_touched,
            "first_event_at": first_at,
            "last_event_at": last_at,
            "date_range": {
                "start": start_date.isoformat() if start_date else None,
                "end": end_date.isoformat() if end_date else None,
            },
        }

    def search(
        self,
        text: str,
        quote_id: str | None = None,
        kind: QuoteEventKind | None = None,
        start_date: datetime | None = None,
        limit: int = 100,
    ) -> list[QuoteEvent]:
        """Events whose metadata contains ``text`` (e.g. an e-mail address)."""
        stmt = (
            self._filtered(quote_id, kind, start_date)
            .where(QuoteEvent.metadata_json.like(f"%{text}%"))
            .order_by(QuoteEvent.at.desc(), QuoteEvent.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    @staticmethod
    def _create_event_summary(kind: QuoteEventKind, meta: EventMetadata) -> str:
        if isinstance(meta, SentMeta):
            return f"Sent to {meta.recipient or 'N/A'}"
        if isinstance(meta, SendFailedMeta):
            return f"Send to {meta.recipient or 'N/A'} failed: {meta.error or 'unknown error'}"
        if isinstance(meta, OpenedMeta):
            who = meta.viewer_email or "client"
            return f"Opened by {who} ({meta.source})"
        if isinstance(meta, SignedMeta):
            return f"Signed by {meta.signer_name or meta.signer_email or 'client'}"
        if isinstance(meta, DeclinedMeta):
            return f"Declined: {meta.reason}" if meta.reason else "Declined"
        return f"Quote {kind.value}"
