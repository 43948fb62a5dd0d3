"""Storage ports for the lifecycle and their SQLAlchemy implementations.

The recorder only talks to :class:`LifecycleUnitOfWork`; everything it reads
and writes during one attempt goes through ``uow.quotes`` and ``uow.events``
and is committed or rolled back together.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Protocol

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from quotetrack.exceptions import QuoteNotFoundError
from quotetrack.storage.database.models import Quote, QuoteEvent, QuoteEventKind, QuoteStatus
from quotetrack.utils.datetime import utc_now

from .metadata import EventMetadata, dump_metadata, load_metadata
from .projection import StatusProjection
from .status import LoggedEvent


@dataclass(frozen=True)
class QuoteSnapshot:
    """The parts of a quote row the lifecycle needs, read in one go."""

    quote_id: str
    version: int
    projection: StatusProjection
    label: str
    client_name: str
    client_email: str | None
    created_by: str | None
    total: Decimal
    is_trashed: bool = False

    @property
    def status(self) -> QuoteStatus:
        return self.projection.status

    @property
    def viewed(self) -> bool:
        return self.projection.viewed


class QuoteStore(Protocol):
    def get(self, quote_id: str) -> QuoteSnapshot: ...

    def update_projection(
        self,
        quote_id: str,
        *,
        expected_status: QuoteStatus,
        expected_version: int,
        projection: StatusProjection,
    ) -> bool: ...


class EventLogStore(Protocol):
    def append(
        self,
        quote_id: str,
        kind: QuoteEventKind,
        metadata: EventMetadata,
        at: datetime,
        idempotency_key: str | None = None,
    ) -> LoggedEvent: ...

    def list_events(self, quote_id: str) -> list[LoggedEvent]: ...

    def last_event_at(self, quote_id: str) -> datetime | None: ...

    def find_by_idempotency_key(self, quote_id: str, key: str) -> LoggedEvent | None: ...

    def find_recent(
        self, quote_id: str, kind: QuoteEventKind, since: datetime
    ) -> LoggedEvent | None: ...


class LifecycleUnitOfWork(Protocol):
    quotes: QuoteStore
    events: EventLogStore

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def savepoint(self) -> AbstractContextManager[None]: ...


def _to_logged(row: QuoteEvent) -> LoggedEvent:
    return LoggedEvent(
        event_id=row.event_id,
        quote_id=row.quote_id,
        kind=row.kind,
        at=row.at,
        metadata=load_metadata(row.kind, row.metadata_json),
        idempotency_key=row.idempotency_key,
    )


class SqlQuoteStore:
    """Reads and conditionally updates the status projection on ``quotes``."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, quote_id: str) -> QuoteSnapshot:
        quote = self.session.execute(
            select(Quote).where(Quote.id == quote_id).execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if quote is None:
            raise QuoteNotFoundError(quote_id)

        return QuoteSnapshot(
            quote_id=quote.id,
            version=quote.status_version,
            projection=StatusProjection(
                status=quote.status,
                viewed=quote.viewed,
                signed=quote.signed,
                declined=quote.declined,
                status_timestamps=dict(quote.status_timestamps or {}),
            ),
            label=quote.label,
            client_name=quote.client_name,
            client_email=quote.client_email,
            created_by=quote.created_by,
            total=quote.total,
            is_trashed=quote.is_trashed,
        )

    def update_projection(
        self,
        quote_id: str,
        *,
        expected_status: QuoteStatus,
        expected_version: int,
        projection: StatusProjection,
    ) -> bool:
        """Write ``projection`` only if nobody changed the row since it was read.

        Returns:
            False when the status or version no longer match (lost the race)
        """
        result = self.session.execute(
            update(Quote)
            .where(
                Quote.id == quote_id,
                Quote.status == expected_status,
                Quote.status_version == expected_version,
            )
            .values(
                **projection.as_fields(),
                status_version=expected_version + 1,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class SqlEventLogStore:
    """Append-only access to ``quote_events``."""

    def __init__(self, session: Session):
        self.session = session

    def append(
        self,
        quote_id: str,
        kind: QuoteEventKind,
        metadata: EventMetadata,
        at: datetime,
        idempotency_key: str | None = None,
    ) -> LoggedEvent:
        row = QuoteEvent(
            event_id=str(uuid.uuid4()),
            quote_id=quote_id,
            kind=kind,
            metadata_json=dump_metadata(metadata),
            at=at,
            idempotency_key=idempotency_key,
        )
        self.session.add(row)
        self.session.flush()
        return LoggedEvent(
            event_id=row.event_id,
            quote_id=quote_id,
            kind=kind,
            at=at,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )

    def list_events(self, quote_id: str) -> list[LoggedEvent]:
        rows = self.session.scalars(
            select(QuoteEvent)
            .where(QuoteEvent.quote_id == quote_id)
            .order_by(QuoteEvent.at, QuoteEvent.id)
        ).all()
        return [_to_logged(row) for row in rows]

    def last_event_at(self, quote_id: str) -> datetime | None:
        return self.session.scalar(
            select(func.max(QuoteEvent.at)).where(QuoteEvent.quote_id == quote_id)
        )

    def find_by_idempotency_key(self, quote_id: str, key: str) -> LoggedEvent | None:
        row = self.session.scalars(
            select(QuoteEvent).where(
                QuoteEvent.quote_id == quote_id, QuoteEvent.idempotency_key == key
            )
        ).first()
        return _to_logged(row) if row else None

    def find_recent(
        self, quote_id: str, kind: QuoteEventKind, since: datetime
    ) -> LoggedEvent | None:
        row = self.session.scalars(
            select(QuoteEvent)
            .where(
                QuoteEvent.quote_id == quote_id,
                QuoteEvent.kind == kind,
                QuoteEvent.at >= since,
            )
            .order_by(QuoteEvent.at.desc(), QuoteEvent.id.desc())
            .limit(1)
        ).first()
        return _to_logged(row) if row else None


class SqlUnitOfWork:
    """Both lifecycle stores bound to one SQLAlchemy session.

    Usage:
        uow = SqlUnitOfWork(db)
        snapshot = uow.quotes.get(quote_id)
        uow.events.append(...)
        uow.commit()
    """

    def __init__(self, session: Session):
        self.session = session
        self.quotes = SqlQuoteStore(session)
        self.events = SqlEventLogStore(session)

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        """Nested transaction; rolled back on its own if the block raises."""
        with self.session.begin_nested():
            yield
