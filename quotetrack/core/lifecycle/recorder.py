"""Event recorder.

The only writer of quote lifecycle facts. One call to :meth:`EventRecorder.record`
reads the quote, checks idempotency, runs the guard, appends the event and
advances the status projection inside a single unit of work. The projection
update is conditional on the version that was read, so two concurrent
``signed``/``declined`` requests cannot both win: the loser re-reads, sees a
terminal status and is denied by the guard.

When a failed projection update has left the row behind the log, the guard
runs against the log's status instead and the same attempt catches the row up.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from quotetrack.exceptions import (
    ConcurrentUpdateError,
    QuoteTrackError,
    StoreUnavailableError,
    ValidationError,
)
from quotetrack.storage.database.models import QuoteEventKind, QuoteStatus
from quotetrack.utils.datetime import ensure_utc, utc_now
from quotetrack.utils.logging import get_logger

from .guard import STATUS_RANK, check_transition
from .metadata import EventMetadata, build_metadata
from .projection import StatusProjection
from .status import LoggedEvent
from .stores import LifecycleUnitOfWork, QuoteSnapshot

logger = get_logger(__name__)

# Kinds that are duplicates when repeated inside the idempotency window even
# without an explicit key (double-clicked sign / decline buttons).
NATURALLY_IDEMPOTENT_KINDS = frozenset({QuoteEventKind.SIGNED, QuoteEventKind.DECLINED})


@dataclass(frozen=True)
class RecordResult:
    """What happened when an event was recorded."""

    event_id: str
    quote_id: str
    kind: QuoteEventKind
    at: datetime
    previous_status: QuoteStatus
    status: QuoteStatus
    duplicate: bool = False
    notify: bool = False
    attempts: int = 1

    @property
    def status_changed(self) -> bool:
        return self.status is not self.previous_status


@dataclass(frozen=True)
class ReconcileResult:
    quote_id: str
    before: StatusProjection
    after: StatusProjection

    @property
    def changed(self) -> bool:
        return self.before != self.after


class _ProjectionConflict(Exception):
    """Conditional update matched no row: someone else moved the quote."""


class EventRecorder:
    """Append events and keep the quote's status projection in step.

    Args:
        uow: Unit of work wrapping the quote and event stores
        clock: Source of "now"; event timestamps are server-assigned
        idempotency_window: How long a repeated signed/declined counts as a duplicate
        max_attempts: Attempts before giving up on a contended quote
    """

    def __init__(
        self,
        uow: LifecycleUnitOfWork,
        *,
        clock: Callable[[], datetime] = utc_now,
        idempotency_window: timedelta = timedelta(seconds=60),
        max_attempts: int = 5,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.uow = uow
        self.clock = clock
        self.idempotency_window = idempotency_window
        self.max_attempts = max_attempts

    def record(
        self,
        quote_id: str,
        kind: QuoteEventKind | str,
        metadata: EventMetadata | Mapping[str, Any] | None = None,
        *,
        idempotency_key: str | None = None,
    ) -> RecordResult:
        """Record one lifecycle event.

        Raises:
            QuoteNotFoundError: unknown quote
            TransitionDeniedError: guard rejected the event
            AlreadyTerminalError: quote already signed or declined
            ValidationError: bad kind or metadata
            StoreUnavailableError: store failure; retry with the same idempotency key
            ConcurrentUpdateError: still losing the race after ``max_attempts``
        """
        try:
            kind = QuoteEventKind.parse(kind)
        except ValueError as e:
            raise ValidationError(f"Unknown event kind: {kind}", field="kind", value=kind) from e
        meta = build_metadata(kind, metadata)

        for attempt in range(1, self.max_attempts + 1):
            try:
                return self._attempt(quote_id, kind, meta, idempotency_key, attempt)
            except _ProjectionConflict:
                self.uow.rollback()
                logger.info(
                    "projection_conflict_retry",
                    quote_id=quote_id,
                    kind=kind.value,
                    attempt=attempt,
                )
            except IntegrityError:
                # Same idempotency key appended concurrently; the next attempt sees it.
                self.uow.rollback()
                logger.info(
                    "quote_event_key_conflict",
                    quote_id=quote_id,
                    kind=kind.value,
                    attempt=attempt,
                )
            except QuoteTrackError:
                self.uow.rollback()
                raise
            except SQLAlchemyError as e:
                self.uow.rollback()
                logger.error(
                    "quote_event_store_error",
                    quote_id=quote_id,
                    kind=kind.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise StoreUnavailableError(
                    "Event store unavailable",
                    context={"quote_id": quote_id, "kind": kind.value},
                    original_error=e,
                ) from e

        logger.warning(
            "projection_conflict_exhausted",
            quote_id=quote_id,
            kind=kind.value,
            attempts=self.max_attempts,
        )
        raise ConcurrentUpdateError(
            f"Quote {quote_id} kept changing while recording '{kind.value}'",
            quote_id=quote_id,
        )

    def _attempt(
        self,
        quote_id: str,
        kind: QuoteEventKind,
        meta: EventMetadata,
        idempotency_key: str | None,
        attempt: int,
    ) -> RecordResult:
        quote = self.uow.quotes.get(quote_id)
        now = ensure_utc(self.clock())

        existing = self._find_duplicate(quote_id, kind, idempotency_key, now)
        if existing is not None:
            self.uow.rollback()
            repaired = self.reconcile(quote_id)
            logger.info(
                "quote_event_duplicate",
                quote_id=quote_id,
                kind=kind.value,
                event_id=existing.event_id,
                repaired=repaired.changed,
            )
            return RecordResult(
                event_id=existing.event_id,
                quote_id=quote_id,
                kind=kind,
                at=existing.at,
                previous_status=repaired.after.status,
                status=repaired.after.status,
                duplicate=True,
                attempts=attempt,
            )

        base = self._current_projection(quote)
        try:
            decision = check_transition(base.status, kind, quote_id=quote_id)
        except QuoteTrackError:
            if base is not quote.projection:
                self._repair_denied(quote, base)
            raise
        notify = decision.notify
        if kind is QuoteEventKind.OPENED and base.viewed:
            notify = False

        # Per-quote timestamps never go backwards, whatever the clock does.
        last_at = self.uow.events.last_event_at(quote_id)
        at = max(now, last_at) if last_at else now

        event = self.uow.events.append(quote_id, kind, meta, at, idempotency_key)
        projection = base.apply(kind, at)

        try:
            with self.uow.savepoint():
                updated = self.uow.quotes.update_projection(
                    quote_id,
                    expected_status=quote.status,
                    expected_version=quote.version,
                    projection=projection,
                )
        except SQLAlchemyError as e:
            # The event is the source of truth: keep it and let reconcile fix the row.
            self.uow.commit()
            logger.error(
                "projection_update_failed",
                quote_id=quote_id,
                event_id=event.event_id,
                kind=kind.value,
                error=str(e),
            )
            raise StoreUnavailableError(
                "Event recorded but quote status could not be updated",
                context={"quote_id": quote_id, "event_id": event.event_id},
                original_error=e,
            ) from e

        if not updated:
            raise _ProjectionConflict()

        self.uow.commit()

        logger.info(
            "transition_recorded",
            quote_id=quote_id,
            event_id=event.event_id,
            kind=kind.value,
            previous_status=base.status.value,
            status=projection.status.value,
            attempt=attempt,
        )

        return RecordResult(
            event_id=event.event_id,
            quote_id=quote_id,
            kind=kind,
            at=at,
            previous_status=base.status,
            status=projection.status,
            notify=notify,
            attempts=attempt,
        )

    def _find_duplicate(
        self,
        quote_id: str,
        kind: QuoteEventKind,
        idempotency_key: str | None,
        now: datetime,
    ) -> LoggedEvent | None:
        if idempotency_key:
            existing = self.uow.events.find_by_idempotency_key(quote_id, idempotency_key)
            if existing is not None and existing.kind is not kind:
                raise ValidationError(
                    f"Idempotency key already used for a '{existing.kind.value}' event",
                    field="idempotency_key",
                    value=idempotency_key,
                )
            return existing

        if kind in NATURALLY_IDEMPOTENT_KINDS and self.idempotency_window:
            return self.uow.events.find_recent(quote_id, kind, now - self.idempotency_window)

        return None

    def _current_projection(self, quote: QuoteSnapshot) -> StatusProjection:
        """The row's projection, or the log's when the row has fallen behind it.

        The row lags the log after a failed projection update, so the guard
        must not trust a non-terminal row while the log already holds a
        signed or declined event.
        """
        logged = StatusProjection.from_log(self.uow.events.list_events(quote.quote_id))
        if not _is_ahead(logged.status, quote.status):
            return quote.projection

        logger.warning(
            "projection_behind_log",
            quote_id=quote.quote_id,
            row_status=quote.status.value,
            log_status=logged.status.value,
        )
        return logged

    def _repair_denied(self, quote: QuoteSnapshot, target: StatusProjection) -> None:
        """Bring a stale row up to the log before a denial is raised."""
        try:
            repaired = self.uow.quotes.update_projection(
                quote.quote_id,
                expected_status=quote.status,
                expected_version=quote.version,
                projection=target,
            )
            if repaired:
                self.uow.commit()
        except SQLAlchemyError as e:
            self.uow.rollback()
            logger.error("projection_repair_failed", quote_id=quote.quote_id, error=str(e))
            return

        if repaired:
            logger.warning(
                "projection_repaired",
                quote_id=quote.quote_id,
                from_status=quote.status.value,
                to_status=target.status.value,
            )

    def reconcile(self, quote_id: str) -> ReconcileResult:
        """Rebuild the quote's status projection from its full event log.

        Raises:
            QuoteNotFoundError: unknown quote
            StoreUnavailableError: store failure
            ConcurrentUpdateError: quote kept changing underneath
        """
        try:
            for _ in range(self.max_attempts):
                result = self._reconcile_once(quote_id)
                if result is not None:
                    return result
                self.uow.rollback()
        except SQLAlchemyError as e:
            self.uow.rollback()
            raise StoreUnavailableError(
                "Event store unavailable during reconcile",
                context={"quote_id": quote_id},
                original_error=e,
            ) from e

        raise ConcurrentUpdateError(
            f"Quote {quote_id} kept changing during reconcile", quote_id=quote_id
        )

    def _reconcile_once(self, quote_id: str) -> ReconcileResult | None:
        quote = self.uow.quotes.get(quote_id)
        target = StatusProjection.from_log(self.uow.events.list_events(quote_id))

        if target == quote.projection:
            self.uow.rollback()
            return ReconcileResult(quote_id=quote_id, before=quote.projection, after=target)

        if not self.uow.quotes.update_projection(
            quote_id,
            expected_status=quote.status,
            expected_version=quote.version,
            projection=target,
        ):
            return None

        self.uow.commit()
        logger.warning(
            "projection_repaired",
            quote_id=quote_id,
            from_status=quote.status.value,
            to_status=target.status.value,
        )
        return ReconcileResult(quote_id=quote_id, before=quote.projection, after=target)


def _is_ahead(status: QuoteStatus, than: QuoteStatus) -> bool:
    if status is than:
        return False
    return status.is_terminal or STATUS_RANK[status] > STATUS_RANK[than]
