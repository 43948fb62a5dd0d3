"""Quote service layer: CRUD, lifecycle transitions, trash and notifications.

Every method takes the SQLAlchemy session as its first argument. Lifecycle
changes always go through :class:`~quotetrack.core.lifecycle.EventRecorder`;
this module never writes the status fields itself.
"""

from __future__ import annotations

import smtplib
import time
import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from quotetrack.core.events import (
    BaseEvent,
    GlobalEventBus,
    QuoteCreatedEvent,
    QuotePurgedEvent,
    QuoteRestoredEvent,
    QuoteTransitionEvent,
    QuoteTrashedEvent,
    get_global_event_bus,
)
from quotetrack.core.lifecycle import (
    CreatedMeta,
    DeclinedMeta,
    EventMetadata,
    EventRecorder,
    OpenedMeta,
    ReconcileResult,
    SendFailedMeta,
    SentMeta,
    SignedMeta,
    SqlEventLogStore,
    SqlUnitOfWork,
    StatusSummary,
    build_metadata,
    check_editable,
    derive_status,
)
from quotetrack.core.notifications import (
    DispatchReport,
    NotificationDispatcher,
    NotificationMessage,
)
from quotetrack.exceptions import (
    PermissionDeniedError,
    QuoteDeliveryError,
    QuoteNotFoundError,
    StoreUnavailableError,
    TransitionDeniedError,
    ValidationError,
)
from quotetrack.storage.database.models import (
    Notification,
    Quote,
    QuoteEvent,
    QuoteEventKind,
    QuoteLineItem,
    QuoteStatus,
)
from quotetrack.utils.config import Settings
from quotetrack.utils.datetime import utc_now
from quotetrack.utils.logging import (
    LogPerformance,
    get_logger,
    log_quote_created,
    log_quote_transition,
)
from quotetrack.utils.retry import STORE_RETRY, retry_sync

from .mailer import QuoteMailer, SmtpQuoteMailer

logger = get_logger(__name__)

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class Actor:
    """Who is performing an operation."""

    email: str | None = None
    is_admin: bool = False


@dataclass(frozen=True)
class ClientInfo:
    name: str
    email: str | None = None
    phone: str | None = None
    address: str | None = None


@dataclass(frozen=True)
class TransitionOutcome:
    """Result of :meth:`QuoteService.request_transition`."""

    quote_id: str
    kind: QuoteEventKind
    event_id: str
    previous_status: QuoteStatus
    status: QuoteStatus
    duplicate: bool = False
    notification: DispatchReport | None = None


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def _decimal(value: Any, field: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(
            f"Invalid number for {field}: {value!r}", field=field, value=value
        ) from e


def _parse_kind(kind: QuoteEventKind | str) -> QuoteEventKind:
    try:
        return QuoteEventKind.parse(kind)
    except ValueError as e:
        raise ValidationError(f"Unknown event kind: {kind}", field="kind", value=kind) from e


class QuoteService:
    """Service for quote operations.

    Args:
        settings: Application settings
        dispatcher: Notification fan-out; built from settings when omitted
        event_bus: Domain event bus; the process-wide bus when omitted
        mailer: Client e-mail delivery for :meth:`send_quote`
        clock: Source of "now" for event timestamps
    """

    def __init__(
        self,
        settings: Settings,
        dispatcher: NotificationDispatcher | None = None,
        event_bus: GlobalEventBus | None = None,
        mailer: QuoteMailer | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings
        self._dispatcher = dispatcher
        self.event_bus = event_bus or get_global_event_bus()
        self.mailer = mailer or SmtpQuoteMailer(settings)
        self.clock = clock

    @property
    def dispatcher(self) -> NotificationDispatcher:
        if self._dispatcher is None:
            from quotetrack.storage.database.base import get_session

            self._dispatcher = NotificationDispatcher.from_settings(self.settings, get_session)
        return self._dispatcher

    def recorder(self, db: Session) -> EventRecorder:
        return EventRecorder(
            SqlUnitOfWork(db),
            clock=self.clock,
            idempotency_window=timedelta(seconds=self.settings.idempotency_window_seconds),
            max_attempts=self.settings.transition_max_attempts,
        )

    # ------------------------------------------------------------------
    # Quote content
    # ------------------------------------------------------------------

    def create_quote(
        self,
        db: Session,
        client: ClientInfo | Mapping[str, Any],
        line_items: Sequence[Mapping[str, Any]],
        notes: str | None = None,
        created_by: str | None = None,
        tax_rate: Decimal | float | str | None = None,
        display_name: str | None = None,
    ) -> Quote:
        """Create a draft quote and record its ``created`` event.

        Args:
            db: Database session
            client: Client details (name required)
            line_items: Dicts with item_type, quantity, unit_price and optional
                style, material, location, description, width, height
            notes: Free-text notes shown on the quote
            created_by: Salesperson e-mail; receives the inbox notifications
            tax_rate: Percent; defaults to ``settings.default_tax_rate``
            display_name: Optional estimate name shown instead of the client name

        Raises:
            ValidationError: missing client name or bad line items
        """
        client = self._client_info(client)
        rate = self._tax_rate(tax_rate)

        quote = Quote(
            id=str(uuid.uuid4()),
            display_name=display_name,
            client_name=client.name,
            client_email=client.email,
            client_phone=client.phone,
            client_address=client.address,
            notes=notes,
            created_by=created_by,
            tax_rate=rate,
            status=QuoteStatus.DRAFT,
            status_timestamps={},
            status_version=0,
        )
        self._set_line_items(quote, line_items)

        try:
            db.add(quote)
            db.flush()
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreUnavailableError("Could not save quote", original_error=e) from e

        # Commits the quote row together with its first event.
        self.recorder(db).record(
            quote.id, QuoteEventKind.CREATED, CreatedMeta(created_by=created_by)
        )

        log_quote_created(logger, quote.id, quote.client_name, float(quote.total), created_by)
        self._publish(
            QuoteCreatedEvent(
                quote_id=quote.id,
                client_name=quote.client_name,
                total_amount=quote.total,
                created_by=created_by,
            )
        )
        return quote

    def update_quote(
        self,
        db: Session,
        quote_id: str,
        *,
        client: ClientInfo | Mapping[str, Any] | None = None,
        line_items: Sequence[Mapping[str, Any]] | None = None,
        notes: str | None = None,
        display_name: str | None = None,
        tax_rate: Decimal | float | str | None = None,
    ) -> Quote:
        """Edit quote content. Only ``None`` arguments are left unchanged.

        Raises:
            QuoteNotFoundError: unknown quote
            QuoteLockedError: quote already signed or declined
            ValidationError: bad input
        """
        quote = self._require_quote(db, quote_id)
        check_editable(quote.status, quote_id=quote_id)

        if client is not None:
            info = self._client_info(client)
            quote.client_name = info.name
            quote.client_email = info.email
            quote.client_phone = info.phone
            quote.client_address = info.address
        if notes is not None:
            quote.notes = notes
        if display_name is not None:
            quote.display_name = display_name
        if tax_rate is not None:
            quote.tax_rate = self._tax_rate(tax_rate)
        if line_items is not None:
            quote.line_items.clear()
            db.flush()
            self._set_line_items(quote, line_items)
        else:
            self._recompute_totals(quote)

        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreUnavailableError(
                "Could not update quote", context={"quote_id": quote_id}, original_error=e
            ) from e

        logger.info("quote_updated", quote_id=quote_id, total=str(quote.total))
        return quote

    def get_quote(self, db: Session, quote_id: str) -> Quote | None:
        """Get quote by ID (trashed quotes included)."""
        return db.get(Quote, quote_id)

    def list_quotes(
        self,
        db: Session,
        status: QuoteStatus | None = None,
        created_by: str | None = None,
        include_trashed: bool = False,
        limit: int = 50,
    ) -> list[Quote]:
        """Newest first. Trashed quotes are hidden unless ``include_trashed``."""
        stmt = select(Quote).order_by(Quote.created_at.desc())
        if status:
            stmt = stmt.where(Quote.status == status)
        if created_by:
            stmt = stmt.where(Quote.created_by == created_by)
        if not include_trashed:
            stmt = stmt.where(Quote.deleted_at.is_(None))
        return list(db.scalars(stmt.limit(limit)).all())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def request_transition(
        self,
        db: Session,
        quote_id: str,
        kind: QuoteEventKind | str,
        metadata: EventMetadata | Mapping[str, Any] | None = None,
        *,
        idempotency_key: str | None = None,
    ) -> TransitionOutcome:
        """Record a lifecycle event, then notify if it calls for it.

        The transition is committed before any notification is attempted;
        notification failures are logged and never raised.

        Raises:
            QuoteNotFoundError: unknown quote
            TransitionDeniedError: not allowed from the current status
            ValidationError: bad kind or metadata
            StoreUnavailableError: transient store failure (retry with the same key)
        """
        kind = _parse_kind(kind)
        meta = build_metadata(kind, metadata)

        try:
            result = self.recorder(db).record(
                quote_id, kind, meta, idempotency_key=idempotency_key
            )
        except TransitionDeniedError as e:
            logger.warning(
                "transition_denied",
                quote_id=quote_id,
                kind=kind.value,
                current_status=e.current_status,
                reason=e.message,
            )
            raise

        if not result.duplicate:
            log_quote_transition(
                logger,
                quote_id,
                kind.value,
                result.previous_status.value,
                result.status.value,
                result.event_id,
            )
            self._publish(
                QuoteTransitionEvent(
                    quote_id=quote_id,
                    kind=kind.value,
                    quote_event_id=result.event_id,
                    previous_status=result.previous_status.value,
                    status=result.status.value,
                )
            )

        report = self._notify(db, quote_id, kind, meta) if result.notify else None

        return TransitionOutcome(
            quote_id=quote_id,
            kind=kind,
            event_id=result.event_id,
            previous_status=result.previous_status,
            status=result.status,
            duplicate=result.duplicate,
            notification=report,
        )

    def request_transition_with_retry(
        self,
        db: Session,
        quote_id: str,
        kind: QuoteEventKind | str,
        metadata: EventMetadata | Mapping[str, Any] | None = None,
        *,
        idempotency_key: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> TransitionOutcome:
        """:meth:`request_transition` retried on store outages.

        One idempotency key is used for every attempt, so an attempt that
        failed after its event was stored is not recorded twice.
        """
        key = idempotency_key or str(uuid.uuid4())
        config = replace(STORE_RETRY, max_retries=self.settings.store_retry_attempts)
        return retry_sync(
            lambda: self.request_transition(
                db, quote_id, kind, metadata, idempotency_key=key
            ),
            config=config,
            sleep=sleep,
        )

    def get_status_summary(self, db: Session, quote_id: str) -> StatusSummary:
        """Status and view/send metrics derived from the full event log.

        Raises:
            QuoteNotFoundError: unknown quote
            StoreUnavailableError: store failure
        """
        try:
            if db.get(Quote, quote_id) is None:
                raise QuoteNotFoundError(quote_id)
            events = SqlEventLogStore(db).list_events(quote_id)
        except SQLAlchemyError as e:
            raise StoreUnavailableError(
                "Could not read quote events", context={"quote_id": quote_id}, original_error=e
            ) from e
        return derive_status(events)

    def send_quote(
        self,
        db: Session,
        quote_id: str,
        recipient: str | None = None,
        actor: Actor | None = None,
    ) -> TransitionOutcome:
        """E-mail the quote link to the client and record ``sent``.

        On delivery failure ``send_failed`` is recorded instead and
        :class:`QuoteDeliveryError` is raised.
        """
        quote = self._require_quote(db, quote_id)
        recipient = (recipient or quote.client_email or "").strip()
        if not recipient:
            raise ValidationError("Quote has no client e-mail to send to", field="recipient")

        link = self.settings.quote_link(quote_id)
        try:
            self.mailer.send_quote(quote, recipient, link)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("quote_send_failed", quote_id=quote_id, recipient=recipient, error=str(e))
            self.request_transition(
                db,
                quote_id,
                QuoteEventKind.SEND_FAILED,
                SendFailedMeta(recipient=recipient, error=str(e)[:500]),
            )
            raise QuoteDeliveryError(
                f"Could not e-mail quote to {recipient}",
                recipient=recipient,
                context={"quote_id": quote_id},
                original_error=e,
            ) from e

        return self.request_transition(
            db,
            quote_id,
            QuoteEventKind.SENT,
            SentMeta(recipient=recipient, sent_by=actor.email if actor else None),
        )

    def record_link_open(
        self,
        db: Session,
        quote_id: str,
        *,
        source: str = "link",
        viewer_email: str | None = None,
        user_agent: str | None = None,
        ip: str | None = None,
    ) -> TransitionOutcome | None:
        """Tracking-pixel / link-redirect path: record ``opened``, never raise.

        The caller always serves the pixel or redirect, so any failure is
        only logged and reported as ``None``.
        """
        meta = OpenedMeta(viewer_email=viewer_email, source=source, user_agent=user_agent, ip=ip)
        try:
            return self.request_transition(db, quote_id, QuoteEventKind.OPENED, meta)
        except Exception as e:
            logger.warning(
                "link_open_not_recorded",
                quote_id=quote_id,
                source=source,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    def reconcile(self, db: Session, quote_id: str) -> ReconcileResult:
        """Re-derive one quote's status fields from its log."""
        return self.recorder(db).reconcile(quote_id)

    def reconcile_all(self, db: Session) -> list[ReconcileResult]:
        """Repair every quote whose status fields disagree with its log.

        Returns:
            Results for the quotes that were changed
        """
        quote_ids = list(db.scalars(select(Quote.id)).all())
        recorder = self.recorder(db)

        repaired = []
        with LogPerformance("reconcile_all", logger):
            for quote_id in quote_ids:
                result = recorder.reconcile(quote_id)
                if result.changed:
                    repaired.append(result)

        logger.info("reconcile_all_completed", checked=len(quote_ids), repaired=len(repaired))
        return repaired

    # ------------------------------------------------------------------
    # Trash
    # ------------------------------------------------------------------

    def trash_quote(self, db: Session, quote_id: str, actor: Actor) -> Quote:
        """Soft delete. Status and event log are untouched."""
        quote = self._require_quote(db, quote_id)
        self._require_owner_or_admin(quote, actor, "trash")

        if quote.is_trashed:
            return quote

        quote.deleted_at = utc_now()
        quote.deleted_by = actor.email
        db.commit()

        logger.info("quote_trashed", quote_id=quote_id, deleted_by=actor.email)
        self._publish(QuoteTrashedEvent(quote_id=quote_id, deleted_by=actor.email))
        return quote

    def restore_quote(self, db: Session, quote_id: str, actor: Actor) -> Quote:
        quote = self._require_quote(db, quote_id)
        self._require_owner_or_admin(quote, actor, "restore")

        if not quote.is_trashed:
            return quote

        quote.deleted_at = None
        quote.deleted_by = None
        db.commit()

        logger.info("quote_restored", quote_id=quote_id, restored_by=actor.email)
        self._publish(QuoteRestoredEvent(quote_id=quote_id, restored_by=actor.email))
        return quote

    def list_trash(self, db: Session, actor: Actor, limit: int = 100) -> list[Quote]:
        """Trashed quotes: all of them for admins, the actor's own otherwise."""
        stmt = select(Quote).where(Quote.deleted_at.is_not(None))
        if not actor.is_admin:
            stmt = stmt.where(Quote.created_by == actor.email)
        stmt = stmt.order_by(Quote.deleted_at.desc()).limit(limit)
        return list(db.scalars(stmt).all())

    def purge_quote(self, db: Session, quote_id: str, actor: Actor) -> int:
        """Permanently delete a quote with its line items, events and notifications.

        Returns:
            Number of log events deleted

        Raises:
            PermissionDeniedError: actor is not an admin
            QuoteNotFoundError: unknown quote
        """
        if not actor.is_admin:
            raise PermissionDeniedError(
                "Only admins can permanently delete quotes",
                actor=actor.email,
                context={"quote_id": quote_id},
            )

        quote = self._require_quote(db, quote_id)

        db.execute(delete(Notification).where(Notification.quote_id == quote_id))
        events_deleted = db.execute(
            delete(QuoteEvent).where(QuoteEvent.quote_id == quote_id)
        ).rowcount
        db.delete(quote)
        db.commit()

        logger.warning(
            "quote_purged", quote_id=quote_id, purged_by=actor.email, events_deleted=events_deleted
        )
        self._publish(
            QuotePurgedEvent(
                quote_id=quote_id, purged_by=actor.email or "", events_deleted=events_deleted
            )
        )
        return events_deleted

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_quote(self, db: Session, quote_id: str) -> Quote:
        quote = db.get(Quote, quote_id)
        if quote is None:
            raise QuoteNotFoundError(quote_id)
        return quote

    @staticmethod
    def _require_owner_or_admin(quote: Quote, actor: Actor, action: str) -> None:
        if actor.is_admin or (actor.email and actor.email == quote.created_by):
            return
        raise PermissionDeniedError(
            f"Not allowed to {action} quote {quote.id}",
            actor=actor.email,
            context={"quote_id": quote.id},
        )

    @staticmethod
    def _client_info(client: ClientInfo | Mapping[str, Any]) -> ClientInfo:
        if not isinstance(client, ClientInfo):
            client = ClientInfo(
                name=str(client.get("name") or ""),
                email=client.get("email"),
                phone=client.get("phone"),
                address=client.get("address"),
            )
        if not client.name.strip():
            raise ValidationError("Client name is required", field="client.name")
        return replace(client, name=client.name.strip())

    def _tax_rate(self, tax_rate: Decimal | float | str | None) -> Decimal:
        if tax_rate is None:
            return self.settings.default_tax_rate
        rate = _decimal(tax_rate, "tax_rate")
        if not Decimal("0") <= rate <= Decimal("100"):
            raise ValidationError(
                "Tax rate must be between 0 and 100", field="tax_rate", value=rate
            )
        return rate

    def _set_line_items(self, quote: Quote, line_items: Sequence[Mapping[str, Any]]) -> None:
        for position, data in enumerate(line_items, start=1):
            item_type = str(data.get("item_type") or "").strip()
            if not item_type:
                raise ValidationError(
                    f"Line {position}: item_type is required", field="line_items.item_type"
                )

            try:
                quantity = int(data.get("quantity", 1))
            except (TypeError, ValueError) as e:
                raise ValidationError(
                    f"Line {position}: quantity must be a whole number",
                    field="line_items.quantity",
                    value=data.get("quantity"),
                ) from e
            if quantity < 1:
                raise ValidationError(
                    f"Line {position}: quantity must be at least 1",
                    field="line_items.quantity",
                    value=quantity,
                )

            unit_price = _decimal(data.get("unit_price", 0), "line_items.unit_price")
            if unit_price < 0:
                raise ValidationError(
                    f"Line {position}: unit price cannot be negative",
                    field="line_items.unit_price",
                    value=unit_price,
                )

            width = data.get("width")
            height = data.get("height")
            quote.line_items.append(
                QuoteLineItem(
                    position=position,
                    item_type=item_type,
                    style=data.get("style"),
                    material=data.get("material"),
                    location=data.get("location"),
                    description=data.get("description"),
                    width=_decimal(width, "line_items.width") if width is not None else None,
                    height=_decimal(height, "line_items.height") if height is not None else None,
                    quantity=quantity,
                    unit_price=_money(unit_price),
                    line_total=_money(unit_price * quantity),
                )
            )

        self._recompute_totals(quote)

    @staticmethod
    def _recompute_totals(quote: Quote) -> None:
        subtotal = sum((item.line_total for item in quote.line_items), Decimal("0"))
        tax = _money(subtotal * Decimal(quote.tax_rate) / Decimal("100"))
        quote.subtotal = _money(subtotal)
        quote.tax = tax
        quote.total = _money(subtotal + tax)

    def _notify(
        self,
        db: Session,
        quote_id: str,
        kind: QuoteEventKind,
        meta: EventMetadata,
    ) -> DispatchReport | None:
        try:
            quote = self._require_quote(db, quote_id)
            message = NotificationMessage(
                quote_id=quote_id,
                kind=kind,
                quote_label=quote.label,
                link=self.settings.quote_link(quote_id),
                total=quote.total,
                recipient=quote.created_by,
                detail=self._notification_detail(meta),
            )
        except Exception as e:
            logger.error(
                "notification_failed",
                quote_id=quote_id,
                kind=kind.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None
        return self.dispatcher.notify(message)

    @staticmethod
    def _notification_detail(meta: EventMetadata) -> str | None:
        if isinstance(meta, DeclinedMeta) and meta.reason:
            return f"Reason: {meta.reason}"
        if isinstance(meta, SignedMeta) and (meta.signer_name or meta.signer_email):
            return f"Signed by {meta.signer_name or meta.signer_email}"
        if isinstance(meta, OpenedMeta) and meta.viewer_email:
            return f"Opened by {meta.viewer_email}"
        return None

    def _publish(self, event: BaseEvent) -> None:
        self.event_bus.publish(event)
