"""SQLAlchemy models for quotetrack."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ...utils.datetime import utc_now
from .base import Base, IntPKMixin, UTCDateTime


class QuoteStatus(PyEnum):
    """Lifecycle status of a quote.

    Progress order: draft < sent < viewed < {signed, declined}.
    ``signed`` and ``declined`` are terminal and mutually exclusive.
    """

    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    SIGNED = "signed"
    DECLINED = "declined"

    @property
    def is_terminal(self) -> bool:
        return self in (QuoteStatus.SIGNED, QuoteStatus.DECLINED)


class QuoteEventKind(PyEnum):
    """Kinds of facts recorded in a quote's event log."""

    CREATED = "created"
    SENT = "sent"
    SEND_FAILED = "send_failed"
    OPENED = "opened"
    SIGNED = "signed"
    DECLINED = "declined"

    @classmethod
    def parse(cls, value: str | QuoteEventKind) -> QuoteEventKind:
        """Accept enum members, values and the legacy ``viewed`` alias."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        if normalized == "viewed":
            return cls.OPENED
        return cls(normalized)


def _new_quote_id() -> str:
    return str(uuid.uuid4())


class Quote(Base):
    """Sales quote / estimate.

    ``status``, ``viewed``, ``signed``, ``declined`` and ``status_timestamps``
    are a denormalized projection of the ``quote_events`` log. Only the event
    recorder writes them, always through a conditional update on
    ``status_version``.
    """

    __tablename__ = "quotes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_quote_id)
    display_name: Mapped[str | None] = mapped_column(String(200))

    # Client
    client_name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    client_email: Mapped[str | None] = mapped_column(String(256))
    client_phone: Mapped[str | None] = mapped_column(String(40))
    client_address: Mapped[str | None] = mapped_column(Text)

    # Amounts (computed from line items)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=0)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)

    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(String(256), index=True)

    # Rendered PDF location in the object store
    pdf_path: Mapped[str | None] = mapped_column(String(500))

    # Lifecycle projection
    status: Mapped[QuoteStatus] = mapped_column(
        Enum(QuoteStatus), nullable=False, default=QuoteStatus.DRAFT, index=True
    )
    viewed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    signed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    declined: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status_timestamps: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Trash (soft delete)
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    deleted_by: Mapped[str | None] = mapped_column(String(256))

    line_items: Mapped[list[QuoteLineItem]] = relationship(
        back_populates="quote",
        cascade="all, delete-orphan",
        order_by="QuoteLineItem.position",
    )

    @property
    def is_trashed(self) -> bool:
        return self.deleted_at is not None

    @property
    def label(self) -> str:
        return (self.display_name or "").strip() or self.client_name or self.id

    def __repr__(self) -> str:
        return f"<Quote(id='{self.id}', client='{self.client_name}', status={self.status.value})>"


class QuoteLineItem(IntPKMixin, Base):
    """A window/door position on a quote."""

    __tablename__ = "quote_line_items"

    quote_id: Mapped[str] = mapped_column(
        ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    quote: Mapped[Quote] = relationship(back_populates="line_items")

    position: Mapped[int] = mapped_column(Integer, nullable=False)
    item_type: Mapped[str] = mapped_column(String(50), nullable=False)  # window, door, ...
    style: Mapped[str | None] = mapped_column(String(100))
    material: Mapped[str | None] = mapped_column(String(100))
    location: Mapped[str | None] = mapped_column(String(100))
    description: Mapped[str | None] = mapped_column(Text)

    # Dimensions in inches
    width: Mapped[Decimal | None] = mapped_column(Numeric(8, 2))
    height: Mapped[Decimal | None] = mapped_column(Numeric(8, 2))

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    def __repr__(self) -> str:
        return f"<QuoteLineItem(quote='{self.quote_id}', pos={self.position})>"


class QuoteEvent(IntPKMixin, Base):
    """Immutable entry in a quote's append-only event log.

    Rows are inserted by the event recorder and never updated. Ordering is by
    ``at`` (server-assigned, non-decreasing per quote) then ``id``.
    """

    __tablename__ = "quote_events"
    __table_args__ = (
        UniqueConstraint("quote_id", "idempotency_key", name="uq_quote_events_idempotency"),
        Index("ix_quote_events_quote_at", "quote_id", "at"),
    )

    event_id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False, index=True)
    quote_id: Mapped[str] = mapped_column(
        ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[QuoteEventKind] = mapped_column(Enum(QuoteEventKind), nullable=False, index=True)
    metadata_json: Mapped[str | None] = mapped_column(Text)
    at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)
    idempotency_key: Mapped[str | None] = mapped_column(String(100))

    def __repr__(self) -> str:
        return f"<QuoteEvent(quote='{self.quote_id}', kind={self.kind.value}, at='{self.at}')>"


class Notification(IntPKMixin, Base):
    """Inbox entry for the sales team's notification bell.

    Independent of the event it came from: marking it read never touches the
    quote log. At most one row per (quote, kind).
    """

    __tablename__ = "notifications"
    __table_args__ = (UniqueConstraint("quote_id", "kind", name="uq_notifications_quote_kind"),)

    quote_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    kind: Mapped[QuoteEventKind] = mapped_column(Enum(QuoteEventKind), nullable=False)
    recipient: Mapped[str | None] = mapped_column(String(256), index=True)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    body: Mapped[str | None] = mapped_column(Text)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    read_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, quote='{self.quote_id}', kind={self.kind.value})>"
