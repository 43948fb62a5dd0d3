"""Denormalized status fields stored on the quote row.

The projection is a cache of what the event log says. The recorder advances
it one event at a time; ``reconcile`` rebuilds it from the whole log. Both
paths must agree for any log the guard accepts.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from quotetrack.storage.database.models import QuoteEventKind, QuoteStatus

from .guard import check_transition
from .status import KIND_STATUS, LoggedEvent, derive_status, first_status_timestamps


@dataclass(frozen=True)
class StatusProjection:
    status: QuoteStatus = QuoteStatus.DRAFT
    viewed: bool = False
    signed: bool = False
    declined: bool = False
    status_timestamps: Mapping[str, str] = field(default_factory=dict)

    def apply(self, kind: QuoteEventKind, at: datetime) -> StatusProjection:
        """Projection after recording ``kind`` at ``at``.

        Raises:
            TransitionDeniedError: ``kind`` is not allowed from the current status
        """
        decision = check_transition(self.status, kind)

        stamps = dict(self.status_timestamps)
        target = KIND_STATUS[kind]
        if target is not None:
            stamps.setdefault(target.value, at.isoformat())

        return replace(
            self,
            status=decision.next_status,
            viewed=self.viewed or kind is QuoteEventKind.OPENED,
            signed=self.signed or kind is QuoteEventKind.SIGNED,
            declined=self.declined or kind is QuoteEventKind.DECLINED,
            status_timestamps=stamps,
        )

    def as_fields(self) -> dict[str, Any]:
        """Column values for a conditional update of the quote row."""
        return {
            "status": self.status,
            "viewed": self.viewed,
            "signed": self.signed,
            "declined": self.declined,
            "status_timestamps": dict(self.status_timestamps),
        }

    @classmethod
    def from_log(cls, events: Sequence[LoggedEvent]) -> StatusProjection:
        """Rebuild the projection from a quote's full event log."""
        summary = derive_status(events)
        return cls(
            status=summary.status,
            viewed=summary.is_viewed,
            signed=summary.is_signed,
            declined=summary.is_declined,
            status_timestamps=first_status_timestamps(events),
        )
