"""Lifecycle guard.

Decides whether an event kind may be recorded against a quote in a given
status, what the status becomes, and whether the notification dispatcher
should be told. Pure: the recorder runs it inside the same unit of work that
appends the event.
"""

from __future__ import annotations

from dataclasses import dataclass

from quotetrack.exceptions import AlreadyTerminalError, QuoteLockedError, TransitionDeniedError
from quotetrack.storage.database.models import QuoteEventKind, QuoteStatus

from .status import KIND_STATUS

STATUS_RANK: dict[QuoteStatus, int] = {
    QuoteStatus.DRAFT: 0,
    QuoteStatus.SENT: 1,
    QuoteStatus.VIEWED: 2,
    QuoteStatus.SIGNED: 3,
    QuoteStatus.DECLINED: 3,
}

# Tracking kinds still accepted once a quote is signed or declined.
_POST_TERMINAL_KINDS = frozenset(
    {QuoteEventKind.OPENED, QuoteEventKind.SENT, QuoteEventKind.SEND_FAILED}
)


@dataclass(frozen=True)
class TransitionDecision:
    """Outcome of :func:`can_transition`."""

    current_status: QuoteStatus
    requested_kind: QuoteEventKind
    allowed: bool
    next_status: QuoteStatus
    notify: bool = False
    reason: str | None = None
    terminal_conflict: bool = False

    @property
    def changes_status(self) -> bool:
        return self.next_status is not self.current_status

    def raise_if_denied(self, quote_id: str | None = None) -> None:
        if self.allowed:
            return
        error_cls = AlreadyTerminalError if self.terminal_conflict else TransitionDeniedError
        raise error_cls(
            self.reason or "Transition denied",
            current_status=self.current_status.value,
            requested_kind=self.requested_kind.value,
            quote_id=quote_id,
        )


def advance_status(current: QuoteStatus, kind: QuoteEventKind) -> QuoteStatus:
    """Status after ``kind``: moves forward only, terminal states never change."""
    if current.is_terminal:
        return current
    target = KIND_STATUS[kind]
    if target is None or STATUS_RANK[target] <= STATUS_RANK[current]:
        return current
    return target


def can_transition(current: QuoteStatus, kind: QuoteEventKind) -> TransitionDecision:
    """Evaluate recording ``kind`` against a quote currently in ``current``."""

    def deny(reason: str, *, terminal: bool = False) -> TransitionDecision:
        return TransitionDecision(
            current_status=current,
            requested_kind=kind,
            allowed=False,
            next_status=current,
            reason=reason,
            terminal_conflict=terminal,
        )

    def allow(notify: bool = False) -> TransitionDecision:
        return TransitionDecision(
            current_status=current,
            requested_kind=kind,
            allowed=True,
            next_status=advance_status(current, kind),
            notify=notify,
        )

    if kind is QuoteEventKind.CREATED:
        if current is QuoteStatus.DRAFT:
            return allow()
        return deny(f"Cannot record 'created' on a quote that is already {current.value}")

    if current.is_terminal:
        if kind in _POST_TERMINAL_KINDS:
            return allow()
        return deny(
            f"Quote is already {current.value}; '{kind.value}' is not allowed",
            terminal=True,
        )

    if kind is QuoteEventKind.OPENED:
        # First view only: a quote already viewed does not notify again.
        return allow(notify=current in (QuoteStatus.DRAFT, QuoteStatus.SENT))

    if kind in (QuoteEventKind.SIGNED, QuoteEventKind.DECLINED):
        return allow(notify=True)

    return allow()


def check_transition(
    current: QuoteStatus, kind: QuoteEventKind, *, quote_id: str | None = None
) -> TransitionDecision:
    """Like :func:`can_transition` but raises when the transition is denied.

    Raises:
        AlreadyTerminalError: the quote is signed/declined and ``kind`` would change that
        TransitionDeniedError: any other denied transition
    """
    decision = can_transition(current, kind)
    decision.raise_if_denied(quote_id)
    return decision


def check_editable(status: QuoteStatus, *, quote_id: str | None = None) -> None:
    """Content edits are allowed until the client signs or declines.

    Raises:
        QuoteLockedError: quote is in a terminal status
    """
    if status.is_terminal:
        raise QuoteLockedError(
            f"Quote is {status.value} and cannot be edited",
            current_status=status.value,
            quote_id=quote_id,
        )
