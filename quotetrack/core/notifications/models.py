"""Notification messages built from recorded lifecycle events."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from html import escape

from quotetrack.storage.database.models import QuoteEventKind

_HEADLINES = {
    QuoteEventKind.OPENED: "👀 Viewed",
    QuoteEventKind.SIGNED: "✅ Signed",
    QuoteEventKind.DECLINED: "❌ Declined",
}


@dataclass(frozen=True)
class NotificationMessage:
    """Channel-neutral notification about one quote transition."""

    quote_id: str
    kind: QuoteEventKind
    quote_label: str
    link: str
    total: Decimal | None = None
    recipient: str | None = None  # salesperson who owns the quote
    detail: str | None = None  # decline reason, viewer e-mail, ...

    @property
    def title(self) -> str:
        return f"{_HEADLINES.get(self.kind, self.kind.value.title())} - {self.quote_label}"

    @property
    def amount_text(self) -> str:
        if not self.total:
            return ""
        return f" (${self.total:,.2f})"

    @property
    def text(self) -> str:
        """Plain text body (chat webhooks, inbox)."""
        line = f"{self.kind.value.upper()}: {self.quote_label}{self.amount_text}"
        if self.detail:
            line = f"{line} - {self.detail}"
        return f"{line}\n{self.link}"

    @property
    def html(self) -> str:
        detail = f"<p>{escape(self.detail)}</p>" if self.detail else ""
        return (
            '<div style="font-family:system-ui,Segoe UI,Roboto,Helvetica,Arial">'
            f"<p><strong>{self.kind.value.upper()}</strong>: "
            f"{escape(self.quote_label)}{self.amount_text}</p>"
            f"{detail}"
            f'<p><a href="{escape(self.link, quote=True)}">Open in app</a></p>'
            "</div>"
        )
