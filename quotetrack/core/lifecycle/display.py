"""Status pill presentation: label and colours for each lifecycle status."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from quotetrack.storage.database.models import QuoteStatus

from .status import StatusSummary


@dataclass(frozen=True)
class DisplayStatus:
    status: QuoteStatus
    label: str
    color_token: str
    background: str
    foreground: str
    border: str
    rich_style: str


_DISPLAY: dict[QuoteStatus, DisplayStatus] = {
    QuoteStatus.DRAFT: DisplayStatus(
        QuoteStatus.DRAFT, "DRAFT", "indigo", "#eef2ff", "#3730a3", "#c7d2fe", "bold blue"
    ),
    QuoteStatus.SENT: DisplayStatus(
        QuoteStatus.SENT, "SENT", "sky", "#f0f9ff", "#075985", "#bae6fd", "bold cyan"
    ),
    QuoteStatus.VIEWED: DisplayStatus(
        QuoteStatus.VIEWED, "VIEWED", "emerald", "#ecfdf5", "#065f46", "#a7f3d0", "bold green"
    ),
    QuoteStatus.SIGNED: DisplayStatus(
        QuoteStatus.SIGNED, "SIGNED", "teal", "#e6fffa", "#0f766e", "#99f6e4", "bold dark_cyan"
    ),
    QuoteStatus.DECLINED: DisplayStatus(
        QuoteStatus.DECLINED, "DECLINED", "red", "#fef2f2", "#991b1b", "#fecaca", "bold red"
    ),
}


def to_display(status: QuoteStatus | str | None) -> DisplayStatus:
    """Display entry for ``status``; anything unknown or missing renders as draft."""
    if isinstance(status, QuoteStatus):
        return _DISPLAY[status]
    try:
        return _DISPLAY[QuoteStatus(str(status).strip().lower())]
    except ValueError:
        return _DISPLAY[QuoteStatus.DRAFT]


def _fmt(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "-"


def summary_line(summary: StatusSummary) -> str:
    """One-line view metrics shown under the pill."""
    return (
        f"Views: {summary.opens_count}  "
        f"First open: {_fmt(summary.opened_at)}  "
        f"Last open: {_fmt(summary.last_opened_at)}"
    )
