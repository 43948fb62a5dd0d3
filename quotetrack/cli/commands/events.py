"""Quote event log commands."""

from __future__ import annotations

from datetime import timedelta

import typer
from rich.panel import Panel
from rich.table import Table

from quotetrack.core.events import QuoteEventRepository
from quotetrack.exceptions import ValidationError
from quotetrack.storage.database.models import QuoteEventKind
from quotetrack.utils.datetime import utc_now

from ..context import console, handle_errors, open_session

app = typer.Typer(help="View quote event history", no_args_is_help=True)


@app.command("timeline")
def timeline(quote_id: str = typer.Argument(..., help="Quote ID")) -> None:
    """Show the full event log of a quote, oldest first."""
    with handle_errors(), open_session() as db:
        entries = QuoteEventRepository(db).timeline(quote_id)

        if not entries:
            console.print(f"[yellow]No events found for quote {quote_id}[/yellow]")
            return

        table = Table(title=f"Timeline for quote {quote_id}", show_lines=False)
        table.add_column("Timestamp", style="cyan", width=19)
        table.add_column("Event", style="bold white", width=12)
        table.add_column("Summary", style="white")

        for entry in entries:
            table.add_row(
                entry["timestamp"].strftime("%Y-%m-%d %H:%M:%S"),
                entry["kind"],
                entry["summary"],
            )

        console.print(table)


@app.command("list")
def list_events(
    kind: str | None = typer.Option(None, "--kind", "-k", help="Filter by event kind"),
    quote_id: str | None = typer.Option(None, "--quote", "-q", help="Filter by quote ID"),
    last_days: int | None = typer.Option(
        None, "--last-days", "-d", help="Show events from last N days"
    ),
    search: str | None = typer.Option(
        None, "--search", "-s", help="Only events whose details contain this text"
    ),
    limit: int = typer.Option(50, "--limit", "-l", help="Maximum number of events to show"),
) -> None:
    """List recent events across all quotes."""
    with handle_errors(), open_session() as db:
        kind_enum = None
        if kind:
            try:
                kind_enum = QuoteEventKind.parse(kind)
            except ValueError as e:
                raise ValidationError(f"Unknown event kind: {kind}", field="kind") from e
        start_date = utc_now() - timedelta(days=last_days) if last_days else None

        repo = QuoteEventRepository(db)
        if search:
            events = repo.search(
                search, quote_id=quote_id, kind=kind_enum, start_date=start_date, limit=limit
            )
        else:
            events = repo.get_all(
                quote_id=quote_id, kind=kind_enum, start_date=start_date, limit=limit
            )
        if not events:
            console.print("[yellow]No events found matching the criteria[/yellow]")
            return

        table = Table(title=f"Quote events ({len(events)})")
        table.add_column("Timestamp", style="cyan", width=19)
        table.add_column("Quote", style="green", no_wrap=True)
        table.add_column("Event", style="bold white")
        table.add_column("Key", style="dim")
        for event in events:
            table.add_row(
                event.at.strftime("%Y-%m-%d %H:%M:%S"),
                event.quote_id,
                event.kind.value,
                event.idempotency_key or "-",
            )
        console.print(table)


@app.command("stats")
def stats(
    last_days: int | None = typer.Option(
        None, "--last-days", "-d", help="Only count events from last N days"
    ),
) -> None:
    """Show event log statistics."""
    with handle_errors(), open_session() as db:
        start_date = utc_now() - timedelta(days=last_days) if last_days else None
        data = QuoteEventRepository(db).get_stats(start_date=start_date)

        if not data["total_events"]:
            console.print("[yellow]No events recorded yet[/yellow]")
            return

        lines = [
            f"[bold]Total events:[/bold] {data['total_events']}",
            f"[bold]Quotes touched:[/bold] {data['quotes_touched']}",
            f"[bold]First event:[/bold] {data['first_event_at']:%Y-%m-%d %H:%M}",
            f"[bold]Last event:[/bold] {data['last_event_at']:%Y-%m-%d %H:%M}",
        ]
        console.print(Panel("\n".join(lines), title="📜 Event statistics", border_style="blue"))

        table = Table(show_header=True)
        table.add_column("Kind", style="cyan")
        table.add_column("Count", justify="right")
        for kind, count in sorted(data["events_by_kind"].items(), key=lambda kv: -kv[1]):
            table.add_row(kind, str(count))
        console.print(table)
