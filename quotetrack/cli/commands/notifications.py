"""Sales team notification inbox commands."""

from __future__ import annotations

import typer
from rich.table import Table

from quotetrack.core.notifications import NotificationInbox

from ..context import console, handle_errors, open_session

app = typer.Typer(help="Notification inbox", no_args_is_help=True)


@app.command("list")
def list_notifications(
    recipient: str | None = typer.Option(None, "--recipient", "-r", help="Salesperson e-mail"),
    unread: bool = typer.Option(False, "--unread", "-u", help="Only unread entries"),
    limit: int = typer.Option(50, "--limit", "-l", help="Max results"),
) -> None:
    """List inbox entries, newest first."""
    with handle_errors(), open_session() as db:
        inbox = NotificationInbox(db)
        entries = inbox.list(recipient=recipient, unread_only=unread, limit=limit)

        if not entries:
            console.print("[green]📭 No notifications[/green]")
            return

        table = Table(title=f"Notifications ({inbox.unread_count(recipient)} unread)")
        table.add_column("ID", style="cyan", justify="right")
        table.add_column("When", style="dim", width=16)
        table.add_column("Title", style="bold white")
        table.add_column("Quote", style="green", no_wrap=True)
        table.add_column("Read", justify="center")
        for entry in entries:
            table.add_row(
                str(entry.id),
                entry.created_at.strftime("%Y-%m-%d %H:%M"),
                entry.title,
                entry.quote_id,
                "✓" if entry.is_read else "•",
            )
        console.print(table)


@app.command("read")
def mark_read(notification_id: int = typer.Argument(..., help="Notification ID")) -> None:
    """Mark one notification read."""
    with handle_errors(), open_session() as db:
        NotificationInbox(db).mark_read(notification_id)
        console.print(f"[green]✓ Notification {notification_id} marked read[/green]")


@app.command("read-all")
def mark_all_read(
    recipient: str | None = typer.Option(None, "--recipient", "-r", help="Salesperson e-mail"),
) -> None:
    """Mark every unread notification read."""
    with handle_errors(), open_session() as db:
        count = NotificationInbox(db).mark_all_read(recipient)
        console.print(f"[green]✓ {count} notification(s) marked read[/green]")
