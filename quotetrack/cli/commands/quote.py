"""Quote management commands."""

from __future__ import annotations

from typing import Any

import typer
from rich.prompt import Confirm
from rich.table import Table

from quotetrack.core.lifecycle import summary_line, to_display
from quotetrack.core.quotes import ClientInfo
from quotetrack.exceptions import ValidationError
from quotetrack.storage.database.models import Quote, QuoteEventKind, QuoteStatus

from ..context import (
    actor_from_options,
    build_service,
    console,
    handle_errors,
    open_session,
)

app = typer.Typer(help="Create quotes and drive their lifecycle", no_args_is_help=True)

_ITEM_KEYS = {
    "qty": "quantity",
    "quantity": "quantity",
    "price": "unit_price",
    "unit_price": "unit_price",
    "style": "style",
    "material": "material",
    "location": "location",
    "description": "description",
    "width": "width",
    "height": "height",
}


def parse_item(value: str) -> dict[str, Any]:
    """Parse ``window,qty=2,price=450,style=Double Hung`` into a line item dict."""
    parts = [part.strip() for part in value.split(",") if part.strip()]
    if not parts or "=" in parts[0]:
        raise ValidationError(f"Line item must start with its type: {value!r}", field="item")

    item: dict[str, Any] = {"item_type": parts[0]}
    for part in parts[1:]:
        key, sep, raw = part.partition("=")
        key = key.strip().lower()
        if not sep or key not in _ITEM_KEYS:
            raise ValidationError(f"Unknown line item field: {part!r}", field="item")
        item[_ITEM_KEYS[key]] = raw.strip()
    return item


def _status_cell(status: QuoteStatus) -> str:
    display = to_display(status)
    return f"[{display.rich_style}]{display.label}[/{display.rich_style}]"


def _print_quote(quote: Quote) -> None:
    console.print(f"\n[bold blue]Quote {quote.label}[/bold blue] [dim]{quote.id}[/dim]\n")

    info = Table(show_header=False, box=None)
    info.add_column("Field", style="cyan", width=16)
    info.add_column("Value", style="white")
    info.add_row("Client", quote.client_name)
    info.add_row("E-mail", quote.client_email or "-")
    info.add_row("Phone", quote.client_phone or "-")
    info.add_row("Address", quote.client_address or "-")
    info.add_row("Created by", quote.created_by or "-")
    info.add_row("Status", _status_cell(quote.status))
    if quote.is_trashed:
        trashed = f"{quote.deleted_at:%Y-%m-%d %H:%M} by {quote.deleted_by or '-'}"
        info.add_row("[red]Trashed[/red]", trashed)
    console.print(info)

    items = Table(show_lines=True)
    items.add_column("#", width=4, justify="right")
    items.add_column("Type")
    items.add_column("Style / material")
    items.add_column("Location")
    items.add_column("Size (in)", justify="right")
    items.add_column("Qty", justify="right", width=5)
    items.add_column("Price", justify="right")
    items.add_column("Total", justify="right")
    for item in quote.line_items:
        size = f"{item.width} x {item.height}" if item.width and item.height else "-"
        items.add_row(
            str(item.position),
            item.item_type,
            " / ".join(filter(None, [item.style, item.material])) or "-",
            item.location or "-",
            size,
            str(item.quantity),
            f"${item.unit_price:,.2f}",
            f"${item.line_total:,.2f}",
        )
    console.print(items)

    totals = Table(show_header=False, box=None)
    totals.add_column("", style="cyan", justify="right", width=30)
    totals.add_column("", style="white", justify="right", width=15)
    totals.add_row("Subtotal", f"${quote.subtotal:,.2f}")
    totals.add_row(f"Tax ({quote.tax_rate}%)", f"${quote.tax:,.2f}")
    totals.add_row("[bold]TOTAL[/bold]", f"[bold]${quote.total:,.2f}[/bold]")
    console.print(totals)

    if quote.notes:
        console.print(f"\n[bold]Notes:[/bold] {quote.notes}")


@app.command("create")
def create_quote(
    client: str = typer.Option(..., "--client", "-c", help="Client name"),
    email: str | None = typer.Option(None, "--email", help="Client e-mail"),
    phone: str | None = typer.Option(None, "--phone", help="Client phone"),
    address: str | None = typer.Option(None, "--address", help="Client address"),
    items: list[str] = typer.Option(
        ..., "--item", "-i", help="Line item, e.g. 'window,qty=2,price=450,style=Casement'"
    ),
    notes: str | None = typer.Option(None, "--notes", help="Notes shown on the quote"),
    tax_rate: str | None = typer.Option(None, "--tax-rate", help="Tax rate in percent"),
    name: str | None = typer.Option(None, "--name", help="Estimate name"),
    created_by: str | None = typer.Option(None, "--created-by", help="Salesperson e-mail"),
) -> None:
    """Create a draft quote."""
    with handle_errors(), open_session() as db:
        quote = build_service().create_quote(
            db,
            ClientInfo(name=client, email=email, phone=phone, address=address),
            [parse_item(item) for item in items],
            notes=notes,
            created_by=created_by,
            tax_rate=tax_rate,
            display_name=name,
        )
        console.print(f"[bold green]✓ Quote created:[/bold green] {quote.id}")
        _print_quote(quote)


@app.command("list")
def list_quotes(
    status: str | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    created_by: str | None = typer.Option(None, "--created-by", help="Filter by salesperson"),
    trashed: bool = typer.Option(False, "--trashed", help="Show the trash instead"),
    actor: str | None = typer.Option(None, "--actor", help="Acting user e-mail (for --trashed)"),
    admin: bool = typer.Option(False, "--admin", help="Act as admin"),
    limit: int = typer.Option(50, "--limit", "-l", help="Max results"),
) -> None:
    """List quotes, newest first."""
    status_enum = None
    if status:
        try:
            status_enum = QuoteStatus(status.lower())
        except ValueError:
            console.print(f"[red]Invalid status: {status}[/red]")
            console.print(f"Valid: {', '.join(s.value for s in QuoteStatus)}")
            raise typer.Exit(1)

    with handle_errors(), open_session() as db:
        service = build_service()
        if trashed:
            quotes = service.list_trash(db, actor_from_options(actor, admin), limit=limit)
        else:
            quotes = service.list_quotes(
                db, status=status_enum, created_by=created_by, limit=limit
            )

        if not quotes:
            console.print("[yellow]No quotes found[/yellow]")
            return

        table = Table(title=f"{'Trash' if trashed else 'Quotes'} ({len(quotes)})")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Quote", style="bold white")
        table.add_column("Created by", style="white")
        table.add_column("Total", style="green", justify="right")
        table.add_column("Status")
        for quote in quotes:
            table.add_row(
                quote.id,
                quote.label[:40],
                quote.created_by or "-",
                f"${quote.total:,.2f}",
                _status_cell(quote.status),
            )
        console.print(table)


@app.command("show")
def show_quote(quote_id: str = typer.Argument(..., help="Quote ID")) -> None:
    """Show quote details."""
    with handle_errors(), open_session() as db:
        quote = build_service().get_quote(db, quote_id)
        if quote is None:
            console.print(f"[red]Quote {quote_id} not found[/red]")
            raise typer.Exit(1)
        _print_quote(quote)


@app.command("edit")
def edit_quote(
    quote_id: str = typer.Argument(..., help="Quote ID"),
    client: str | None = typer.Option(None, "--client", "-c", help="Client name"),
    email: str | None = typer.Option(None, "--email", help="Client e-mail"),
    items: list[str] | None = typer.Option(None, "--item", "-i", help="Replace all line items"),
    notes: str | None = typer.Option(None, "--notes", help="Notes"),
    tax_rate: str | None = typer.Option(None, "--tax-rate", help="Tax rate in percent"),
    name: str | None = typer.Option(None, "--name", help="Estimate name"),
) -> None:
    """Edit a quote that is not yet signed or declined."""
    with handle_errors(), open_session() as db:
        service = build_service()
        client_info = None
        if client is not None or email is not None:
            current = service.get_quote(db, quote_id)
            if current is None:
                console.print(f"[red]Quote {quote_id} not found[/red]")
                raise typer.Exit(1)
            client_info = ClientInfo(
                name=client or current.client_name,
                email=email if email is not None else current.client_email,
                phone=current.client_phone,
                address=current.client_address,
            )

        quote = service.update_quote(
            db,
            quote_id,
            client=client_info,
            line_items=[parse_item(item) for item in items] if items else None,
            notes=notes,
            display_name=name,
            tax_rate=tax_rate,
        )
        console.print("[bold green]✓ Quote updated[/bold green]")
        _print_quote(quote)


@app.command("send")
def send_quote(
    quote_id: str = typer.Argument(..., help="Quote ID"),
    to: str | None = typer.Option(None, "--to", help="Recipient (defaults to client e-mail)"),
    actor: str | None = typer.Option(None, "--actor", help="Acting user e-mail"),
) -> None:
    """E-mail the quote link to the client."""
    with handle_errors(), open_session() as db:
        outcome = build_service().send_quote(
            db, quote_id, recipient=to, actor=actor_from_options(actor, False)
        )
        console.print(f"[green]✓ Quote sent[/green] - status {_status_cell(outcome.status)}")


@app.command("transition")
def transition(
    quote_id: str = typer.Argument(..., help="Quote ID"),
    kind: str = typer.Argument(..., help="opened | signed | declined | sent | send_failed"),
    key: str | None = typer.Option(None, "--key", help="Idempotency key"),
    reason: str | None = typer.Option(None, "--reason", help="Decline reason"),
    signer: str | None = typer.Option(None, "--signer", help="Signer name"),
    viewer: str | None = typer.Option(None, "--viewer", help="Viewer e-mail"),
) -> None:
    """Record a lifecycle event (what the client-facing handlers do)."""
    metadata: dict[str, Any] = {}
    try:
        parsed = QuoteEventKind.parse(kind)
    except ValueError:
        parsed = None  # rejected with a proper message by the service
    if parsed is QuoteEventKind.DECLINED and reason:
        metadata["reason"] = reason
    elif parsed is QuoteEventKind.SIGNED and signer:
        metadata["signer_name"] = signer
    elif parsed is QuoteEventKind.OPENED and viewer:
        metadata["viewer_email"] = viewer

    with handle_errors(), open_session() as db:
        outcome = build_service().request_transition_with_retry(
            db, quote_id, kind, metadata or None, idempotency_key=key
        )

        if outcome.duplicate:
            console.print("[yellow]Already recorded[/yellow] - nothing changed")
        else:
            console.print(
                f"[green]✓ {outcome.kind.value}[/green] recorded: "
                f"{_status_cell(outcome.previous_status)} → {_status_cell(outcome.status)}"
            )
        if outcome.notification is not None:
            delivered = ", ".join(sorted(outcome.notification.delivered)) or "none"
            console.print(f"[dim]Notified via: {delivered}[/dim]")


@app.command("status")
def status(quote_id: str = typer.Argument(..., help="Quote ID")) -> None:
    """Status derived from the event log, with view metrics."""
    with handle_errors(), open_session() as db:
        service = build_service()
        summary = service.get_status_summary(db, quote_id)
        quote = service.get_quote(db, quote_id)

        console.print(f"{_status_cell(summary.status)}  [dim]{summary_line(summary)}[/dim]")

        table = Table(show_header=False, box=None)
        table.add_column("Metric", style="cyan", width=18)
        table.add_column("Value", style="white")
        for key, value in summary.to_dict().items():
            table.add_row(key, "-" if value is None else str(value))
        console.print(table)

        if quote is not None and quote.status is not summary.status:
            console.print(
                f"[yellow]⚠ Stored status is {quote.status.value}; "
                f"run 'quotetrack quote reconcile {quote_id}'[/yellow]"
            )


@app.command("reconcile")
def reconcile(
    quote_id: str | None = typer.Argument(None, help="Quote ID (omit with --all)"),
    all_quotes: bool = typer.Option(False, "--all", help="Check every quote"),
) -> None:
    """Rebuild stored status fields from the event log."""
    if not quote_id and not all_quotes:
        console.print("[red]Pass a quote ID or --all[/red]")
        raise typer.Exit(1)

    with handle_errors(), open_session() as db:
        service = build_service()
        if all_quotes:
            repaired = service.reconcile_all(db)
            console.print(f"[green]✓ {len(repaired)} quote(s) repaired[/green]")
            for result in repaired:
                console.print(
                    f"  {result.quote_id}: {result.before.status.value} → "
                    f"{result.after.status.value}"
                )
            return

        result = service.reconcile(db, quote_id)
        if result.changed:
            console.print(
                f"[green]✓ Repaired:[/green] {result.before.status.value} → "
                f"{result.after.status.value}"
            )
        else:
            console.print("[green]✓ Already consistent[/green]")


@app.command("trash")
def trash(
    quote_id: str = typer.Argument(..., help="Quote ID"),
    actor: str | None = typer.Option(None, "--actor", help="Acting user e-mail"),
    admin: bool = typer.Option(False, "--admin", help="Act as admin"),
) -> None:
    """Move a quote to the trash (reversible)."""
    with handle_errors(), open_session() as db:
        build_service().trash_quote(db, quote_id, actor_from_options(actor, admin))
        console.print(f"[green]✓ Quote {quote_id} moved to trash[/green]")


@app.command("restore")
def restore(
    quote_id: str = typer.Argument(..., help="Quote ID"),
    actor: str | None = typer.Option(None, "--actor", help="Acting user e-mail"),
    admin: bool = typer.Option(False, "--admin", help="Act as admin"),
) -> None:
    """Restore a quote from the trash."""
    with handle_errors(), open_session() as db:
        build_service().restore_quote(db, quote_id, actor_from_options(actor, admin))
        console.print(f"[green]✓ Quote {quote_id} restored[/green]")


@app.command("purge")
def purge(
    quote_id: str = typer.Argument(..., help="Quote ID"),
    actor: str | None = typer.Option(None, "--actor", help="Acting user e-mail"),
    admin: bool = typer.Option(False, "--admin", help="Act as admin"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Permanently delete a quote and its history (admin only)."""
    if not yes and not Confirm.ask(
        f"Permanently delete quote {quote_id} and its history?", default=False
    ):
        console.print("[yellow]Cancelled[/yellow]")
        return

    with handle_errors(), open_session() as db:
        deleted = build_service().purge_quote(db, quote_id, actor_from_options(actor, admin))
        console.print(f"[green]✓ Quote {quote_id} deleted ({deleted} events)[/green]")
