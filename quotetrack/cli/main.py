"""Main CLI entry point for quotetrack."""

import typer
from rich.console import Console

from quotetrack import __version__
from quotetrack.core.events import initialize_event_system
from quotetrack.utils.config import get_settings
from quotetrack.utils.logging import configure_from_settings, set_correlation_id

from .commands import events, notifications, quote

app = typer.Typer(
    name="quotetrack",
    help="🪟 Quote lifecycle tracking for windows & doors sales",
    add_completion=True,
    rich_markup_mode="rich",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold blue]quotetrack[/bold blue] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """
    quotetrack - from draft to signature.

    Create quotes, send them to clients and follow every open, signature
    and decline through the quote's event log.
    """
    settings = get_settings()
    configure_from_settings(settings)
    set_correlation_id()
    initialize_event_system(settings)


app.add_typer(quote.app, name="quote", help="📋 Manage quotes and their lifecycle")
app.add_typer(events.app, name="events", help="📜 View quote event history")
app.add_typer(notifications.app, name="notifications", help="🔔 Sales team inbox")


if __name__ == "__main__":
    app()
