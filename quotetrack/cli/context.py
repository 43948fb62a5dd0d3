"""Shared plumbing for CLI commands: database, service wiring, error display."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

import typer
from rich.console import Console
from sqlalchemy.orm import Session

from quotetrack.core.quotes import Actor, QuoteService
from quotetrack.exceptions import (
    AlreadyTerminalError,
    PermissionDeniedError,
    QuoteNotFoundError,
    QuoteTrackError,
    StoreUnavailableError,
    TransitionDeniedError,
    ValidationError,
)
from quotetrack.storage.database.base import init_db
from quotetrack.storage.session import db_session
from quotetrack.utils.config import get_settings
from quotetrack.utils.logging import get_logger

console = Console()
logger = get_logger(__name__)


def ensure_db() -> None:
    """Ensure database is initialized."""
    init_db(get_settings().database_url)


@contextmanager
def open_session() -> Iterator[Session]:
    ensure_db()
    with db_session() as db:
        yield db


def build_service() -> QuoteService:
    return QuoteService(get_settings())


def actor_from_options(email: str | None, admin: bool) -> Actor:
    return Actor(email=email, is_admin=admin)


@contextmanager
def handle_errors() -> Iterator[None]:
    """Print the user-facing message for known errors and exit non-zero."""
    try:
        yield
    except AlreadyTerminalError as e:
        console.print(f"[red]🔒 {e.user_message}[/red]")
        raise typer.Exit(1)
    except TransitionDeniedError as e:
        console.print(f"[red]❌ {e.user_message}[/red]")
        console.print(f"[dim]{e.message}[/dim]")
        raise typer.Exit(1)
    except QuoteNotFoundError as e:
        console.print(f"[red]{e.user_message}[/red] [dim]({e.quote_id})[/dim]")
        raise typer.Exit(1)
    except (ValidationError, PermissionDeniedError) as e:
        console.print(f"[red]{e.user_message}[/red]")
        raise typer.Exit(1)
    except StoreUnavailableError as e:
        logger.error("cli_store_unavailable", error=str(e))
        console.print(f"[yellow]{e.user_message}[/yellow]")
        raise typer.Exit(1)
    except QuoteTrackError as e:
        logger.error("cli_command_failed", error=str(e), error_type=type(e).__name__)
        console.print(f"[red]{e.user_message}[/red]")
        raise typer.Exit(1)
