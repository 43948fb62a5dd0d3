"""Fixtures for CLI tests: a real SQLite file and a Typer runner."""

import re

import pytest
from typer.testing import CliRunner

from quotetrack.cli.main import app
from quotetrack.utils.config import reset_settings

QUOTE_ID = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}")


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("QUOTETRACK_DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("QUOTETRACK_APP_ORIGIN", "https://quotes.example.com")
    monkeypatch.setenv("QUOTETRACK_NOTIFICATION_TIMEOUT_SECONDS", "2")
    monkeypatch.setenv("COLUMNS", "200")
    monkeypatch.delenv("QUOTETRACK_SMTP_HOST", raising=False)
    monkeypatch.delenv("QUOTETRACK_CHAT_WEBHOOK_URL", raising=False)
    reset_settings()
    yield tmp_path
    reset_settings()


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def invoke(runner, cli_env):
    def run(*args: str, input: str | None = None):
        return runner.invoke(app, list(args), input=input)

    return run


@pytest.fixture
def created_quote_id(invoke) -> str:
    result = invoke(
        "quote",
        "create",
        "--client",
        "Jane Homeowner",
        "--email",
        "jane@example.com",
        "--item",
        "window,qty=2,price=450,style=Double Hung",
        "--item",
        "door,price=1899.99",
        "--created-by",
        "sales@example.com",
    )
    assert result.exit_code == 0, result.output
    return QUOTE_ID.search(result.output).group(0)
