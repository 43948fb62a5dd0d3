"""
Pytest configuration and global fixtures.

This module provides shared fixtures used across all tests.
"""

import os
import threading
import time
from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import Mock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from quotetrack.core.events import GlobalEventBus, reset_global_event_bus
from quotetrack.core.notifications import InboxChannel, NotificationDispatcher
from quotetrack.core.quotes import ClientInfo, QuoteService
from quotetrack.storage.database.base import Base
from quotetrack.storage.database.models import Quote
from quotetrack.utils.config import Settings, reset_settings

SALES_EMAIL = "sales@example.com"


class FakeClock:
    """Deterministic, manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingChannel:
    """Notification channel that remembers what it was asked to send."""

    def __init__(self, name: str = "recording", error: Exception | None = None, delay: float = 0):
        self.name = name
        self.error = error
        self.delay = delay
        self.sent = []
        self._lock = threading.Lock()

    def send(self, message) -> None:
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        with self._lock:
            self.sent.append(message)


@pytest.fixture(scope="function")
def db_engine(tmp_path: Path):
    """SQLite file database: notification channels write from worker threads."""
    engine = create_engine(f"sqlite:///{tmp_path / 'quotetrack-test.db'}", echo=False)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> sessionmaker[Session]:
    return sessionmaker(bind=db_engine)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """
    Create a database session for testing.

    Each test gets a fresh database and session.
    """
    session = session_factory()

    yield session

    session.rollback()
    session.close()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings that ignore the developer's .env file."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'quotetrack-test.db'}",
        company_name="Test Windows Co",
        app_origin="https://quotes.example.com/",
        admin_emails="owner@example.com, office@example.com",
        idempotency_window_seconds=60,
        transition_max_attempts=3,
        store_retry_attempts=2,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def event_bus() -> GlobalEventBus:
    """Create a fresh event bus for each test."""
    return GlobalEventBus()


@pytest.fixture
def channel_factory() -> type[RecordingChannel]:
    return RecordingChannel


@pytest.fixture
def recording_channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def dispatcher(session_factory, recording_channel) -> Generator[NotificationDispatcher, None, None]:
    dispatcher = NotificationDispatcher(
        [InboxChannel(session_factory), recording_channel], timeout=2.0
    )
    yield dispatcher
    dispatcher.close()


@pytest.fixture
def mailer() -> Mock:
    return Mock()


@pytest.fixture
def quote_service(test_settings, dispatcher, event_bus, mailer, clock) -> QuoteService:
    return QuoteService(
        test_settings,
        dispatcher=dispatcher,
        event_bus=event_bus,
        mailer=mailer,
        clock=clock,
    )


@pytest.fixture
def sample_items() -> list[dict]:
    return [
        {
            "item_type": "window",
            "style": "Double Hung",
            "material": "Vinyl",
            "location": "Kitchen",
            "width": 36,
            "height": 48,
            "quantity": 2,
            "unit_price": "450.00",
        },
        {
            "item_type": "door",
            "style": "French",
            "material": "Fiberglass",
            "location": "Patio",
            "quantity": 1,
            "unit_price": "1899.99",
        },
    ]


@pytest.fixture
def sample_quote(db_session: Session, quote_service: QuoteService, sample_items) -> Quote:
    """A draft quote owned by SALES_EMAIL with its ``created`` event."""
    return quote_service.create_quote(
        db_session,
        ClientInfo(name="Jane Homeowner", email="jane@example.com", phone="555-0100"),
        sample_items,
        created_by=SALES_EMAIL,
    )


@pytest.fixture(autouse=True)
def reset_env():
    """Reset environment variables and process-wide singletons after each test."""
    original_env = os.environ.copy()
    yield
    os.environ.clear()
    os.environ.update(original_env)
    reset_settings()
    reset_global_event_bus()


# Markers for test categorization
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
