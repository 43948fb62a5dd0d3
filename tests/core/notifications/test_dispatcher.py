"""Tests for NotificationDispatcher fan-out."""

from decimal import Decimal

import pytest

from quotetrack.core.notifications import (
    EmailChannel,
    InboxChannel,
    NotificationDispatcher,
    NotificationMessage,
    WebhookChannel,
)
from quotetrack.exceptions import NotificationError
from quotetrack.storage.database.models import QuoteEventKind


@pytest.fixture
def message() -> NotificationMessage:
    return NotificationMessage(
        quote_id="q-1",
        kind=QuoteEventKind.SIGNED,
        quote_label="Kitchen windows",
        link="https://quotes.example.com/view-quote?id=q-1",
        total=Decimal("2799.99"),
        recipient="sales@example.com",
    )


@pytest.fixture
def make_dispatcher():
    created = []

    def factory(channels, timeout=1.0):
        dispatcher = NotificationDispatcher(channels, timeout=timeout)
        created.append(dispatcher)
        return dispatcher

    yield factory
    for dispatcher in created:
        dispatcher.close()


class TestNotify:
    def test_delivers_to_every_channel(self, make_dispatcher, channel_factory, message):
        a, b = channel_factory("a"), channel_factory("b")

        report = make_dispatcher([a, b]).notify(message)

        assert sorted(report.delivered) == ["a", "b"]
        assert report.ok
        assert a.sent == [message]
        assert b.sent == [message]

    def test_channel_error_is_isolated(self, make_dispatcher, channel_factory, message):
        good = channel_factory("inbox")
        bad = channel_factory("email", error=NotificationError("SMTP down", channel="email"))

        report = make_dispatcher([bad, good]).notify(message)

        assert report.delivered == ["inbox"]
        assert report.failed == {"email": "SMTP down (channel=email)"}
        assert not report.ok
        assert good.sent == [message]

    @pytest.mark.slow
    def test_slow_channel_times_out(self, make_dispatcher, channel_factory, message):
        fast = channel_factory("fast")
        slow = channel_factory("slow", delay=0.5)

        report = make_dispatcher([fast, slow], timeout=0.1).notify(message)

        assert report.delivered == ["fast"]
        assert report.timed_out == ["slow"]

    def test_no_channels(self, make_dispatcher, message):
        report = make_dispatcher([]).notify(message)

        assert report.delivered == []
        assert report.ok


class TestNotifyAsync:
    @pytest.mark.asyncio
    async def test_delivers_and_isolates_errors(self, make_dispatcher, channel_factory, message):
        good = channel_factory("inbox")
        bad = channel_factory("webhook", error=RuntimeError("boom"))

        report = await make_dispatcher([good, bad]).notify_async(message)

        assert report.delivered == ["inbox"]
        assert report.failed == {"webhook": "boom"}

    @pytest.mark.asyncio
    @pytest.mark.slow
    async def test_times_out(self, make_dispatcher, channel_factory, message):
        slow = channel_factory("slow", delay=0.5)

        report = await make_dispatcher([slow], timeout=0.1).notify_async(message)

        assert report.timed_out == ["slow"]
        assert report.delivered == []


def test_from_settings_builds_all_channels(test_settings, session_factory):
    dispatcher = NotificationDispatcher.from_settings(test_settings, session_factory)
    try:
        assert [type(c) for c in dispatcher.channels] == [
            InboxChannel,
            EmailChannel,
            WebhookChannel,
        ]
        assert dispatcher.timeout == test_settings.notification_timeout_seconds
    finally:
        dispatcher.close()
