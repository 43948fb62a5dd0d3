"""Tests for the e-mail, webhook and inbox notification channels."""

import json
from decimal import Decimal
from unittest.mock import MagicMock

import httpx
import pytest

from quotetrack.core.notifications import (
    EmailChannel,
    InboxChannel,
    NotificationMessage,
    WebhookChannel,
)
from quotetrack.exceptions import NotificationError
from quotetrack.storage.database.models import Notification, QuoteEventKind

WEBHOOK_URL = "https://chat.example.com/hooks/T000/B000"


@pytest.fixture
def signed_message() -> NotificationMessage:
    return NotificationMessage(
        quote_id="q-1",
        kind=QuoteEventKind.SIGNED,
        quote_label="Jane <Homeowner>",
        link="https://quotes.example.com/view-quote?id=q-1",
        total=Decimal("2799.99"),
        recipient="sales@example.com",
    )


class TestNotificationMessage:
    def test_title_and_text(self, signed_message):
        assert signed_message.title == "✅ Signed - Jane <Homeowner>"
        assert signed_message.text == (
            "SIGNED: Jane <Homeowner> ($2,799.99)\nhttps://quotes.example.com/view-quote?id=q-1"
        )

    def test_detail_is_appended(self):
        message = NotificationMessage(
            quote_id="q-2",
            kind=QuoteEventKind.DECLINED,
            quote_label="Patio door",
            link="https://quotes.example.com/view-quote?id=q-2",
            detail="Went with a competitor",
        )

        assert message.amount_text == ""
        assert message.text.startswith("DECLINED: Patio door - Went with a competitor\n")

    def test_html_is_escaped(self, signed_message):
        html = signed_message.html

        assert "Jane &lt;Homeowner&gt;" in html
        assert 'href="https://quotes.example.com/view-quote?id=q-1"' in html


class TestEmailChannel:
    def test_sends_to_admins(self, test_settings, signed_message):
        settings = test_settings.model_copy(
            update={
                "smtp_host": "smtp.example.com",
                "smtp_username": "mailer",
                "smtp_password": "secret",
            }
        )
        smtp = MagicMock()
        server = smtp.return_value.__enter__.return_value

        EmailChannel(settings, smtp_factory=smtp).send(signed_message)

        smtp.assert_called_once_with(
            "smtp.example.com",
            settings.smtp_port,
            timeout=settings.notification_timeout_seconds,
        )
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("mailer", "secret")
        sent = server.send_message.call_args.args[0]
        assert sent["To"] == "owner@example.com, office@example.com"
        assert sent["Subject"] == signed_message.title

    def test_skips_login_without_credentials(self, test_settings, signed_message):
        settings = test_settings.model_copy(
            update={"smtp_host": "smtp.example.com", "smtp_use_tls": False}
        )
        smtp = MagicMock()
        server = smtp.return_value.__enter__.return_value

        EmailChannel(settings, smtp_factory=smtp).send(signed_message)

        server.starttls.assert_not_called()
        server.login.assert_not_called()
        server.send_message.assert_called_once()

    def test_disabled_without_smtp_host(self, test_settings, signed_message):
        smtp = MagicMock()
        channel = EmailChannel(test_settings.model_copy(update={"smtp_host": None}), smtp)

        channel.send(signed_message)

        assert not channel.enabled
        smtp.assert_not_called()

    def test_smtp_errors_propagate(self, test_settings, signed_message):
        settings = test_settings.model_copy(update={"smtp_host": "smtp.example.com"})
        smtp = MagicMock(side_effect=OSError("connection refused"))

        with pytest.raises(OSError):
            EmailChannel(settings, smtp_factory=smtp).send(signed_message)


class TestWebhookChannel:
    def test_posts_text_payload(self, signed_message):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, text="ok")

        client = httpx.Client(transport=httpx.MockTransport(handler))

        WebhookChannel(WEBHOOK_URL, client=client).send(signed_message)

        assert len(requests) == 1
        assert str(requests[0].url) == WEBHOOK_URL
        payload = json.loads(requests[0].content)
        assert payload == {"text": f"{signed_message.title}\n{signed_message.text}"}

    def test_error_status_raises(self, signed_message):
        client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(500)))

        with pytest.raises(NotificationError) as exc_info:
            WebhookChannel(WEBHOOK_URL, client=client).send(signed_message)

        assert exc_info.value.context["channel"] == "webhook"
        assert "500" in exc_info.value.message

    def test_disabled_without_url(self, signed_message):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        client = httpx.Client(transport=httpx.MockTransport(handler))

        WebhookChannel(None, client=client).send(signed_message)


class TestInboxChannel:
    def test_creates_entry(self, session_factory, db_session, signed_message):
        InboxChannel(session_factory).send(signed_message)

        entry = db_session.query(Notification).one()
        assert entry.quote_id == "q-1"
        assert entry.kind is QuoteEventKind.SIGNED
        assert entry.recipient == "sales@example.com"
        assert entry.title == signed_message.title
        assert not entry.is_read

    def test_second_entry_for_same_kind_is_skipped(
        self, session_factory, db_session, signed_message
    ):
        channel = InboxChannel(session_factory)

        channel.send(signed_message)
        channel.send(signed_message)

        assert db_session.query(Notification).count() == 1
