"""Notification channels: admin e-mail, chat webhook and the in-app inbox.

A channel's ``send`` may raise; the dispatcher catches and logs everything,
so channels do not need to guard themselves.
"""

from __future__ import annotations

import smtplib
from collections.abc import Callable
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol

import httpx
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from quotetrack.exceptions import NotificationError
from quotetrack.storage.database.models import Notification
from quotetrack.utils.config import Settings
from quotetrack.utils.logging import get_logger

from .models import NotificationMessage

logger = get_logger(__name__)


class NotificationChannel(Protocol):
    name: str

    def send(self, message: NotificationMessage) -> None: ...


class EmailChannel:
    """Send an HTML notice to the configured admin addresses over SMTP."""

    name = "email"

    def __init__(
        self,
        settings: Settings,
        smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
    ):
        self.settings = settings
        self.smtp_factory = smtp_factory

    @property
    def enabled(self) -> bool:
        return bool(self.settings.smtp_host and self.settings.admin_email_list)

    def send(self, message: NotificationMessage) -> None:
        if not self.enabled:
            logger.debug("email_channel_disabled", quote_id=message.quote_id)
            return

        recipients = self.settings.admin_email_list

        msg = MIMEMultipart()
        msg["From"] = f"{self.settings.company_name} <{self.settings.email_from}>"
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = message.title
        msg.attach(MIMEText(message.html, "html"))

        with self.smtp_factory(
            self.settings.smtp_host,
            self.settings.smtp_port,
            timeout=self.settings.notification_timeout_seconds,
        ) as server:
            if self.settings.smtp_use_tls:
                server.starttls()
            if self.settings.smtp_username and self.settings.smtp_password:
                server.login(self.settings.smtp_username, self.settings.smtp_password)
            server.send_message(msg)

        logger.info(
            "email_notification_sent",
            quote_id=message.quote_id,
            kind=message.kind.value,
            recipients=len(recipients),
        )


class WebhookChannel:
    """Post ``{"text": ...}`` to a Slack-compatible incoming webhook."""

    name = "webhook"

    def __init__(
        self,
        url: str | None,
        timeout: float = 5.0,
        client: httpx.Client | None = None,
    ):
        self.url = url
        self.timeout = timeout
        self._client = client

    def send(self, message: NotificationMessage) -> None:
        if not self.url:
            logger.debug("webhook_channel_disabled", quote_id=message.quote_id)
            return

        payload = {"text": f"{message.title}\n{message.text}"}

        if self._client is not None:
            response = self._client.post(self.url, json=payload, timeout=self.timeout)
        else:
            with httpx.Client(timeout=httpx.Timeout(self.timeout)) as client:
                response = client.post(self.url, json=payload)

        if response.status_code >= 400:
            raise NotificationError(
                f"Webhook returned HTTP {response.status_code}",
                channel=self.name,
                context={"quote_id": message.quote_id},
            )

        logger.info("webhook_notification_sent", quote_id=message.quote_id, kind=message.kind.value)


class InboxChannel:
    """Store a bell/inbox entry for the quote's owner.

    Uses its own session so it can run on a worker thread. A second entry
    for the same quote and kind is rejected by the unique constraint and
    skipped.
    """

    name = "inbox"

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def send(self, message: NotificationMessage) -> None:
        db = self.session_factory()
        try:
            db.add(
                Notification(
                    quote_id=message.quote_id,
                    kind=message.kind,
                    recipient=message.recipient,
                    title=message.title,
                    body=message.text,
                )
            )
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info(
                "inbox_notification_exists",
                quote_id=message.quote_id,
                kind=message.kind.value,
            )
            return
        finally:
            db.close()

        logger.info(
            "inbox_notification_created",
            quote_id=message.quote_id,
            kind=message.kind.value,
            recipient=message.recipient,
        )
