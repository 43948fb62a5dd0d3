"""E-mail delivery of quote links to clients."""

from __future__ import annotations

import smtplib
from collections.abc import Callable
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Protocol

from quotetrack.exceptions import ConfigurationError
from quotetrack.storage.database.models import Quote
from quotetrack.utils.config import Settings
from quotetrack.utils.logging import get_logger

logger = get_logger(__name__)


class QuoteMailer(Protocol):
    def send_quote(self, quote: Quote, recipient: str, link: str) -> None: ...


class SmtpQuoteMailer:
    """Send the "your quote is ready" e-mail over SMTP.

    Raises whatever ``smtplib`` raises; the service turns it into a
    ``send_failed`` event and a ``QuoteDeliveryError``.
    """

    def __init__(
        self,
        settings: Settings,
        smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
    ):
        self.settings = settings
        self.smtp_factory = smtp_factory

    def build_message(self, quote: Quote, recipient: str, link: str) -> MIMEMultipart:
        company = self.settings.company_name
        msg = MIMEMultipart("alternative")
        msg["From"] = f"{company} <{self.settings.email_from}>"
        msg["To"] = recipient
        msg["Subject"] = f"Your quote from {company}"

        greeting = f"Hello {quote.client_name},"
        text = (
            f"{greeting}\n\n"
            f"Your quote is ready. Total: ${quote.total:,.2f}\n"
            f"View, sign or decline it here: {link}\n\n"
            f"{company}"
        )
        html = (
            '<div style="font-family:system-ui,Segoe UI,Roboto,Helvetica,Arial">'
            f"<p>{escape(greeting)}</p>"
            f"<p>Your quote is ready. Total: <strong>${quote.total:,.2f}</strong></p>"
            f'<p><a href="{escape(link, quote=True)}">View your quote</a></p>'
            f"<p>{escape(company)}</p>"
            "</div>"
        )
        msg.attach(MIMEText(text, "plain"))
        msg.attach(MIMEText(html, "html"))
        return msg

    def send_quote(self, quote: Quote, recipient: str, link: str) -> None:
        if not self.settings.smtp_host:
            raise ConfigurationError("SMTP host is not configured", setting="smtp_host")

        msg = self.build_message(quote, recipient, link)

        host, port = self.settings.smtp_host, self.settings.smtp_port
        with self.smtp_factory(host, port, timeout=30) as server:
            if self.settings.smtp_use_tls:
                server.starttls()
            if self.settings.smtp_username and self.settings.smtp_password:
                server.login(self.settings.smtp_username, self.settings.smtp_password)
            server.send_message(msg)

        logger.info("quote_email_sent", quote_id=quote.id, recipient=recipient)
