"""Sales-team notifications for quote views, signatures and declines."""

from .channels import EmailChannel, InboxChannel, NotificationChannel, WebhookChannel
from .dispatcher import DispatchReport, NotificationDispatcher
from .inbox import NotificationInbox
from .models import NotificationMessage

__all__ = [
    "DispatchReport",
    "EmailChannel",
    "InboxChannel",
    "NotificationChannel",
    "NotificationDispatcher",
    "NotificationInbox",
    "NotificationMessage",
    "WebhookChannel",
]
