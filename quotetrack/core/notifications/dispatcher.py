"""Fan-out of notifications to all channels, bounded by a short timeout.

Dispatch happens after the transition is committed and is strictly best
effort: channel errors and timeouts are logged, never raised and never
retried, so a notification problem can not undo or fail a state change.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field

import httpx
from sqlalchemy.orm import Session

from quotetrack.utils.config import Settings
from quotetrack.utils.logging import get_logger

from .channels import EmailChannel, InboxChannel, NotificationChannel, WebhookChannel
from .models import NotificationMessage

logger = get_logger(__name__)


@dataclass
class DispatchReport:
    quote_id: str
    kind: str
    delivered: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    timed_out: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.timed_out


class NotificationDispatcher:
    """Send one message through every configured channel in parallel.

    Args:
        channels: Channels to fan out to
        timeout: Seconds to wait for all channels together; slower ones are abandoned
        max_workers: Worker threads shared by all dispatches
    """

    def __init__(
        self,
        channels: Sequence[NotificationChannel],
        timeout: float = 5.0,
        max_workers: int = 4,
    ):
        self.channels = list(channels)
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="quotetrack-notify"
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: Callable[[], Session],
        http_client: httpx.Client | None = None,
    ) -> NotificationDispatcher:
        timeout = settings.notification_timeout_seconds
        return cls(
            channels=[
                InboxChannel(session_factory),
                EmailChannel(settings),
                WebhookChannel(settings.chat_webhook_url, timeout=timeout, client=http_client),
            ],
            timeout=timeout,
        )

    def notify(self, message: NotificationMessage) -> DispatchReport:
        """Blocks for at most ``timeout`` seconds. Never raises."""
        report = DispatchReport(quote_id=message.quote_id, kind=message.kind.value)

        try:
            futures = {
                self._executor.submit(channel.send, message): channel.name
                for channel in self.channels
            }
            done, not_done = wait(futures, timeout=self.timeout)

            for future in done:
                name = futures[future]
                error = future.exception()
                if error is None:
                    report.delivered.append(name)
                else:
                    report.failed[name] = str(error)
                    self._log_failure(message, name, error)

            for future in not_done:
                future.cancel()
                report.timed_out.append(futures[future])
        except Exception as e:
            logger.error(
                "notification_dispatch_failed",
                quote_id=message.quote_id,
                kind=message.kind.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return report

        self._log_report(report)
        return report

    async def notify_async(self, message: NotificationMessage) -> DispatchReport:
        """Async variant for callers already on an event loop. Never raises."""
        report = DispatchReport(quote_id=message.quote_id, kind=message.kind.value)

        async def run(channel: NotificationChannel) -> None:
            await asyncio.to_thread(channel.send, message)

        results = await asyncio.gather(
            *(asyncio.wait_for(run(channel), timeout=self.timeout) for channel in self.channels),
            return_exceptions=True,
        )

        for channel, result in zip(self.channels, results, strict=True):
            if isinstance(result, TimeoutError):
                report.timed_out.append(channel.name)
            elif isinstance(result, BaseException):
                report.failed[channel.name] = str(result)
                self._log_failure(message, channel.name, result)
            else:
                report.delivered.append(channel.name)

        self._log_report(report)
        return report

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    @staticmethod
    def _log_failure(message: NotificationMessage, channel: str, error: BaseException) -> None:
        logger.warning(
            "notification_failed",
            quote_id=message.quote_id,
            kind=message.kind.value,
            channel=channel,
            error=str(error),
            error_type=type(error).__name__,
        )

    @staticmethod
    def _log_report(report: DispatchReport) -> None:
        if report.timed_out:
            logger.warning(
                "notification_channel_timeout",
                quote_id=report.quote_id,
                kind=report.kind,
                channels=report.timed_out,
            )
        logger.info(
            "notification_dispatched",
            quote_id=report.quote_id,
            kind=report.kind,
            delivered=report.delivered,
            failed=sorted(report.failed),
            timed_out=report.timed_out,
        )
