"""Notification sinks — one async sender per channel type."""

from __future__ import annotations

import abc

import aiohttp
import httpx
import structlog

from alertops.core.types import (
    AlertNotification,
    ChannelType,
    PagerDutyChannelConfig,
    SlackChannelConfig,
    WebhookChannelConfig,
)
from alertops.notify.formatters import slack_payload

logger = structlog.get_logger(__name__)

PAGERDUTY_EVENTS_URL = "https://events.pagerduty.com/v2/enqueue"


class NotificationSink(abc.ABC):
    """Base class for channel delivery.

    ``send`` receives the queued notification (formatted message, alert and
    channel config) and returns True on success. Implementations may raise;
    the dispatcher records the exception text as the delivery error.
    """

    @abc.abstractmethod
    async def send(self, notification: AlertNotification) -> bool:
        """Deliver one notification."""

    async def close(self) -> None:
        """Release resources (HTTP sessions, etc.)."""


class _AiohttpSink(NotificationSink):
    """Shared lazily-created aiohttp session."""

    def __init__(self) -> None:
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=10),
            )
        return self._session

    async def _post(self, url: str, payload: dict[str, object], event: str) -> bool:
        session = self._get_session()
        async with session.post(url, json=payload) as resp:
            if 200 <= resp.status < 300:
                return True
            body = await resp.text()
            logger.warning(event, status=resp.status, body=body[:200])
            return False

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None


class SlackSink(_AiohttpSink):
    """Posts to a Slack incoming webhook."""

    async def send(self, notification: AlertNotification) -> bool:
        config = notification.channel.config
        if not isinstance(config, SlackChannelConfig) or not config.webhook_url.get_secret_value():
            logger.warning("slack_config_missing", channel=notification.channel.id)
            return False
        payload = slack_payload(notification.message, notification.alert)
        if config.channel:
            payload["channel"] = config.channel
        return await self._post(
            config.webhook_url.get_secret_value(), payload, "slack_send_failed",
        )


class WebhookSink(_AiohttpSink):
    """Posts the alert and message as JSON to a generic webhook."""

    async def send(self, notification: AlertNotification) -> bool:
        config = notification.channel.config
        if not isinstance(config, WebhookChannelConfig) or not config.url.get_secret_value():
            logger.warning("webhook_config_missing", channel=notification.channel.id)
            return False
        payload: dict[str, object] = {
            "subject_id": notification.subject_id,
            "message": notification.message,
            "timestamp": notification.timestamp,
            "alert": (
                notification.alert.model_dump(mode="json", exclude={"channels"})
                if notification.alert is not None else None
            ),
        }
        return await self._post(
            config.url.get_secret_value(), payload, "webhook_send_failed",
        )


class PagerDutySink(NotificationSink):
    """Triggers a PagerDuty incident through the Events v2 API."""

    def __init__(self, url: str = PAGERDUTY_EVENTS_URL) -> None:
        self._url = url
        self._http: httpx.AsyncClient | None = None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(10.0))
        return self._http

    async def send(self, notification: AlertNotification) -> bool:
        config = notification.channel.config
        if not isinstance(config, PagerDutyChannelConfig) or not config.service_key.get_secret_value():
            logger.warning("pagerduty_config_missing", channel=notification.channel.id)
            return False
        alert = notification.alert
        severity = alert.severity.value if alert else "error"
        payload = {
            "routing_key": config.service_key.get_secret_value(),
            "event_action": "trigger",
            "dedup_key": notification.subject_id,
            "payload": {
                "summary": notification.message[:1024],
                "source": alert.metric if alert and alert.metric else "alertops",
                "severity": severity,
            },
        }
        try:
            resp = await self._client().post(self._url, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("pagerduty_send_failed", error=str(exc))
            return False
        if resp.status_code == 202 or resp.is_success:
            return True
        logger.warning("pagerduty_send_failed", status=resp.status_code, body=resp.text[:200])
        return False

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None


class EmailSink(NotificationSink):
    """Log-only placeholder; plug a real SMTP sender in via ``sinks=``."""

    async def send(self, notification: AlertNotification) -> bool:
        config = notification.channel.config
        logger.info(
            "email_notification",
            to=getattr(config, "address", ""),
            subject_id=notification.subject_id,
            message=notification.message,
        )
        return True


class SmsSink(NotificationSink):
    """Log-only placeholder; plug a real SMS gateway in via ``sinks=``."""

    async def send(self, notification: AlertNotification) -> bool:
        config = notification.channel.config
        logger.info(
            "sms_notification",
            to=getattr(config, "phone_number", ""),
            subject_id=notification.subject_id,
            message=notification.message,
        )
        return True


def default_sinks() -> dict[ChannelType, NotificationSink]:
    """One sink per built-in channel type."""
    return {
        ChannelType.EMAIL: EmailSink(),
        ChannelType.SLACK: SlackSink(),
        ChannelType.WEBHOOK: WebhookSink(),
        ChannelType.SMS: SmsSink(),
        ChannelType.PAGERDUTY: PagerDutySink(),
    }
