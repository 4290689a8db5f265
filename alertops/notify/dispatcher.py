"""NotificationDispatcher — queued per-channel delivery with retry/backoff."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable, Mapping

import structlog

from alertops.core.types import (
    Alert,
    AlertChannel,
    AlertNotification,
    ChannelType,
    Clock,
    NotificationStatus,
)
from alertops.notify.channels import NotificationSink
from alertops.notify.formatters import format_alert_message

logger = structlog.get_logger(__name__)


class NotificationDispatcher:
    """Owns the notification queue and the channel registry.

    - ``enqueue`` adds one ``pending`` notification per enabled channel.
    - ``process`` is called once per scheduler tick. Each due notification
      is delivered in its own asyncio task, so a slow sink never holds up
      the tick.
    - A failed delivery is retried with exponential backoff
      (``retry_base_secs * 2**attempt``) until ``max_attempts`` retries
      have been used, after which it stays ``failed``.

    An in-flight set keyed by (subject, channel, attempt) prevents the same
    attempt from being sent twice when ticks overlap a slow delivery.
    """

    def __init__(
        self,
        sinks: Mapping[ChannelType | str, NotificationSink] | None = None,
        channels: Iterable[AlertChannel] | None = None,
        max_attempts: int = 3,
        retry_base_secs: float = 30.0,
        clock: Clock = time.time,
    ) -> None:
        self._sinks: dict[str, NotificationSink] = {
            str(k): v for k, v in (sinks or {}).items()
        }
        self._channels: list[AlertChannel] = list(channels or [])
        self._max_attempts = max_attempts
        self._retry_base_secs = retry_base_secs
        self._clock = clock
        self._queue: dict[str, list[AlertNotification]] = {}
        self._in_flight: set[tuple[str, str, int]] = set()
        self._tasks: set[asyncio.Task[None]] = set()

    # ── Channel registry ────────────────────────────────────────

    @property
    def channels(self) -> list[AlertChannel]:
        """Default channel set for alerts whose rule names none."""
        return list(self._channels)

    def get_channels(self) -> list[AlertChannel]:
        return self.channels

    def add_channel(self, channel: AlertChannel) -> None:
        self._channels = [c for c in self._channels if c.id != channel.id]
        self._channels.append(channel)

    def remove_channel(self, channel_id: str) -> bool:
        before = len(self._channels)
        self._channels = [c for c in self._channels if c.id != channel_id]
        return len(self._channels) != before

    def update_channel(self, channel_id: str, **changes: object) -> AlertChannel | None:
        for i, ch in enumerate(self._channels):
            if ch.id == channel_id:
                updated = ch.model_copy(update=changes)
                self._channels[i] = updated
                return updated
        return None

    def get_channel(self, channel_id: str) -> AlertChannel | None:
        return next((c for c in self._channels if c.id == channel_id), None)

    def resolve_channels(self, refs: Iterable[str]) -> list[AlertChannel]:
        """Look up registered channels by id, falling back to type name."""
        found: list[AlertChannel] = []
        for ref in refs:
            matches = [c for c in self._channels if c.id == ref]
            if not matches:
                matches = [c for c in self._channels if c.type.value == ref]
            for ch in matches:
                if ch not in found:
                    found.append(ch)
        return found

    def register_sink(self, channel_type: ChannelType | str, sink: NotificationSink) -> None:
        self._sinks[str(channel_type)] = sink

    # ── Queueing ────────────────────────────────────────────────

    def enqueue(
        self,
        alert: Alert,
        channels: Iterable[AlertChannel],
        message: str | None = None,
        escalation_level: int | None = None,
    ) -> list[AlertNotification]:
        """Queue one pending notification per enabled channel for *alert*."""
        created: list[AlertNotification] = []
        for channel in channels:
            if not channel.enabled:
                continue
            created.append(self._push(AlertNotification(
                subject_id=alert.id,
                alert=alert,
                channel=channel,
                message=message or format_alert_message(alert, channel),
                max_attempts=self._max_attempts,
                timestamp=self._clock(),
                escalation_level=escalation_level,
            )))
        return created

    def notify_incident(
        self, incident_id: str, message: str, channels: Iterable[AlertChannel],
    ) -> list[AlertNotification]:
        """Queue an incident communication on each enabled channel."""
        created: list[AlertNotification] = []
        for channel in channels:
            if not channel.enabled:
                continue
            created.append(self._push(AlertNotification(
                subject_id=incident_id,
                channel=channel,
                message=message,
                max_attempts=self._max_attempts,
                timestamp=self._clock(),
            )))
        return created

    def _push(self, notification: AlertNotification) -> AlertNotification:
        self._queue.setdefault(notification.subject_id, []).append(notification)
        return notification

    # ── Tick processing ─────────────────────────────────────────

    def due(self, now: float | None = None) -> list[AlertNotification]:
        """Pending notifications whose retry time has arrived."""
        t = self._clock() if now is None else now
        return [
            n
            for bucket in self._queue.values()
            for n in bucket
            if n.status == NotificationStatus.PENDING
            and (n.next_attempt is None or n.next_attempt <= t)
        ]

    def process(self, now: float | None = None) -> int:
        """Start delivery tasks for every due notification not in flight.

        Must be called from a running event loop. Returns the number of
        deliveries started.
        """
        loop = asyncio.get_running_loop()
        started = 0
        for notification in self.due(now):
            key = notification.key
            if key in self._in_flight:
                continue
            self._in_flight.add(key)
            task = loop.create_task(self._deliver(notification, key))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            started += 1
        return started

    async def _deliver(
        self, notification: AlertNotification, key: tuple[str, str, int],
    ) -> None:
        channel = notification.channel
        try:
            sink = self._sinks.get(channel.type.value)
            if sink is None:
                logger.warning(
                    "notification_channel_unsupported",
                    channel=channel.id,
                    channel_type=channel.type.value,
                )
                notification.status = NotificationStatus.FAILED
                notification.error = f"No sink for channel type {channel.type.value}"
            elif await sink.send(notification):
                notification.status = NotificationStatus.SENT
                notification.error = None
            else:
                notification.status = NotificationStatus.FAILED
                notification.error = "Failed to send notification"
        except Exception as exc:
            logger.exception(
                "notification_send_error",
                subject_id=notification.subject_id,
                channel=channel.id,
                attempt=notification.attempt,
            )
            notification.status = NotificationStatus.FAILED
            notification.error = str(exc) or type(exc).__name__
        finally:
            self._in_flight.discard(key)
            self._schedule_retry(notification)

    def _schedule_retry(self, notification: AlertNotification) -> None:
        if notification.status != NotificationStatus.FAILED:
            return
        if notification.attempt < notification.max_attempts:
            notification.attempt += 1
            notification.status = NotificationStatus.PENDING
            notification.next_attempt = (
                self._clock() + self._retry_base_secs * 2 ** notification.attempt
            )
            logger.info(
                "notification_retry_scheduled",
                subject_id=notification.subject_id,
                channel=notification.channel.id,
                attempt=notification.attempt,
                next_attempt=notification.next_attempt,
            )
        else:
            logger.warning(
                "notification_failed",
                subject_id=notification.subject_id,
                channel=notification.channel.id,
                attempts=notification.attempt,
                error=notification.error,
            )

    async def wait_idle(self) -> None:
        """Wait for every in-flight delivery to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── Queries ─────────────────────────────────────────────────

    def get_notifications(self, subject_id: str | None = None) -> list[AlertNotification]:
        if subject_id is not None:
            return list(self._queue.get(subject_id, []))
        return [n for bucket in self._queue.values() for n in bucket]

    def drop(self, subject_id: str) -> None:
        """Forget all notifications for a purged alert."""
        self._queue.pop(subject_id, None)

    def stats(self) -> dict[str, int]:
        counts = {s.value: 0 for s in NotificationStatus}
        for n in self.get_notifications():
            counts[n.status.value] += 1
        counts["in_flight"] = len(self._in_flight)
        return counts

    # ── Lifecycle ───────────────────────────────────────────────

    async def close(self) -> None:
        await self.wait_idle()
        for sink in set(self._sinks.values()):
            try:
                await sink.close()
            except Exception:
                logger.exception("sink_close_error", sink=type(sink).__name__)
