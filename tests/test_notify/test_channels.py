"""Tests for notification sinks — HTTP mocking, missing config, session management."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import httpx

from alertops.core.types import (
    Alert,
    AlertChannel,
    AlertNotification,
    ChannelType,
    EmailChannelConfig,
    PagerDutyChannelConfig,
    Severity,
    SlackChannelConfig,
    SmsChannelConfig,
    WebhookChannelConfig,
)
from alertops.notify.channels import (
    EmailSink,
    PagerDutySink,
    SlackSink,
    SmsSink,
    WebhookSink,
    default_sinks,
)


# ── Helpers ─────────────────────────────────────────────────────


def _alert() -> Alert:
    return Alert(
        id="alert_1",
        name="High Error Rate",
        severity=Severity.ERROR,
        metric="error_rate",
        value=7.0,
        threshold=5.0,
        timestamp=1000.0,
    )


def _note(channel: AlertChannel, alert: Alert | None = None) -> AlertNotification:
    return AlertNotification(
        subject_id="alert_1",
        alert=alert if alert is not None else _alert(),
        channel=channel,
        message="error rate high",
    )


def _mock_response(status: int = 200, text: str = "ok") -> AsyncMock:
    resp = AsyncMock()
    resp.status = status
    resp.text = AsyncMock(return_value=text)
    resp.__aenter__ = AsyncMock(return_value=resp)
    resp.__aexit__ = AsyncMock(return_value=False)
    return resp


def _mock_session(resp: AsyncMock) -> MagicMock:
    session = MagicMock()
    session.post = MagicMock(return_value=resp)
    session.closed = False
    session.close = AsyncMock()
    return session


SLACK = AlertChannel(
    id="slack",
    config=SlackChannelConfig(webhook_url="https://hooks.slack.test/abc", channel="#ops"),  # type: ignore[arg-type]
)
HOOK = AlertChannel(id="hook", config=WebhookChannelConfig(url="https://hooks.test/x"))  # type: ignore[arg-type]
PAGER = AlertChannel(id="pd", config=PagerDutyChannelConfig(service_key="routing-key"))  # type: ignore[arg-type]


# ── SlackSink ───────────────────────────────────────────────────


class TestSlackSink:
    async def test_send_success(self) -> None:
        sink = SlackSink()
        session = _mock_session(_mock_response(200))
        sink._session = session

        assert await sink.send(_note(SLACK)) is True
        url = session.post.call_args[0][0]
        payload = session.post.call_args[1]["json"]
        assert url == "https://hooks.slack.test/abc"
        assert payload["text"] == "error rate high"
        assert payload["channel"] == "#ops"
        assert payload["attachments"][0]["color"] == "warning"

    async def test_send_failure_status(self) -> None:
        sink = SlackSink()
        sink._session = _mock_session(_mock_response(500, "boom"))
        assert await sink.send(_note(SLACK)) is False

    async def test_missing_webhook(self) -> None:
        sink = SlackSink()
        channel = AlertChannel(id="s", config=SlackChannelConfig())
        assert await sink.send(_note(channel)) is False

    async def test_close(self) -> None:
        sink = SlackSink()
        session = _mock_session(_mock_response())
        sink._session = session
        await sink.close()
        session.close.assert_awaited_once()
        assert sink._session is None


# ── WebhookSink ─────────────────────────────────────────────────


class TestWebhookSink:
    async def test_posts_alert_json(self) -> None:
        sink = WebhookSink()
        session = _mock_session(_mock_response(204))
        sink._session = session

        assert await sink.send(_note(HOOK)) is True
        payload = session.post.call_args[1]["json"]
        assert payload["subject_id"] == "alert_1"
        assert payload["alert"]["severity"] == "error"
        assert "channels" not in payload["alert"]

    async def test_incident_message_has_no_alert(self) -> None:
        sink = WebhookSink()
        session = _mock_session(_mock_response(200))
        sink._session = session
        note = AlertNotification(subject_id="incident_1", channel=HOOK, message="update")
        assert await sink.send(note) is True
        assert session.post.call_args[1]["json"]["alert"] is None

    async def test_wrong_config_type(self) -> None:
        sink = WebhookSink()
        channel = AlertChannel(id="e", config=EmailChannelConfig())
        assert await sink.send(_note(channel)) is False


# ── PagerDutySink ───────────────────────────────────────────────


class TestPagerDutySink:
    async def test_trigger_event(self) -> None:
        sink = PagerDutySink(url="https://pd.test/enqueue")
        client = MagicMock()
        client.is_closed = False
        client.post = AsyncMock(return_value=httpx.Response(202, text="{}"))
        sink._http = client

        assert await sink.send(_note(PAGER)) is True
        url = client.post.call_args[0][0]
        body = client.post.call_args[1]["json"]
        assert url == "https://pd.test/enqueue"
        assert body["routing_key"] == "routing-key"
        assert body["event_action"] == "trigger"
        assert body["dedup_key"] == "alert_1"
        assert body["payload"]["severity"] == "error"
        assert body["payload"]["source"] == "error_rate"

    async def test_rejected(self) -> None:
        sink = PagerDutySink()
        client = MagicMock()
        client.is_closed = False
        client.post = AsyncMock(return_value=httpx.Response(400, text="bad key"))
        sink._http = client
        assert await sink.send(_note(PAGER)) is False

    async def test_transport_error(self) -> None:
        sink = PagerDutySink()
        client = MagicMock()
        client.is_closed = False
        client.post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        sink._http = client
        assert await sink.send(_note(PAGER)) is False

    async def test_missing_key(self) -> None:
        sink = PagerDutySink()
        channel = AlertChannel(id="p", config=PagerDutyChannelConfig())
        assert await sink.send(_note(channel)) is False


# ── Log-only sinks ──────────────────────────────────────────────


class TestLogSinks:
    async def test_email_and_sms_succeed(self) -> None:
        email = AlertChannel(id="e", config=EmailChannelConfig(address="a@b.test"))
        sms = AlertChannel(id="t", config=SmsChannelConfig(phone_number="+100"))
        assert await EmailSink().send(_note(email)) is True
        assert await SmsSink().send(_note(sms)) is True

    def test_default_sinks_cover_every_type(self) -> None:
        assert set(default_sinks()) == set(ChannelType)
