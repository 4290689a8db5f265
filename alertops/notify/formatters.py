"""Pure functions that render alerts into per-channel message text."""

from __future__ import annotations

import datetime

from alertops.core.types import Alert, AlertChannel, ChannelType, Severity

# Slack attachment colours keyed by severity.
SLACK_COLORS: dict[Severity, str] = {
    Severity.CRITICAL: "danger",
    Severity.ERROR: "warning",
    Severity.WARNING: "#ffcc00",
    Severity.INFO: "good",
}


def format_timestamp(ts: float) -> str:
    """Render an epoch timestamp as ``YYYY-MM-DD HH:MM:SS UTC``."""
    dt = datetime.datetime.fromtimestamp(ts, datetime.UTC)
    return dt.strftime("%Y-%m-%d %H:%M:%S UTC")


def format_alert_message(alert: Alert, channel: AlertChannel) -> str:
    """Channel-specific text embedding name, description, severity, metric,
    value, threshold and time."""
    when = format_timestamp(alert.timestamp)
    sev = alert.severity.value

    if channel.type == ChannelType.SLACK:
        return (
            f"*{alert.name}*\n{alert.description}\n\n"
            f"*Severity:* {sev.upper()}\n"
            f"*Metric:* {alert.metric}\n"
            f"*Value:* {alert.value}\n"
            f"*Threshold:* {alert.threshold}\n"
            f"*Time:* {when}"
        )

    if channel.type == ChannelType.EMAIL:
        return (
            f"Alert: {alert.name}\n\n"
            f"Description: {alert.description}\n"
            f"Severity: {sev}\n"
            f"Metric: {alert.metric}\n"
            f"Value: {alert.value}\n"
            f"Threshold: {alert.threshold}\n"
            f"Time: {when}"
        )

    if channel.type == ChannelType.SMS:
        return (
            f"{alert.name} ({sev.upper()}): {alert.description}"
            f" [{alert.metric}={alert.value} thr={alert.threshold} {when}]"
        )

    return (
        f"{alert.name}: {alert.description}"
        f" | severity={sev} metric={alert.metric} value={alert.value}"
        f" threshold={alert.threshold} time={when}"
    )


def format_escalation_message(alert: Alert, level: int) -> str:
    return f"ESCALATION ({level}): {alert.name}"


def slack_payload(message: str, alert: Alert | None) -> dict[str, object]:
    """Slack incoming-webhook body with a colour-coded attachment."""
    payload: dict[str, object] = {"text": message}
    if alert is not None:
        payload["attachments"] = [{
            "color": SLACK_COLORS.get(alert.severity, "#808080"),
            "fields": [
                {"title": "Alert", "value": alert.name, "short": True},
                {"title": "Severity", "value": alert.severity.value, "short": True},
                {"title": "Metric", "value": alert.metric, "short": True},
                {"title": "Value", "value": str(alert.value), "short": True},
                {"title": "Threshold", "value": str(alert.threshold), "short": True},
            ],
        }]
    return payload
