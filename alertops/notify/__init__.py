"""Notification formatting, sinks and the retrying dispatcher."""

from alertops.notify.channels import (
    EmailSink,
    NotificationSink,
    PagerDutySink,
    SlackSink,
    SmsSink,
    WebhookSink,
    default_sinks,
)
from alertops.notify.dispatcher import NotificationDispatcher
from alertops.notify.formatters import format_alert_message, format_escalation_message

__all__ = [
    "EmailSink",
    "NotificationDispatcher",
    "NotificationSink",
    "PagerDutySink",
    "SlackSink",
    "SmsSink",
    "WebhookSink",
    "default_sinks",
    "format_alert_message",
    "format_escalation_message",
]
