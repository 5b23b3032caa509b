"""Operator alerting and logging helpers."""

from .alerting import (
    AlertEvent,
    AlertRouter,
    AlertSeverity,
    AlertSink,
    ConsoleAlertSink,
    JsonlAlertSink,
    LoggingAlertSink,
    WebhookAlertSink,
    event_for_result,
)
from .logging_utils import setup_console_logger

__all__ = [
    "AlertEvent",
    "AlertRouter",
    "AlertSeverity",
    "AlertSink",
    "ConsoleAlertSink",
    "JsonlAlertSink",
    "LoggingAlertSink",
    "WebhookAlertSink",
    "event_for_result",
    "setup_console_logger",
]
