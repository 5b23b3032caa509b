"""Operator alerts for settlement outcomes."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import Any
import json
import logging
import urllib.request

from token_swap_engine.contracts import FailureReason, SwapOutcome, SwapResult, now_utc

logger = logging.getLogger(__name__)


class AlertSeverity(StrEnum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return {"info": 0, "warning": 1, "critical": 2}[self.value]


@dataclass(slots=True)
class AlertEvent:
    severity: AlertSeverity
    source: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": str(self.severity),
            "source": self.source,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


def event_for_result(result: SwapResult, owner: str, kind: str) -> AlertEvent | None:
    """
    Map a terminal result to an operator alert.

    PartialUnknown and NoRouteAvailable are warnings; settled results and
    ordinary failures are informational; user cancellations raise nothing.
    """
    details: dict[str, Any] = {"owner": owner, "kind": kind, "venue": result.venue, "tx_id": result.tx_id}
    if result.outcome == SwapOutcome.SUCCESS:
        return AlertEvent(AlertSeverity.INFO, "settlement", f"{kind} settled", details)
    if result.outcome == SwapOutcome.PARTIAL_UNKNOWN:
        return AlertEvent(AlertSeverity.WARNING, "settlement", f"{kind} confirmation timed out", details)
    if result.reason == FailureReason.NO_ROUTE_AVAILABLE:
        details["venue_failures"] = [failure.to_dict() for failure in result.venue_failures]
        return AlertEvent(AlertSeverity.WARNING, "routing", "no route available", details)
    if result.reason == FailureReason.USER_CANCELLED:
        return None
    details["reason"] = str(result.reason)
    return AlertEvent(AlertSeverity.INFO, "settlement", f"{kind} failed: {result.message}", details)


class AlertSink(ABC):
    @abstractmethod
    def send(self, event: AlertEvent) -> None:
        """Deliver one alert event."""


class LoggingAlertSink(AlertSink):
    """Forward alerts into the stdlib logging tree."""

    _LEVELS = {
        AlertSeverity.INFO: logging.INFO,
        AlertSeverity.WARNING: logging.WARNING,
        AlertSeverity.CRITICAL: logging.CRITICAL,
    }

    def __init__(self, logger_name: str = "token_swap_engine.alerts") -> None:
        self.logger = logging.getLogger(logger_name)

    def send(self, event: AlertEvent) -> None:
        self.logger.log(self._LEVELS[event.severity], "%s: %s %s", event.source, event.message, event.details)


class ConsoleAlertSink(AlertSink):
    def send(self, event: AlertEvent) -> None:
        tx = event.details.get("tx_id")
        suffix = f" tx={tx}" if tx else ""
        print(f"[{event.severity.upper():8}] {event.source}: {event.message}{suffix}")


class JsonlAlertSink(AlertSink):
    """Append alerts to a JSONL audit file."""

    def __init__(self, output_path: str | Path) -> None:
        self.output_path = Path(output_path)
        self.output_path.parent.mkdir(parents=True, exist_ok=True)

    def send(self, event: AlertEvent) -> None:
        with self.output_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(event.to_dict(), default=str, sort_keys=True) + "\n")


class WebhookAlertSink(AlertSink):
    """POST alerts as JSON to a chat or paging webhook."""

    def __init__(self, webhook_url: str, timeout_seconds: float = 5.0) -> None:
        self.webhook_url = webhook_url
        self.timeout_seconds = timeout_seconds

    def send(self, event: AlertEvent) -> None:
        request = urllib.request.Request(
            url=self.webhook_url,
            data=json.dumps(event.to_dict(), default=str).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        with urllib.request.urlopen(request, timeout=self.timeout_seconds):
            return


@dataclass(slots=True)
class _Route:
    sink: AlertSink
    min_severity: AlertSeverity


class AlertRouter:
    """
    Fan alerts out to sinks, each with its own minimum severity.

    A sink that raises is logged and skipped; the remaining sinks still
    receive the event.
    """

    def __init__(self, sinks: list[AlertSink] | None = None) -> None:
        self._routes: list[_Route] = [_Route(sink, AlertSeverity.INFO) for sink in sinks or []]

    def add_sink(self, sink: AlertSink, min_severity: AlertSeverity = AlertSeverity.INFO) -> "AlertRouter":
        self._routes.append(_Route(sink, min_severity))
        return self

    def route(self, event: AlertEvent) -> int:
        """Deliver to every eligible sink; return how many accepted it."""
        delivered = 0
        for route in self._routes:
            if event.severity.rank < route.min_severity.rank:
                continue
            try:
                route.sink.send(event)
            except Exception:
                logger.exception("Alert sink %s failed for %r", route.sink.__class__.__name__, event.message)
                continue
            delivered += 1
        return delivered

    def emit(self, severity: AlertSeverity, source: str, message: str, **details: Any) -> int:
        return self.route(AlertEvent(severity=severity, source=source, message=message, details=details))

    def notify_result(self, result: SwapResult, owner: str, kind: str) -> int:
        event = event_for_result(result, owner, kind)
        return self.route(event) if event is not None else 0

    @staticmethod
    def with_logging() -> "AlertRouter":
        return AlertRouter([LoggingAlertSink()])

    @staticmethod
    def for_operations(audit_path: str | Path, webhook_url: str | None = None) -> "AlertRouter":
        """Console and JSONL audit for everything, webhook for warnings and above."""
        router = AlertRouter([ConsoleAlertSink(), JsonlAlertSink(audit_path)])
        if webhook_url:
            router.add_sink(WebhookAlertSink(webhook_url), min_severity=AlertSeverity.WARNING)
        return router
