"""
Critical alert delivery. The trading path calls send_critical() and never
waits on, or fails because of, the delivery channel: the webhook POST runs
on a daemon thread, bounded by its own timeout.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Protocol, runtime_checkable

import httpx

logger = logging.getLogger(__name__)

_TIMEOUT = 5.0


@dataclass(frozen=True)
class AlertEvent:
    kind: str          # "circuit_breaker", "asymmetric_execution", ...
    message: str
    details: dict = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    @property
    def dedup_key(self) -> str:
        return f"{self.kind}:{self.message}"


@runtime_checkable
class AlertSink(Protocol):
    def send_critical(self, event: AlertEvent) -> None:
        ...


class LogAlertSink:
    """Writes alerts to the log at CRITICAL. Always available."""

    def __init__(self) -> None:
        self.sent: list[AlertEvent] = []

    def send_critical(self, event: AlertEvent) -> None:
        self.sent.append(event)
        logger.critical("ALERT [%s] %s %s", event.kind, event.message, event.details or "")


class WebhookAlertSink:
    """
    POSTs each alert as JSON to a webhook URL.

    Identical alerts (same kind and message) inside `cooldown_sec` are
    suppressed. Delivery failures are logged, never raised. Every alert is
    also written to the log via `fallback`, synchronously, before the POST
    is handed to a daemon thread (`background=False` posts inline).
    """

    def __init__(
        self,
        url: str,
        cooldown_sec: float = 300.0,
        fallback: AlertSink | None = None,
        background: bool = True,
    ) -> None:
        self._url = url
        self._cooldown_sec = cooldown_sec
        self._fallback = fallback or LogAlertSink()
        self._background = background
        self._last_sent: dict[str, float] = {}
        self._pending: list[threading.Thread] = []
        self._lock = threading.Lock()

    def send_critical(self, event: AlertEvent) -> None:
        self._fallback.send_critical(event)

        now = time.time()
        with self._lock:
            last = self._last_sent.get(event.dedup_key)
            if last is not None and (now - last) < self._cooldown_sec:
                logger.debug("Alert suppressed (cooldown): %s", event.dedup_key)
                return
            self._last_sent[event.dedup_key] = now

        if not self._background:
            self._deliver(event)
            return
        thread = threading.Thread(target=self._deliver, args=(event,), daemon=True, name="alert-webhook")
        with self._lock:
            self._pending = [t for t in self._pending if t.is_alive()]
            thread.start()
            self._pending.append(thread)

    def flush(self, timeout: float = _TIMEOUT) -> None:
        """Wait for in-flight deliveries, used at shutdown and in tests."""
        with self._lock:
            pending = list(self._pending)
        for thread in pending:
            thread.join(timeout)

    def _deliver(self, event: AlertEvent) -> None:
        try:
            resp = httpx.post(self._url, json=asdict(event), timeout=_TIMEOUT)
            resp.raise_for_status()
        except Exception as e:
            logger.error("Alert webhook delivery failed for %s: %s", event.kind, e)


def build_alert_sink(webhook_url: str = "", cooldown_sec: float = 300.0) -> AlertSink:
    if webhook_url:
        return WebhookAlertSink(webhook_url, cooldown_sec=cooldown_sec)
    return LogAlertSink()
