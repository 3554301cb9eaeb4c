"""
Circuit breaker and safety exception types. Fail-fast on violations.

The breaker has two states: RUNNING and PAUSED. Any of the following pauses
it, and only resume() clears it:
  - max_consecutive_failures failed execution attempts in a row
  - max_asymmetric_failures asymmetric (one-leg) executions
  - daily PnL at or below -max_daily_loss
  - connectivity_failure_threshold consecutive connectivity-loss signals
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field

from config import Config
from monitor.alerts import AlertEvent, AlertSink, LogAlertSink
from scanner.models import CircuitBreakerState

logger = logging.getLogger(__name__)


class CircuitBreakerTripped(Exception):
    """Raised when trading is paused. No new execution may start."""
    pass


class SafetyCheckFailed(Exception):
    """Raised when a pre-trade check fails. Trade should be skipped."""
    pass


@dataclass
class CircuitBreaker:
    """
    Tracks failures and pauses trading when limits are exceeded.
    Shared by the coordinating loop, the execution coordinator and the
    operator API; every method takes the internal lock.
    """
    max_consecutive_failures: int = 3
    max_asymmetric_failures: int = 1
    max_daily_loss: float = 200.0
    connectivity_failure_threshold: int = 5
    alert_sink: AlertSink = field(default_factory=LogAlertSink)

    _paused: bool = False
    _reason: str = ""
    _paused_at: float | None = None
    _consecutive_failures: int = 0
    _asymmetric_failures: int = 0
    _connectivity_failures: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @classmethod
    def from_config(cls, cfg: Config, alert_sink: AlertSink | None = None) -> CircuitBreaker:
        return cls(
            max_consecutive_failures=cfg.max_consecutive_failures,
            max_asymmetric_failures=cfg.max_asymmetric_failures,
            max_daily_loss=cfg.max_daily_loss,
            connectivity_failure_threshold=cfg.connectivity_failure_threshold,
            alert_sink=alert_sink or LogAlertSink(),
        )

    def record_failure(self, reason: str) -> None:
        """A failed execution attempt (pre-flight abort, venue error)."""
        with self._lock:
            self._consecutive_failures += 1
            count = self._consecutive_failures
            logger.warning(
                "Execution failure %d/%d: %s", count, self.max_consecutive_failures, reason,
            )
            if count >= self.max_consecutive_failures:
                event = self._pause_locked(
                    f"consecutive failures: {count} >= {self.max_consecutive_failures}",
                    {"last_failure": reason},
                )
            else:
                event = None
        self._notify(event)

    def record_success(self) -> None:
        with self._lock:
            self._consecutive_failures = 0
            self._connectivity_failures = 0

    def record_asymmetric(self, detail: str) -> None:
        """One leg filled, the other did not. Always critical."""
        with self._lock:
            self._asymmetric_failures += 1
            count = self._asymmetric_failures
            logger.critical("Asymmetric execution %d/%d: %s", count, self.max_asymmetric_failures, detail)
            if count >= self.max_asymmetric_failures:
                event = self._pause_locked("asymmetric execution", {"detail": detail, "count": count})
            else:
                event = None
        self._notify(event)

    def record_daily_loss(self, daily_pnl: float) -> None:
        if daily_pnl > -self.max_daily_loss:
            return
        with self._lock:
            event = self._pause_locked(
                f"daily loss limit: ${-daily_pnl:.2f} >= ${self.max_daily_loss:.2f}",
                {"daily_pnl": daily_pnl},
            )
        self._notify(event)

    def record_connectivity_loss(self, venue: str, detail: str = "") -> None:
        with self._lock:
            self._connectivity_failures += 1
            count = self._connectivity_failures
            logger.warning(
                "Connectivity loss on %s (%d/%d): %s",
                venue, count, self.connectivity_failure_threshold, detail,
            )
            if count >= self.connectivity_failure_threshold:
                event = self._pause_locked(
                    f"connectivity loss: {venue}", {"venue": venue, "detail": detail, "count": count},
                )
            else:
                event = None
        self._notify(event)

    def record_connectivity_ok(self) -> None:
        with self._lock:
            self._connectivity_failures = 0

    def trip(self, reason: str) -> None:
        """Pause immediately (operator or external signal)."""
        with self._lock:
            event = self._pause_locked(reason, {})
        self._notify(event)

    def resume(self) -> None:
        """Manual resume. Clears the pause and zeroes every counter."""
        with self._lock:
            was_paused = self._paused
            previous = self._reason
            self._paused = False
            self._reason = ""
            self._paused_at = None
            self._consecutive_failures = 0
            self._asymmetric_failures = 0
            self._connectivity_failures = 0
        if was_paused:
            logger.warning("Circuit breaker resumed (was: %s)", previous)

    def is_paused(self) -> bool:
        with self._lock:
            return self._paused

    def state(self) -> CircuitBreakerState:
        with self._lock:
            return CircuitBreakerState(
                paused=self._paused,
                reason=self._reason,
                consecutive_failures=self._consecutive_failures,
                asymmetric_failures=self._asymmetric_failures,
                connectivity_failures=self._connectivity_failures,
                paused_at=self._paused_at,
            )

    def guard(self) -> None:
        """Raise CircuitBreakerTripped if trading is paused."""
        with self._lock:
            if self._paused:
                raise CircuitBreakerTripped(f"Trading paused: {self._reason}")

    def _pause_locked(self, reason: str, details: dict) -> AlertEvent | None:
        """Enter PAUSED. Returns the alert to send, or None if already paused."""
        if self._paused:
            return None
        self._paused = True
        self._reason = reason
        self._paused_at = time.time()
        logger.critical("CIRCUIT BREAKER TRIPPED: %s", reason)
        return AlertEvent(kind="circuit_breaker", message=reason, details=details)

    def _notify(self, event: AlertEvent | None) -> None:
        # Sent outside the lock so a slow sink cannot block state queries
        if event is not None:
            self.alert_sink.send_critical(event)
