"""
P&L tracking with append-only NDJSON ledger and per-UTC-day totals.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from executor.cross_platform import ExecutionReport

logger = logging.getLogger(__name__)

LEDGER_FILE = "trade_ledger.ndjson"


@dataclass
class LedgerEntry:
    timestamp: float
    mapping_id: str
    state: str
    buy_venue: str
    sell_venue: str
    buy_question_id: str
    sell_question_id: str
    quantity: float
    expected_buy_price: float
    expected_sell_price: float
    buy_fill_price: float | None
    sell_fill_price: float | None
    fees: float
    realized_pnl: float
    slippage: float
    elapsed_ms: float
    order_ids: list[str]
    reason: str = ""


def _utc_day(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")


@dataclass
class PnLTracker:
    """Track aggregate P&L and persist every execution attempt that placed orders."""

    ledger_path: str | None = LEDGER_FILE

    total_pnl: float = 0.0
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    asymmetric_trades: int = 0
    total_volume: float = 0.0

    _daily: dict[str, float] = field(default_factory=dict)
    _session_start: float = field(default_factory=time.time)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record(self, report: ExecutionReport) -> None:
        """Record an execution report. Updates aggregates and appends to the ledger."""
        opp = report.opportunity
        with self._lock:
            if report.fully_filled:
                self.total_trades += 1
                self.total_pnl += report.realized_pnl
                day = _utc_day(report.finished_at)
                self._daily[day] = self._daily.get(day, 0.0) + report.realized_pnl
                if report.realized_pnl >= 0:
                    self.winning_trades += 1
                else:
                    self.losing_trades += 1
            elif report.is_asymmetric:
                self.asymmetric_trades += 1
            self.total_volume += report.filled_notional

        entry = LedgerEntry(
            timestamp=report.finished_at,
            mapping_id=opp.mapping.mapping_id,
            state=report.state.value,
            buy_venue=opp.buy_venue,
            sell_venue=opp.sell_venue,
            buy_question_id=opp.buy_question_id,
            sell_question_id=opp.sell_question_id,
            quantity=report.quantity,
            expected_buy_price=opp.buy_price,
            expected_sell_price=opp.sell_price,
            buy_fill_price=report.buy_fill.fill_price if report.buy_fill and report.buy_fill.filled else None,
            sell_fill_price=report.sell_fill.fill_price if report.sell_fill and report.sell_fill.filled else None,
            fees=report.fees,
            realized_pnl=report.realized_pnl,
            slippage=report.slippage,
            elapsed_ms=report.elapsed_ms,
            order_ids=report.order_ids,
            reason=report.reason,
        )
        self._append_ledger(entry)

        if report.fully_filled:
            logger.info(
                "PnL update: trade_pnl=$%.2f total_pnl=$%.2f today=$%.2f trades=%d",
                report.realized_pnl, self.total_pnl, self.daily_pnl(report.finished_at), self.total_trades,
            )

    def _append_ledger(self, entry: LedgerEntry) -> None:
        """Append one entry to the ledger file (one JSON object per line)."""
        if not self.ledger_path:
            return
        with open(self.ledger_path, "a") as f:
            f.write(json.dumps(asdict(entry), separators=(",", ":")) + "\n")

    def daily_pnl(self, now: float | None = None) -> float:
        """Realized P&L for the UTC day containing `now`."""
        day = _utc_day(time.time() if now is None else now)
        with self._lock:
            return self._daily.get(day, 0.0)

    @property
    def win_rate(self) -> float:
        if self.total_trades == 0:
            return 0.0
        return (self.winning_trades / self.total_trades) * 100.0

    @property
    def session_duration_sec(self) -> float:
        return time.time() - self._session_start

    def summary(self) -> dict:
        """Return a summary dict of current P&L state."""
        return {
            "total_pnl": round(self.total_pnl, 2),
            "daily_pnl": round(self.daily_pnl(), 2),
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "asymmetric_trades": self.asymmetric_trades,
            "win_rate_pct": round(self.win_rate, 1),
            "total_volume": round(self.total_volume, 2),
            "session_duration_sec": round(self.session_duration_sec, 0),
        }


def load_ledger(path: str) -> list[dict]:
    """Read every entry of an NDJSON ledger. Malformed lines are skipped with a warning."""
    entries: list[dict] = []
    try:
        with open(path) as f:
            for lineno, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning("Skipping malformed ledger line %d in %s", lineno, path)
    except FileNotFoundError:
        return []
    return entries
