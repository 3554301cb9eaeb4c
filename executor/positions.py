"""
Position book. Written only by the execution coordinator; everyone else
reads snapshots.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import replace

from scanner.models import Position, PositionStatus, Side

logger = logging.getLogger(__name__)


class PositionBook:
    """Thread-safe store of open and closed positions, keyed by mapping."""

    def __init__(self, positions: list[Position] | None = None) -> None:
        self._positions: list[Position] = list(positions or [])
        self._lock = threading.Lock()

    def open(self, position: Position) -> None:
        with self._lock:
            self._positions.append(position)
        logger.info(
            "Opened %s %s %s x%.1f @ %.4f on %s%s",
            position.side.value, position.question_id, position.outcome,
            position.quantity, position.avg_entry_price, position.venue,
            "" if position.hedged else " (UNHEDGED)",
        )

    def close(self, venue: str, question_id: str, realized_pnl: float = 0.0) -> int:
        """Close every open position on venue/question. Returns the count closed."""
        closed = 0
        with self._lock:
            for pos in self._positions:
                if pos.venue == venue and pos.question_id == question_id and pos.status == PositionStatus.OPEN:
                    pos.status = PositionStatus.CLOSED
                    pos.realized_pnl = realized_pnl
                    closed += 1
        return closed

    def snapshot(self) -> list[Position]:
        """Copies of every position; safe to read without the lock."""
        with self._lock:
            return [replace(p) for p in self._positions]

    def open_positions(self) -> list[Position]:
        return [p for p in self.snapshot() if p.status == PositionStatus.OPEN]

    def total_exposure(self) -> float:
        with self._lock:
            return sum(p.exposure for p in self._positions)

    def event_exposure(self, mapping_id: str) -> float:
        with self._lock:
            return sum(p.exposure for p in self._positions if p.mapping_id == mapping_id)

    def unhedged_value(self, mapping_id: str) -> float:
        """
        Net unhedged value for a mapping. Per outcome, long and short
        quantities offset each other; the excess is valued at the average
        capital at risk per contract on the heavier side.
        """
        qty: dict[tuple[str, Side], float] = defaultdict(float)
        risk: dict[tuple[str, Side], float] = defaultdict(float)
        with self._lock:
            for p in self._positions:
                if p.mapping_id != mapping_id or p.status != PositionStatus.OPEN:
                    continue
                key = (p.outcome.lower(), p.side)
                qty[key] += p.quantity
                risk[key] += p.exposure

        total = 0.0
        for outcome in {k[0] for k in qty}:
            long_key, short_key = (outcome, Side.BUY), (outcome, Side.SELL)
            excess = qty[long_key] - qty[short_key]
            heavy = long_key if excess > 0 else short_key
            if excess != 0 and qty[heavy] > 0:
                total += abs(excess) * risk[heavy] / qty[heavy]
        return total

    def unhedged_positions(self) -> list[Position]:
        return [p for p in self.open_positions() if not p.hedged]
