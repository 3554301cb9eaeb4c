"""
Cross-venue execution coordinator.

Executes one opportunity as two fill-or-kill orders placed concurrently, one
per venue. Outcomes:
  - both filled: hedged position opened, realized profit recorded
  - both rejected: benign, nothing changes
  - exactly one filled, or any partial fill: unhedged exposure recorded,
    trading paused, critical alert sent. There is no automatic unwind.

Before any order: the breaker must be running, the mapping must be
tradeable, and the spread re-priced from fresh books with worst-case
slippage must still clear the threshold.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass

from client.platform import FillResult, MarketConnector, TransientConnectorError, fetch_book_with_retry
from config import Config
from executor.fill_state import (
    ExecutionState,
    LegState,
    outcome_for_legs,
    transition_leg,
    transition_to,
)
from executor.positions import PositionBook
from executor.safety import CircuitBreaker, CircuitBreakerTripped
from monitor.alerts import AlertEvent, AlertSink
from monitor.pnl import PnLTracker
from scanner.fees import FeeModel, leg_fees
from scanner.models import (
    ArbitrageOpportunity,
    LegOrder,
    OrderBookSnapshot,
    Position,
    Side,
)
from scanner.validation import validate_book

logger = logging.getLogger(__name__)

_QTY_EPS = 1e-9


class PreflightFailed(Exception):
    """Fresh books no longer support the trade. No orders were placed."""
    pass


@dataclass(frozen=True)
class ExecutionReport:
    state: ExecutionState
    opportunity: ArbitrageOpportunity
    quantity: float
    buy_fill: FillResult | None = None
    sell_fill: FillResult | None = None
    fees: float = 0.0
    realized_pnl: float = 0.0
    slippage: float = 0.0
    reason: str = ""
    started_at: float = 0.0
    finished_at: float = 0.0

    @property
    def fully_filled(self) -> bool:
        return self.state == ExecutionState.BOTH_FILLED

    @property
    def is_asymmetric(self) -> bool:
        return self.state == ExecutionState.ASYMMETRIC

    @property
    def elapsed_ms(self) -> float:
        return (self.finished_at - self.started_at) * 1000

    @property
    def order_ids(self) -> list[str]:
        return [f.order_id for f in (self.buy_fill, self.sell_fill) if f is not None and f.order_id]

    @property
    def filled_notional(self) -> float:
        return sum(
            f.fill_price * f.fill_quantity
            for f in (self.buy_fill, self.sell_fill)
            if f is not None and f.filled
        )


class ExecutionCoordinator:
    """
    The only writer of positions. One execute() call at a time per
    opportunity; the two legs inside it are the only concurrent work.
    """

    def __init__(
        self,
        connectors: dict[str, MarketConnector],
        breaker: CircuitBreaker,
        positions: PositionBook,
        alert_sink: AlertSink,
        fee_models: dict[str, FeeModel],
        pnl: PnLTracker | None = None,
        max_slippage: float = 0.01,
        order_timeout_sec: float = 5.0,
        min_profit_pct: float = 0.03,
        book_fetch_retries: int = 3,
        book_fetch_backoff_sec: float = 0.25,
    ) -> None:
        self._connectors = connectors
        self._breaker = breaker
        self._positions = positions
        self._alert_sink = alert_sink
        self._fee_models = fee_models
        self._pnl = pnl
        self._max_slippage = max_slippage
        self._order_timeout_sec = order_timeout_sec
        self._min_profit_pct = min_profit_pct
        self._book_fetch_retries = book_fetch_retries
        self._book_fetch_backoff_sec = book_fetch_backoff_sec

    @classmethod
    def from_config(
        cls,
        cfg: Config,
        connectors: dict[str, MarketConnector],
        breaker: CircuitBreaker,
        positions: PositionBook,
        alert_sink: AlertSink,
        fee_models: dict[str, FeeModel],
        pnl: PnLTracker | None = None,
    ) -> ExecutionCoordinator:
        return cls(
            connectors, breaker, positions, alert_sink, fee_models, pnl=pnl,
            max_slippage=cfg.max_slippage,
            order_timeout_sec=cfg.order_timeout_sec,
            min_profit_pct=cfg.min_profit_pct,
            book_fetch_retries=cfg.book_fetch_retries,
            book_fetch_backoff_sec=cfg.book_fetch_backoff_sec,
        )

    def execute(
        self,
        opportunity: ArbitrageOpportunity,
        quantity: float,
        books: dict[str, OrderBookSnapshot] | None = None,
    ) -> ExecutionReport:
        """
        Execute one opportunity. `books` (keyed by venue) skips the pre-flight
        re-fetch when the caller already holds fresh snapshots.
        """
        if quantity <= 0:
            raise ValueError(f"Execution quantity must be positive: {quantity}")
        started = time.time()
        state = ExecutionState.PENDING
        mapping_id = opportunity.mapping.mapping_id

        try:
            self._breaker.guard()
        except CircuitBreakerTripped as e:
            logger.warning("Execution of %s refused: %s", mapping_id, e)
            return self._report(
                transition_to(state, ExecutionState.ABORTED), opportunity, quantity,
                started, reason="circuit breaker paused",
            )

        if not opportunity.mapping.is_tradeable:
            logger.warning(
                "Execution of %s refused: mapping not tradeable (active=%s tier=%s pairs=%d)",
                mapping_id, opportunity.mapping.active, opportunity.mapping.tier.value,
                len(opportunity.mapping.outcome_correspondence),
            )
            return self._report(
                transition_to(state, ExecutionState.ABORTED), opportunity, quantity,
                started, reason="mapping not tradeable",
            )

        buy_conn = self._connector(opportunity.buy_venue)
        sell_conn = self._connector(opportunity.sell_venue)

        try:
            buy_limit, sell_limit = self._preflight(opportunity, quantity, books or {})
        except (PreflightFailed, TransientConnectorError) as e:
            logger.warning("Pre-flight aborted %s: %s", mapping_id, e)
            return self._abort_preflight(opportunity, quantity, started, str(e))
        except Exception as e:
            logger.error("Pre-flight for %s failed: %s", mapping_id, e, exc_info=True)
            return self._abort_preflight(opportunity, quantity, started, f"pre-flight error: {e}")

        buy_order, sell_order = self._leg_orders(opportunity, quantity, buy_limit, sell_limit)
        buy_fill, sell_fill = self._place_legs(buy_conn, buy_order, sell_conn, sell_order)

        buy_state = transition_leg(LegState.PENDING, self._leg_state(buy_fill, quantity))
        sell_state = transition_leg(LegState.PENDING, self._leg_state(sell_fill, quantity))
        state = transition_to(state, outcome_for_legs(buy_state, sell_state))

        if state == ExecutionState.BOTH_FILLED:
            return self._on_both_filled(opportunity, quantity, buy_order, sell_order, buy_fill, sell_fill, started)
        if state == ExecutionState.BOTH_REJECTED:
            logger.info(
                "Both legs rejected for %s (buy: %s, sell: %s); nothing opened",
                mapping_id, buy_fill.error or "no fill", sell_fill.error or "no fill",
            )
            report = self._report(
                state, opportunity, quantity, started,
                buy_fill=buy_fill, sell_fill=sell_fill, reason="both legs rejected",
            )
            self._record_ledger(report)
            return report
        return self._on_asymmetric(
            opportunity, quantity,
            [(buy_order, buy_fill, buy_state), (sell_order, sell_fill, sell_state)],
            started,
        )

    def _abort_preflight(
        self,
        opportunity: ArbitrageOpportunity,
        quantity: float,
        started: float,
        reason: str,
    ) -> ExecutionReport:
        report = self._report(
            transition_to(ExecutionState.PENDING, ExecutionState.ABORTED), opportunity, quantity,
            started, reason=reason,
        )
        self._breaker.record_failure(f"pre-flight: {reason}")
        return report

    def _connector(self, venue: str) -> MarketConnector:
        conn = self._connectors.get(venue)
        if conn is None:
            raise ValueError(f"No connector for venue '{venue}'")
        return conn

    def _fresh_book(self, venue: str, question_id: str, books: dict[str, OrderBookSnapshot]) -> OrderBookSnapshot:
        book = books.get(venue)
        if book is None or book.question_id != question_id:
            book = fetch_book_with_retry(
                self._connector(venue), question_id,
                retries=self._book_fetch_retries, backoff_sec=self._book_fetch_backoff_sec,
            )
        try:
            return validate_book(book).normalized()
        except ValueError as e:
            raise PreflightFailed(str(e)) from e

    def _preflight(
        self,
        opp: ArbitrageOpportunity,
        quantity: float,
        books: dict[str, OrderBookSnapshot],
    ) -> tuple[float, float]:
        """
        Re-price with worst-case slippage on both legs.
        Returns (buy limit, sell limit) for the FOK orders.

        Raises:
            PreflightFailed: if the edge or depth is gone
            TransientConnectorError: if a book cannot be fetched
        """
        buy_book = self._fresh_book(opp.buy_venue, opp.buy_question_id, books)
        sell_book = self._fresh_book(opp.sell_venue, opp.sell_question_id, books)

        if buy_book.ask_price is None:
            raise PreflightFailed(f"No ask on {opp.buy_venue}:{opp.buy_question_id}")
        if sell_book.bid_price is None:
            raise PreflightFailed(f"No bid on {opp.sell_venue}:{opp.sell_question_id}")
        if buy_book.ask_size + _QTY_EPS < quantity:
            raise PreflightFailed(f"Ask depth {buy_book.ask_size:.1f} < {quantity:.1f}")
        if sell_book.bid_size + _QTY_EPS < quantity:
            raise PreflightFailed(f"Bid depth {sell_book.bid_size:.1f} < {quantity:.1f}")

        buy_limit = min(1.0, buy_book.ask_price + self._max_slippage)
        sell_limit = max(0.0, sell_book.bid_price - self._max_slippage)
        gross = sell_limit - buy_limit
        fees = leg_fees(self._fee_models, opp.buy_venue, buy_limit, opp.sell_venue, sell_limit)
        net = gross - fees
        if buy_limit <= 0 or net / buy_limit <= self._min_profit_pct:
            raise PreflightFailed(
                f"Edge gone: worst-case buy {buy_limit:.4f} sell {sell_limit:.4f} "
                f"net {net:.4f} (threshold {self._min_profit_pct:.2%})"
            )
        return buy_limit, sell_limit

    @staticmethod
    def _leg_orders(
        opp: ArbitrageOpportunity,
        quantity: float,
        buy_limit: float,
        sell_limit: float,
    ) -> tuple[LegOrder, LegOrder]:
        mapping = opp.mapping
        pair = mapping.outcome_correspondence[0]

        def outcome_for(question_id: str) -> str:
            return pair.outcome_a if question_id == mapping.id_a else pair.outcome_b

        buy = LegOrder(opp.buy_venue, opp.buy_question_id, Side.BUY, buy_limit, quantity,
                       outcome=outcome_for(opp.buy_question_id))
        sell = LegOrder(opp.sell_venue, opp.sell_question_id, Side.SELL, sell_limit, quantity,
                        outcome=outcome_for(opp.sell_question_id))
        return buy, sell

    def _place_legs(
        self,
        buy_conn: MarketConnector,
        buy_order: LegOrder,
        sell_conn: MarketConnector,
        sell_order: LegOrder,
    ) -> tuple[FillResult, FillResult]:
        """Submit both FOK orders at once and wait for each with its own deadline."""
        timeout = self._order_timeout_sec
        pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="fok-leg")
        try:
            submitted = time.time()
            buy_future = pool.submit(buy_conn.place_fok_order, buy_order, timeout)
            sell_future = pool.submit(sell_conn.place_fok_order, sell_order, timeout)
            buy_fill = self._await_leg(buy_future, buy_order, submitted + timeout)
            sell_fill = self._await_leg(sell_future, sell_order, submitted + timeout)
        finally:
            # A hung leg must not block the loop; its thread is abandoned
            pool.shutdown(wait=False, cancel_futures=True)
        return buy_fill, sell_fill

    @staticmethod
    def _await_leg(future: Future, order: LegOrder, deadline: float) -> FillResult:
        try:
            return future.result(timeout=max(0.0, deadline - time.time()))
        except FutureTimeout:
            logger.error(
                "%s %s leg on %s timed out; treating as rejected",
                order.side.value, order.question_id, order.venue,
            )
            return FillResult(order_id="", filled=False, error="timeout")
        except Exception as e:
            logger.error(
                "%s %s leg on %s failed: %s", order.side.value, order.question_id, order.venue, e,
            )
            return FillResult(order_id="", filled=False, error=str(e))

    @staticmethod
    def _leg_state(fill: FillResult, quantity: float) -> LegState:
        if fill.filled and fill.fill_quantity + _QTY_EPS >= quantity:
            return LegState.FILLED
        if fill.fill_quantity > _QTY_EPS:
            # Broken FOK contract: some contracts changed hands
            logger.error(
                "Leg %s reported fill of %.4f against %.4f ordered",
                fill.order_id or "?", fill.fill_quantity, quantity,
            )
            return LegState.PARTIAL
        return LegState.REJECTED

    def _on_both_filled(
        self,
        opp: ArbitrageOpportunity,
        quantity: float,
        buy_order: LegOrder,
        sell_order: LegOrder,
        buy_fill: FillResult,
        sell_fill: FillResult,
        started: float,
    ) -> ExecutionReport:
        reported_fees = buy_fill.fees + sell_fill.fees
        if reported_fees > 0:
            fees = reported_fees
        else:
            fees = leg_fees(
                self._fee_models, opp.buy_venue, buy_fill.fill_price, opp.sell_venue, sell_fill.fill_price,
            ) * quantity
        realized = (sell_fill.fill_price - buy_fill.fill_price) * quantity - fees
        slippage = ((buy_fill.fill_price - opp.buy_price) + (opp.sell_price - sell_fill.fill_price)) * quantity

        mapping_id = opp.mapping.mapping_id
        self._positions.open(Position(
            venue=buy_order.venue, question_id=buy_order.question_id, outcome=buy_order.outcome,
            side=Side.BUY, quantity=quantity, avg_entry_price=buy_fill.fill_price, mapping_id=mapping_id,
        ))
        self._positions.open(Position(
            venue=sell_order.venue, question_id=sell_order.question_id, outcome=sell_order.outcome,
            side=Side.SELL, quantity=quantity, avg_entry_price=sell_fill.fill_price, mapping_id=mapping_id,
        ))

        report = self._report(
            ExecutionState.BOTH_FILLED, opp, quantity, started,
            buy_fill=buy_fill, sell_fill=sell_fill,
            fees=fees, realized_pnl=realized, slippage=slippage,
        )
        logger.info(
            "Execution filled %s: x%.1f buy %s@%.4f sell %s@%.4f fees=$%.4f pnl=$%.4f slippage=$%.4f (%.0fms)",
            mapping_id, quantity, opp.buy_venue, buy_fill.fill_price, opp.sell_venue,
            sell_fill.fill_price, fees, realized, slippage, report.elapsed_ms,
            extra={"mapping_id": mapping_id, "state": report.state.value, "quantity": quantity, "pnl": realized},
        )
        self._record_ledger(report)
        self._breaker.record_success()
        return report

    def _on_asymmetric(
        self,
        opp: ArbitrageOpportunity,
        quantity: float,
        legs: list[tuple[LegOrder, FillResult, LegState]],
        started: float,
    ) -> ExecutionReport:
        """
        One leg filled and the other did not, or a venue reported a partial
        fill. Every leg that moved contracts is recorded as unhedged.
        """
        mapping_id = opp.mapping.mapping_id
        exposed = [(order, fill) for order, fill, leg in legs if leg != LegState.REJECTED]
        for order, fill in exposed:
            self._positions.open(Position(
                venue=order.venue, question_id=order.question_id, outcome=order.outcome,
                side=order.side, quantity=fill.fill_quantity, avg_entry_price=fill.fill_price,
                mapping_id=mapping_id, hedged=False,
            ))

        parts = []
        for order, fill, leg in legs:
            where = f"{order.side.value} {order.question_id} on {order.venue}"
            if leg == LegState.REJECTED:
                parts.append(f"{where} did not fill")
            elif leg == LegState.PARTIAL:
                parts.append(f"{where} filled x{fill.fill_quantity:.1f} of {quantity:.1f} @ {fill.fill_price:.4f}")
            else:
                parts.append(f"{where} filled x{fill.fill_quantity:.1f} @ {fill.fill_price:.4f}")
        detail = f"{mapping_id}: " + ", ".join(parts)

        (_, buy_fill, _), (_, sell_fill, _) = legs
        report = self._report(
            ExecutionState.ASYMMETRIC, opp, quantity, started,
            buy_fill=buy_fill, sell_fill=sell_fill, reason=detail,
        )
        order, fill = exposed[0]
        missing = [o.venue for o, _, leg in legs if leg != LegState.FILLED]
        logger.critical(
            "ASYMMETRIC EXECUTION %s", detail,
            extra={"mapping_id": mapping_id, "venue": order.venue, "state": report.state.value,
                   "quantity": fill.fill_quantity},
        )
        self._record_ledger(report)
        self._breaker.record_asymmetric(detail)
        self._alert_sink.send_critical(AlertEvent(
            kind="asymmetric_execution",
            message=f"Unhedged position on {order.venue} for {mapping_id}",
            details={
                "venue": order.venue,
                "question_id": order.question_id,
                "side": order.side.value,
                "quantity": fill.fill_quantity,
                "price": fill.fill_price,
                "missing_venue": ",".join(missing),
                "unhedged_legs": len(exposed),
            },
        ))
        return report

    def _record_ledger(self, report: ExecutionReport) -> None:
        if self._pnl is not None:
            self._pnl.record(report)

    @staticmethod
    def _report(
        state: ExecutionState,
        opp: ArbitrageOpportunity,
        quantity: float,
        started: float,
        **kwargs,
    ) -> ExecutionReport:
        return ExecutionReport(
            state=state, opportunity=opp, quantity=quantity,
            started_at=started, finished_at=time.time(), **kwargs,
        )
