"""
Coordinating loop.

One cycle, strictly in order:
  1. refresh active mappings from the store
  2. fetch both books per mapping (bounded retries, skip on exhaustion)
  3. detect opportunities
  4. risk-gate each one against the current position view
  5. execute approved ones, one at a time

The next cycle starts only after every execution of the previous one has
resolved.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass

from client.platform import TransientConnectorError, fetch_book_with_retry
from executor.fill_state import ExecutionState
from pipeline.context import TradingContext
from scanner.cross_platform import BookKey, scan_mappings
from scanner.matching import MappingReport
from scanner.models import EventMapping, MatchMethod, OrderBookSnapshot

logger = logging.getLogger(__name__)


@dataclass
class CycleStats:
    cycle: int
    mappings: int = 0
    skipped: int = 0
    opportunities: int = 0
    approved: int = 0
    risk_rejected: int = 0
    filled: int = 0
    both_rejected: int = 0
    asymmetric: int = 0
    aborted: int = 0
    elapsed_sec: float = 0.0


def fetch_books(
    ctx: TradingContext,
    mappings: list[EventMapping],
    stats: CycleStats | None = None,
) -> dict[BookKey, OrderBookSnapshot]:
    """
    Fetch both books for every mapping, keyed by (venue, question id). A
    mapping whose book cannot be fetched is skipped for this cycle.
    """
    cfg = ctx.config
    books: dict[BookKey, OrderBookSnapshot] = {}
    failed: set[BookKey] = set()
    units = cfg.price_units
    connectivity_lost = False

    for mapping in mappings:
        keys = ((cfg.venue_a, mapping.id_a), (cfg.venue_b, mapping.id_b))
        for key in keys:
            venue, question_id = key
            if key in books or key in failed:
                continue
            try:
                book = fetch_book_with_retry(
                    ctx.connectors[venue], question_id,
                    retries=cfg.book_fetch_retries, backoff_sec=cfg.book_fetch_backoff_sec,
                )
            except TransientConnectorError as e:
                failed.add(key)
                connectivity_lost = True
                logger.warning("Skipping %s this cycle: %s", mapping.mapping_id, e)
                ctx.breaker.record_connectivity_loss(venue, str(e))
                continue
            except Exception as e:
                failed.add(key)
                logger.error("Book fetch for %s on %s failed: %s", question_id, venue, e)
                continue

            if book.price_unit != units[venue]:
                failed.add(key)
                logger.error(
                    "Book for %s on %s quoted in %s, configured unit is %s; skipping",
                    question_id, venue, book.price_unit, units[venue],
                )
                continue
            books[key] = book

        if stats is not None and any(k in failed for k in keys):
            stats.skipped += 1

    if not connectivity_lost:
        ctx.breaker.record_connectivity_ok()
    return books


def run_cycle(ctx: TradingContext, cycle: int = 1) -> CycleStats:
    start = time.time()
    stats = CycleStats(cycle=cycle)

    mappings = [m for m in ctx.store.load_active() if m.is_tradeable]
    stats.mappings = len(mappings)
    if not mappings:
        logger.info("Cycle %d: no tradeable mappings", cycle)
        stats.elapsed_sec = time.time() - start
        return stats

    books = fetch_books(ctx, mappings, stats)
    opportunities = scan_mappings(
        mappings, books, ctx.config.venue_a, ctx.config.venue_b, ctx.fee_models, ctx.detector,
    )
    stats.opportunities = len(opportunities)

    ctx.breaker.record_daily_loss(ctx.pnl.daily_pnl())

    for opp in opportunities:
        decision = ctx.risk_gate.check(opp, ctx.positions, ctx.pnl.daily_pnl())
        if not decision.approved:
            stats.risk_rejected += 1
            continue
        stats.approved += 1

        if ctx.mode == "dry_run":
            logger.info(
                "[DRY RUN] Would execute %s x%.1f: buy %s@%.4f sell %s@%.4f net=%.4f/contract",
                opp.mapping.mapping_id, decision.suggested_quantity,
                opp.buy_venue, opp.buy_price, opp.sell_venue, opp.sell_price, opp.net_profit,
            )
            continue

        if ctx.breaker.is_paused():
            logger.warning("Trading paused (%s); skipping remaining opportunities", ctx.breaker.state().reason)
            break

        report = ctx.coordinator.execute(opp, decision.suggested_quantity)
        if report.state == ExecutionState.BOTH_FILLED:
            stats.filled += 1
        elif report.state == ExecutionState.BOTH_REJECTED:
            stats.both_rejected += 1
        elif report.state == ExecutionState.ASYMMETRIC:
            stats.asymmetric += 1
        else:
            stats.aborted += 1

        ctx.breaker.record_daily_loss(ctx.pnl.daily_pnl())

    stats.elapsed_sec = time.time() - start
    logger.info(
        "Cycle %d: %d mappings (%d skipped), %d opps, %d approved, %d filled, "
        "%d rejected, %d asymmetric, %d aborted in %.2fs",
        cycle, stats.mappings, stats.skipped, stats.opportunities, stats.approved,
        stats.filled, stats.both_rejected, stats.asymmetric, stats.aborted, stats.elapsed_sec,
    )
    return stats


def run_loop(
    ctx: TradingContext,
    max_cycles: int | None = None,
    stop_event: threading.Event | None = None,
) -> list[CycleStats]:
    """Run cycles until `max_cycles` or `stop_event` is set."""
    stop_event = stop_event or threading.Event()
    interval = ctx.config.scan_interval_sec
    history: list[CycleStats] = []
    cycle = 0

    while not stop_event.is_set():
        cycle += 1
        try:
            history.append(run_cycle(ctx, cycle))
        except Exception as e:
            logger.error("Cycle %d failed: %s", cycle, e, exc_info=True)
            ctx.breaker.record_failure(f"cycle error: {e}")
            history.append(CycleStats(cycle=cycle))

        if max_cycles is not None and cycle >= max_cycles:
            break

        elapsed = history[-1].elapsed_sec
        stop_event.wait(max(0.0, interval - elapsed))

    logger.info("Loop stopped after %d cycle(s). P&L: %s", cycle, ctx.pnl.summary())
    return history


def build_and_store_mappings(ctx: TradingContext) -> MappingReport:
    """Fetch questions from both venues, match them, persist auto and review mappings."""
    questions_a = ctx.connector_a.fetch_questions()
    questions_b = ctx.connector_b.fetch_questions()
    logger.info("Matching %d %s questions against %d %s questions",
                len(questions_a), ctx.config.venue_a, len(questions_b), ctx.config.venue_b)

    report = ctx.classifier.build_mappings(questions_a, questions_b)
    # Operator-asserted pairs are never superseded by a scored match
    manual = {m.id_a for m in ctx.store.load_active() if m.method == MatchMethod.MANUAL}
    for mapping in report.mappings:
        if mapping.id_a in manual and mapping.method != MatchMethod.MANUAL:
            logger.info("Keeping manual mapping for %s; scored match %s not stored", mapping.id_a, mapping.mapping_id)
            continue
        ctx.store.save(mapping)

    logger.info(
        "Stored %d mappings (%d auto, %d held for review); %d questions unmatched",
        len(report.mappings), len(report.auto), len(report.review), report.rejected,
    )
    return report
