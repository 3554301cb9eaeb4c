#!/usr/bin/env python3
"""
Cross-venue arbitrage bot -- single entry point.

Pipeline per cycle:
  1. Load active mappings
  2. Fetch both books per mapping
  3. Detect fee-adjusted spreads
  4. Risk-gate and execute two-leg FOK trades
  5. Track P&L, pause on failures

Usage:
  python run.py --venue-data venues.json --build-mappings     # match questions, store mappings
  python run.py --venue-data venues.json --dry-run --once     # detect + gate, no orders
  python run.py --venue-data venues.json --paper              # simulated fills
  python run.py --add-mapping <id_a> <id_b> "description"     # operator-asserted mapping
  python run.py --deactivate <mapping_id>
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading

from config import Config, load_config
from client.paper import load_paper_venues
from client.platform import MarketConnector
from monitor.alerts import WebhookAlertSink
from monitor.logger import setup_logging
from monitor.server import start_server
from pipeline.context import TradingContext
from pipeline.cycle import build_and_store_mappings, run_loop
from scanner.matching import manual_mapping
from state.mapping_store import open_mapping_store

logger = logging.getLogger(__name__)


_BANNER = """
======================================================================
  Cross-venue Arbitrage Bot v0.1
======================================================================
"""


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Cross-venue prediction market arbitrage bot")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--dry-run", action="store_true", help="Detect and risk-gate only, never place orders")
    mode.add_argument("--paper", action="store_true", help="Simulated fills against paper venues")
    mode.add_argument("--live", action="store_true", help="Live trading")
    parser.add_argument("--venue-data", type=str, default=None, help="Paper venue JSON (questions + books)")
    parser.add_argument("--build-mappings", action="store_true", help="Match questions across venues and store mappings")
    parser.add_argument("--add-mapping", nargs="+", metavar=("ID_A", "ID_B"), default=None,
                        help="Store a manual mapping: ID_A ID_B [description]")
    parser.add_argument("--deactivate", type=str, default=None, metavar="MAPPING_ID", help="Deactivate a mapping")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    parser.add_argument("--cycles", type=int, default=0, help="Stop after N cycles (0 = run until signalled)")
    parser.add_argument("--json-log", type=str, default=None, help="Path to JSON log file")
    parser.add_argument("--api", action="store_true", help="Start the operator API (overrides OPERATOR_API_ENABLED)")
    return parser.parse_args(argv)


def _apply_mode(args: argparse.Namespace, cfg: Config) -> Config:
    if args.dry_run:
        return cfg.model_copy(update={"trading_mode": "dry_run"})
    if args.paper:
        return cfg.model_copy(update={"trading_mode": "paper"})
    if args.live:
        return cfg.model_copy(update={"trading_mode": "live"})
    return cfg


def _mode_label(cfg: Config) -> str:
    if cfg.trading_mode == "dry_run":
        return "DRY-RUN (detect + risk gate, no orders)"
    if cfg.trading_mode == "paper":
        return "PAPER TRADING (simulated fills, no real orders)"
    return "LIVE TRADING"


def build_connectors(args: argparse.Namespace, cfg: Config) -> dict[str, MarketConnector]:
    """
    Paper venues come from --venue-data. Live venue adapters are registered
    by deployment code; none ship with this repository.
    """
    if cfg.trading_mode == "live":
        raise SystemExit("Live mode needs venue connectors for "
                         f"'{cfg.venue_a}' and '{cfg.venue_b}'; none are registered.")
    if not args.venue_data:
        raise SystemExit("--venue-data is required in dry-run and paper modes")
    return load_paper_venues(args.venue_data, price_units=cfg.price_units)


def print_startup(cfg: Config) -> None:
    logger.info("=" * 70)
    logger.info("  %-30s %s", "Mode:", _mode_label(cfg))
    logger.info("  %-30s %s / %s", "Venues:", cfg.venue_a, cfg.venue_b)
    logger.info("  %-30s auto >= %.2f, review >= %.2f", "Match tiers:", cfg.match_auto_threshold, cfg.match_review_threshold)
    logger.info("  %-30s %.1f%%", "Min profit:", cfg.min_profit_pct * 100)
    logger.info("  %-30s $%.0f total / $%.0f per event", "Exposure caps:", cfg.max_total_exposure, cfg.max_event_exposure)
    logger.info("  %-30s $%.0f", "Max daily loss:", cfg.max_daily_loss)
    logger.info("  %-30s %s (%s)", "Mapping store:", cfg.mapping_store_path, cfg.mapping_store_backend)
    logger.info("=" * 70)


def _print_pnl_summary(ctx: TradingContext) -> None:
    s = ctx.pnl.summary()
    breaker = ctx.breaker.state()
    logger.info("=" * 70)
    logger.info("  SESSION SUMMARY")
    logger.info("=" * 70)
    logger.info("  %-30s %d", "Filled trades:", s["total_trades"])
    logger.info("  %-30s %d", "Asymmetric executions:", s["asymmetric_trades"])
    logger.info("  %-30s $%.2f", "Net P&L:", s["total_pnl"])
    logger.info("  %-30s $%.2f", "Today:", s["daily_pnl"])
    logger.info("  %-30s $%.2f", "Open exposure:", ctx.positions.total_exposure())
    logger.info("  %-30s %s", "Breaker:", f"PAUSED ({breaker.reason})" if breaker.paused else "running")
    logger.info("=" * 70)


def _mapping_admin(args: argparse.Namespace, cfg: Config) -> int:
    store = open_mapping_store(cfg.mapping_store_backend, cfg.mapping_store_path)
    if args.add_mapping:
        if len(args.add_mapping) < 2:
            logger.error("--add-mapping needs ID_A ID_B [description]")
            return 2
        id_a, id_b = args.add_mapping[0], args.add_mapping[1]
        description = " ".join(args.add_mapping[2:])
        mapping = manual_mapping(id_a, id_b, description=description)
        store.save(mapping)
        logger.info("Manual mapping stored: %s", mapping.mapping_id)
    if args.deactivate:
        if store.deactivate(args.deactivate):
            logger.info("Mapping deactivated: %s", args.deactivate)
        else:
            logger.warning("No active mapping %s", args.deactivate)
            return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    cfg = _apply_mode(args, load_config())

    log_file_path = setup_logging(cfg.log_level, json_log_file=args.json_log, mode=cfg.trading_mode)
    logger.info(_BANNER.rstrip())
    logger.info("  Log file: %s", log_file_path)
    print_startup(cfg)

    if args.add_mapping or args.deactivate:
        return _mapping_admin(args, cfg)

    ctx = TradingContext.from_config(cfg, build_connectors(args, cfg))

    if args.build_mappings:
        report = build_and_store_mappings(ctx)
        if not (args.dry_run or args.paper or args.live):
            return 0 if report.mappings else 1

    if args.api or cfg.operator_api_enabled:
        start_server(ctx, host=cfg.operator_api_host, port=cfg.operator_api_port)

    stop_event = threading.Event()

    def handle_signal(signum, frame):
        logger.info("Signal %d received, stopping after the current cycle...", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    max_cycles = 1 if args.once else (args.cycles or None)
    run_loop(ctx, max_cycles=max_cycles, stop_event=stop_event)
    if isinstance(ctx.alert_sink, WebhookAlertSink):
        ctx.alert_sink.flush()
    _print_pnl_summary(ctx)
    return 0


if __name__ == "__main__":
    sys.exit(main())
