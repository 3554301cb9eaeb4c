"""
Cross-venue arbitrage detector.

Detects when the same question is priced differently on two venues: buy the
outcome where it is cheap (ask on one venue), sell it where it is rich (bid on
the other). Both directions are checked; at most one opportunity is emitted per
mapping per cycle so the same capital is never counted twice.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from config import Config
from scanner.fees import FeeModel, leg_fees
from scanner.models import ArbitrageOpportunity, EventMapping, OrderBookSnapshot
from scanner.validation import validate_book

logger = logging.getLogger(__name__)

# (venue, question id)
BookKey = tuple[str, str]


@dataclass(frozen=True)
class DetectorSettings:
    min_profit_pct: float = 0.03
    max_quantity_per_trade: float = 100.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.min_profit_pct <= 1.0:
            raise ValueError(f"min_profit_pct out of range [0, 1]: {self.min_profit_pct}")
        if self.max_quantity_per_trade <= 0:
            raise ValueError(f"max_quantity_per_trade must be positive: {self.max_quantity_per_trade}")

    @classmethod
    def from_config(cls, cfg: Config) -> DetectorSettings:
        return cls(min_profit_pct=cfg.min_profit_pct, max_quantity_per_trade=cfg.max_quantity_per_trade)


def _check_direction(
    mapping: EventMapping,
    buy_book: OrderBookSnapshot,
    sell_book: OrderBookSnapshot,
    fee_models: dict[str, FeeModel],
    settings: DetectorSettings,
    now: float,
) -> ArbitrageOpportunity | None:
    """One direction: buy at buy_book's ask, sell at sell_book's bid."""
    if buy_book.ask_price is None or sell_book.bid_price is None:
        return None
    buy_price = buy_book.ask_price
    sell_price = sell_book.bid_price
    if buy_price <= 0:
        return None

    gross_spread = sell_price - buy_price
    if gross_spread <= 0:
        return None

    fees = leg_fees(fee_models, buy_book.venue, buy_price, sell_book.venue, sell_price)
    net_profit = gross_spread - fees
    if net_profit / buy_price <= settings.min_profit_pct:
        logger.debug(
            "Spread below threshold %s: buy %s@%.4f sell %s@%.4f gross=%.4f fees=%.4f",
            mapping.mapping_id, buy_book.venue, buy_price, sell_book.venue, sell_price,
            gross_spread, fees,
        )
        return None

    max_quantity = min(buy_book.ask_size, sell_book.bid_size, settings.max_quantity_per_trade)
    if max_quantity <= 0:
        return None

    return ArbitrageOpportunity(
        mapping=mapping,
        buy_venue=buy_book.venue,
        sell_venue=sell_book.venue,
        buy_question_id=buy_book.question_id,
        sell_question_id=sell_book.question_id,
        buy_price=buy_price,
        sell_price=sell_price,
        max_quantity=max_quantity,
        gross_spread=gross_spread,
        estimated_fees=fees,
        net_profit=net_profit,
        detected_at=now,
    )


def detect_opportunity(
    book_a: OrderBookSnapshot,
    book_b: OrderBookSnapshot,
    mapping: EventMapping,
    fee_models: dict[str, FeeModel],
    settings: DetectorSettings | None = None,
    now: float | None = None,
) -> ArbitrageOpportunity | None:
    """
    Return the better of the two directions, or None.

    Books are validated in their native unit and normalized to [0, 1] first.
    Mappings that are inactive, not auto tier, or lack a valid outcome
    correspondence never produce an opportunity.
    """
    settings = settings or DetectorSettings()
    now = time.time() if now is None else now

    if not mapping.is_tradeable:
        logger.debug("Skipping non-tradeable mapping %s", mapping.mapping_id)
        return None

    a = validate_book(book_a).normalized()
    b = validate_book(book_b).normalized()

    a_to_b = _check_direction(mapping, a, b, fee_models, settings, now)
    b_to_a = _check_direction(mapping, b, a, fee_models, settings, now)

    if a_to_b is None:
        best = b_to_a
    elif b_to_a is None:
        best = a_to_b
    else:
        best = b_to_a if b_to_a.net_profit > a_to_b.net_profit else a_to_b

    if best is not None:
        logger.info(
            "CROSS-VENUE ARB: %s | buy %s@%.4f sell %s@%.4f | gross=%.4f fees=%.4f net=%.4f (%.2f%%) qty=%.1f",
            mapping.mapping_id, best.buy_venue, best.buy_price, best.sell_venue, best.sell_price,
            best.gross_spread, best.estimated_fees, best.net_profit,
            best.net_profit_pct * 100, best.max_quantity,
        )
    return best


def scan_mappings(
    mappings: list[EventMapping],
    books: dict[BookKey, OrderBookSnapshot],
    venue_a: str,
    venue_b: str,
    fee_models: dict[str, FeeModel],
    settings: DetectorSettings | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> list[ArbitrageOpportunity]:
    """
    Detect across many mappings. `books` is keyed by (venue, question id) so
    the two venues may share question id strings.

    Returns at most one opportunity per mapping, sorted by net profit descending.
    """
    opportunities: list[ArbitrageOpportunity] = []
    for mapping in mappings:
        if should_stop and should_stop():
            break
        book_a = books.get((venue_a, mapping.id_a))
        book_b = books.get((venue_b, mapping.id_b))
        if book_a is None or book_b is None:
            continue
        try:
            opp = detect_opportunity(book_a, book_b, mapping, fee_models, settings)
        except ValueError as e:
            logger.warning("Skipping %s: invalid book data: %s", mapping.mapping_id, e)
            continue
        if opp is not None:
            opportunities.append(opp)

    opportunities.sort(key=lambda o: o.net_profit, reverse=True)
    return opportunities
