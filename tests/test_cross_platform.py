"""
Unit tests for scanner/cross_platform.py -- cross-venue opportunity detection.
"""

import math
from dataclasses import replace

import pytest

from scanner.cross_platform import DetectorSettings, detect_opportunity, scan_mappings
from scanner.fees import NoFeeModel, PercentTakerFeeModel, ProfitShareFeeModel
from scanner.matching import manual_mapping
from scanner.models import EventMapping, MatchTier, OrderBookSnapshot

_FEES = {
    "polymarket": PercentTakerFeeModel("polymarket", 0.0),
    "kalshi": ProfitShareFeeModel("kalshi", 0.07, 0.0175),
}
_NO_FEES = {"polymarket": NoFeeModel("polymarket"), "kalshi": NoFeeModel("kalshi")}


def _make_mapping(id_a: str = "pm1", id_b: str = "K1", tier: MatchTier = MatchTier.AUTO,
                  active: bool = True) -> EventMapping:
    m = manual_mapping(id_a, id_b, description="test pair")
    return replace(m, tier=tier, active=active)


def _make_book(venue: str, qid: str, bid: float | None, ask: float | None,
               bid_size: float = 200.0, ask_size: float = 200.0,
               unit: str = "probability") -> OrderBookSnapshot:
    return OrderBookSnapshot(
        venue=venue,
        question_id=qid,
        bid_price=bid,
        bid_size=bid_size,
        ask_price=ask,
        ask_size=ask_size,
        fetched_at=1000.0,
        price_unit=unit,
    )


class TestDetectOpportunity:
    def test_buy_a_sell_b_with_cents_venue(self):
        book_a = _make_book("polymarket", "pm1", bid=0.35, ask=0.40)
        book_b = _make_book("kalshi", "K1", bid=50, ask=60, bid_size=150, unit="cents")
        opp = detect_opportunity(book_a, book_b, _make_mapping(), _FEES, now=1000.0)

        assert opp is not None
        assert opp.buy_venue == "polymarket"
        assert opp.sell_venue == "kalshi"
        assert opp.buy_price == pytest.approx(0.40)
        assert opp.sell_price == pytest.approx(0.50)
        assert opp.gross_spread == pytest.approx(0.10)
        assert opp.estimated_fees == pytest.approx(0.007)
        assert opp.net_profit == pytest.approx(0.093)
        assert opp.max_quantity == 100.0  # capped by max_quantity_per_trade
        assert opp.detected_at == 1000.0

    def test_reverse_direction(self):
        book_a = _make_book("polymarket", "pm1", bid=0.62, ask=0.65)
        book_b = _make_book("kalshi", "K1", bid=0.48, ask=0.52)
        opp = detect_opportunity(book_a, book_b, _make_mapping(), _NO_FEES)
        assert opp.buy_venue == "kalshi"
        assert opp.buy_question_id == "K1"
        assert opp.sell_question_id == "pm1"
        assert opp.net_profit == pytest.approx(0.10)

    def test_no_spread(self):
        book_a = _make_book("polymarket", "pm1", bid=0.49, ask=0.51)
        book_b = _make_book("kalshi", "K1", bid=0.49, ask=0.51)
        assert detect_opportunity(book_a, book_b, _make_mapping(), _NO_FEES) is None

    def test_fees_eat_spread(self):
        book_a = _make_book("polymarket", "pm1", bid=0.40, ask=0.50)
        book_b = _make_book("kalshi", "K1", bid=0.51, ask=0.60)
        fees = {"polymarket": PercentTakerFeeModel("polymarket", 0.05), "kalshi": NoFeeModel("kalshi")}
        assert detect_opportunity(book_a, book_b, _make_mapping(), fees) is None

    def test_threshold_is_strict(self):
        # net / buy = 0.10 / 0.40 = 0.25, not strictly above 0.25
        book_a = _make_book("polymarket", "pm1", bid=0.30, ask=0.40)
        book_b = _make_book("kalshi", "K1", bid=0.50, ask=0.60)
        settings = DetectorSettings(min_profit_pct=0.25)
        assert detect_opportunity(book_a, book_b, _make_mapping(), _NO_FEES, settings) is None

        looser = DetectorSettings(min_profit_pct=0.20)
        assert detect_opportunity(book_a, book_b, _make_mapping(), _NO_FEES, looser) is not None

    def test_quantity_is_min_of_depths_and_cap(self):
        book_a = _make_book("polymarket", "pm1", bid=0.30, ask=0.40, ask_size=12.0)
        book_b = _make_book("kalshi", "K1", bid=0.50, ask=0.60, bid_size=30.0)
        opp = detect_opportunity(book_a, book_b, _make_mapping(), _NO_FEES)
        assert opp.max_quantity == 12.0

    def test_zero_depth_skipped(self):
        book_a = _make_book("polymarket", "pm1", bid=0.30, ask=0.40, ask_size=0.0)
        book_b = _make_book("kalshi", "K1", bid=0.50, ask=0.60)
        assert detect_opportunity(book_a, book_b, _make_mapping(), _NO_FEES) is None

    def test_tie_prefers_a_to_b(self):
        book_a = _make_book("polymarket", "pm1", bid=0.60, ask=0.40)
        book_b = _make_book("kalshi", "K1", bid=0.60, ask=0.40)
        opp = detect_opportunity(book_a, book_b, _make_mapping(), _NO_FEES)
        assert opp.buy_venue == "polymarket"

    def test_higher_net_direction_wins(self):
        book_a = _make_book("polymarket", "pm1", bid=0.70, ask=0.40)
        book_b = _make_book("kalshi", "K1", bid=0.50, ask=0.45)
        opp = detect_opportunity(book_a, book_b, _make_mapping(), _NO_FEES)
        # A->B: 0.50 - 0.40 = 0.10; B->A: 0.70 - 0.45 = 0.25
        assert opp.buy_venue == "kalshi"
        assert opp.net_profit == pytest.approx(0.25)

    def test_missing_side_skipped(self):
        book_a = _make_book("polymarket", "pm1", bid=None, ask=None)
        book_b = _make_book("kalshi", "K1", bid=0.50, ask=0.60)
        assert detect_opportunity(book_a, book_b, _make_mapping(), _NO_FEES) is None

    def test_review_tier_never_emits(self):
        book_a = _make_book("polymarket", "pm1", bid=0.30, ask=0.40)
        book_b = _make_book("kalshi", "K1", bid=0.60, ask=0.70)
        mapping = _make_mapping(tier=MatchTier.REVIEW)
        assert detect_opportunity(book_a, book_b, mapping, _NO_FEES) is None

    def test_inactive_never_emits(self):
        book_a = _make_book("polymarket", "pm1", bid=0.30, ask=0.40)
        book_b = _make_book("kalshi", "K1", bid=0.60, ask=0.70)
        assert detect_opportunity(book_a, book_b, _make_mapping(active=False), _NO_FEES) is None

    def test_nan_price_raises(self):
        book_a = _make_book("polymarket", "pm1", bid=0.30, ask=math.nan)
        book_b = _make_book("kalshi", "K1", bid=0.60, ask=0.70)
        with pytest.raises(ValueError):
            detect_opportunity(book_a, book_b, _make_mapping(), _NO_FEES)


class TestDetectorSettings:
    def test_non_positive_cap_rejected(self):
        with pytest.raises(ValueError):
            DetectorSettings(max_quantity_per_trade=0)


class TestScanMappings:
    def test_sorted_by_net_profit_and_missing_books_skipped(self):
        m1 = _make_mapping("pm1", "K1")
        m2 = _make_mapping("pm2", "K2")
        m3 = _make_mapping("pm3", "K3")
        books = {
            ("polymarket", "pm1"): _make_book("polymarket", "pm1", bid=0.30, ask=0.40),
            ("kalshi", "K1"): _make_book("kalshi", "K1", bid=0.50, ask=0.60),
            ("polymarket", "pm2"): _make_book("polymarket", "pm2", bid=0.30, ask=0.40),
            ("kalshi", "K2"): _make_book("kalshi", "K2", bid=0.60, ask=0.70),
            ("polymarket", "pm3"): _make_book("polymarket", "pm3", bid=0.30, ask=0.40),
        }
        opps = scan_mappings([m1, m2, m3], books, "polymarket", "kalshi", _NO_FEES)
        assert [o.mapping.mapping_id for o in opps] == ["pm2:K2", "pm1:K1"]

    def test_invalid_book_skips_only_that_mapping(self):
        m1 = _make_mapping("pm1", "K1")
        m2 = _make_mapping("pm2", "K2")
        books = {
            ("polymarket", "pm1"): _make_book("polymarket", "pm1", bid=0.30, ask=-0.40),
            ("kalshi", "K1"): _make_book("kalshi", "K1", bid=0.50, ask=0.60),
            ("polymarket", "pm2"): _make_book("polymarket", "pm2", bid=0.30, ask=0.40),
            ("kalshi", "K2"): _make_book("kalshi", "K2", bid=0.60, ask=0.70),
        }
        opps = scan_mappings([m1, m2], books, "polymarket", "kalshi", _NO_FEES)
        assert [o.mapping.mapping_id for o in opps] == ["pm2:K2"]

    def test_should_stop(self):
        m1 = _make_mapping("pm1", "K1")
        books = {
            ("polymarket", "pm1"): _make_book("polymarket", "pm1", bid=0.30, ask=0.40),
            ("kalshi", "K1"): _make_book("kalshi", "K1", bid=0.50, ask=0.60),
        }
        assert scan_mappings([m1], books, "polymarket", "kalshi", _NO_FEES, should_stop=lambda: True) == []

    def test_shared_question_id_across_venues(self):
        m = _make_mapping("Q1", "Q1")
        books = {
            ("polymarket", "Q1"): _make_book("polymarket", "Q1", bid=0.30, ask=0.40),
            ("kalshi", "Q1"): _make_book("kalshi", "Q1", bid=60, ask=70, unit="cents"),
        }
        opps = scan_mappings([m], books, "polymarket", "kalshi", _NO_FEES)
        assert len(opps) == 1
        assert opps[0].buy_venue == "polymarket"
        assert opps[0].sell_venue == "kalshi"
        assert opps[0].sell_price == pytest.approx(0.60)
