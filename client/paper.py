"""
In-memory paper venue. Simulates fill-or-kill against configured top-of-book
so the pipeline runs end to end without real orders.
"""

from __future__ import annotations

import itertools
import json
import logging
import threading
import time
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

from client.platform import FillResult, TransientConnectorError
from scanner.models import LegOrder, MarketQuestion, OrderBookSnapshot, Side

logger = logging.getLogger(__name__)

_PRICE_EPS = 1e-9


class PaperConnector:
    """
    MarketConnector backed by dicts.

    A BUY fills when ask <= limit and ask size covers the quantity; a SELL
    fills when bid >= limit and bid size covers it. Fills consume displayed
    size. `fail_fetches` makes the next N fetch_book calls raise
    TransientConnectorError; `fill_delay_sec` delays every order.
    """

    def __init__(
        self,
        venue: str,
        questions: list[MarketQuestion] | None = None,
        books: dict[str, OrderBookSnapshot] | None = None,
        balance: float = 10_000.0,
        fill_delay_sec: float = 0.0,
    ) -> None:
        self._venue = venue
        self._questions = list(questions or [])
        self._books: dict[str, OrderBookSnapshot] = dict(books or {})
        self._balance = balance
        self._order_seq = itertools.count(1)
        self._lock = threading.Lock()
        self.fill_delay_sec = fill_delay_sec
        self.fail_fetches = 0
        self.orders: list[LegOrder] = []

    @property
    def venue(self) -> str:
        return self._venue

    def set_book(self, book: OrderBookSnapshot) -> None:
        with self._lock:
            self._books[book.question_id] = book

    def fetch_questions(self) -> list[MarketQuestion]:
        return list(self._questions)

    def fetch_book(self, question_id: str) -> OrderBookSnapshot:
        with self._lock:
            if self.fail_fetches > 0:
                self.fail_fetches -= 1
                raise TransientConnectorError(f"{self._venue}: simulated timeout")
            book = self._books.get(question_id)
        if book is None:
            raise KeyError(f"{self._venue}: no book for {question_id}")
        return replace(book, fetched_at=time.time())

    def place_fok_order(self, order: LegOrder, timeout: float) -> FillResult:
        if self.fill_delay_sec:
            time.sleep(self.fill_delay_sec)
        order_id = f"paper_{self._venue}_{next(self._order_seq)}"

        with self._lock:
            self.orders.append(order)
            book = self._books.get(order.question_id)
            if book is None:
                return FillResult(order_id=order_id, filled=False, error="no book")
            norm = book.normalized()

            if order.side == Side.BUY:
                price, size = norm.ask_price, norm.ask_size
                crosses = price is not None and price <= order.price + _PRICE_EPS
            else:
                price, size = norm.bid_price, norm.bid_size
                crosses = price is not None and price >= order.price - _PRICE_EPS

            if not crosses or size < order.quantity:
                logger.info(
                    "[PAPER] %s FOK %s %s x%.1f @ %.4f not filled",
                    self._venue, order.side.value, order.question_id, order.quantity, order.price,
                )
                return FillResult(order_id=order_id, filled=False)

            remaining = size - order.quantity
            if order.side == Side.BUY:
                self._books[order.question_id] = replace(book, ask_size=remaining)
                self._balance -= price * order.quantity
            else:
                self._books[order.question_id] = replace(book, bid_size=remaining)
                self._balance -= (1.0 - price) * order.quantity

        logger.info(
            "[PAPER] %s FOK %s %s x%.1f filled @ %.4f",
            self._venue, order.side.value, order.question_id, order.quantity, price,
        )
        return FillResult(order_id=order_id, filled=True, fill_price=price, fill_quantity=order.quantity)

    def get_balances(self) -> dict[str, float]:
        with self._lock:
            return {"USD": self._balance}


def _parse_time(value: str) -> datetime:
    ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def load_paper_venues(
    path: str | Path,
    price_units: dict[str, str] | None = None,
) -> dict[str, PaperConnector]:
    """
    Build paper venues from a JSON file. A venue without "price_unit" takes
    its unit from `price_units`, then falls back to probability.

        {"venues": {"<venue>": {"price_unit": "cents",
                                "questions": [{"question_id", "title", "resolution_time", ...}],
                                "books": [{"question_id", "bid_price", "bid_size", "ask_price", "ask_size"}]}}}
    """
    data = json.loads(Path(path).read_text())
    connectors: dict[str, PaperConnector] = {}
    for venue, venue_cfg in data.get("venues", {}).items():
        unit = venue_cfg.get("price_unit") or (price_units or {}).get(venue, "probability")
        questions = [
            MarketQuestion(
                question_id=q["question_id"],
                venue=venue,
                title=q["title"],
                resolution_time=_parse_time(q["resolution_time"]),
                category=q.get("category"),
                outcomes=tuple(q.get("outcomes", ("Yes", "No"))),
            )
            for q in venue_cfg.get("questions", [])
        ]
        books = {
            b["question_id"]: OrderBookSnapshot(
                venue=venue,
                question_id=b["question_id"],
                bid_price=b.get("bid_price"),
                bid_size=float(b.get("bid_size", 0.0)),
                ask_price=b.get("ask_price"),
                ask_size=float(b.get("ask_size", 0.0)),
                price_unit=unit,
            )
            for b in venue_cfg.get("books", [])
        }
        connectors[venue] = PaperConnector(venue, questions, books, balance=float(venue_cfg.get("balance", 10_000.0)))
        logger.info("Paper venue %s: %d questions, %d books", venue, len(questions), len(books))
    return connectors
