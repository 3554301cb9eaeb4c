"""
Market connector protocol. Thin interface every venue adapter implements.

Any venue client that satisfies this protocol can plug into the pipeline with
zero changes to scanner/executor code. Connectors raise TransientConnectorError
for timeouts and rate limits; fetch_book_with_retry() absorbs those with
exponential backoff.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol, runtime_checkable

from scanner.models import LegOrder, MarketQuestion, OrderBookSnapshot

logger = logging.getLogger(__name__)


class TransientConnectorError(Exception):
    """Timeout, rate limit or dropped connection. Safe to retry."""
    pass


@dataclass(frozen=True)
class FillResult:
    """Outcome of one fill-or-kill order. FOK: either fully filled or nothing."""
    order_id: str
    filled: bool
    fill_price: float = 0.0
    fill_quantity: float = 0.0
    fees: float = 0.0
    error: str = ""
    timestamp: float = field(default_factory=time.time)


@runtime_checkable
class MarketConnector(Protocol):
    """
    Minimal interface for one venue.

    Prices returned by fetch_book are in the venue's own unit (see
    OrderBookSnapshot.price_unit). Orders are always priced on the [0, 1]
    probability scale; the connector converts to its native unit.
    """

    @property
    def venue(self) -> str:
        ...

    def fetch_questions(self) -> list[MarketQuestion]:
        ...

    def fetch_book(self, question_id: str) -> OrderBookSnapshot:
        ...

    def place_fok_order(self, order: LegOrder, timeout: float) -> FillResult:
        """Place a fill-or-kill order. Must return within `timeout` seconds."""
        ...

    def get_balances(self) -> dict[str, float]:
        ...


def fetch_book_with_retry(
    connector: MarketConnector,
    question_id: str,
    retries: int = 3,
    backoff_sec: float = 0.25,
    sleep: Callable[[float], None] = time.sleep,
) -> OrderBookSnapshot:
    """
    Fetch a book, retrying transient errors with exponential backoff.
    Non-transient errors propagate immediately.

    Raises:
        TransientConnectorError: once `retries` attempts have all failed
    """
    last_error: TransientConnectorError | None = None
    for attempt in range(retries):
        try:
            return connector.fetch_book(question_id)
        except TransientConnectorError as e:
            last_error = e
            if attempt < retries - 1:
                delay = backoff_sec * (2 ** attempt)
                logger.warning(
                    "%s book fetch for %s failed (attempt %d/%d), retrying in %.2fs: %s",
                    connector.venue, question_id, attempt + 1, retries, delay, e,
                )
                sleep(delay)
    raise TransientConnectorError(
        f"{connector.venue} book fetch for {question_id} failed after {retries} attempts: {last_error}"
    )
