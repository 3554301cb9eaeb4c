"""
Data models for matching, detection and execution. Pure data, minimal behavior.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum


class Side(Enum):
    BUY = "BUY"
    SELL = "SELL"


class MatchMethod(Enum):
    EXACT = "exact"
    KEYWORD = "keyword"
    TOKEN = "token"
    FUZZY = "fuzzy"
    MANUAL = "manual"


class MatchTier(Enum):
    AUTO = 1     # trade automatically
    REVIEW = 2   # hold for a human
    REJECT = 3   # no mapping


class PositionStatus(Enum):
    OPEN = "open"
    CLOSED = "closed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MarketQuestion:
    """Venue-agnostic view of one listed question. Immutable snapshot per fetch."""
    question_id: str
    venue: str
    title: str
    resolution_time: datetime
    category: str | None = None
    outcomes: tuple[str, ...] = ("Yes", "No")
    outcome_prices: tuple[float, ...] = ()


@dataclass(frozen=True)
class OutcomePair:
    outcome_a: str
    outcome_b: str


@dataclass(frozen=True)
class EventMapping:
    """Links one question on venue A to one on venue B."""
    id_a: str
    id_b: str
    confidence: float
    method: MatchMethod
    outcome_correspondence: tuple[OutcomePair, ...]
    active: bool = True
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    description: str = ""
    tier: MatchTier = MatchTier.AUTO
    resolution_time: datetime | None = None
    mapping_id: str = ""

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Mapping confidence out of range [0, 1]: {self.confidence}")
        if not self.mapping_id:
            object.__setattr__(self, "mapping_id", f"{self.id_a}:{self.id_b}")

    def with_active(self, active: bool, now: datetime | None = None) -> EventMapping:
        """Copy with `active` flipped; the only mutation a mapping supports."""
        return replace(self, active=active, updated_at=now or _utcnow())

    def covers_outcomes(self, outcomes_a: tuple[str, ...], outcomes_b: tuple[str, ...]) -> bool:
        """True when every outcome of both questions appears exactly once."""
        left = [p.outcome_a for p in self.outcome_correspondence]
        right = [p.outcome_b for p in self.outcome_correspondence]
        return sorted(left) == sorted(outcomes_a) and sorted(right) == sorted(outcomes_b)

    @property
    def is_tradeable(self) -> bool:
        """
        Active, auto tier, and a well-formed binary correspondence.
        Full coverage against live outcome labels is checked by covers_outcomes().
        """
        if not self.active or self.tier != MatchTier.AUTO:
            return False
        pairs = self.outcome_correspondence
        if len(pairs) < 2:
            return False
        left = [p.outcome_a.lower() for p in pairs]
        right = [p.outcome_b.lower() for p in pairs]
        return len(set(left)) == len(left) and len(set(right)) == len(right)


@dataclass(frozen=True)
class OrderBookSnapshot:
    """Top of book for one question on one venue. Ephemeral."""
    venue: str
    question_id: str
    bid_price: float | None
    bid_size: float
    ask_price: float | None
    ask_size: float
    fetched_at: float = field(default_factory=time.time)
    price_unit: str = "probability"  # "probability" or "cents"

    def normalized(self) -> OrderBookSnapshot:
        """Return the snapshot on the [0, 1] probability scale."""
        if self.price_unit == "probability":
            return self
        return replace(
            self,
            bid_price=None if self.bid_price is None else self.bid_price / 100.0,
            ask_price=None if self.ask_price is None else self.ask_price / 100.0,
            price_unit="probability",
        )


@dataclass(frozen=True)
class LegOrder:
    venue: str
    question_id: str
    side: Side
    price: float
    quantity: float
    outcome: str = "Yes"


@dataclass(frozen=True)
class ArbitrageOpportunity:
    mapping: EventMapping
    buy_venue: str
    sell_venue: str
    buy_question_id: str
    sell_question_id: str
    buy_price: float
    sell_price: float
    max_quantity: float
    gross_spread: float     # per contract, before fees
    estimated_fees: float   # per contract, both legs
    net_profit: float       # per contract, after fees
    detected_at: float = field(default_factory=time.time)

    @property
    def net_profit_pct(self) -> float:
        """Net profit as a fraction of entry price."""
        return self.net_profit / self.buy_price if self.buy_price > 0 else 0.0

    @property
    def total_net_profit(self) -> float:
        return self.net_profit * self.max_quantity

    def legs(self, quantity: float) -> tuple[LegOrder, LegOrder]:
        return (
            LegOrder(self.buy_venue, self.buy_question_id, Side.BUY, self.buy_price, quantity),
            LegOrder(self.sell_venue, self.sell_question_id, Side.SELL, self.sell_price, quantity),
        )


@dataclass
class Position:
    """Open exposure on one venue/question/outcome. Created fully filled (FOK)."""
    venue: str
    question_id: str
    outcome: str
    side: Side
    quantity: float
    avg_entry_price: float
    mapping_id: str = ""
    status: PositionStatus = PositionStatus.OPEN
    realized_pnl: float = 0.0
    hedged: bool = True
    opened_at: float = field(default_factory=time.time)

    @property
    def exposure(self) -> float:
        """Capital at risk: cost for a long, (1 - price) collateral for a short."""
        if self.status != PositionStatus.OPEN:
            return 0.0
        if self.side == Side.BUY:
            return self.avg_entry_price * self.quantity
        return (1.0 - self.avg_entry_price) * self.quantity


@dataclass(frozen=True)
class CircuitBreakerState:
    paused: bool
    reason: str
    consecutive_failures: int
    asymmetric_failures: int
    connectivity_failures: int = 0
    paused_at: float | None = None
