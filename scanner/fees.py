"""
Per-venue fee models. The detector never hardcodes fees: callers supply one
model per venue and the detector sums both legs.

Shipped models:
- PercentTakerFeeModel: flat percentage of the execution price on every fill
- ProfitShareFeeModel: percentage of the captured spread, capped per contract
- KalshiFeeModel: ceil(0.07 * 100 * P * (1 - P)) cents per contract
- NoFeeModel: zero

All fees are per contract, in probability units (dollars on a $1 payout).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from config import Config
from scanner.models import Side


@runtime_checkable
class FeeModel(Protocol):
    """Minimal interface for a venue's fee schedule."""

    @property
    def venue(self) -> str:
        ...

    def fee_per_contract(self, price: float, side: Side, gross_spread: float) -> float:
        """Fee charged on one contract of one leg at `price`."""
        ...


@dataclass(frozen=True)
class NoFeeModel:
    venue: str

    def fee_per_contract(self, price: float, side: Side, gross_spread: float) -> float:
        return 0.0


@dataclass(frozen=True)
class PercentTakerFeeModel:
    """Flat taker fee: rate * price per contract."""
    venue: str
    rate: float

    def __post_init__(self) -> None:
        if not 0.0 <= self.rate <= 1.0:
            raise ValueError(f"Taker fee rate out of range [0, 1]: {self.rate}")

    def fee_per_contract(self, price: float, side: Side, gross_spread: float) -> float:
        return self.rate * max(0.0, price)


@dataclass(frozen=True)
class ProfitShareFeeModel:
    """Percentage of the captured spread, capped at `cap` per contract."""
    venue: str
    rate: float
    cap: float

    def __post_init__(self) -> None:
        if not 0.0 <= self.rate <= 1.0:
            raise ValueError(f"Profit fee rate out of range [0, 1]: {self.rate}")
        if self.cap < 0.0:
            raise ValueError(f"Profit fee cap must be non-negative: {self.cap}")

    def fee_per_contract(self, price: float, side: Side, gross_spread: float) -> float:
        return min(self.rate * max(0.0, gross_spread), self.cap)


# Kalshi fee parameters
KALSHI_FEE_FACTOR = 0.07


@dataclass(frozen=True)
class KalshiFeeModel:
    """Kalshi taker fee: ceil(0.07 * 100 * P * (1-P)) cents per contract."""
    venue: str = "kalshi"

    def fee_per_contract(self, price: float, side: Side, gross_spread: float) -> float:
        price = max(0.01, min(0.99, price))
        fee_cents = math.ceil(round(KALSHI_FEE_FACTOR * 100 * price * (1 - price), 9))
        return fee_cents / 100.0


def leg_fees(
    fee_models: dict[str, FeeModel],
    buy_venue: str,
    buy_price: float,
    sell_venue: str,
    sell_price: float,
) -> float:
    """Total per-contract fee across both legs. Venues without a model pay nothing."""
    gross_spread = sell_price - buy_price
    total = 0.0
    buy_model = fee_models.get(buy_venue)
    if buy_model is not None:
        total += buy_model.fee_per_contract(buy_price, Side.BUY, gross_spread)
    sell_model = fee_models.get(sell_venue)
    if sell_model is not None:
        total += sell_model.fee_per_contract(sell_price, Side.SELL, gross_spread)
    return total


def fee_models_from_config(cfg: Config) -> dict[str, FeeModel]:
    """Venue A: flat taker percentage. Venue B: capped profit share."""
    return {
        cfg.venue_a: PercentTakerFeeModel(venue=cfg.venue_a, rate=cfg.venue_a_taker_fee_rate),
        cfg.venue_b: ProfitShareFeeModel(
            venue=cfg.venue_b, rate=cfg.venue_b_profit_fee_rate, cap=cfg.venue_b_profit_fee_cap,
        ),
    }
