"""
Pre-trade risk gate. Every opportunity passes through check() before any
order is placed.

Each limit is a verify_* function that raises SafetyCheckFailed; check()
runs them in a fixed order, stops at the first hard failure and returns the
result as data. Exposure limits downsize instead of rejecting when a smaller
positive quantity still fits.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from config import Config
from executor.positions import PositionBook
from executor.safety import SafetyCheckFailed
from scanner.models import ArbitrageOpportunity

logger = logging.getLogger(__name__)

# Quantities below this are treated as zero when downsizing
_MIN_QUANTITY = 1e-9


@dataclass(frozen=True)
class RiskLimits:
    max_total_exposure: float = 5000.0
    max_event_exposure: float = 1000.0
    max_position_imbalance: float = 50.0
    max_daily_loss: float = 200.0
    min_net_profit_pct: float = 0.03
    min_liquidity_depth: float = 10.0
    max_quantity_per_trade: float = 100.0

    @classmethod
    def from_config(cls, cfg: Config) -> RiskLimits:
        return cls(
            max_total_exposure=cfg.max_total_exposure,
            max_event_exposure=cfg.max_event_exposure,
            max_position_imbalance=cfg.max_position_imbalance,
            max_daily_loss=cfg.max_daily_loss,
            min_net_profit_pct=cfg.min_net_profit_pct,
            min_liquidity_depth=cfg.min_liquidity_depth,
            max_quantity_per_trade=cfg.max_quantity_per_trade,
        )


@dataclass(frozen=True)
class RiskDecision:
    approved: bool
    reasons: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    suggested_quantity: float = 0.0


def exposure_per_contract(opportunity: ArbitrageOpportunity) -> float:
    """Capital locked per contract: the buy cost plus the short's collateral."""
    return opportunity.buy_price + (1.0 - opportunity.sell_price)


def verify_exposure_cap(
    current: float,
    per_contract: float,
    quantity: float,
    cap: float,
    label: str,
) -> float:
    """
    Return the largest quantity <= `quantity` that keeps current + added
    exposure within `cap`.

    Raises SafetyCheckFailed if no positive quantity fits.
    """
    if current + per_contract * quantity <= cap:
        return quantity
    headroom = cap - current
    allowed = headroom / per_contract if per_contract > 0 else 0.0
    if allowed <= _MIN_QUANTITY:
        raise SafetyCheckFailed(
            f"{label} exposure cap: ${current:.2f} + ${per_contract * quantity:.2f} > ${cap:.2f}"
        )
    return min(quantity, allowed)


def verify_imbalance(unhedged: float, max_imbalance: float, mapping_id: str) -> None:
    if unhedged > max_imbalance:
        raise SafetyCheckFailed(
            f"Position imbalance for {mapping_id}: ${unhedged:.2f} > ${max_imbalance:.2f}"
        )


def verify_daily_loss(daily_pnl: float, max_daily_loss: float) -> None:
    if daily_pnl <= -max_daily_loss:
        raise SafetyCheckFailed(
            f"Daily loss limit reached: ${-daily_pnl:.2f} >= ${max_daily_loss:.2f}"
        )


def verify_min_net_profit(opportunity: ArbitrageOpportunity, min_net_profit_pct: float) -> None:
    pct = opportunity.net_profit_pct
    if pct < min_net_profit_pct:
        raise SafetyCheckFailed(
            f"Net profit {pct:.2%} below minimum {min_net_profit_pct:.2%}"
        )


def verify_liquidity(available: float, min_depth: float) -> None:
    if available < min_depth:
        raise SafetyCheckFailed(f"Thin book: {available:.1f} contracts < {min_depth:.1f}")


@dataclass
class RiskGate:
    limits: RiskLimits = field(default_factory=RiskLimits)

    @classmethod
    def from_config(cls, cfg: Config) -> RiskGate:
        return cls(RiskLimits.from_config(cfg))

    def check(
        self,
        opportunity: ArbitrageOpportunity,
        positions: PositionBook,
        daily_pnl: float,
        requested_quantity: float | None = None,
    ) -> RiskDecision:
        """
        Evaluate one opportunity against the current position view.

        Never raises for a rejection; the decision carries the reasons.
        """
        limits = self.limits
        requested = opportunity.max_quantity if requested_quantity is None else requested_quantity
        quantity = min(requested, limits.max_quantity_per_trade)
        if quantity <= 0:
            return RiskDecision(approved=False, reasons=("non-positive quantity",))

        mapping_id = opportunity.mapping.mapping_id
        per_contract = exposure_per_contract(opportunity)
        warnings: list[str] = []

        try:
            allowed = verify_exposure_cap(
                positions.total_exposure(), per_contract, quantity, limits.max_total_exposure, "Total",
            )
            if allowed < quantity:
                warnings.append(f"downsized {quantity:.1f} -> {allowed:.1f} for total exposure cap")
                quantity = allowed

            allowed = verify_exposure_cap(
                positions.event_exposure(mapping_id), per_contract, quantity,
                limits.max_event_exposure, f"Event {mapping_id}",
            )
            if allowed < quantity:
                warnings.append(f"downsized {quantity:.1f} -> {allowed:.1f} for event exposure cap")
                quantity = allowed

            verify_imbalance(positions.unhedged_value(mapping_id), limits.max_position_imbalance, mapping_id)
            verify_daily_loss(daily_pnl, limits.max_daily_loss)
            verify_min_net_profit(opportunity, limits.min_net_profit_pct)
        except SafetyCheckFailed as e:
            logger.info("Risk gate rejected %s: %s", mapping_id, e)
            return RiskDecision(approved=False, reasons=(str(e),), warnings=tuple(warnings))

        try:
            verify_liquidity(opportunity.max_quantity, limits.min_liquidity_depth)
        except SafetyCheckFailed as e:
            warnings.append(str(e))

        if warnings:
            logger.info("Risk gate approved %s with warnings: %s", mapping_id, "; ".join(warnings))
        return RiskDecision(approved=True, warnings=tuple(warnings), suggested_quantity=quantity)
