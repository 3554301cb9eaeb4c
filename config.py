"""
Configuration loaded from environment variables. Fail-fast on missing or out-of-range values.
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Config(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "frozen": True, "extra": "ignore"}

    # Venue identifiers (A is the "left" side of every mapping)
    venue_a: str = "polymarket"
    venue_b: str = "kalshi"
    # Quote units per venue: "probability" (0-1) or "cents" (1-99)
    venue_a_price_unit: Literal["probability", "cents"] = "probability"
    venue_b_price_unit: Literal["probability", "cents"] = "cents"

    # Match classifier weights (not renormalized; used as given)
    match_weight_keyword: float = Field(default=0.40, ge=0.0, le=1.0)
    match_weight_token: float = Field(default=0.30, ge=0.0, le=1.0)
    match_weight_fuzzy: float = Field(default=0.15, ge=0.0, le=1.0)
    match_weight_date: float = Field(default=0.10, ge=0.0, le=1.0)
    match_weight_category: float = Field(default=0.05, ge=0.0, le=1.0)

    # Tiering: >= auto trades, [review, auto) waits for a human, below is dropped
    match_auto_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    match_review_threshold: float = Field(default=0.60, ge=0.0, le=1.0)

    # Opportunity detection
    min_profit_pct: float = Field(default=0.03, ge=0.0, le=1.0)
    max_quantity_per_trade: float = Field(default=100.0, gt=0)

    # Fees: venue A flat taker percentage, venue B percentage-of-profit with a cap
    venue_a_taker_fee_rate: float = Field(default=0.0, ge=0.0, le=0.2)
    venue_b_profit_fee_rate: float = Field(default=0.07, ge=0.0, le=1.0)
    venue_b_profit_fee_cap: float = Field(default=0.0175, ge=0.0, le=1.0)

    # Risk gate
    max_total_exposure: float = Field(default=5000.0, gt=0)
    max_event_exposure: float = Field(default=1000.0, gt=0)
    max_position_imbalance: float = Field(default=50.0, ge=0)
    max_daily_loss: float = Field(default=200.0, gt=0)
    min_net_profit_pct: float = Field(default=0.03, ge=0.0, le=1.0)
    min_liquidity_depth: float = Field(default=10.0, ge=0)

    # Execution
    max_slippage: float = Field(default=0.01, ge=0.0, le=0.2)
    order_timeout_sec: float = Field(default=5.0, gt=0)

    # Circuit breaker
    max_consecutive_failures: int = Field(default=3, gt=0)
    max_asymmetric_failures: int = Field(default=1, gt=0)
    connectivity_failure_threshold: int = Field(default=5, gt=0)

    # Transient error handling for book fetches
    book_fetch_retries: int = Field(default=3, ge=1, le=10)
    book_fetch_backoff_sec: float = Field(default=0.25, ge=0.0)

    # Loop
    scan_interval_sec: float = Field(default=5.0, gt=0)

    # Mapping store
    mapping_store_backend: Literal["sqlite", "json"] = "sqlite"
    mapping_store_path: str = "mappings.db"

    # Trade ledger (append-only NDJSON)
    ledger_path: str = "trade_ledger.ndjson"

    # Alerts
    alert_webhook_url: str = ""
    alert_cooldown_sec: float = Field(default=300.0, ge=0.0)

    # Operator API
    operator_api_enabled: bool = False
    operator_api_host: str = "127.0.0.1"
    operator_api_port: int = Field(default=8765, ge=1, le=65535)

    # Modes
    trading_mode: Literal["dry_run", "paper", "live"] = "dry_run"
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _check_cross_field(self) -> "Config":
        if self.match_review_threshold > self.match_auto_threshold:
            raise ValueError(
                f"match_review_threshold ({self.match_review_threshold}) must not exceed "
                f"match_auto_threshold ({self.match_auto_threshold})"
            )
        weight_sum = (
            self.match_weight_keyword
            + self.match_weight_token
            + self.match_weight_fuzzy
            + self.match_weight_date
            + self.match_weight_category
        )
        if weight_sum <= 0:
            raise ValueError("Match weights must have a positive sum")
        if self.venue_a == self.venue_b:
            raise ValueError(f"venue_a and venue_b must differ, both are '{self.venue_a}'")
        if self.max_event_exposure > self.max_total_exposure:
            raise ValueError(
                f"max_event_exposure ({self.max_event_exposure}) must not exceed "
                f"max_total_exposure ({self.max_total_exposure})"
            )
        return self

    @property
    def price_units(self) -> dict[str, str]:
        """Expected quote unit per venue name."""
        return {self.venue_a: self.venue_a_price_unit, self.venue_b: self.venue_b_price_unit}


def load_config() -> Config:
    """Load and validate config from environment. Raises on invalid values."""
    return Config()
