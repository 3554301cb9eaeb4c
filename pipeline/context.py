"""
Trading context: every collaborator the loop needs, built once at startup
and passed explicitly. There are no module-level singletons.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from client.platform import MarketConnector
from config import Config
from executor.cross_platform import ExecutionCoordinator
from executor.positions import PositionBook
from executor.risk import RiskGate
from executor.safety import CircuitBreaker
from monitor.alerts import AlertSink, build_alert_sink
from monitor.pnl import PnLTracker
from scanner.cross_platform import DetectorSettings
from scanner.fees import FeeModel, fee_models_from_config
from scanner.matching import MatchClassifier
from state.mapping_store import MappingStore, open_mapping_store

logger = logging.getLogger(__name__)


@dataclass
class TradingContext:
    config: Config
    connectors: dict[str, MarketConnector]
    classifier: MatchClassifier
    store: MappingStore
    fee_models: dict[str, FeeModel]
    detector: DetectorSettings
    risk_gate: RiskGate
    breaker: CircuitBreaker
    positions: PositionBook
    pnl: PnLTracker
    alert_sink: AlertSink
    coordinator: ExecutionCoordinator

    @property
    def mode(self) -> str:
        return self.config.trading_mode

    @property
    def connector_a(self) -> MarketConnector:
        return self.connectors[self.config.venue_a]

    @property
    def connector_b(self) -> MarketConnector:
        return self.connectors[self.config.venue_b]

    @classmethod
    def from_config(
        cls,
        cfg: Config,
        connectors: dict[str, MarketConnector],
        store: MappingStore | None = None,
        alert_sink: AlertSink | None = None,
        fee_models: dict[str, FeeModel] | None = None,
        ledger_path: str | None = None,
    ) -> TradingContext:
        """
        Wire every component from a validated Config.

        Raises:
            ValueError: if a connector for either configured venue is missing
        """
        for venue in (cfg.venue_a, cfg.venue_b):
            if venue not in connectors:
                raise ValueError(f"No connector for configured venue '{venue}'")

        sink = alert_sink or build_alert_sink(cfg.alert_webhook_url, cfg.alert_cooldown_sec)
        fees = fee_models if fee_models is not None else fee_models_from_config(cfg)
        breaker = CircuitBreaker.from_config(cfg, alert_sink=sink)
        positions = PositionBook()
        pnl = PnLTracker(ledger_path=ledger_path if ledger_path is not None else cfg.ledger_path)
        coordinator = ExecutionCoordinator.from_config(
            cfg, connectors, breaker, positions, sink, fees, pnl=pnl,
        )

        ctx = cls(
            config=cfg,
            connectors=connectors,
            classifier=MatchClassifier.from_config(cfg),
            store=store or open_mapping_store(cfg.mapping_store_backend, cfg.mapping_store_path),
            fee_models=fees,
            detector=DetectorSettings.from_config(cfg),
            risk_gate=RiskGate.from_config(cfg),
            breaker=breaker,
            positions=positions,
            pnl=pnl,
            alert_sink=sink,
            coordinator=coordinator,
        )
        logger.info(
            "Context ready: mode=%s venues=%s/%s store=%s",
            cfg.trading_mode, cfg.venue_a, cfg.venue_b, cfg.mapping_store_backend,
        )
        return ctx
