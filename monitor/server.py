"""
Operator HTTP API. Runs as a daemon thread next to the trading loop.

Read-only views of breaker, mappings, positions and P&L, plus the single
write operation an operator needs: manually resuming a paused breaker.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict
from typing import TYPE_CHECKING, Any

from state.mapping_store import mapping_to_dict

if TYPE_CHECKING:
    from pipeline.context import TradingContext

logger = logging.getLogger(__name__)


def create_app(ctx: TradingContext) -> Any:
    """Build and return the FastAPI application."""
    from fastapi import FastAPI

    app = FastAPI(title="Cross-venue Arbitrage Operator API", docs_url="/docs")

    @app.get("/health")
    async def health():
        state = ctx.breaker.state()
        return {"status": "paused" if state.paused else "running", "mode": ctx.mode}

    @app.get("/api/breaker")
    async def breaker_state():
        return asdict(ctx.breaker.state())

    @app.post("/api/breaker/resume")
    async def breaker_resume():
        before = ctx.breaker.state()
        ctx.breaker.resume()
        logger.warning("Operator resume via API (was paused=%s reason=%s)", before.paused, before.reason)
        return {"resumed": before.paused, "previous_reason": before.reason, **asdict(ctx.breaker.state())}

    @app.get("/api/mappings")
    async def active_mappings():
        return [mapping_to_dict(m) for m in ctx.store.load_active()]

    @app.get("/api/positions")
    async def positions():
        return [
            {**asdict(p), "side": p.side.value, "status": p.status.value, "exposure": p.exposure}
            for p in ctx.positions.open_positions()
        ]

    @app.get("/api/pnl")
    async def pnl():
        return ctx.pnl.summary()

    return app


def start_server(ctx: TradingContext, host: str = "127.0.0.1", port: int = 8765) -> threading.Thread:
    """Start FastAPI in a daemon thread. Returns the thread."""
    import uvicorn

    app = create_app(ctx)

    def _run():
        uvicorn.run(app, host=host, port=port, log_level="warning", access_log=False)

    thread = threading.Thread(target=_run, daemon=True, name="operator-api")
    thread.start()
    logger.info("Operator API started at http://%s:%d", host, port)
    return thread
