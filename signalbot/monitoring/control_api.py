"""
Control endpoints for a running bot.

- GET  /health  : liveness, effective trading config and the last cycle
- POST /execute : run one cycle now (shares the run-lock with the scheduler)
"""

import logging
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from signalbot.config import AppConfig
from signalbot.engine import TradingEngine

logger = logging.getLogger(__name__)


def create_control_app(engine: TradingEngine, config: AppConfig) -> FastAPI:
    app = FastAPI(title="Signal Bot Control")

    @app.get("/health")
    def health():
        last = engine.last_report
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "config": {
                "dryRun": config.trading.dry_run,
                "symbol": config.trading.symbol,
                "tradeSize": config.trading.trade_size,
            },
            "last_cycle": last.to_dict() if last is not None else None,
        }

    # Sync handler: FastAPI runs it in the threadpool, so the blocking cycle
    # does not stall the event loop.
    @app.post("/execute")
    def execute():
        logger.info("Manual trading cycle triggered")
        report = engine.run_cycle(trigger="manual")
        if "CYCLE_IN_PROGRESS" in report.reason_codes:
            return JSONResponse(
                status_code=409,
                content={"error": "trading cycle already in progress"},
            )
        if report.error:
            return JSONResponse(status_code=500, content={"error": report.error})
        return {"status": "execution triggered", "cycle": report.to_dict()}

    return app
