from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
from pathlib import Path

from dotenv import load_dotenv

from signalbot.clock import cron_expression, next_run_at, utc_now
from signalbot.config import AppConfig, apply_env_overrides, load_config
from signalbot.data.kraken_client import KrakenFuturesClient
from signalbot.data.market_data import MarketDataService
from signalbot.data.signal_source import HttpSignalSource
from signalbot.data.symbols import SymbolMapper
from signalbot.engine import TradingEngine
from signalbot.execution.orders import OrderExecutor
from signalbot.execution.position_manager import PositionReconciler
from signalbot.execution.sequencer import OrderSequencer
from signalbot.monitoring.alerts import AlertDispatcher, build_alert_dispatcher
from signalbot.monitoring.dashboard import DashboardWriter
from signalbot.strategy.evaluator import SignalEvaluator

LOGGER = logging.getLogger("signal_bot")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Kraken Futures signal-following bot")
    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument("--dry-run", action="store_true", help="Log would-be orders, never submit them")
    mode_group.add_argument("--live", action="store_true", help="Submit orders to Kraken Futures")

    parser.add_argument("--once", action="store_true", help="Run a single trading cycle and exit.")
    parser.add_argument("--serve", action="store_true", help="Expose /health and /execute endpoints.")
    parser.add_argument("--config", default="config.yaml", help="Path to YAML config")
    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def resolve_config(args: argparse.Namespace, env: dict[str, str], root: Path) -> AppConfig:
    config_path = Path(args.config)
    if not config_path.is_absolute():
        config_path = root / config_path
    config = apply_env_overrides(load_config(config_path), env)
    if args.live:
        config.trading.dry_run = False
    elif args.dry_run:
        config.trading.dry_run = True
    return config


def build_client(config: AppConfig, env: dict[str, str]) -> KrakenFuturesClient:
    api_key = env.get("KRAKEN_API_KEY")
    api_secret = env.get("KRAKEN_API_SECRET")
    if not (api_key and api_secret):
        raise RuntimeError("Kraken API credentials are required (KRAKEN_API_KEY / KRAKEN_API_SECRET)")
    return KrakenFuturesClient(
        api_key=api_key,
        api_secret=api_secret,
        base_url=config.kraken.base_url,
        timeout_seconds=config.kraken.timeout_seconds,
        rate_limit_rps=config.kraken.rate_limit_rps,
        rate_limit_burst=config.kraken.rate_limit_burst,
        request_max_attempts=config.kraken.request_max_attempts,
        backoff_base_seconds=config.kraken.backoff_base_seconds,
        backoff_max_seconds=config.kraken.backoff_max_seconds,
    )


def build_signal_source(config: AppConfig) -> HttpSignalSource:
    if not config.signal_source.url:
        raise RuntimeError("Signal source URL is required (SIGNAL_BOT_URL or signal_source.url)")
    return HttpSignalSource(url=config.signal_source.url, timeout_seconds=config.signal_source.timeout_seconds)


def build_engine(
    config: AppConfig,
    *,
    client: KrakenFuturesClient,
    signal_source: HttpSignalSource,
    alerts: AlertDispatcher | None = None,
    dashboard: DashboardWriter | None = None,
) -> TradingEngine:
    dry_run = config.trading.dry_run
    executor = OrderExecutor(client=client, dry_run=dry_run)
    sequencer = OrderSequencer(
        market_data=MarketDataService(client),
        reconciler=PositionReconciler(client=client, executor=executor),
        executor=executor,
        symbols=SymbolMapper(config.symbols.mapping, config.trading.symbol),
        trading=config.trading,
        alerts=alerts,
    )
    return TradingEngine(
        signal_source=signal_source,
        evaluator=SignalEvaluator(config.trading.min_confidence),
        sequencer=sequencer,
        lock_symbol=config.trading.symbol,
        dry_run=dry_run,
        dashboard=dashboard,
        alerts=alerts,
    )


def run_scheduler(
    engine: TradingEngine,
    *,
    interval_minutes: int,
    stop_event: threading.Event,
    run_on_start: bool = False,
) -> None:
    if interval_minutes <= 0:
        LOGGER.info("Scheduler disabled (poll interval is 0)")
        return
    LOGGER.info("Scheduled trading with cron: %s", cron_expression(interval_minutes))
    if run_on_start and not stop_event.is_set():
        engine.run_cycle(trigger="startup")

    target = next_run_at(utc_now(), interval_minutes)
    while not stop_event.is_set():
        wait_seconds = (target - utc_now()).total_seconds()
        if wait_seconds > 0 and stop_event.wait(wait_seconds):
            break
        engine.run_cycle(trigger="schedule")
        # Anchor on the slot just served so an early wake-up cannot fire it twice.
        target = next_run_at(max(utc_now(), target), interval_minutes)
    LOGGER.info("Scheduler stopped.")


def serve_control_api(engine: TradingEngine, config: AppConfig, stop_event: threading.Event) -> None:
    import uvicorn

    from signalbot.monitoring.control_api import create_control_app

    scheduler = threading.Thread(
        target=run_scheduler,
        kwargs={
            "engine": engine,
            "interval_minutes": config.trading.poll_interval_minutes,
            "stop_event": stop_event,
            "run_on_start": config.trading.run_on_start,
        },
        name="trading-scheduler",
        daemon=True,
    )
    scheduler.start()
    LOGGER.info("Trading bot server running on %s:%d", config.control.host, config.control.port)
    try:
        uvicorn.run(create_control_app(engine, config), host=config.control.host, port=config.control.port)
    finally:
        stop_event.set()
        scheduler.join(timeout=5)


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    load_dotenv()
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))

    env = dict(os.environ)
    root = Path(__file__).resolve().parent
    config = resolve_config(args, env, root)

    client = build_client(config, env)
    signal_source = build_signal_source(config)
    alerts = build_alert_dispatcher(config.monitoring, env)
    dashboard = DashboardWriter(config.monitoring.dashboard_path)
    engine = build_engine(config, client=client, signal_source=signal_source, alerts=alerts, dashboard=dashboard)

    LOGGER.info(
        "Starting bot | dry_run=%s | symbol=%s | trade_size=%s | min_confidence=%s | interval=%dm",
        config.trading.dry_run,
        config.trading.symbol,
        config.trading.trade_size,
        config.trading.min_confidence,
        config.trading.poll_interval_minutes,
    )

    if args.once:
        report = engine.run_cycle(trigger="manual")
        return 1 if report.error else 0

    stop_event = threading.Event()
    if args.serve or config.control.enabled:
        serve_control_api(engine, config, stop_event)
        LOGGER.info("Bot stopped.")
        return 0

    def _stop(signum: int, _frame: object) -> None:
        LOGGER.info("Received signal %s, shutting down.", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _stop)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _stop)

    run_scheduler(
        engine,
        interval_minutes=config.trading.poll_interval_minutes,
        stop_event=stop_event,
        run_on_start=config.trading.run_on_start,
    )
    LOGGER.info("Bot stopped.")
    return 0


if __name__ == "__main__":
    sys.exit(run())
