from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest

from signalbot.config import DEFAULT_SYMBOL_MAPPING, TradingConfig
from signalbot.data.kraken_client import KrakenAPIError
from signalbot.data.market_data import MarketDataService
from signalbot.data.symbols import SymbolMapper
from signalbot.engine import TradingEngine
from signalbot.execution.orders import OrderExecutor
from signalbot.execution.position_manager import PositionReconciler
from signalbot.execution.sequencer import OrderSequencer
from signalbot.models import Signal, SignalEnvelope, SignalSide
from signalbot.strategy.evaluator import SignalEvaluator


class FakeKrakenClient:
    """In-memory stand-in for KrakenFuturesClient that records every call."""

    def __init__(
        self,
        *,
        last_price: float = 65000.0,
        symbol: str = "PF_XBTUSD",
        positions: list[dict[str, Any]] | None = None,
        send_statuses: list[str] | None = None,
    ):
        self.tickers: list[dict[str, Any]] = [
            {"symbol": "PF_ETHUSD", "last": 3500.0},
            {"symbol": symbol, "last": last_price},
        ]
        self.instruments: list[dict[str, Any]] = [
            {"symbol": "PF_ETHUSD", "tickSize": 0.1, "contractSize": 1},
            {"symbol": symbol, "tickSize": 0.5, "contractSize": 1},
        ]
        self.positions: list[dict[str, Any]] = list(positions or [])
        self.send_statuses = list(send_statuses or [])
        self.sent: list[dict[str, Any]] = []
        self.cancelled: list[str | None] = []
        self.calls: list[str] = []
        self.fail_send_on: int | None = None
        self.fail_positions = False
        self.fail_cancel = False

    def get_tickers(self) -> list[dict[str, Any]]:
        self.calls.append("get_tickers")
        return self.tickers

    def get_instruments(self) -> list[dict[str, Any]]:
        self.calls.append("get_instruments")
        return self.instruments

    def get_open_positions(self) -> list[dict[str, Any]]:
        self.calls.append("get_open_positions")
        if self.fail_positions:
            raise KrakenAPIError("API error GET openpositions", endpoint="GET openpositions", body={"error": "boom"})
        return self.positions

    def send_order(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.calls.append("send_order")
        self.sent.append(dict(payload))
        if self.fail_send_on is not None and len(self.sent) == self.fail_send_on:
            raise KrakenAPIError("API error POST sendorder", endpoint="POST sendorder", body={"error": "rejected"})
        status = self.send_statuses.pop(0) if self.send_statuses else "placed"
        return {
            "result": "success",
            "sendStatus": {"status": status, "order_id": f"order-{len(self.sent)}"},
        }

    def cancel_all_orders(self, symbol: str | None = None) -> dict[str, Any]:
        self.calls.append("cancel_all_orders")
        self.cancelled.append(symbol)
        if self.fail_cancel:
            raise KrakenAPIError("API error POST cancelallorders", endpoint="POST cancelallorders")
        return {"result": "success", "cancelStatus": {"status": "cancelled"}}


class FakeSignalSource:
    def __init__(self, signal: Signal | None):
        self.signal = signal
        self.fetches = 0

    def fetch_signal(self) -> SignalEnvelope | None:
        self.fetches += 1
        if self.signal is None:
            return None
        return SignalEnvelope(signal=self.signal, received_at=datetime.now(timezone.utc))


def make_signal(
    side: str = "BUY",
    *,
    confidence: float = 0.8,
    price_target: float | None = 70000.0,
    stop_loss: float | None = 64000.0,
    pair_used: str = "XXBTZUSD",
) -> Signal:
    return Signal(
        side=SignalSide(side),
        confidence=confidence,
        price_target=price_target,
        stop_loss=stop_loss,
        pair_used=pair_used,
    )


def make_engine(
    client: FakeKrakenClient,
    signal: Signal | None,
    *,
    dry_run: bool = False,
    trading: TradingConfig | None = None,
) -> TradingEngine:
    trading = trading or TradingConfig(dry_run=dry_run)
    executor = OrderExecutor(client=client, dry_run=dry_run)
    sequencer = OrderSequencer(
        market_data=MarketDataService(client),
        reconciler=PositionReconciler(client=client, executor=executor),
        executor=executor,
        symbols=SymbolMapper(DEFAULT_SYMBOL_MAPPING, trading.symbol),
        trading=trading,
    )
    return TradingEngine(
        signal_source=FakeSignalSource(signal),
        evaluator=SignalEvaluator(trading.min_confidence),
        sequencer=sequencer,
        lock_symbol=trading.symbol,
        dry_run=dry_run,
    )


@pytest.fixture
def client() -> FakeKrakenClient:
    return FakeKrakenClient()
