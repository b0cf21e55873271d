from __future__ import annotations

import logging
import math
from typing import Any

from signalbot.data.kraken_client import KrakenAPIError, KrakenFuturesClient
from signalbot.models import Instrument, Ticker

LOGGER = logging.getLogger(__name__)


def _same_symbol(left: Any, right: str) -> bool:
    return str(left or "").strip().lower() == right.strip().lower()


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class MarketDataService:
    def __init__(self, client: KrakenFuturesClient):
        self.client = client

    def get_instrument(self, symbol: str) -> Instrument | None:
        try:
            instruments = self.client.get_instruments()
        except KrakenAPIError as exc:
            LOGGER.error("Error getting instrument info for %s: %s body=%s", symbol, exc, exc.body)
            return None
        for item in instruments:
            if not _same_symbol(item.get("symbol"), symbol):
                continue
            instrument = Instrument(
                symbol=str(item.get("symbol")),
                tick_size=_optional_float(item.get("tickSize")),
                contract_value=_optional_float(item.get("contractSize", item.get("contractValue"))),
                tradeable=bool(item.get("tradeable", True)),
            )
            LOGGER.info(
                "Instrument info: %s tick_size=%s contract_value=%s",
                instrument.symbol,
                instrument.tick_size,
                instrument.contract_value,
            )
            return instrument
        LOGGER.warning("Instrument not found for symbol: %s", symbol)
        return None

    def get_ticker(self, symbol: str) -> Ticker | None:
        try:
            tickers = self.client.get_tickers()
        except KrakenAPIError as exc:
            LOGGER.error("Error getting current price for %s: %s body=%s", symbol, exc, exc.body)
            return None
        for item in tickers:
            if not _same_symbol(item.get("symbol"), symbol):
                continue
            last = _optional_float(item.get("last"))
            if last is None or not math.isfinite(last) or last <= 0:
                LOGGER.warning("Ticker %s has no usable last price: %r", item.get("symbol"), item.get("last"))
                return None
            LOGGER.info("Found ticker: %s - Last price: %s", item.get("symbol"), last)
            return Ticker(symbol=str(item.get("symbol")), last=last)
        LOGGER.warning(
            "Ticker not found for symbol: %s (available: %s)",
            symbol,
            ",".join(str(item.get("symbol")) for item in tickers[:20]),
        )
        return None

    def get_current_price(self, symbol: str) -> float | None:
        ticker = self.get_ticker(symbol)
        return ticker.last if ticker is not None else None
