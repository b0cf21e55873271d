from __future__ import annotations

import json
import logging
import math
from datetime import datetime, timezone
from typing import Any, Protocol

import requests

from signalbot.models import Signal, SignalEnvelope, SignalSide

LOGGER = logging.getLogger(__name__)


class SignalSource(Protocol):
    def fetch_signal(self) -> SignalEnvelope | None:
        ...


def _optional_price(value: Any) -> float | None:
    if value is None or value == "":
        return None
    price = float(value)
    if not math.isfinite(price):
        raise ValueError(f"non-finite price {value!r}")
    if price <= 0:
        return None
    return price


def parse_signal_payload(payload: Any) -> Signal | None:
    """
    Build a Signal from the source response.

    Expected shape:
    {"success": true,
     "data": {"signal": "BUY", "confidence": 0.8, "price_target": 70000, "stop_loss": 64000},
     "pair_used": "XXBTZUSD"}
    """
    if not isinstance(payload, dict) or not payload.get("success"):
        return None
    data = payload.get("data")
    if not isinstance(data, dict):
        return None
    raw_side = str(data.get("signal") or "").strip().upper()
    try:
        side = SignalSide(raw_side)
    except ValueError:
        LOGGER.warning("Unknown signal side %r in payload", raw_side)
        return None
    try:
        confidence = float(data.get("confidence", 0.0))
        price_target = _optional_price(data.get("price_target"))
        stop_loss = _optional_price(data.get("stop_loss"))
    except (TypeError, ValueError):
        LOGGER.warning("Malformed numeric fields in signal payload: %s", data)
        return None
    if not (math.isfinite(confidence) and 0.0 <= confidence <= 1.0):
        LOGGER.warning("Confidence %r outside [0,1] in signal payload", data.get("confidence"))
        return None
    return Signal(
        side=side,
        confidence=confidence,
        price_target=price_target,
        stop_loss=stop_loss,
        pair_used=str(payload.get("pair_used") or "").strip(),
        raw=dict(data),
    )


class HttpSignalSource:
    def __init__(self, *, url: str, timeout_seconds: int = 10, session: requests.Session | None = None):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    def fetch_signal(self) -> SignalEnvelope | None:
        LOGGER.info("Fetching trading signal from %s", self.url)
        try:
            response = self.session.get(self.url, timeout=self.timeout_seconds)
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            LOGGER.error("Error fetching signal: %s", exc)
            return None

        signal = parse_signal_payload(payload)
        if signal is None:
            LOGGER.info("No valid signal received")
            return None
        LOGGER.info("Signal received: %s", json.dumps(signal.raw, sort_keys=True, default=str))
        return SignalEnvelope(signal=signal, received_at=datetime.now(timezone.utc))
