from __future__ import annotations

import json
import logging
from typing import Any

from signalbot.data.kraken_client import KrakenFuturesClient
from signalbot.models import OrderRequest, OrderResult

LOGGER = logging.getLogger(__name__)


def _send_status(response: dict[str, Any]) -> tuple[str, str | None]:
    status_block = response.get("sendStatus")
    if not isinstance(status_block, dict):
        return str(response.get("result") or "unknown"), None
    status = str(status_block.get("status") or "unknown")
    order_id = status_block.get("order_id") or status_block.get("orderId")
    return status, str(order_id) if order_id else None


class OrderExecutor:
    """
    Single gateway for order submission and cancellation.

    In dry-run mode nothing reaches the exchange: the would-be order is logged
    and a synthetic ``dry_run`` result is returned.
    """

    def __init__(self, *, client: KrakenFuturesClient | None, dry_run: bool):
        if client is None and not dry_run:
            raise ValueError("live mode requires an exchange client")
        self.client = client
        self.dry_run = dry_run

    def submit(self, request: OrderRequest) -> OrderResult:
        payload = request.to_payload()
        if self.dry_run or self.client is None:
            LOGGER.info("DRY RUN: would place %s order %s", request.role, payload)
            return OrderResult(request=request, status="dry_run", dry_run=True)

        LOGGER.info("Placing %s order %s", request.role, payload)
        response = self.client.send_order(payload)
        status, order_id = _send_status(response)
        LOGGER.info(
            "%s order result status=%s order_id=%s response=%s",
            request.role,
            status,
            order_id,
            json.dumps(response, sort_keys=True, default=str),
        )
        return OrderResult(request=request, status=status, order_id=order_id, raw=response)

    def cancel_all(self, symbol: str) -> dict[str, Any] | None:
        if self.dry_run or self.client is None:
            LOGGER.info("DRY RUN: would cancel all open orders for %s", symbol)
            return None
        LOGGER.info("Cancelling all open orders for %s", symbol)
        return self.client.cancel_all_orders(symbol)
