from __future__ import annotations

import logging
from typing import Any

from signalbot.data.kraken_client import KrakenAPIError, KrakenFuturesClient
from signalbot.execution.orders import OrderExecutor
from signalbot.models import OrderRequest, OrderResult, Position, StageResult

LOGGER = logging.getLogger(__name__)


def _position_from_api(item: dict[str, Any]) -> Position:
    pnl = item.get("unrealizedFunding", item.get("pnl"))
    return Position(
        symbol=str(item.get("symbol") or ""),
        side=str(item.get("side") or "").strip().lower(),
        size=float(item.get("size") or 0.0),
        unrealized_pnl=float(pnl) if pnl is not None else None,
    )


def closing_order(position: Position) -> OrderRequest:
    return OrderRequest(
        role="close",
        order_type="mkt",
        symbol=position.symbol,
        side=position.closing_side,
        size=abs(position.size),
        reduce_only=True,
    )


class PositionReconciler:
    """Flattens every open position on a symbol before a new entry is placed."""

    def __init__(self, *, client: KrakenFuturesClient, executor: OrderExecutor):
        self.client = client
        self.executor = executor

    def get_open_positions(self, symbol: str) -> list[Position]:
        positions = [_position_from_api(item) for item in self.client.get_open_positions()]
        target = symbol.strip().lower()
        return [p for p in positions if p.symbol.strip().lower() == target]

    def close_all(self, symbol: str) -> StageResult[list[OrderResult]]:
        try:
            positions = self.get_open_positions(symbol)
        except KrakenAPIError as exc:
            LOGGER.error("Could not fetch open positions for %s: %s body=%s", symbol, exc, exc.body)
            return StageResult.abort("RECONCILE_FAILED", f"position fetch failed: {exc}")
        except (TypeError, ValueError) as exc:
            LOGGER.error("Malformed open positions payload for %s: %s", symbol, exc)
            return StageResult.abort("RECONCILE_FAILED", f"malformed positions: {exc}")

        if not positions:
            LOGGER.info("No open positions to close for %s", symbol)
            return StageResult.success([])

        LOGGER.info("Found %d position(s) to close for %s", len(positions), symbol)
        # Every side must be known before the first close goes out.
        try:
            closes = [(position, closing_order(position)) for position in positions if position.size != 0]
        except ValueError as exc:
            LOGGER.error("Cannot determine closing side for %s: %s", symbol, exc)
            return StageResult.abort("RECONCILE_FAILED", str(exc))

        results: list[OrderResult] = []
        for position, request in closes:
            LOGGER.info(
                "Closing position: %s %s %s (P&L: %s)",
                request.side,
                request.size,
                position.symbol,
                position.unrealized_pnl,
            )
            try:
                result = self.executor.submit(request)
            except KrakenAPIError as exc:
                LOGGER.error(
                    "Close order failed for %s params=%s: %s body=%s",
                    position.symbol,
                    request.to_payload(),
                    exc,
                    exc.body,
                )
                return StageResult(
                    ok=False,
                    value=results,
                    reason="RECONCILE_FAILED",
                    message=f"close order failed: {exc}",
                )
            results.append(result)
            if not result.dry_run and not result.placed:
                LOGGER.error(
                    "Close order for %s was not accepted (status=%s); position state unknown",
                    position.symbol,
                    result.status,
                )
                return StageResult(
                    ok=False,
                    value=results,
                    reason="RECONCILE_FAILED",
                    message=f"close order status={result.status}",
                )

        LOGGER.info("Position closing completed for %s", symbol)
        return StageResult.success(results)
