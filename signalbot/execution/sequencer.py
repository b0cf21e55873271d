from __future__ import annotations

import logging

from signalbot.config import TradingConfig
from signalbot.data.kraken_client import KrakenAPIError
from signalbot.data.market_data import MarketDataService
from signalbot.data.symbols import SymbolMapper
from signalbot.execution.orders import OrderExecutor
from signalbot.execution.position_manager import PositionReconciler
from signalbot.execution.sizing import entry_limit_price, round_to_tick
from signalbot.models import CycleReport, CycleState, Instrument, OrderRequest, OrderResult, Signal, StageResult
from signalbot.monitoring.alerts import AlertDispatcher
from signalbot.strategy.evaluator import stop_loss_violation

LOGGER = logging.getLogger(__name__)


def build_entry_order(
    signal: Signal,
    *,
    symbol: str,
    size: float,
    current_price: float,
    offset_bps: float,
    instrument: Instrument,
) -> OrderRequest:
    side = signal.side.order_side
    return OrderRequest(
        role="entry",
        order_type="lmt",
        symbol=symbol,
        side=side,
        size=size,
        limit_price=entry_limit_price(
            current_price=current_price,
            side=side,
            offset_bps=offset_bps,
            tick_size=instrument.tick_size,
        ),
        reduce_only=False,
    )


def build_protective_orders(
    signal: Signal,
    *,
    symbol: str,
    size: float,
    instrument: Instrument,
) -> list[OrderRequest]:
    exit_side = signal.side.exit_side
    orders: list[OrderRequest] = []
    if signal.stop_loss is not None:
        orders.append(
            OrderRequest(
                role="stop_loss",
                order_type="stp",
                symbol=symbol,
                side=exit_side,
                size=size,
                stop_price=round_to_tick(signal.stop_loss, instrument.tick_size),
                reduce_only=True,
            )
        )
    if signal.price_target is not None:
        orders.append(
            OrderRequest(
                role="take_profit",
                order_type="lmt",
                symbol=symbol,
                side=exit_side,
                size=size,
                limit_price=round_to_tick(signal.price_target, instrument.tick_size),
                reduce_only=True,
            )
        )
    return orders


class OrderSequencer:
    """
    Turns an actionable signal into entry + stop-loss + optional take-profit.

    Each step gates the next: symbol, instrument, price, stop sanity,
    reconciliation, entry, protection. Protective orders are only sent once
    the exchange reports the entry as placed.
    """

    def __init__(
        self,
        *,
        market_data: MarketDataService,
        reconciler: PositionReconciler,
        executor: OrderExecutor,
        symbols: SymbolMapper,
        trading: TradingConfig,
        alerts: AlertDispatcher | None = None,
    ):
        self.market_data = market_data
        self.reconciler = reconciler
        self.executor = executor
        self.symbols = symbols
        self.trading = trading
        self.alerts = alerts

    def execute(self, signal: Signal, report: CycleReport) -> StageResult[list[OrderResult]]:
        symbol = self.symbols.resolve(signal.pair_used)
        report.symbol = symbol
        LOGGER.info(
            "Processing %s signal for %s (exchange: %s) target=%s stop=%s confidence=%s",
            signal.side.value,
            signal.pair_used,
            symbol,
            signal.price_target,
            signal.stop_loss,
            signal.confidence,
        )

        instrument = self.market_data.get_instrument(symbol)
        if instrument is None:
            return self._abort(
                report, "INSTRUMENT_UNAVAILABLE", f"Could not get instrument info for {symbol} - aborting trade"
            )
        if not instrument.tradeable:
            return self._abort(
                report, "INSTRUMENT_UNAVAILABLE", f"Instrument {instrument.symbol} is not tradeable - aborting trade"
            )

        current_price = self.market_data.get_current_price(symbol)
        if current_price is None:
            return self._abort(
                report, "PRICE_UNAVAILABLE", f"Could not get current price for {symbol} - aborting trade"
            )
        LOGGER.info("Current market price: %s", current_price)

        violation = stop_loss_violation(signal, current_price)
        if violation is not None:
            return self._abort(report, "INCONSISTENT_SIGNAL", violation)

        report.advance(CycleState.RECONCILING)
        reconciled = self.reconciler.close_all(symbol)
        self._record(report, reconciled.value or [])
        if not reconciled.ok:
            return self._abort(
                report,
                reconciled.reason or "RECONCILE_FAILED",
                f"Positions on {symbol} not confirmed closed ({reconciled.message}) - no new entry",
            )

        size = self.trading.trade_size
        entry = build_entry_order(
            signal,
            symbol=symbol,
            size=size,
            current_price=current_price,
            offset_bps=self.trading.entry_offset_bps,
            instrument=instrument,
        )
        protective = build_protective_orders(signal, symbol=symbol, size=size, instrument=instrument)
        report.advance(CycleState.ENTERING)
        LOGGER.info("Main order parameters: %s", entry.to_payload())
        return self._place_bracket(report, symbol, entry, protective)

    def _place_bracket(
        self,
        report: CycleReport,
        symbol: str,
        entry: OrderRequest,
        protective: list[OrderRequest],
    ) -> StageResult[list[OrderResult]]:
        results: list[OrderResult] = []
        entry_placed = False
        try:
            entry_result = self.executor.submit(entry)
            self._record(report, [entry_result])
            results.append(entry_result)
            if not (entry_result.placed or entry_result.dry_run):
                LOGGER.warning(
                    "Main order was not placed successfully (status=%s), skipping SL/TP orders",
                    entry_result.status,
                )
                report.add_reason("ENTRY_NOT_PLACED")
                report.advance(CycleState.SKIPPED_PROTECTION)
                return StageResult(ok=False, value=results, reason="ENTRY_NOT_PLACED", message=entry_result.status)

            entry_placed = entry_result.placed
            report.advance(CycleState.PROTECTING)
            rejected: list[OrderResult] = []
            for order in protective:
                result = self.executor.submit(order)
                self._record(report, [result])
                results.append(result)
                if not (result.placed or result.dry_run):
                    rejected.append(result)
        except KrakenAPIError as exc:
            LOGGER.error(
                "Error executing order on %s: %s endpoint=%s body=%s",
                symbol,
                exc,
                exc.endpoint,
                exc.body,
            )
            report.add_reason("SUBMISSION_FAILED")
            self._cleanup(report, symbol)
            if entry_placed:
                self._protection_gap(report, symbol, str(exc))
            return StageResult(ok=False, value=results, reason="SUBMISSION_FAILED", message=str(exc))

        if rejected:
            report.add_reason("SUBMISSION_FAILED")
            self._cleanup(report, symbol)
            self._protection_gap(
                report,
                symbol,
                ", ".join(f"{item.request.role} status={item.status}" for item in rejected),
            )
            return StageResult(ok=False, value=results, reason="PROTECTION_GAP", message="protective order rejected")

        if self.executor.dry_run:
            LOGGER.info("DRY RUN: orders would have been placed: %s", "; ".join(r.request.describe() for r in results))
        else:
            LOGGER.info("Bracket placed on %s: %s", symbol, "; ".join(r.request.describe() for r in results))
        return StageResult.success(results)

    def _cleanup(self, report: CycleReport, symbol: str) -> None:
        LOGGER.info("Attempting to cancel any open orders for %s...", symbol)
        try:
            response = self.executor.cancel_all(symbol)
        except KrakenAPIError as exc:
            LOGGER.error("Error cancelling orders for %s: %s body=%s", symbol, exc, exc.body)
            report.add_reason("CLEANUP_FAILED")
            if self.alerts is not None:
                self.alerts.send(
                    event="CLEANUP_FAILED",
                    level="error",
                    message=f"cancel-all failed for {symbol}: {exc}",
                    dedupe_key=f"cleanup-{symbol}",
                )
            return
        LOGGER.info("Cancel result for %s: %s", symbol, response)

    def _protection_gap(self, report: CycleReport, symbol: str, detail: str) -> None:
        report.add_reason("PROTECTION_GAP")
        LOGGER.critical(
            "UNPROTECTED POSITION on %s: entry placed but protective orders failed (%s). Manual action required.",
            symbol,
            detail,
        )
        if self.alerts is not None:
            self.alerts.send(
                event="PROTECTION_GAP",
                level="critical",
                message=f"{symbol} entry placed without stop/take-profit: {detail}",
                dedupe_key=f"protection-gap-{symbol}",
            )

    @staticmethod
    def _record(report: CycleReport, results: list[OrderResult]) -> None:
        for result in results:
            report.orders.append(result.request)
            report.results.append(result)

    @staticmethod
    def _abort(report: CycleReport, reason: str, message: str) -> StageResult[list[OrderResult]]:
        LOGGER.warning("%s: %s", reason, message)
        report.add_reason(reason)
        return StageResult.abort(reason, message)
