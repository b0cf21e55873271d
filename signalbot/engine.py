from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from signalbot.data.signal_source import SignalSource
from signalbot.execution.sequencer import OrderSequencer
from signalbot.models import CycleReport, CycleState
from signalbot.monitoring.alerts import AlertDispatcher
from signalbot.monitoring.dashboard import DashboardWriter
from signalbot.strategy.evaluator import SignalEvaluator

LOGGER = logging.getLogger(__name__)

TERMINAL_STATES = {CycleState.DONE, CycleState.REJECTED}


class SymbolRunLock:
    """One non-blocking slot per trading symbol."""

    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, symbol: str) -> threading.Lock:
        key = symbol.strip().upper()
        with self._guard:
            if key not in self._locks:
                self._locks[key] = threading.Lock()
            return self._locks[key]

    @contextmanager
    def hold(self, symbol: str) -> Iterator[bool]:
        lock = self._lock_for(symbol)
        acquired = lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()

    def is_locked(self, symbol: str) -> bool:
        return self._lock_for(symbol).locked()


class TradingEngine:
    """Runs one signal -> evaluation -> bracket cycle; never raises to its caller."""

    def __init__(
        self,
        *,
        signal_source: SignalSource,
        evaluator: SignalEvaluator,
        sequencer: OrderSequencer,
        lock_symbol: str,
        dry_run: bool,
        run_lock: SymbolRunLock | None = None,
        dashboard: DashboardWriter | None = None,
        alerts: AlertDispatcher | None = None,
    ):
        self.signal_source = signal_source
        self.evaluator = evaluator
        self.sequencer = sequencer
        self.lock_symbol = lock_symbol
        self.dry_run = dry_run
        self.run_lock = run_lock or SymbolRunLock()
        self.dashboard = dashboard
        self.alerts = alerts
        self._last_report: CycleReport | None = None

    @property
    def last_report(self) -> CycleReport | None:
        return self._last_report

    def run_cycle(self, trigger: str = "schedule") -> CycleReport:
        report = CycleReport(trigger=trigger, dry_run=self.dry_run, started_at=datetime.now(timezone.utc))
        with self.run_lock.hold(self.lock_symbol) as acquired:
            if not acquired:
                LOGGER.warning(
                    "Trading cycle already in progress for %s, skipping %s trigger",
                    self.lock_symbol,
                    trigger,
                )
                report.add_reason("CYCLE_IN_PROGRESS")
                report.finished_at = datetime.now(timezone.utc)
                return report

            LOGGER.info("=" * 50)
            LOGGER.info("Starting trading cycle: %s trigger=%s", report.started_at.isoformat(), trigger)
            LOGGER.info("=" * 50)
            try:
                self._run_stages(report)
            except Exception as exc:  # noqa: BLE001
                LOGGER.exception("Unhandled error in trading cycle")
                report.error = f"{type(exc).__name__}: {exc}"
                report.add_reason("UNHANDLED_ERROR")
                if self.alerts is not None:
                    self.alerts.send(
                        event="UNHANDLED_CYCLE_ERROR",
                        level="error",
                        message=report.error,
                        dedupe_key="cycle-unhandled",
                    )
            finally:
                if report.state not in TERMINAL_STATES:
                    report.advance(CycleState.DONE)
                report.finished_at = datetime.now(timezone.utc)
                self._last_report = report
                if self.dashboard is not None:
                    self.dashboard.write_cycle(report)

            LOGGER.info(
                "Trading cycle completed state=%s reasons=%s",
                report.state.value,
                ",".join(report.reason_codes) or "-",
            )
            LOGGER.info("=" * 50)
        return report

    def _run_stages(self, report: CycleReport) -> None:
        report.advance(CycleState.FETCHING_SIGNAL)
        envelope = self.signal_source.fetch_signal()
        if envelope is None:
            LOGGER.info("No signal data received")
            report.add_reason("SIGNAL_UNAVAILABLE")
            return

        signal = envelope.signal
        report.signal = signal
        report.advance(CycleState.EVALUATING)
        evaluation = self.evaluator.evaluate(signal)
        if not evaluation.actionable:
            report.add_reason(evaluation.reason_code or "REJECTED")
            report.advance(CycleState.REJECTED)
            return

        self.sequencer.execute(signal, report)
