from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from signalbot.models import Signal

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class EvaluationResult:
    actionable: bool
    reason_code: str | None = None


def _usable_price(value: float | None) -> bool:
    return value is not None and math.isfinite(value) and value > 0


class SignalEvaluator:
    def __init__(self, min_confidence: float):
        self.min_confidence = float(min_confidence)

    def evaluate(self, signal: Signal) -> EvaluationResult:
        if not signal.side.actionable:
            LOGGER.info("%s signal received - no action taken", signal.side.value)
            return EvaluationResult(False, "SIGNAL_HOLD")

        # NaN never clears the threshold.
        if not (signal.confidence >= self.min_confidence):
            LOGGER.info(
                "Low confidence signal (%.4f) - minimum required: %.4f",
                signal.confidence,
                self.min_confidence,
            )
            return EvaluationResult(False, "LOW_CONFIDENCE")

        if not (_usable_price(signal.price_target) and _usable_price(signal.stop_loss)):
            LOGGER.info(
                "Missing price_target or stop_loss (target=%s stop=%s) - no action taken",
                signal.price_target,
                signal.stop_loss,
            )
            return EvaluationResult(False, "MISSING_TARGETS")

        return EvaluationResult(True)

    def should_execute(self, signal: Signal) -> bool:
        return self.evaluate(signal).actionable


def stop_loss_violation(signal: Signal, current_price: float) -> str | None:
    """Describe why the stop sits on the wrong side of the market, or None."""
    stop = signal.stop_loss
    if stop is None:
        return None
    if not math.isfinite(stop):
        return f"Stop loss ({stop}) is not a finite price"
    if signal.side.order_side == "sell" and stop <= current_price:
        return f"Stop loss ({stop}) should be above current price ({current_price}) for SELL orders"
    if signal.side.order_side == "buy" and stop >= current_price:
        return f"Stop loss ({stop}) should be below current price ({current_price}) for BUY orders"
    return None
