from __future__ import annotations

import pytest

from conftest import make_signal
from signalbot.strategy.evaluator import SignalEvaluator, stop_loss_violation


@pytest.mark.parametrize("side", ["HOLD", "NEUTRAL"])
def test_hold_and_neutral_are_rejected(side: str) -> None:
    evaluator = SignalEvaluator(min_confidence=0.65)
    result = evaluator.evaluate(make_signal(side, confidence=0.99))

    assert result.actionable is False
    assert result.reason_code == "SIGNAL_HOLD"


def test_hold_rejection_wins_over_low_confidence() -> None:
    evaluator = SignalEvaluator(min_confidence=0.65)
    result = evaluator.evaluate(make_signal("HOLD", confidence=0.1, price_target=None, stop_loss=None))
    assert result.reason_code == "SIGNAL_HOLD"


def test_low_confidence_is_rejected() -> None:
    evaluator = SignalEvaluator(min_confidence=0.65)
    result = evaluator.evaluate(make_signal("BUY", confidence=0.64))

    assert result.actionable is False
    assert result.reason_code == "LOW_CONFIDENCE"


def test_confidence_equal_to_threshold_passes() -> None:
    evaluator = SignalEvaluator(min_confidence=0.65)
    assert evaluator.should_execute(make_signal("SELL", confidence=0.65, price_target=60000, stop_loss=66000))


@pytest.mark.parametrize(
    ("price_target", "stop_loss"),
    [(None, 64000.0), (70000.0, None), (None, None)],
)
def test_missing_target_or_stop_is_rejected(price_target, stop_loss) -> None:
    evaluator = SignalEvaluator(min_confidence=0.65)
    for side in ("BUY", "SELL"):
        result = evaluator.evaluate(make_signal(side, price_target=price_target, stop_loss=stop_loss))
        assert result.actionable is False
        assert result.reason_code == "MISSING_TARGETS"


def test_complete_buy_signal_is_actionable() -> None:
    assert SignalEvaluator(min_confidence=0.65).should_execute(make_signal("BUY")) is True


def test_stop_loss_side_validation() -> None:
    assert stop_loss_violation(make_signal("BUY", stop_loss=64000), 65000) is None
    assert stop_loss_violation(make_signal("BUY", stop_loss=65000), 65000) is not None
    assert stop_loss_violation(make_signal("BUY", stop_loss=66000), 65000) is not None
    assert stop_loss_violation(make_signal("SELL", stop_loss=66000), 65000) is None
    assert stop_loss_violation(make_signal("SELL", stop_loss=65000), 65000) is not None
    assert "above current price" in stop_loss_violation(make_signal("SELL", stop_loss=64000), 65000)


def test_nan_confidence_never_clears_threshold() -> None:
    result = SignalEvaluator(min_confidence=0.65).evaluate(make_signal("BUY", confidence=float("nan")))
    assert result.reason_code == "LOW_CONFIDENCE"


@pytest.mark.parametrize("value", [float("nan"), float("inf"), -1.0])
def test_non_finite_or_negative_prices_count_as_missing(value: float) -> None:
    evaluator = SignalEvaluator(min_confidence=0.65)
    assert evaluator.evaluate(make_signal("BUY", stop_loss=value)).reason_code == "MISSING_TARGETS"
    assert evaluator.evaluate(make_signal("SELL", price_target=value, stop_loss=66000)).reason_code == "MISSING_TARGETS"


def test_nan_stop_is_a_stop_side_violation() -> None:
    assert stop_loss_violation(make_signal("BUY", stop_loss=float("nan")), 65000) is not None
    assert stop_loss_violation(make_signal("SELL", stop_loss=float("nan")), 65000) is not None
