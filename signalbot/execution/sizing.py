from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal


def round_to_tick(price: float, tick_size: float | None) -> float:
    if tick_size is None or tick_size <= 0:
        return float(price)
    tick = Decimal(str(tick_size))
    steps = (Decimal(str(price)) / tick).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return float(steps * tick)


def entry_limit_price(
    *,
    current_price: float,
    side: str,
    offset_bps: float,
    tick_size: float | None,
) -> float:
    # Offset moves the limit through the market: above for buys, below for sells.
    offset = current_price * max(0.0, offset_bps) / 10_000.0
    raw = current_price + offset if side == "buy" else current_price - offset
    return round_to_tick(raw, tick_size)
